"""Content-addressed on-disk cache of per-segment audio.

Responsibilities:
- Own the persisted file-naming contract of a chapter cache directory:
  `segment_NNN.mp3` + `segment_NNN.json`, `pause_NNN.mp3`, `end_pause.mp3`,
  `end_chapter.mp3` (+ `end_chapter.json`), and `after_end_pause.mp3`.
- Reuse a cached file only when its sidecar records the current
  `(speakerId, voiceId, textHash)` key.
- Keep silence clips once per duration for reuse across chapters.
- Never delete entries implicitly; stale entries stay until regenerated.
"""

from __future__ import annotations

from datetime import datetime, timezone
import hashlib
from pathlib import Path
import re

from ..io.storage import ArtifactStore
from ..models.datatypes import SegmentCacheKey

CLOSING_FILES = ("end_pause", "end_chapter", "after_end_pause")
_SILENCE_DIRECTORY = "_silence"


def _chapter_directory_name(chapter_id: str) -> str:
    """Return a filesystem-safe directory name unique to a chapter identifier.

    Identifiers that are already safe keep their name. Anything rewritten, and
    anything starting with `_` (reserved for shared directories), gets a short
    digest of the raw identifier appended so distinct ids never share a directory.
    """

    safe = re.sub(r"[^A-Za-z0-9._-]+", "_", chapter_id.strip()).strip(".")
    if safe and safe == chapter_id and not safe.startswith("_"):
        return safe
    digest = hashlib.sha256(chapter_id.encode("utf-8")).hexdigest()[:10]
    return f"{safe or 'chapter'}-{digest}"


def _utc_timestamp() -> str:
    """Return the current UTC time as an ISO-8601 string."""

    return datetime.now(timezone.utc).isoformat()


class SegmentAudioCache:
    """Per-chapter segment audio files validated by sidecar cache keys."""

    def __init__(self, root: Path) -> None:
        """Initialize the cache rooted at one directory."""

        self.root = root
        self._store = ArtifactStore(root)

    def chapter_dir(self, chapter_id: str) -> Path:
        """Return the cache directory of a chapter."""

        return self.root / _chapter_directory_name(chapter_id)

    def segment_audio_path(self, chapter_id: str, index: int) -> Path:
        """Return the audio path of one segment."""

        return self.chapter_dir(chapter_id) / f"segment_{index:03d}.mp3"

    def segment_metadata_path(self, chapter_id: str, index: int) -> Path:
        """Return the sidecar metadata path of one segment."""

        return self.chapter_dir(chapter_id) / f"segment_{index:03d}.json"

    def pause_path(self, chapter_id: str, index: int) -> Path:
        """Return the pause path between segment `index` and its successor."""

        return self.chapter_dir(chapter_id) / f"pause_{index:03d}.mp3"

    def closing_path(self, chapter_id: str, name: str) -> Path:
        """Return the path of a closing-sequence file."""

        if name not in CLOSING_FILES:
            raise ValueError(f"Unknown closing file `{name}`.")
        return self.chapter_dir(chapter_id) / f"{name}.mp3"

    def closing_metadata_path(self, chapter_id: str, name: str) -> Path:
        """Return the sidecar path of a closing-sequence file."""

        return self.closing_path(chapter_id, name).with_suffix(".json")

    def silence_path(self, duration_ms: int) -> Path:
        """Return the shared silence clip path for one duration."""

        return self.root / _SILENCE_DIRECTORY / f"silence_{duration_ms}ms.mp3"

    def lookup(self, audio_path: Path, metadata_path: Path, key: SegmentCacheKey) -> Path | None:
        """Return `audio_path` when it exists and its sidecar records `key`."""

        if not audio_path.is_file():
            return None
        if not key.matches(self.read_metadata(metadata_path)):
            return None
        return audio_path

    def lookup_segment(self, chapter_id: str, index: int, key: SegmentCacheKey) -> Path | None:
        """Return the cached audio of one segment when its key is current."""

        return self.lookup(
            self.segment_audio_path(chapter_id, index),
            self.segment_metadata_path(chapter_id, index),
            key,
        )

    def describe_segment(self, chapter_id: str, index: int, key: SegmentCacheKey) -> str:
        """Return `current`, `stale`, or `missing` for one segment cache entry."""

        if not self.segment_audio_path(chapter_id, index).is_file():
            return "missing"
        if self.lookup_segment(chapter_id, index, key) is None:
            return "stale"
        return "current"

    def read_metadata(self, metadata_path: Path) -> dict[str, object] | None:
        """Load a sidecar metadata record, returning `None` when unusable."""

        return self._store.load_json(self._relative(metadata_path))

    def store_bytes(
        self,
        audio_path: Path,
        metadata_path: Path,
        key: SegmentCacheKey,
        audio: bytes,
    ) -> Path:
        """Write audio bytes and then their sidecar record."""

        path = self._store.save_audio(self._relative(audio_path), audio)
        self._store.save_json(self._relative(metadata_path), key.as_metadata(_utc_timestamp()))
        return path

    def store_copy(
        self,
        audio_path: Path,
        metadata_path: Path,
        key: SegmentCacheKey,
        source: Path,
    ) -> Path:
        """Copy an existing audio file into place and then write its sidecar."""

        path = self._store.copy_into(source, self._relative(audio_path))
        self._store.save_json(self._relative(metadata_path), key.as_metadata(_utc_timestamp()))
        return path

    def copy_file(self, source: Path, destination: Path) -> Path:
        """Copy a file into the cache without sidecar metadata."""

        return self._store.copy_into(source, self._relative(destination))

    def invalidate(self, audio_path: Path, metadata_path: Path) -> None:
        """Remove one entry so it is regenerated on next use."""

        self._store.delete(self._relative(metadata_path))
        self._store.delete(self._relative(audio_path))

    def clear_chapter(self, chapter_id: str) -> bool:
        """Delete the whole cache directory of a chapter."""

        return self._store.delete_tree(self._relative(self.chapter_dir(chapter_id)))

    def _relative(self, path: Path) -> Path:
        """Return a cache-root-relative path for a path inside the cache."""

        return path.relative_to(self.root)
