"""Chapter, segment, speaker, and voice persistence.

Responsibilities:
- Declare the store protocols consumed by the pipeline orchestrator.
- Provide `JsonLibraryStore`, a single-file JSON library used by the CLI.
- Keep speaker names unique and make `merge_speakers` reassign every segment
  of the source speaker before deleting it.

Key types:
- `ChapterStore`, `SegmentStore`, `SpeakerStore`: consumed store contracts.
- `JsonLibraryStore`: thread-safe JSON-file implementation of all three.
"""

from __future__ import annotations

from datetime import datetime
import json
import os
from pathlib import Path
import threading
from typing import Any, Protocol, Sequence

from ..errors import PipelineStageError
from ..models.datatypes import Chapter, Segment, Speaker, Voice

OPENAI_PRESET_VOICES = ("alloy", "echo", "fable", "onyx", "nova", "shimmer")
_LIBRARY_VERSION = 1


class ChapterStore(Protocol):
    """Chapter record persistence."""

    def get_chapter(self, chapter_id: str) -> Chapter | None:
        """Return a chapter or `None`."""

    def save_chapter(self, chapter: Chapter) -> Chapter:
        """Insert or replace a chapter."""

    def list_chapters(self) -> list[Chapter]:
        """Return all chapters ordered by identifier."""

    def delete_chapter(self, chapter_id: str) -> bool:
        """Delete a chapter and its segments, reporting whether it existed."""


class SegmentStore(Protocol):
    """Ordered segment persistence per chapter."""

    def get_segments(self, chapter_id: str) -> list[Segment]:
        """Return a chapter's segments ordered by index."""

    def save_segments(self, chapter_id: str, segments: Sequence[Segment]) -> None:
        """Replace a chapter's segments."""

    def update_segment_speaker(self, chapter_id: str, index: int, speaker_id: int) -> Segment:
        """Reassign one segment to another speaker."""


class SpeakerStore(Protocol):
    """Speaker and voice persistence."""

    def get_speaker(self, speaker_id: int) -> Speaker | None:
        """Return a speaker or `None`."""

    def get_or_create_speaker(self, name: str, *, is_narrator: bool = False) -> Speaker:
        """Return the speaker with a name, creating it when absent."""

    def list_speakers(self) -> list[Speaker]:
        """Return all speakers ordered by identifier."""

    def assign_voice(self, speaker_id: int, voice_id: str | None) -> Speaker:
        """Set or clear a speaker's voice."""

    def merge_speakers(self, source_id: int, target_id: int) -> int:
        """Move every segment from source to target and delete source."""

    def get_voice(self, voice_id: str) -> Voice | None:
        """Return a voice or `None`."""


def _datetime_to_text(value: datetime | None) -> str | None:
    """Serialize an optional timestamp."""

    return value.isoformat() if value is not None else None


def _datetime_from_text(value: object) -> datetime | None:
    """Parse an optional serialized timestamp."""

    if not isinstance(value, str) or not value:
        return None
    return datetime.fromisoformat(value)


def _chapter_payload(chapter: Chapter) -> dict[str, Any]:
    """Serialize a chapter record."""

    return {
        "id": chapter.id,
        "title": chapter.title,
        "text": chapter.text,
        "extracted_at": _datetime_to_text(chapter.extracted_at),
        "speakers_identified_at": _datetime_to_text(chapter.speakers_identified_at),
        "audio_processed_at": _datetime_to_text(chapter.audio_processed_at),
        "published_at": _datetime_to_text(chapter.published_at),
        "audio_duration_seconds": chapter.audio_duration_seconds,
        "audio_file_size": chapter.audio_file_size,
    }


def _chapter_from_payload(payload: dict[str, Any]) -> Chapter:
    """Deserialize a chapter record."""

    return Chapter(
        id=str(payload["id"]),
        title=str(payload.get("title", "")),
        text=str(payload.get("text", "")),
        extracted_at=_datetime_from_text(payload.get("extracted_at")),
        speakers_identified_at=_datetime_from_text(payload.get("speakers_identified_at")),
        audio_processed_at=_datetime_from_text(payload.get("audio_processed_at")),
        published_at=_datetime_from_text(payload.get("published_at")),
        audio_duration_seconds=payload.get("audio_duration_seconds"),
        audio_file_size=payload.get("audio_file_size"),
    )


def _segment_payload(segment: Segment) -> dict[str, Any]:
    """Serialize a segment record."""

    return {
        "index": segment.index,
        "text": segment.text,
        "type": segment.type,
        "speaker_id": segment.speaker_id,
        "sound": segment.sound,
    }


def _segment_from_payload(chapter_id: str, payload: dict[str, Any]) -> Segment:
    """Deserialize a segment record."""

    return Segment(
        chapter_id=chapter_id,
        index=int(payload["index"]),
        text=str(payload["text"]),
        type=str(payload["type"]),
        speaker_id=int(payload["speaker_id"]),
        sound=payload.get("sound"),
    )


def _voice_payload(voice: Voice) -> dict[str, Any]:
    """Serialize a voice record."""

    return {
        "id": voice.id,
        "name": voice.name,
        "provider": voice.provider,
        "kind": voice.kind,
        "settings": dict(voice.settings),
        "is_active": voice.is_active,
    }


def _voice_from_payload(payload: dict[str, Any]) -> Voice:
    """Deserialize a voice record."""

    settings = payload.get("settings")
    return Voice(
        id=str(payload["id"]),
        name=str(payload.get("name", payload["id"])),
        provider=str(payload.get("provider", "openai")),
        kind=str(payload.get("kind", "preset")),
        settings=dict(settings) if isinstance(settings, dict) else {},
        is_active=bool(payload.get("is_active", True)),
    )


def default_voices() -> list[Voice]:
    """Return the OpenAI preset voices seeded into a new library."""

    return [
        Voice(id=name, name=name.capitalize(), provider="openai", kind="preset")
        for name in OPENAI_PRESET_VOICES
    ]


class JsonLibraryStore:
    """Chapter library persisted as one JSON document."""

    def __init__(self, path: Path) -> None:
        """Open or initialize a library file."""

        self.path = path
        self._lock = threading.RLock()
        self._data = self._load()

    def get_chapter(self, chapter_id: str) -> Chapter | None:
        """Return a chapter or `None`."""

        with self._lock:
            payload = self._data["chapters"].get(chapter_id)
            return _chapter_from_payload(payload) if payload is not None else None

    def save_chapter(self, chapter: Chapter) -> Chapter:
        """Insert or replace a chapter."""

        with self._lock:
            self._data["chapters"][chapter.id] = _chapter_payload(chapter)
            self._flush()
            return chapter

    def list_chapters(self) -> list[Chapter]:
        """Return all chapters ordered by identifier."""

        with self._lock:
            return [
                _chapter_from_payload(self._data["chapters"][chapter_id])
                for chapter_id in sorted(self._data["chapters"])
            ]

    def delete_chapter(self, chapter_id: str) -> bool:
        """Delete a chapter and its segments."""

        with self._lock:
            removed = self._data["chapters"].pop(chapter_id, None) is not None
            self._data["segments"].pop(chapter_id, None)
            self._flush()
            return removed

    def get_segments(self, chapter_id: str) -> list[Segment]:
        """Return a chapter's segments ordered by index."""

        with self._lock:
            rows = self._data["segments"].get(chapter_id, [])
            segments = [_segment_from_payload(chapter_id, row) for row in rows]
            return sorted(segments, key=lambda segment: segment.index)

    def save_segments(self, chapter_id: str, segments: Sequence[Segment]) -> None:
        """Replace a chapter's segments."""

        indices = [segment.index for segment in segments]
        if len(set(indices)) != len(indices):
            raise PipelineStageError(
                stage="library",
                detail=f"Duplicate segment index in chapter `{chapter_id}`.",
            )
        with self._lock:
            self._data["segments"][chapter_id] = [
                _segment_payload(segment)
                for segment in sorted(segments, key=lambda segment: segment.index)
            ]
            self._flush()

    def update_segment_speaker(self, chapter_id: str, index: int, speaker_id: int) -> Segment:
        """Reassign one segment to another speaker."""

        with self._lock:
            self._require_speaker(speaker_id)
            for row in self._data["segments"].get(chapter_id, []):
                if int(row["index"]) == index:
                    row["speaker_id"] = speaker_id
                    self._flush()
                    return _segment_from_payload(chapter_id, row)
        raise PipelineStageError(
            stage="library",
            detail=f"Chapter `{chapter_id}` has no segment {index}.",
            hint="List segments with `chaptervoice segments <chapter-id>`.",
        )

    def get_speaker(self, speaker_id: int) -> Speaker | None:
        """Return a speaker or `None`."""

        with self._lock:
            for row in self._data["speakers"]:
                if int(row["id"]) == speaker_id:
                    return self._speaker_from_row(row)
            return None

    def get_speaker_by_name(self, name: str) -> Speaker | None:
        """Return the speaker whose name matches case-insensitively."""

        key = name.strip().casefold()
        with self._lock:
            for row in self._data["speakers"]:
                if str(row["name"]).casefold() == key:
                    return self._speaker_from_row(row)
            return None

    def get_or_create_speaker(self, name: str, *, is_narrator: bool = False) -> Speaker:
        """Return the speaker with a name, creating it when absent."""

        normalized = name.strip()
        if not normalized:
            raise ValueError("Speaker name must be a non-empty string.")
        with self._lock:
            existing = self.get_speaker_by_name(normalized)
            if existing is not None:
                return existing
            speaker_id = int(self._data["next_speaker_id"])
            self._data["next_speaker_id"] = speaker_id + 1
            row = {"id": speaker_id, "name": normalized, "voice_id": None, "is_narrator": is_narrator}
            self._data["speakers"].append(row)
            self._flush()
            return self._speaker_from_row(row)

    def list_speakers(self) -> list[Speaker]:
        """Return all speakers ordered by identifier."""

        with self._lock:
            speakers = [self._speaker_from_row(row) for row in self._data["speakers"]]
            return sorted(speakers, key=lambda speaker: speaker.id)

    def assign_voice(self, speaker_id: int, voice_id: str | None) -> Speaker:
        """Set or clear a speaker's voice."""

        with self._lock:
            if voice_id is not None and self.get_voice(voice_id) is None:
                raise PipelineStageError(
                    stage="voices",
                    detail=f"Voice `{voice_id}` is not in the library.",
                    hint="List voices with `chaptervoice speakers --voices`.",
                )
            row = self._require_speaker(speaker_id)
            row["voice_id"] = voice_id
            self._flush()
            return self._speaker_from_row(row)

    def merge_speakers(self, source_id: int, target_id: int) -> int:
        """Move every segment from source to target and delete source."""

        if source_id == target_id:
            raise PipelineStageError(
                stage="library",
                detail="Cannot merge a speaker into itself.",
            )
        with self._lock:
            self._require_speaker(source_id)
            self._require_speaker(target_id)
            moved = 0
            for rows in self._data["segments"].values():
                for row in rows:
                    if int(row["speaker_id"]) == source_id:
                        row["speaker_id"] = target_id
                        moved += 1
            self._data["speakers"] = [
                row for row in self._data["speakers"] if int(row["id"]) != source_id
            ]
            self._flush()
            return moved

    def get_voice(self, voice_id: str) -> Voice | None:
        """Return a voice or `None`."""

        with self._lock:
            payload = self._data["voices"].get(voice_id)
            return _voice_from_payload(payload) if payload is not None else None

    def list_voices(self) -> list[Voice]:
        """Return all voices ordered by identifier."""

        with self._lock:
            return [
                _voice_from_payload(self._data["voices"][voice_id])
                for voice_id in sorted(self._data["voices"])
            ]

    def save_voice(self, voice: Voice) -> Voice:
        """Insert or replace a voice."""

        with self._lock:
            self._data["voices"][voice.id] = _voice_payload(voice)
            self._flush()
            return voice

    def _require_speaker(self, speaker_id: int) -> dict[str, Any]:
        """Return the mutable row of an existing speaker."""

        for row in self._data["speakers"]:
            if int(row["id"]) == speaker_id:
                return row
        raise PipelineStageError(
            stage="library",
            detail=f"Speaker {speaker_id} was not found.",
            hint="List speakers with `chaptervoice speakers`.",
        )

    @staticmethod
    def _speaker_from_row(row: dict[str, Any]) -> Speaker:
        """Deserialize a speaker record."""

        return Speaker(
            id=int(row["id"]),
            name=str(row["name"]),
            voice_id=row.get("voice_id"),
            is_narrator=bool(row.get("is_narrator", False)),
        )

    def _load(self) -> dict[str, Any]:
        """Load the library document, seeding an empty one when absent."""

        if not self.path.exists():
            return {
                "version": _LIBRARY_VERSION,
                "chapters": {},
                "segments": {},
                "speakers": [],
                "next_speaker_id": 1,
                "voices": {voice.id: _voice_payload(voice) for voice in default_voices()},
            }
        try:
            payload = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            raise PipelineStageError(
                stage="library",
                detail=f"Library file `{self.path}` could not be read: {exc}",
                hint="Restore the library file or point `library_path` at a new location.",
            ) from exc
        if not isinstance(payload, dict):
            raise PipelineStageError(
                stage="library",
                detail=f"Library file `{self.path}` does not contain a JSON object.",
            )
        payload.setdefault("chapters", {})
        payload.setdefault("segments", {})
        payload.setdefault("speakers", [])
        payload.setdefault("voices", {})
        payload.setdefault(
            "next_speaker_id",
            max((int(row["id"]) for row in payload["speakers"]), default=0) + 1,
        )
        return payload

    def _flush(self) -> None:
        """Write the library document atomically."""

        self.path.parent.mkdir(parents=True, exist_ok=True)
        temporary = self.path.with_name(f".{self.path.name}.tmp")
        temporary.write_text(
            json.dumps(self._data, ensure_ascii=False, indent=2, sort_keys=True),
            encoding="utf-8",
        )
        os.replace(temporary, self.path)
