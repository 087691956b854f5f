"""Cache-aware per-segment voice synthesis.

Responsibilities:
- Return a cached segment audio file when its `(speakerId, voiceId, textHash)`
  key is current, otherwise synthesize through the voice's provider and
  rewrite the file and its sidecar.
- Render pause-marker segments as generated silence and sound-effect cues as
  copies of static assets, never calling a provider for either.
- Apply pronunciation overrides to provider input only.
- Resolve one `VoiceProvider` per voice and reuse it for the whole run.
"""

from __future__ import annotations

from pathlib import Path
import threading
from typing import Callable, Mapping, Protocol

from ..errors import SynthesisError
from ..llm.cache import sha256_text
from ..llm.http_client import ProviderError
from ..models.datatypes import Segment, SegmentCacheKey, Voice
from ..telemetry.logger import RunLogger
from ..text.pronunciation import apply_pronunciations
from .cache import SegmentAudioCache
from .providers import VoiceProvider

PAUSE_MARKERS = ("<pause3s>", "--")
MARKER_PAUSE_MS = 3000

_SILENCE_LOCKS: dict[Path, threading.Lock] = {}
_SILENCE_LOCKS_GUARD = threading.Lock()


def _silence_lock(path: Path) -> threading.Lock:
    """Return the process-wide lock serializing creation of one silence clip."""

    with _SILENCE_LOCKS_GUARD:
        return _SILENCE_LOCKS.setdefault(path, threading.Lock())


class SilenceSource(Protocol):
    """Capability to render a silence clip of a given duration."""

    def create_silence(self, output_path: Path, duration_seconds: float) -> Path:
        """Write a silence clip and return its path."""


class VoiceSynthesizer:
    """Produce per-segment audio files through the content-addressed cache."""

    def __init__(
        self,
        *,
        cache: SegmentAudioCache,
        provider_resolver: Callable[[Voice], VoiceProvider],
        silence_source: SilenceSource,
        pronunciations: Mapping[str, str] | None = None,
        sound_effects: Mapping[str, Path] | None = None,
        pause_markers: tuple[str, ...] = PAUSE_MARKERS,
        marker_pause_ms: int = MARKER_PAUSE_MS,
        run_logger: RunLogger | None = None,
    ) -> None:
        """Initialize cache, provider resolution, and special-segment settings."""

        self.cache = cache
        self.provider_resolver = provider_resolver
        self.silence_source = silence_source
        self.pronunciations = dict(pronunciations or {})
        self.sound_effects = {tag: Path(path) for tag, path in (sound_effects or {}).items()}
        self.pause_markers = frozenset(marker.strip() for marker in pause_markers)
        self.marker_pause_ms = marker_pause_ms
        self.synthesis_calls = 0
        self.cache_hits = 0
        self._providers: dict[str, VoiceProvider] = {}
        self._run_logger = run_logger

    def is_pause_marker(self, segment: Segment) -> bool:
        """Return whether a segment renders as a fixed pause."""

        return segment.text.strip() in self.pause_markers

    def plays_sound_effect(self, segment: Segment) -> bool:
        """Return whether a segment renders as a configured sound-effect asset."""

        return (
            segment.type == "sound_effect"
            and segment.sound is not None
            and segment.sound in self.sound_effects
        )

    def needs_voice(self, segment: Segment) -> bool:
        """Return whether rendering a segment requires a synthesis voice."""

        return not (self.is_pause_marker(segment) or self.plays_sound_effect(segment))

    def cache_key(self, segment: Segment, voice: Voice | None) -> SegmentCacheKey:
        """Return the cache key for a segment rendered with a voice."""

        if self.is_pause_marker(segment):
            voice_id = f"pause:{self.marker_pause_ms}ms"
        elif self.plays_sound_effect(segment):
            voice_id = f"sound:{segment.sound}"
        else:
            voice_id = voice.id if voice is not None else ""
        return SegmentCacheKey(
            speaker_id=segment.speaker_id,
            voice_id=voice_id,
            text_hash=sha256_text(segment.text),
        )

    def is_cached(self, segment: Segment, voice: Voice | None) -> bool:
        """Return whether a current cache entry exists for the segment."""

        key = self.cache_key(segment, voice)
        return self.cache.lookup_segment(segment.chapter_id, segment.index, key) is not None

    def ensure_segment_audio(self, segment: Segment, voice: Voice | None) -> Path:
        """Return the segment's audio path, synthesizing only on a key mismatch."""

        key = self.cache_key(segment, voice)
        cached = self.cache.lookup_segment(segment.chapter_id, segment.index, key)
        if cached is not None:
            self.cache_hits += 1
            self._log("cache_hit", chapter=segment.chapter_id, segment=segment.index)
            return cached
        self._log("cache_miss", chapter=segment.chapter_id, segment=segment.index)
        return self._render_segment(segment, voice, key)

    def regenerate_segment_audio(self, segment: Segment, voice: Voice | None) -> Path:
        """Discard one segment's cache entry and render it again."""

        self.cache.invalidate(
            self.cache.segment_audio_path(segment.chapter_id, segment.index),
            self.cache.segment_metadata_path(segment.chapter_id, segment.index),
        )
        return self._render_segment(segment, voice, self.cache_key(segment, voice))

    def ensure_clip(self, chapter_id: str, name: str, text: str, voice: Voice | None) -> Path:
        """Return a cached closing narration clip, synthesizing it when stale."""

        audio_path = self.cache.closing_path(chapter_id, name)
        metadata_path = self.cache.closing_metadata_path(chapter_id, name)
        if voice is None:
            raise SynthesisError(
                chapter_id=chapter_id,
                segment_index=None,
                detail="no voice is available for the closing clip",
            )
        key = SegmentCacheKey(speaker_id=None, voice_id=voice.id, text_hash=sha256_text(text))
        cached = self.cache.lookup(audio_path, metadata_path, key)
        if cached is not None:
            self.cache_hits += 1
            return cached
        audio = self._synthesize(chapter_id, None, text, voice)
        return self.cache.store_bytes(audio_path, metadata_path, key, audio)

    def ensure_silence(self, duration_ms: int) -> Path:
        """Return the shared silence clip for a duration, generating it once."""

        path = self.cache.silence_path(duration_ms)
        if path.is_file():
            return path
        with _silence_lock(path):
            if not path.is_file():
                path.parent.mkdir(parents=True, exist_ok=True)
                self.silence_source.create_silence(path, duration_ms / 1000.0)
                self._log("silence_created", duration_ms=duration_ms)
        return path

    def _render_segment(self, segment: Segment, voice: Voice | None, key: SegmentCacheKey) -> Path:
        """Render one segment into the cache and record its key."""

        audio_path = self.cache.segment_audio_path(segment.chapter_id, segment.index)
        metadata_path = self.cache.segment_metadata_path(segment.chapter_id, segment.index)

        if self.is_pause_marker(segment):
            silence = self.ensure_silence(self.marker_pause_ms)
            return self.cache.store_copy(audio_path, metadata_path, key, silence)

        if self.plays_sound_effect(segment):
            asset = self.sound_effects[segment.sound or ""]
            if not asset.is_file():
                raise SynthesisError(
                    chapter_id=segment.chapter_id,
                    segment_index=segment.index,
                    detail=f"sound effect asset `{asset}` does not exist",
                )
            return self.cache.store_copy(audio_path, metadata_path, key, asset)

        if voice is None:
            raise SynthesisError(
                chapter_id=segment.chapter_id,
                segment_index=segment.index,
                detail=f"speaker {segment.speaker_id} has no voice",
            )
        audio = self._synthesize(segment.chapter_id, segment.index, segment.text, voice)
        return self.cache.store_bytes(audio_path, metadata_path, key, audio)

    def _synthesize(
        self,
        chapter_id: str,
        segment_index: int | None,
        text: str,
        voice: Voice,
    ) -> bytes:
        """Call the voice's provider and map provider failures to `SynthesisError`."""

        provider = self._provider_for(voice)
        spoken_text = apply_pronunciations(text.strip(), self.pronunciations)
        try:
            audio = provider.synthesize(spoken_text)
        except ProviderError as exc:
            raise SynthesisError(
                chapter_id=chapter_id,
                segment_index=segment_index,
                detail=str(exc),
            ) from exc
        self.synthesis_calls += 1
        self._log(
            "synthesized",
            chapter=chapter_id,
            segment=segment_index if segment_index is not None else "closing",
            provider=provider.provider_id,
            voice=voice.id,
        )
        return audio

    def _provider_for(self, voice: Voice) -> VoiceProvider:
        """Return the provider bound to a voice, resolving it once."""

        provider = self._providers.get(voice.id)
        if provider is None:
            provider = self.provider_resolver(voice)
            self._providers[voice.id] = provider
        return provider

    def _log(self, event: str, **context: object) -> None:
        """Emit a debug-level synthesis event when logging is configured."""

        if self._run_logger is not None:
            self._run_logger.debug("tts", event, **context)
