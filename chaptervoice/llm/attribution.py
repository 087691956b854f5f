"""Two-stage speaker attribution over quote-segmented spans.

Responsibilities:
- Segment chapter text locally with `QuoteSegmenter` (never fails).
- Attribute spans in sequential, rate-limited batches through a JSON-mode
  classification client, with a truncated context window around each batch.
- Canonicalize aliases and apply the deterministic announcer rule.
- Fall back to `unknown`/`narrator` per batch or per span when the service
  fails or returns malformed output, so attribution always completes.
- Stream structured `AttributionProgress` events to an optional callback.

Key types:
- `AttributionEngine`: attribution entry point.
- `ChatJSONClient`: protocol for the classification service client.
"""

from __future__ import annotations

import math
from typing import Any, Callable, Mapping, Protocol, Sequence

from ..models.datatypes import (
    ANNOUNCER_SPEAKER,
    NARRATOR_SPEAKER,
    SEGMENT_TYPES,
    UNKNOWN_SPEAKER,
    AttributedSegment,
    AttributionProgress,
    CharacterConfig,
    TextSpan,
)
from ..parsing import normalize_optional_string
from ..telemetry.logger import RunLogger
from ..text.quotes import QUOTE_CHARACTERS, QuoteSegmenter
from .cache import ResponseCache
from .http_client import ProviderError
from .prompts import PromptLibrary
from .rate_limiter import RateLimiter

DEFAULT_ALERT_CUES: Mapping[str, str] = {"DING!": "ding"}
_RESERVED_SPEAKERS = {
    NARRATOR_SPEAKER: NARRATOR_SPEAKER,
    UNKNOWN_SPEAKER: UNKNOWN_SPEAKER,
    ANNOUNCER_SPEAKER: ANNOUNCER_SPEAKER,
}
_BATCH_RATE_LIMIT_KEY = "attribution-batch"


class ChatJSONClient(Protocol):
    """Protocol for JSON-mode classification clients."""

    def chat_completion_json(
        self,
        *,
        model: str,
        system_prompt: str,
        user_prompt: str,
        temperature: float = 0.1,
    ) -> dict[str, Any]:
        """Return the model response parsed as a JSON object."""


class _MalformedAssignments(ValueError):
    """Raised internally when a response lacks a usable `assignments` list."""


class AttributionEngine:
    """Assign speakers and types to quote-segmented spans of a chapter."""

    def __init__(
        self,
        *,
        segmenter: QuoteSegmenter,
        client: ChatJSONClient,
        model: str = "gpt-4o",
        characters: CharacterConfig | None = None,
        alert_cues: Mapping[str, str] | None = None,
        prompt_library: PromptLibrary | None = None,
        batch_size: int = 20,
        context_spans: int = 5,
        context_chars: int = 240,
        temperature: float = 0.1,
        rate_limiter: RateLimiter | None = None,
        response_cache: ResponseCache | None = None,
        run_logger: RunLogger | None = None,
        provider_id: str = "openai",
    ) -> None:
        """Initialize segmentation, service client, and batching settings."""

        if batch_size <= 0:
            raise ValueError("`batch_size` must be a positive integer.")
        self.segmenter = segmenter
        self.client = client
        self.model = model
        self.characters = characters or CharacterConfig()
        self.alert_cues = dict(DEFAULT_ALERT_CUES if alert_cues is None else alert_cues)
        self.prompt_library = prompt_library or PromptLibrary()
        self.batch_size = batch_size
        self.context_spans = max(0, context_spans)
        self.context_chars = max(16, context_chars)
        self.temperature = temperature
        self.rate_limiter = rate_limiter or RateLimiter(min_interval_seconds=0.0)
        self.response_cache = response_cache or ResponseCache()
        self.provider_id = provider_id
        self._run_logger = run_logger
        self._alias_map = self.characters.alias_map()

    def attribute(
        self,
        chapter_text: str,
        known_speakers: Sequence[str],
        on_progress: Callable[[AttributionProgress], None] | None = None,
    ) -> list[AttributedSegment]:
        """Return one attributed segment per span, in chapter order."""

        def emit(event: AttributionProgress) -> None:
            if on_progress is not None:
                on_progress(event)

        try:
            emit(AttributionProgress(phase="segmenting", message="Splitting chapter into spans"))
            spans = self.segmenter.segment(chapter_text)
            total_batches = math.ceil(len(spans) / self.batch_size) if spans else 0
            emit(
                AttributionProgress(
                    phase="attributing",
                    message=f"Attributing {len(spans)} spans in {total_batches} batches",
                    current_batch=0,
                    total_batches=total_batches,
                )
            )
            known_lookup = {name.casefold(): name for name in known_speakers}
            system_prompt = self.prompt_library.attribution_system_prompt(
                sorted(known_lookup.values()),
                self.characters.characters,
            )

            resolved: list[AttributedSegment | None] = [None] * len(spans)
            for batch_number, batch_start in enumerate(
                range(0, len(spans), self.batch_size), start=1
            ):
                batch_end = min(len(spans), batch_start + self.batch_size)
                self.rate_limiter.acquire(_BATCH_RATE_LIMIT_KEY)
                assignments = self._request_batch(
                    spans, batch_start, batch_end, system_prompt, batch_number
                )

                new_segments: list[AttributedSegment] = []
                fallback_spans = 0
                for index in range(batch_start, batch_end):
                    assignment = assignments.get(index)
                    if assignment is None:
                        fallback_spans += 1
                    segment = self._resolve_segment(index, spans[index], assignment, known_lookup)
                    resolved[index] = segment
                    new_segments.append(segment)

                emit(
                    AttributionProgress(
                        phase="attributing",
                        message=f"Attributed batch {batch_number}/{total_batches}",
                        current_batch=batch_number,
                        total_batches=total_batches,
                        new_segments=tuple(new_segments),
                        fallback_spans=fallback_spans,
                    )
                )
        except Exception as exc:
            emit(AttributionProgress(phase="error", message=str(exc)))
            raise

        segments = [segment for segment in resolved if segment is not None]
        if self._run_logger is not None:
            self._run_logger.event(
                "attribute",
                "response_cache",
                hits=self.response_cache.hits,
                misses=self.response_cache.misses,
                hit_rate=round(self.response_cache.hit_rate(), 3),
            )
        emit(
            AttributionProgress(
                phase="complete",
                message=f"Attributed {len(segments)} segments",
                current_batch=total_batches,
                total_batches=total_batches,
            )
        )
        return segments

    def announcer_override(self, text: str) -> tuple[str, str | None] | None:
        """Return `(type, sound)` when text is bracketed system text or an alert cue."""

        stripped = text.strip()
        if stripped.startswith("[") and stripped.endswith("]"):
            return "announcement", None
        bare = stripped.strip("".join(QUOTE_CHARACTERS)).strip().casefold()
        for cue, sound in self.alert_cues.items():
            folded_cue = cue.casefold()
            if bare == folded_cue:
                return "sound_effect", sound
            if bare.startswith(folded_cue):
                return "announcement", None
        return None

    def canonical_speaker(self, name: str, known_lookup: Mapping[str, str]) -> str:
        """Resolve reserved names, aliases, and known speakers to canonical spelling."""

        folded = name.strip().casefold()
        if folded in _RESERVED_SPEAKERS:
            return _RESERVED_SPEAKERS[folded]
        if folded in self._alias_map:
            return self._alias_map[folded]
        if folded in known_lookup:
            return known_lookup[folded]
        return name.strip()

    def _request_batch(
        self,
        spans: Sequence[TextSpan],
        batch_start: int,
        batch_end: int,
        system_prompt: str,
        batch_number: int,
    ) -> dict[int, tuple[str, str | None]]:
        """Request assignments for one batch, returning `{}` when the service fails."""

        user_prompt = self.prompt_library.attribution_user_prompt(
            spans,
            batch_start,
            batch_end,
            self.context_spans,
            self.context_chars,
        )
        cache_key = ResponseCache.make_key(
            provider=self.provider_id,
            model=self.model,
            operation="attribute",
            input_identity={"system": system_prompt, "user": user_prompt},
        )
        payload = self.response_cache.get(cache_key)
        if payload is None:
            try:
                payload = self.client.chat_completion_json(
                    model=self.model,
                    system_prompt=system_prompt,
                    user_prompt=user_prompt,
                    temperature=self.temperature,
                )
            except ProviderError as exc:
                self._log_fallback(batch_number, exc.failure_kind)
                return {}
        try:
            assignments = self._parse_assignments(payload, batch_start, batch_end)
        except _MalformedAssignments:
            self._log_fallback(batch_number, "malformed_response")
            return {}
        self.response_cache.set(cache_key, payload)
        return assignments

    @staticmethod
    def _parse_assignments(
        payload: Mapping[str, Any], batch_start: int, batch_end: int
    ) -> dict[int, tuple[str, str | None]]:
        """Validate a response payload into `{index: (speaker, type-or-None)}`."""

        raw_assignments = payload.get("assignments") if isinstance(payload, Mapping) else None
        if not isinstance(raw_assignments, list):
            raise _MalformedAssignments("Response is missing an `assignments` list.")

        assignments: dict[int, tuple[str, str | None]] = {}
        for entry in raw_assignments:
            if not isinstance(entry, Mapping):
                continue
            raw_index = entry.get("index")
            if isinstance(raw_index, bool):
                continue
            try:
                index = int(raw_index)
            except (TypeError, ValueError):
                continue
            if not batch_start <= index < batch_end:
                continue
            speaker = normalize_optional_string(entry.get("speaker"))
            if speaker is None:
                continue
            raw_type = normalize_optional_string(entry.get("type"))
            segment_type = raw_type.lower() if raw_type is not None else None
            if segment_type not in SEGMENT_TYPES:
                segment_type = None
            assignments[index] = (speaker, segment_type)
        return assignments

    def _resolve_segment(
        self,
        index: int,
        span: TextSpan,
        assignment: tuple[str, str | None] | None,
        known_lookup: Mapping[str, str],
    ) -> AttributedSegment:
        """Combine a service assignment (or the default rule) with the announcer rule."""

        if assignment is None:
            speaker = UNKNOWN_SPEAKER if span.type == "dialogue" else NARRATOR_SPEAKER
            segment_type = span.type
        else:
            speaker = self.canonical_speaker(assignment[0], known_lookup)
            segment_type = assignment[1] or span.type

        sound: str | None = None
        override = self.announcer_override(span.text)
        if override is not None:
            segment_type, sound = override
            speaker = ANNOUNCER_SPEAKER
        elif segment_type in {"announcement", "sound_effect"}:
            # Without a bracket or cue there is no asset to play; keep it spoken.
            segment_type = "announcement"
            speaker = ANNOUNCER_SPEAKER

        return AttributedSegment(
            index=index,
            text=span.text,
            type=segment_type,
            speaker=speaker,
            sound=sound,
        )

    def _log_fallback(self, batch_number: int, reason: str) -> None:
        """Log a batch-level fallback to default attribution."""

        if self._run_logger is not None:
            self._run_logger.warning(
                "attribute",
                "batch_fallback",
                batch=batch_number,
                reason=reason,
            )
