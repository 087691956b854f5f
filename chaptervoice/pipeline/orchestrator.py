"""Chapter pipeline orchestration.

Responsibilities:
- Drive a chapter through `scraped -> speakers_identified -> audio_processed
  -> published`.
- Persist attribution results and resolve speaker voices before synthesis.
- Reuse a finished chapter file when nothing that determines it has changed.
- Apply invalidation edges when segments or speakers change.
- Own the per-job progress snapshots and the one-build-per-chapter guard.

Key types:
- `ChapterPipeline`: orchestration facade used by the CLI.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path
import threading
from typing import Protocol, Sequence

from ..audio.assembly import AssemblyEngine, Transcoder
from ..audio.ffmpeg import FFmpegTranscoder
from ..config import ChapterVoiceConfig, load_character_config
from ..errors import (
    BuildInProgressError,
    ChapterNotFoundError,
    MissingVoiceAssignmentError,
    PipelineStageError,
)
from ..io.library import ChapterStore, JsonLibraryStore, SegmentStore, SpeakerStore
from ..llm.attribution import AttributionEngine
from ..llm.cache import ResponseCache
from ..llm.rate_limiter import RateLimiter
from ..llm.retry import RetryPolicy
from ..models.datatypes import (
    ANNOUNCER_SPEAKER,
    NARRATOR_SPEAKER,
    UNKNOWN_SPEAKER,
    AssemblyItem,
    AssemblyJob,
    AssemblyProgress,
    AssemblyResult,
    AttributedSegment,
    AttributionProgress,
    Chapter,
    ChapterProgress,
    DebugMergeReport,
    Segment,
    Speaker,
    Voice,
)
from ..provider_factory import ProviderFactory
from ..telemetry.logger import RunLogger
from ..text.quotes import QuoteSegmenter
from ..tts.cache import SegmentAudioCache
from ..tts.synthesizer import VoiceSynthesizer
from .progress import ProgressHandle, ProgressStore
from .telemetry import PipelineTelemetryMixin

_NARRATOR_TYPE_SPEAKERS = frozenset({NARRATOR_SPEAKER, ANNOUNCER_SPEAKER})


class LibraryStore(ChapterStore, SegmentStore, SpeakerStore, Protocol):
    """Combined store contract consumed by the pipeline."""


def _utc_now() -> datetime:
    """Return the current UTC time."""

    return datetime.now(timezone.utc)


class ChapterPipeline(PipelineTelemetryMixin):
    """Coordinate attribution, synthesis, and assembly for library chapters."""

    def __init__(
        self,
        *,
        library: LibraryStore,
        attribution: AttributionEngine,
        synthesizer: VoiceSynthesizer,
        assembly: AssemblyEngine,
        progress_store: ProgressStore | None = None,
        default_narrator_voice: str = "nova",
        announcer_voice: str = "alloy",
        end_of_chapter_text: str = "End of Chapter",
        clock: Callable[[], datetime] = _utc_now,
        run_logger: RunLogger | None = None,
        stage_progress_callback: Callable[[str, int, int], None] | None = None,
    ) -> None:
        """Initialize collaborators, fallback voices, and runtime hooks."""

        self.library = library
        self.attribution = attribution
        self.synthesizer = synthesizer
        self.assembly = assembly
        self.progress = progress_store or ProgressStore()
        self.default_narrator_voice = default_narrator_voice
        self.announcer_voice = announcer_voice
        self.end_of_chapter_text = end_of_chapter_text
        self._clock = clock
        self._run_logger = run_logger
        self._stage_progress_callback = stage_progress_callback
        self._locks_guard = threading.Lock()
        self._chapter_locks: dict[str, threading.Lock] = {}

    @classmethod
    def from_config(
        cls,
        config: ChapterVoiceConfig,
        *,
        run_logger: RunLogger | None = None,
        stage_progress_callback: Callable[[str, int, int], None] | None = None,
        library: LibraryStore | None = None,
        transcoder: Transcoder | None = None,
    ) -> ChapterPipeline:
        """Build a pipeline with production providers from configuration."""

        config.validate()
        runtime = config.resolved_provider_runtime()
        characters = load_character_config(config.character_config_path)
        rate_limiter = RateLimiter(
            key_intervals={"attribution-batch": config.inter_batch_delay_seconds}
        )
        retry_policy = RetryPolicy(
            max_attempts=config.max_attempts,
            base_delay_seconds=config.retry_base_delay_seconds,
        )
        factory = ProviderFactory(
            runtime,
            retry_policy=retry_policy,
            rate_limiter=rate_limiter,
            run_logger=run_logger,
        )
        resolved_transcoder = transcoder or FFmpegTranscoder(run_logger=run_logger)

        segmenter = QuoteSegmenter(
            alert_cues=config.alert_cues.keys(),
            special_quoted_names=characters.special_quoted_names,
            run_logger=run_logger,
        )
        attribution = AttributionEngine(
            segmenter=segmenter,
            client=factory.create_chat_client(),
            model=runtime.attribution_model,
            characters=characters,
            alert_cues=config.alert_cues,
            batch_size=config.batch_size,
            context_spans=config.context_spans,
            context_chars=config.context_chars,
            rate_limiter=rate_limiter,
            response_cache=ResponseCache(),
            run_logger=run_logger,
        )
        cache = SegmentAudioCache(config.cache_dir)
        synthesizer = VoiceSynthesizer(
            cache=cache,
            provider_resolver=lambda voice: factory.create_voice_provider(
                voice, joiner=resolved_transcoder.join_audio_bytes
            ),
            silence_source=resolved_transcoder,
            pronunciations=characters.pronunciations,
            sound_effects=config.sound_effects,
            run_logger=run_logger,
        )
        assembly = AssemblyEngine(
            synthesizer=synthesizer,
            cache=cache,
            transcoder=resolved_transcoder,
            output_dir=config.output_dir,
            run_logger=run_logger,
        )
        return cls(
            library=library or JsonLibraryStore(config.library_path),
            attribution=attribution,
            synthesizer=synthesizer,
            assembly=assembly,
            default_narrator_voice=config.default_narrator_voice,
            announcer_voice=config.announcer_voice,
            end_of_chapter_text=config.end_of_chapter_text,
            run_logger=run_logger,
            stage_progress_callback=stage_progress_callback,
        )

    def import_chapter(self, chapter_id: str, title: str, text: str) -> Chapter:
        """Store chapter text, resetting derived state when the text changed."""

        existing = self.library.get_chapter(chapter_id)
        if existing is not None and existing.text == text:
            if existing.title != title:
                return self.library.save_chapter(replace(existing, title=title))
            return existing
        if existing is not None:
            self.library.save_segments(chapter_id, [])
            self.assembly.output_path(chapter_id).unlink(missing_ok=True)
        chapter = Chapter(id=chapter_id, title=title, text=text, extracted_at=self._clock())
        return self.library.save_chapter(chapter)

    def identify_speakers(
        self,
        chapter_id: str,
        on_progress: Callable[[AttributionProgress], None] | None = None,
    ) -> list[Segment]:
        """Attribute a chapter's spans and persist the resulting segments."""

        with self._build_lock(chapter_id):
            return self._identify_speakers(chapter_id, on_progress)

    def process_chapter(
        self,
        chapter_id: str,
        on_progress: Callable[[AssemblyProgress], None] | None = None,
        on_attribution_progress: Callable[[AttributionProgress], None] | None = None,
    ) -> AssemblyResult:
        """Build the chapter audio, reusing the existing file when it is current."""

        with self._build_lock(chapter_id):
            chapter = self._require_chapter(chapter_id)
            segments = self.library.get_segments(chapter_id)
            if not segments:
                self._identify_speakers(chapter_id, on_attribution_progress)
                chapter = self._require_chapter(chapter_id)
                segments = self.library.get_segments(chapter_id)
            if not segments:
                raise PipelineStageError(
                    stage="attribute",
                    detail=f"Chapter `{chapter_id}` produced no segments.",
                    hint="Check that the chapter text is not empty.",
                )

            job = self._run_stage(
                "voices",
                lambda: self._build_job(chapter_id, segments, strict=True),
                chapter=chapter_id,
            )
            if self._output_is_current(chapter, job):
                return self._reuse_output(chapter, job)

            handle = self.progress.start(chapter_id, "assembly")
            result = self._run_assembly(
                handle,
                "assemble",
                lambda emit: self.assembly.assemble(job, emit),
                on_progress,
            )
            self._record_audio(chapter_id, result.duration_seconds, result.size_bytes)
            return result

    def regenerate_segment(self, chapter_id: str, index: int) -> Path:
        """Force fresh synthesis of one segment and invalidate the chapter audio."""

        with self._build_lock(chapter_id):
            self._require_chapter(chapter_id)
            segment = self._require_segment(chapter_id, index)
            voices = self._resolve_voices(chapter_id, [segment], strict=True)
            path = self.synthesizer.regenerate_segment_audio(
                segment, voices.get(segment.speaker_id)
            )
            self._invalidate_audio(chapter_id)
            if self._run_logger is not None:
                self._run_logger.event(
                    "synthesize", "segment_regenerated", chapter=chapter_id, segment=index
                )
            return path

    def rebuild_from_cache(
        self,
        chapter_id: str,
        on_progress: Callable[[AssemblyProgress], None] | None = None,
    ) -> AssemblyResult:
        """Reassemble chapter audio strictly from already-cached files."""

        with self._build_lock(chapter_id):
            self._require_chapter(chapter_id)
            segments = self._require_segments(chapter_id, stage="rebuild")
            job = self._build_job(chapter_id, segments, strict=False)
            handle = self.progress.start(chapter_id, "assembly")
            result = self._run_assembly(
                handle,
                "rebuild",
                lambda emit: self.assembly.rebuild_from_cache(job, emit),
                on_progress,
            )
            self._record_audio(chapter_id, result.duration_seconds, result.size_bytes)
            return result

    def debug_merge(self, chapter_id: str) -> DebugMergeReport:
        """Merge cached files with per-file diagnostics, never synthesizing."""

        with self._build_lock(chapter_id):
            self._require_chapter(chapter_id)
            segments = self._require_segments(chapter_id, stage="debug-merge")
            job = self._build_job(chapter_id, segments, strict=False)
            names = {speaker.id: speaker.name for speaker in self.library.list_speakers()}
            report = self._run_stage(
                "debug-merge",
                lambda: self.assembly.debug_merge(job, names),
                chapter=chapter_id,
            )
            if report.succeeded:
                self._record_audio(
                    chapter_id,
                    report.output_duration_seconds or 0.0,
                    report.output_size_bytes or 0,
                )
            return report

    def get_progress(self, chapter_id: str) -> ChapterProgress:
        """Return the newest attribution and assembly progress snapshots."""

        return self.progress.get(chapter_id)

    def update_segment_speaker(self, chapter_id: str, index: int, speaker_id: int) -> Segment:
        """Reassign one segment and invalidate the assembled chapter audio."""

        with self._build_lock(chapter_id):
            self._require_chapter(chapter_id)
            segment = self.library.update_segment_speaker(chapter_id, index, speaker_id)
            self._invalidate_audio(chapter_id)
            return segment

    def assign_voice(self, speaker_id: int, voice_id: str | None) -> Speaker:
        """Set or clear a speaker's voice; affected segments regenerate on next build."""

        return self.library.assign_voice(speaker_id, voice_id)

    def merge_speakers(self, source_id: int, target_id: int) -> int:
        """Merge one speaker into another and return the number of moved segments."""

        moved = self.library.merge_speakers(source_id, target_id)
        if self._run_logger is not None:
            self._run_logger.event(
                "library", "speakers_merged", source=source_id, target=target_id, moved=moved
            )
        return moved

    def mark_published(self, chapter_id: str) -> Chapter:
        """Mark a chapter with assembled audio as published."""

        chapter = self._require_chapter(chapter_id)
        if chapter.audio_processed_at is None:
            raise PipelineStageError(
                stage="publish",
                detail=f"Chapter `{chapter_id}` has no assembled audio.",
                hint="Build the chapter with `chaptervoice build <chapter-id>` first.",
            )
        return self.library.save_chapter(replace(chapter, published_at=self._clock()))

    def delete_chapter(self, chapter_id: str) -> None:
        """Delete a chapter with its segments, cached segment audio, and final file."""

        with self._build_lock(chapter_id):
            self._require_chapter(chapter_id)
            self.assembly.output_path(chapter_id).unlink(missing_ok=True)
            self.synthesizer.cache.clear_chapter(chapter_id)
            self.library.delete_chapter(chapter_id)
            if self._run_logger is not None:
                self._run_logger.event("library", "chapter_deleted", chapter=chapter_id)

    def segment_cache_report(self, chapter_id: str) -> list[tuple[Segment, str]]:
        """Return each segment with its cache state.

        States are `current`, `stale`, `missing`, and `unvoiced`.
        """

        self._require_chapter(chapter_id)
        segments = self.library.get_segments(chapter_id)
        voices = self._resolve_voices(chapter_id, segments, strict=False)
        report: list[tuple[Segment, str]] = []
        for segment in segments:
            voice = voices.get(segment.speaker_id)
            if voice is None and self.synthesizer.needs_voice(segment):
                report.append((segment, "unvoiced"))
                continue
            key = self.synthesizer.cache_key(segment, voice)
            report.append(
                (segment, self.synthesizer.cache.describe_segment(chapter_id, segment.index, key))
            )
        return report

    def _identify_speakers(
        self,
        chapter_id: str,
        on_progress: Callable[[AttributionProgress], None] | None,
    ) -> list[Segment]:
        """Run attribution and persistence without taking the build lock."""

        chapter = self._require_chapter(chapter_id)
        handle = self.progress.start(chapter_id, "attribution")
        known_speakers = [
            speaker.name
            for speaker in self.library.list_speakers()
            if speaker.name not in _NARRATOR_TYPE_SPEAKERS and speaker.name != UNKNOWN_SPEAKER
        ]

        def forward(event: AttributionProgress) -> None:
            handle.update(
                phase=event.phase,
                message=event.message,
                current=event.current_batch,
                total=event.total_batches,
                event=event,
            )
            if on_progress is not None:
                on_progress(event)

        try:
            attributed = self._run_stage(
                "attribute",
                lambda: self.attribution.attribute(chapter.text, known_speakers, forward),
                chapter=chapter_id,
            )
            segments = self._persist_attribution(chapter_id, attributed)
        except Exception as exc:
            handle.fail(self._error_detail(exc))
            raise

        self.library.save_chapter(
            replace(self._require_chapter(chapter_id), speakers_identified_at=self._clock())
        )
        handle.complete(f"Attributed {len(segments)} segments")
        return segments

    def _persist_attribution(
        self, chapter_id: str, attributed: Sequence[AttributedSegment]
    ) -> list[Segment]:
        """Map attributed speaker names to speaker records and save the segments."""

        speaker_ids: dict[str, int] = {}
        segments: list[Segment] = []
        for item in attributed:
            name = NARRATOR_SPEAKER if item.speaker == UNKNOWN_SPEAKER else item.speaker
            if name not in speaker_ids:
                speaker = self.library.get_or_create_speaker(
                    name, is_narrator=name in _NARRATOR_TYPE_SPEAKERS
                )
                speaker_ids[name] = speaker.id
            segments.append(
                Segment(
                    chapter_id=chapter_id,
                    index=item.index,
                    text=item.text,
                    type=item.type,
                    speaker_id=speaker_ids[name],
                    sound=item.sound,
                )
            )
        self.library.save_segments(chapter_id, segments)
        return segments

    def _build_job(
        self,
        chapter_id: str,
        segments: Sequence[Segment],
        *,
        strict: bool,
    ) -> AssemblyJob:
        """Resolve voices for every segment and the closing clip."""

        voices = self._resolve_voices(chapter_id, segments, strict=strict)
        return AssemblyJob(
            chapter_id=chapter_id,
            items=tuple(
                AssemblyItem(segment=segment, voice=voices.get(segment.speaker_id))
                for segment in segments
            ),
            closing_voice=self._closing_voice(),
            closing_text=self.end_of_chapter_text,
        )

    def _resolve_voices(
        self,
        chapter_id: str,
        segments: Sequence[Segment],
        *,
        strict: bool,
    ) -> dict[int, Voice | None]:
        """Return the voice of each speaker used by segments that need one."""

        voices: dict[int, Voice | None] = {}
        missing: list[str] = []
        for segment in segments:
            if segment.speaker_id in voices or not self.synthesizer.needs_voice(segment):
                continue
            speaker = self.library.get_speaker(segment.speaker_id)
            if speaker is None:
                voices[segment.speaker_id] = None
                missing.append(f"speaker {segment.speaker_id}")
                continue
            voice = self._voice_for_speaker(speaker.name, speaker.voice_id)
            voices[segment.speaker_id] = voice
            if voice is None:
                missing.append(speaker.name)
        if strict and missing:
            raise MissingVoiceAssignmentError(chapter_id, missing)
        return voices

    def _voice_for_speaker(self, name: str, voice_id: str | None) -> Voice | None:
        """Return a speaker's voice, falling back for narrator-type speakers."""

        if voice_id is None:
            if name == NARRATOR_SPEAKER:
                voice_id = self.default_narrator_voice
            elif name == ANNOUNCER_SPEAKER:
                voice_id = self.announcer_voice
            else:
                return None
            return self._voice_or_preset(voice_id)
        voice = self.library.get_voice(voice_id)
        if voice is None or not voice.is_active:
            return None
        return voice

    def _closing_voice(self) -> Voice:
        """Return the narrator's voice, or the default narrator preset."""

        for speaker in self.library.list_speakers():
            if speaker.name == NARRATOR_SPEAKER and speaker.voice_id is not None:
                voice = self.library.get_voice(speaker.voice_id)
                if voice is not None and voice.is_active:
                    return voice
        return self._voice_or_preset(self.default_narrator_voice)

    def _voice_or_preset(self, voice_id: str) -> Voice:
        """Return a library voice, or an OpenAI preset with the same identifier."""

        voice = self.library.get_voice(voice_id)
        if voice is not None:
            return voice
        return Voice(id=voice_id, name=voice_id, provider="openai", kind="preset")

    def _output_is_current(self, chapter: Chapter, job: AssemblyJob) -> bool:
        """Return whether the existing chapter file still reflects every input."""

        if chapter.audio_processed_at is None or chapter.audio_is_stale:
            return False
        if not self.assembly.output_path(chapter.id).is_file():
            return False
        return all(self.synthesizer.is_cached(item.segment, item.voice) for item in job.items)

    def _reuse_output(self, chapter: Chapter, job: AssemblyJob) -> AssemblyResult:
        """Return the existing chapter file without touching it."""

        path = self.assembly.output_path(chapter.id)
        handle = self.progress.start(chapter.id, "assembly")
        handle.complete("Existing chapter audio is current")
        if self._run_logger is not None:
            self._run_logger.event("assemble", "output_reused", chapter=chapter.id)
        return AssemblyResult(
            chapter_id=chapter.id,
            path=path,
            duration_seconds=chapter.audio_duration_seconds or 0.0,
            size_bytes=chapter.audio_file_size or path.stat().st_size,
            reused_segments=len(job.items),
            reused_output=True,
        )

    def _run_assembly(
        self,
        handle: ProgressHandle,
        stage_name: str,
        run: Callable[[Callable[[AssemblyProgress], None]], AssemblyResult],
        on_progress: Callable[[AssemblyProgress], None] | None,
    ) -> AssemblyResult:
        """Run one assembly variant while mirroring its events into the progress store."""

        def forward(event: AssemblyProgress) -> None:
            handle.update(
                phase=event.phase,
                message=event.message,
                current=event.current if event.total else None,
                total=event.total or None,
                event=event,
            )
            if on_progress is not None:
                on_progress(event)

        try:
            result = self._run_stage(stage_name, lambda: run(forward), chapter=handle.chapter_id)
        except Exception as exc:
            handle.fail(self._error_detail(exc))
            raise
        handle.complete(f"Chapter audio written to {result.path}")
        return result

    def _record_audio(self, chapter_id: str, duration_seconds: float, size_bytes: int) -> None:
        """Record a freshly assembled chapter file."""

        chapter = self._require_chapter(chapter_id)
        self.library.save_chapter(
            replace(
                chapter,
                audio_processed_at=self._clock(),
                audio_duration_seconds=duration_seconds,
                audio_file_size=size_bytes,
            )
        )

    def _invalidate_audio(self, chapter_id: str) -> None:
        """Delete the assembled chapter file and clear its audio metadata."""

        self.assembly.output_path(chapter_id).unlink(missing_ok=True)
        chapter = self._require_chapter(chapter_id)
        self.library.save_chapter(
            replace(
                chapter,
                audio_processed_at=None,
                audio_duration_seconds=None,
                audio_file_size=None,
            )
        )

    def _require_chapter(self, chapter_id: str) -> Chapter:
        """Return a chapter or raise `ChapterNotFoundError`."""

        chapter = self.library.get_chapter(chapter_id)
        if chapter is None:
            raise ChapterNotFoundError(chapter_id)
        return chapter

    def _require_segments(self, chapter_id: str, *, stage: str) -> list[Segment]:
        """Return a chapter's segments or raise when attribution never ran."""

        segments = self.library.get_segments(chapter_id)
        if not segments:
            raise PipelineStageError(
                stage=stage,
                detail=f"Chapter `{chapter_id}` has no segments.",
                hint="Run `chaptervoice identify-speakers <chapter-id>` first.",
            )
        return segments

    def _require_segment(self, chapter_id: str, index: int) -> Segment:
        """Return one segment or raise when it does not exist."""

        for segment in self.library.get_segments(chapter_id):
            if segment.index == index:
                return segment
        raise PipelineStageError(
            stage="library",
            detail=f"Chapter `{chapter_id}` has no segment {index}.",
            hint="List segments with `chaptervoice segments <chapter-id>`.",
        )

    @contextmanager
    def _build_lock(self, chapter_id: str) -> Iterator[None]:
        """Hold the chapter's build lock, failing fast when another build owns it."""

        with self._locks_guard:
            lock = self._chapter_locks.setdefault(chapter_id, threading.Lock())
        if not lock.acquire(blocking=False):
            raise BuildInProgressError(chapter_id)
        try:
            yield
        finally:
            lock.release()

    @staticmethod
    def _error_detail(exc: Exception) -> str:
        """Return the user-facing detail of an exception."""

        if isinstance(exc, PipelineStageError):
            return exc.detail
        return str(exc) or type(exc).__name__
