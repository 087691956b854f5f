"""Chapter audio assembly from cached segment audio.

Responsibilities:
- Ensure every segment has current cached audio, insert policy-driven pauses,
  and append the fixed closing sequence.
- Run the two-pass transcode (resample-and-concatenate, then loudness
  normalization) into `<output_dir>/<chapter_id>.mp3`.
- Rebuild a chapter from cached files only, without any synthesis.
- Produce a diagnostic merge report that never synthesizes.

Build sequence:
`segment_000, pause_000, segment_001, ..., segment_N, end_pause, end_chapter,
after_end_pause`.
"""

from __future__ import annotations

from pathlib import Path
from typing import Callable, Mapping, Protocol, Sequence

from ..errors import MissingSegmentFileError, PipelineStageError
from ..models.datatypes import (
    AssemblyJob,
    AssemblyProgress,
    AssemblyResult,
    DebugFileEntry,
    DebugMergeReport,
    EncodeProgress,
    ProbeResult,
)
from ..telemetry.logger import RunLogger
from ..tts.cache import SegmentAudioCache
from ..tts.synthesizer import VoiceSynthesizer
from .pauses import DEFAULT_PAUSE_POLICY, PausePolicy

_TEXT_PREVIEW_CHARS = 50


class Transcoder(Protocol):
    """External transcoder capabilities consumed by assembly."""

    def write_concat_list(self, list_path: Path, inputs: Sequence[Path]) -> Path:
        """Write an ordered concat list."""

    def concat_resample(
        self,
        list_path: Path,
        intermediate_path: Path,
        *,
        total_seconds: float | None = None,
        on_progress: Callable[[EncodeProgress], None] | None = None,
    ) -> Path:
        """Run the resample-and-concatenate pass."""

    def loudness_normalize(
        self,
        intermediate_path: Path,
        output_path: Path,
        *,
        total_seconds: float | None = None,
        on_progress: Callable[[EncodeProgress], None] | None = None,
    ) -> Path:
        """Run the loudness-normalization pass."""

    def probe_format(self, path: Path) -> ProbeResult:
        """Probe one file."""

    def probe_duration(self, path: Path) -> float:
        """Probe one file's duration."""

    def probe_warnings(self, path: Path) -> tuple[str, ...]:
        """Collect decoder warnings for one file."""


class AssemblyEngine:
    """Assemble chapter audio files through the segment cache and transcoder."""

    def __init__(
        self,
        *,
        synthesizer: VoiceSynthesizer,
        cache: SegmentAudioCache,
        transcoder: Transcoder,
        output_dir: Path,
        pause_policy: PausePolicy = DEFAULT_PAUSE_POLICY,
        run_logger: RunLogger | None = None,
    ) -> None:
        """Initialize collaborators and the final output directory."""

        self.synthesizer = synthesizer
        self.cache = cache
        self.transcoder = transcoder
        self.output_dir = output_dir
        self.pause_policy = pause_policy
        self._run_logger = run_logger

    def output_path(self, chapter_id: str) -> Path:
        """Return the final audio path of a chapter."""

        return self.output_dir / f"{chapter_id}.mp3"

    def assemble(
        self,
        job: AssemblyJob,
        on_progress: Callable[[AssemblyProgress], None] | None = None,
    ) -> AssemblyResult:
        """Synthesize stale segments, then transcode the full sequence into the chapter file."""

        emit = on_progress or (lambda _progress: None)
        total = len(job.items)
        emit(AssemblyProgress("synthesizing", f"Preparing {total} segments", 0, total))

        sequence: list[Path] = []
        synthesized = 0
        reused = 0
        for position, item in enumerate(job.items):
            if self.synthesizer.is_cached(item.segment, item.voice):
                reused += 1
            else:
                synthesized += 1
            sequence.append(self.synthesizer.ensure_segment_audio(item.segment, item.voice))
            if position + 1 < total:
                sequence.append(self._ensure_pause(job, position))
            emit(
                AssemblyProgress(
                    "synthesizing",
                    f"Segment {position + 1}/{total} ready",
                    position + 1,
                    total,
                )
            )
        sequence.extend(self._ensure_closing(job, synthesize=True))

        self._log("assembly_sequence", chapter=job.chapter_id, synthesized=synthesized, reused=reused)
        return self._transcode(
            job.chapter_id,
            sequence,
            emit,
            synthesized_segments=synthesized,
            reused_segments=reused,
        )

    def rebuild_from_cache(
        self,
        job: AssemblyJob,
        on_progress: Callable[[AssemblyProgress], None] | None = None,
    ) -> AssemblyResult:
        """Transcode the chapter from cached files only, failing on the first missing file."""

        emit = on_progress or (lambda _progress: None)
        for item in job.items:
            path = self.cache.segment_audio_path(job.chapter_id, item.segment.index)
            if not path.is_file():
                raise MissingSegmentFileError(path)
        closing_clip = self.cache.closing_path(job.chapter_id, "end_chapter")
        if not closing_clip.is_file():
            raise MissingSegmentFileError(closing_clip)

        total = len(job.items)
        sequence: list[Path] = []
        for position, item in enumerate(job.items):
            sequence.append(self.cache.segment_audio_path(job.chapter_id, item.segment.index))
            if position + 1 < total:
                sequence.append(self._ensure_pause(job, position))
        sequence.extend(self._ensure_closing(job, synthesize=False))
        emit(AssemblyProgress("synthesizing", "Reusing cached segments", total, total))

        self._log("rebuild_sequence", chapter=job.chapter_id, files=len(sequence))
        return self._transcode(job.chapter_id, sequence, emit, reused_segments=total)

    def debug_merge(
        self,
        job: AssemblyJob,
        speaker_names: Mapping[int, str] | None = None,
    ) -> DebugMergeReport:
        """Merge with full per-file diagnostics, keeping intermediates for inspection."""

        names = dict(speaker_names or {})
        chapter_dir = self.cache.chapter_dir(job.chapter_id)
        list_path = chapter_dir / "debug_filelist.txt"
        intermediate_path = chapter_dir / "debug_intermediate.wav"
        output_path = self.output_path(job.chapter_id)

        entries: list[DebugFileEntry] = []
        total = len(job.items)
        for position, item in enumerate(job.items):
            segment = item.segment
            path = self.cache.segment_audio_path(job.chapter_id, segment.index)
            entries.append(
                self._describe_file(
                    f"segment_{segment.index:03d}",
                    path,
                    text_preview=segment.text[:_TEXT_PREVIEW_CHARS],
                    speaker_name=names.get(segment.speaker_id, f"speaker {segment.speaker_id}"),
                    segment_type=segment.type,
                )
            )
            if position + 1 < total:
                pause_path = self.cache.pause_path(job.chapter_id, segment.index)
                created = not pause_path.is_file()
                if created:
                    self._ensure_pause(job, position)
                entries.append(
                    self._describe_file(f"pause_{segment.index:03d}", pause_path, created=created)
                )

        for name in ("end_pause", "end_chapter", "after_end_pause"):
            path = self.cache.closing_path(job.chapter_id, name)
            created = False
            if name != "end_chapter" and not path.is_file():
                self._copy_silence(self.pause_policy.closing_ms, path)
                created = True
            entries.append(self._describe_file(name, path, created=created))

        report_fields = dict(
            chapter_id=job.chapter_id,
            segments_dir=chapter_dir,
            output_path=output_path,
            concat_list_path=list_path,
            intermediate_path=intermediate_path,
            entries=tuple(entries),
        )
        missing = [entry for entry in entries if not entry.exists]
        if missing:
            return DebugMergeReport(
                **report_fields,
                succeeded=False,
                error=f"{len(missing)} referenced file(s) missing, first: {missing[0].path.name}",
            )

        self.transcoder.write_concat_list(list_path, [entry.path for entry in entries])
        try:
            self.transcoder.concat_resample(list_path, intermediate_path)
            self.transcoder.loudness_normalize(intermediate_path, output_path)
            duration = self.transcoder.probe_duration(output_path)
            warnings = self.transcoder.probe_warnings(output_path)
        except PipelineStageError as exc:
            self._warn("debug_merge_failed", chapter=job.chapter_id, detail=exc.detail)
            return DebugMergeReport(**report_fields, succeeded=False, error=exc.detail)

        return DebugMergeReport(
            **report_fields,
            succeeded=True,
            output_size_bytes=output_path.stat().st_size,
            output_duration_seconds=duration,
            output_warnings=warnings,
        )

    def _ensure_pause(self, job: AssemblyJob, position: int) -> Path:
        """Write the pause file following the segment at `position`."""

        current = job.items[position].segment
        following = job.items[position + 1].segment
        duration_ms = self.pause_policy.between(current, following)
        return self._copy_silence(duration_ms, self.cache.pause_path(job.chapter_id, current.index))

    def _ensure_closing(self, job: AssemblyJob, *, synthesize: bool) -> list[Path]:
        """Return the closing sequence paths, writing the two closing pauses."""

        end_pause = self._copy_silence(
            self.pause_policy.closing_ms,
            self.cache.closing_path(job.chapter_id, "end_pause"),
        )
        if synthesize:
            end_chapter = self.synthesizer.ensure_clip(
                job.chapter_id,
                "end_chapter",
                job.closing_text,
                job.closing_voice,
            )
        else:
            end_chapter = self.cache.closing_path(job.chapter_id, "end_chapter")
        after_end_pause = self._copy_silence(
            self.pause_policy.closing_ms,
            self.cache.closing_path(job.chapter_id, "after_end_pause"),
        )
        return [end_pause, end_chapter, after_end_pause]

    def _copy_silence(self, duration_ms: int, destination: Path) -> Path:
        """Copy the shared silence clip of one duration to a chapter cache path."""

        silence = self.synthesizer.ensure_silence(duration_ms)
        return self.cache.copy_file(silence, destination)

    def _transcode(
        self,
        chapter_id: str,
        sequence: list[Path],
        emit: Callable[[AssemblyProgress], None],
        *,
        synthesized_segments: int = 0,
        reused_segments: int = 0,
    ) -> AssemblyResult:
        """Run both transcode passes and return the probed final file."""

        chapter_dir = self.cache.chapter_dir(chapter_id)
        list_path = chapter_dir / "filelist.txt"
        intermediate_path = chapter_dir / "intermediate.wav"
        output_path = self.output_path(chapter_id)
        self.transcoder.write_concat_list(list_path, sequence)

        try:
            emit(AssemblyProgress("concatenating", f"Concatenating {len(sequence)} files"))
            self.transcoder.concat_resample(
                list_path,
                intermediate_path,
                on_progress=lambda event: emit(
                    AssemblyProgress("concatenating", "Concatenating", encode=event)
                ),
            )
            total_seconds = self.transcoder.probe_duration(intermediate_path)
            emit(AssemblyProgress("normalizing", "Normalizing loudness"))
            self.transcoder.loudness_normalize(
                intermediate_path,
                output_path,
                total_seconds=total_seconds,
                on_progress=lambda event: emit(
                    AssemblyProgress("normalizing", "Normalizing loudness", encode=event)
                ),
            )
        finally:
            intermediate_path.unlink(missing_ok=True)
            list_path.unlink(missing_ok=True)

        duration = self.transcoder.probe_duration(output_path)
        size_bytes = output_path.stat().st_size
        emit(AssemblyProgress("complete", f"Chapter audio written to {output_path}", 1, 1))
        self._log(
            "chapter_written",
            chapter=chapter_id,
            path=output_path,
            duration_seconds=round(duration, 3),
            size_bytes=size_bytes,
        )
        return AssemblyResult(
            chapter_id=chapter_id,
            path=output_path,
            duration_seconds=duration,
            size_bytes=size_bytes,
            synthesized_segments=synthesized_segments,
            reused_segments=reused_segments,
        )

    def _describe_file(
        self,
        role: str,
        path: Path,
        *,
        text_preview: str | None = None,
        speaker_name: str | None = None,
        segment_type: str | None = None,
        created: bool = False,
    ) -> DebugFileEntry:
        """Return a diagnostic row for one referenced file."""

        if not path.is_file():
            return DebugFileEntry(
                role=role,
                path=path,
                exists=False,
                text_preview=text_preview,
                speaker_name=speaker_name,
                segment_type=segment_type,
            )
        probe: ProbeResult | None = None
        warnings: tuple[str, ...]
        try:
            probe = self.transcoder.probe_format(path)
            warnings = self.transcoder.probe_warnings(path)
        except PipelineStageError as exc:
            warnings = (exc.detail,)
        return DebugFileEntry(
            role=role,
            path=path,
            exists=True,
            size_bytes=path.stat().st_size,
            probe=probe,
            warnings=warnings,
            text_preview=text_preview,
            speaker_name=speaker_name,
            segment_type=segment_type,
            created=created,
        )

    def _log(self, event: str, **context: object) -> None:
        """Emit an assembly event when logging is configured."""

        if self._run_logger is not None:
            self._run_logger.event("assemble", event, **context)

    def _warn(self, event: str, **context: object) -> None:
        """Emit an assembly warning when logging is configured."""

        if self._run_logger is not None:
            self._run_logger.warning("assemble", event, **context)
