"""CLI output and error rendering helpers.

This module centralizes user-facing CLI presentation for command diagnostics,
progress lines, chapter and segment listings, and assembly summaries.
"""

from __future__ import annotations

from typing import NoReturn, Sequence

import typer

from .errors import PipelineStageError
from .models.datatypes import (
    AssemblyProgress,
    AssemblyResult,
    AttributionProgress,
    Chapter,
    Segment,
    Speaker,
    Voice,
)

_TEXT_PREVIEW_CHARS = 60


def exit_with_command_error(command_name: str, exc: Exception) -> NoReturn:
    """Print concise diagnostics for command failures and exit with code 1."""

    if isinstance(exc, PipelineStageError):
        typer.secho(
            f"{command_name} failed at stage `{exc.stage}`: {exc.detail}",
            fg=typer.colors.RED,
            err=True,
        )
        if exc.hint:
            typer.secho(f"Hint: {exc.hint}", fg=typer.colors.YELLOW, err=True)
    else:
        typer.secho(f"{command_name} failed: {exc}", fg=typer.colors.RED, err=True)
    raise typer.Exit(code=1) from exc


class ProgressPrinter:
    """Render one `[progress]` line per structured progress event."""

    def __init__(self, command_name: str) -> None:
        """Initialize the printer for one command invocation."""

        self._command_name = command_name

    def on_stage_start(self, stage_name: str, stage_index: int, stage_total: int) -> None:
        """Print a stage transition line."""

        typer.echo(
            f"[progress] command={self._command_name} "
            f"{stage_index}/{stage_total} stage={stage_name}"
        )

    def on_attribution(self, event: AttributionProgress) -> None:
        """Print an attribution progress line."""

        line = f"[progress] command={self._command_name} phase={event.phase}"
        if event.total_batches:
            line += f" batch={event.current_batch}/{event.total_batches}"
        if event.fallback_spans:
            line += f" fallback={event.fallback_spans}"
        typer.echo(f"{line} {event.message}")

    def on_assembly(self, event: AssemblyProgress) -> None:
        """Print an assembly progress line."""

        line = f"[progress] command={self._command_name} phase={event.phase}"
        if event.total:
            line += f" {event.current}/{event.total}"
        if event.encode is not None:
            fraction = event.encode.fraction
            line += f" time={event.encode.elapsed_seconds:.1f}s"
            if fraction is not None:
                line += f" ({fraction * 100:.0f}%)"
        typer.echo(f"{line} {event.message}")


def echo_assembly_result(result: AssemblyResult) -> None:
    """Print the final chapter audio summary."""

    typer.echo(f"Chapter audio: {result.path}")
    typer.echo(f"Duration: {result.duration_seconds:.2f}s")
    typer.echo(f"Size: {result.size_bytes} bytes")
    if result.reused_output:
        typer.echo("Existing chapter audio is current; nothing was rebuilt.")
    else:
        typer.echo(
            f"Segments synthesized: {result.synthesized_segments}, "
            f"reused from cache: {result.reused_segments}"
        )


def echo_chapter_list(chapters: Sequence[Chapter]) -> None:
    """Print chapter id, stage, and title rows."""

    for chapter in chapters:
        stale = " (audio stale)" if chapter.audio_is_stale else ""
        typer.echo(f"{chapter.id}\t{chapter.stage}{stale}\t{chapter.title}")


def echo_segment_rows(
    rows: Sequence[tuple[Segment, str]],
    speaker_names: dict[int, str],
) -> None:
    """Print one row per segment with speaker, type, cache state, and a text preview."""

    for segment, cache_state in rows:
        preview = " ".join(segment.text.split())
        if len(preview) > _TEXT_PREVIEW_CHARS:
            preview = preview[: _TEXT_PREVIEW_CHARS - 3] + "..."
        speaker = speaker_names.get(segment.speaker_id, str(segment.speaker_id))
        typer.echo(
            f"{segment.index:03d}\t{segment.type}\t{speaker}\t{cache_state}\t{preview}"
        )


def echo_speaker_rows(speakers: Sequence[Speaker]) -> None:
    """Print speaker id, name, and voice rows."""

    for speaker in speakers:
        narrator = " [narrator]" if speaker.is_narrator else ""
        typer.echo(f"{speaker.id}\t{speaker.name}{narrator}\t{speaker.voice_id or '(no voice)'}")


def echo_voice_rows(voices: Sequence[Voice]) -> None:
    """Print voice id, provider, kind, and activity rows."""

    for voice in voices:
        active = "active" if voice.is_active else "inactive"
        typer.echo(f"{voice.id}\t{voice.provider}\t{voice.kind}\t{active}\t{voice.name}")
