"""Unit tests for CLI output and error rendering helpers."""

from __future__ import annotations

from pathlib import Path

import pytest
import typer

from chaptervoice.cli_rendering import (
    ProgressPrinter,
    echo_assembly_result,
    echo_segment_rows,
    exit_with_command_error,
)
from chaptervoice.errors import MissingVoiceAssignmentError
from chaptervoice.models.datatypes import (
    AssemblyProgress,
    AssemblyResult,
    AttributionProgress,
    EncodeProgress,
    Segment,
)


def test_exit_with_command_error_renders_stage_error_with_hint(
    capsys: pytest.CaptureFixture[str],
) -> None:
    """Renderer should print stage diagnostics and hint before exiting with code 1."""

    error = MissingVoiceAssignmentError("ch1", ["Zed", "Alice", "Zed"])

    with pytest.raises(typer.Exit) as exc_info:
        exit_with_command_error("build", error)

    captured = capsys.readouterr()
    assert exc_info.value.exit_code == 1
    assert "build failed at stage `voices`" in captured.err
    assert "Alice, Zed" in captured.err
    assert "Hint: Assign voices with `chaptervoice assign-voice" in captured.err


def test_exit_with_command_error_renders_non_stage_fallback(
    capsys: pytest.CaptureFixture[str],
) -> None:
    """Renderer should print fallback exception text for non-stage failures."""

    with pytest.raises(typer.Exit) as exc_info:
        exit_with_command_error("rebuild", RuntimeError("unexpected library error"))

    captured = capsys.readouterr()
    assert exc_info.value.exit_code == 1
    assert "rebuild failed: unexpected library error" in captured.err


def test_progress_printer_renders_batches_and_encode_time(
    capsys: pytest.CaptureFixture[str],
) -> None:
    """Progress lines should carry batch counters and transcoder elapsed time."""

    printer = ProgressPrinter("build")
    printer.on_attribution(
        AttributionProgress("attributing", "Batch 2 done", current_batch=2, total_batches=5, fallback_spans=3)
    )
    printer.on_assembly(
        AssemblyProgress(
            "normalizing",
            "Normalizing loudness",
            encode=EncodeProgress("loudnorm", 30.0, 120.0),
        )
    )
    printer.on_stage_start("assemble", 2, 2)

    lines = capsys.readouterr().out.splitlines()
    assert lines[0] == (
        "[progress] command=build phase=attributing batch=2/5 fallback=3 Batch 2 done"
    )
    assert lines[1] == (
        "[progress] command=build phase=normalizing time=30.0s (25%) Normalizing loudness"
    )
    assert lines[2] == "[progress] command=build 2/2 stage=assemble"


def test_assembly_result_summary_distinguishes_reuse(capsys: pytest.CaptureFixture[str]) -> None:
    """Reused output and fresh builds should be summarized differently."""

    built = AssemblyResult("ch1", Path("out/ch1.mp3"), 61.5, 2048, synthesized_segments=2, reused_segments=5)
    reused = AssemblyResult("ch1", Path("out/ch1.mp3"), 61.5, 2048, reused_output=True)

    echo_assembly_result(built)
    echo_assembly_result(reused)

    output = capsys.readouterr().out
    assert "Duration: 61.50s" in output
    assert "Segments synthesized: 2, reused from cache: 5" in output
    assert "Existing chapter audio is current; nothing was rebuilt." in output


def test_segment_rows_truncate_previews(capsys: pytest.CaptureFixture[str]) -> None:
    """Segment rows should show the speaker name and a collapsed, truncated preview."""

    segment = Segment("ch1", 3, "word " * 30, "narration", 1)

    echo_segment_rows([(segment, "stale")], {1: "narrator"})

    row = capsys.readouterr().out.strip()
    index, segment_type, speaker, state, preview = row.split("\t")
    assert (index, segment_type, speaker, state) == ("003", "narration", "narrator", "stale")
    assert len(preview) == 60
    assert preview.endswith("...")
