"""Unit tests for the ffmpeg/ffprobe subprocess wrapper."""

from __future__ import annotations

import json
from pathlib import Path
from types import SimpleNamespace
from typing import Any

import pytest

from chaptervoice.audio.ffmpeg import FFmpegTranscoder
from chaptervoice.errors import AssemblySubprocessError, PipelineStageError
from chaptervoice.models.datatypes import EncodeProgress


class _FakePopenFactory:
    """Popen stand-in that replays stderr lines and writes the output file."""

    def __init__(self, *, stderr_lines: list[str], returncode: int = 0) -> None:
        """Initialize the scripted stderr and exit code."""

        self.stderr_lines = stderr_lines
        self.returncode = returncode
        self.commands: list[list[str]] = []

    def __call__(self, command: list[str], **kwargs: Any) -> "_FakeProcess":
        """Record the command and return a context-managed process."""

        self.commands.append(command)
        Path(command[-1]).write_bytes(b"partial-audio")
        return _FakeProcess(self.stderr_lines, self.returncode)


class _FakeProcess:
    """Context-managed process with iterable stderr."""

    def __init__(self, stderr_lines: list[str], returncode: int) -> None:
        """Initialize stderr lines and exit code."""

        self.stderr = iter(stderr_lines)
        self._returncode = returncode

    def __enter__(self) -> "_FakeProcess":
        return self

    def __exit__(self, *exc_info: object) -> None:
        return None

    def wait(self) -> int:
        """Return the scripted exit code."""

        return self._returncode


def _transcoder(**kwargs: Any) -> FFmpegTranscoder:
    """Build a transcoder with explicit executable paths."""

    return FFmpegTranscoder(ffmpeg_path="ffmpeg", ffprobe_path="ffprobe", **kwargs)


def test_successful_pass_moves_partial_output_into_place(tmp_path: Path) -> None:
    """A zero exit should atomically replace the partial file with the output."""

    popen = _FakePopenFactory(stderr_lines=["size=1kB time=00:00:01.00 bitrate=8\n"])
    transcoder = _transcoder(popen=popen)
    list_path = tmp_path / "filelist.txt"
    list_path.write_text("", encoding="utf-8")
    output = tmp_path / "intermediate.wav"

    transcoder.concat_resample(list_path, output)

    assert output.read_bytes() == b"partial-audio"
    assert list(tmp_path.glob(".*partial*")) == []
    command = popen.commands[0]
    assert command[:4] == ["ffmpeg", "-y", "-hide_banner", "-nostdin"]
    assert command[command.index("-f") + 1] == "concat"
    partial_name = Path(command[-1]).name
    assert partial_name.startswith(".intermediate.")
    assert partial_name.endswith(".partial.wav")
    assert Path(command[-1]).parent == tmp_path


def test_failed_pass_raises_with_stderr_tail_and_leaves_no_output(tmp_path: Path) -> None:
    """A nonzero exit should raise the pass name and diagnostic tail without writing output."""

    popen = _FakePopenFactory(
        stderr_lines=["Input #0\n", "\n", "Invalid data found when processing input\n"],
        returncode=1,
    )
    transcoder = _transcoder(popen=popen)
    intermediate = tmp_path / "intermediate.wav"
    intermediate.write_bytes(b"wav")
    output = tmp_path / "chapter.mp3"

    with pytest.raises(AssemblySubprocessError) as exc_info:
        transcoder.loudness_normalize(intermediate, output)

    assert exc_info.value.pass_name == "loudnorm"
    assert exc_info.value.returncode == 1
    assert "Invalid data found" in exc_info.value.stderr_tail
    assert exc_info.value.stage == "assemble"
    assert not output.exists()
    assert list(tmp_path.glob(".*partial*")) == []


def test_pass_progress_is_parsed_from_stderr(tmp_path: Path) -> None:
    """Elapsed `time=` values should be forwarded as encode progress events."""

    popen = _FakePopenFactory(
        stderr_lines=[
            "Stream mapping:\n",
            "size=1kB time=00:00:02.00 bitrate=8\n",
            "size=2kB time=00:00:04.00 bitrate=8\n",
        ]
    )
    events: list[EncodeProgress] = []
    intermediate = tmp_path / "intermediate.wav"
    intermediate.write_bytes(b"wav")

    _transcoder(popen=popen).loudness_normalize(
        intermediate,
        tmp_path / "chapter.mp3",
        total_seconds=8.0,
        on_progress=events.append,
    )

    assert [(event.pass_name, event.elapsed_seconds) for event in events] == [
        ("loudnorm", 2.0),
        ("loudnorm", 4.0),
    ]
    assert events[-1].fraction == pytest.approx(0.5)


def test_missing_ffmpeg_maps_to_stage_error(tmp_path: Path) -> None:
    """A missing executable should surface as an assemble-stage error with a hint."""

    def _popen(command: list[str], **kwargs: Any) -> _FakeProcess:
        raise FileNotFoundError(command[0])

    with pytest.raises(PipelineStageError) as exc_info:
        _transcoder(popen=_popen).create_silence(tmp_path / "silence.mp3", 0.5)

    assert exc_info.value.stage == "assemble"
    assert "ffmpeg" in exc_info.value.detail
    assert exc_info.value.hint
    assert list(tmp_path.iterdir()) == []


def test_silence_command_uses_requested_duration(tmp_path: Path) -> None:
    """Silence clips should be rendered from a null source for the given duration."""

    popen = _FakePopenFactory(stderr_lines=[])
    output = _transcoder(popen=popen).create_silence(tmp_path / "silence_750ms.mp3", 0.75)

    assert output.exists()
    command = popen.commands[0]
    assert command[command.index("-t") + 1] == "0.750"
    assert "anullsrc=r=44100:cl=mono" in command


def test_concat_list_quotes_resolved_paths(tmp_path: Path) -> None:
    """Concat lists should hold one quoted absolute path per line with quotes escaped."""

    first = tmp_path / "segment_000.mp3"
    second = tmp_path / "it's.mp3"
    list_path = _transcoder().write_concat_list(tmp_path / "filelist.txt", [first, second])

    lines = list_path.read_text(encoding="utf-8").splitlines()
    assert lines[0] == f"file '{first.resolve()}'"
    assert lines[1].endswith("it'\\''s.mp3'")


def test_probe_format_parses_ffprobe_json(tmp_path: Path) -> None:
    """Probe output should be parsed into format and stream properties."""

    payload = {
        "format": {"format_name": "mp3", "duration": "12.500", "bit_rate": "128000"},
        "streams": [{"sample_rate": "44100", "channels": 1}],
    }
    commands: list[list[str]] = []

    def _runner(command: list[str], **kwargs: Any) -> SimpleNamespace:
        commands.append(command)
        return SimpleNamespace(returncode=0, stdout=json.dumps(payload), stderr="")

    transcoder = _transcoder(runner=_runner)
    result = transcoder.probe_format(tmp_path / "chapter.mp3")

    assert result.format_name == "mp3"
    assert result.duration_seconds == pytest.approx(12.5)
    assert result.bit_rate == 128000
    assert result.sample_rate == 44100
    assert result.channels == 1
    assert transcoder.probe_duration(tmp_path / "chapter.mp3") == pytest.approx(12.5)
    assert commands[0][0] == "ffprobe"


def test_probe_failure_raises_subprocess_error(tmp_path: Path) -> None:
    """A failing probe should raise with the `probe` pass name."""

    def _runner(command: list[str], **kwargs: Any) -> SimpleNamespace:
        return SimpleNamespace(returncode=1, stdout="", stderr="No such file")

    with pytest.raises(AssemblySubprocessError) as exc_info:
        _transcoder(runner=_runner).probe_format(tmp_path / "missing.mp3")
    assert exc_info.value.pass_name == "probe"


def test_probe_warnings_collect_stderr_and_exit_code(tmp_path: Path) -> None:
    """Decoder warnings and a nonzero exit should both be reported."""

    def _runner(command: list[str], **kwargs: Any) -> SimpleNamespace:
        return SimpleNamespace(
            returncode=1,
            stdout="",
            stderr="[mp3float] Header missing\n\n[mp3float] invalid new backstep\n",
        )

    warnings = _transcoder(runner=_runner).probe_warnings(tmp_path / "segment_000.mp3")

    assert warnings == (
        "[mp3float] Header missing",
        "[mp3float] invalid new backstep",
        "ffprobe exited with code 1",
    )


def test_single_chunk_join_returns_payload_unchanged() -> None:
    """Joining one chunk should not spawn a process."""

    def _popen(command: list[str], **kwargs: Any) -> _FakeProcess:
        raise AssertionError("no process expected")

    assert _transcoder(popen=_popen).join_audio_bytes([b"only"]) == b"only"


def test_each_pass_writes_its_own_partial_file(tmp_path: Path) -> None:
    """Two passes targeting the same output should never share a partial file."""

    popen = _FakePopenFactory(stderr_lines=[])
    transcoder = _transcoder(popen=popen)
    output = tmp_path / "silence_300ms.mp3"

    transcoder.create_silence(output, 0.3)
    transcoder.create_silence(output, 0.3)

    first, second = (command[-1] for command in popen.commands)
    assert first != second
    assert output.read_bytes() == b"partial-audio"
