"""External transcoder and prober wrapper around `ffmpeg`/`ffprobe`.

Responsibilities:
- Render silence clips, join same-codec files, resample-and-concatenate
  segment lists, and loudness-normalize intermediates.
- Stream transcoder stderr line by line into an `EncodeProgressSink`.
- Probe duration, format, and decoder warnings for diagnostics.
- Map missing executables and failed passes to stage errors.
"""

from __future__ import annotations

from collections import deque
import json
import os
from pathlib import Path
import subprocess
import tempfile
from typing import Any, Callable, Sequence

from ..errors import AssemblySubprocessError, PipelineStageError
from ..models.datatypes import EncodeProgress, ProbeResult
from ..runtime_tools import resolve_executable
from ..telemetry.logger import RunLogger
from .progress import EncodeProgressSink

LOUDNESS_FILTER = "loudnorm=I=-16:TP=-1.5:LRA=11"
_STDERR_TAIL_LINES = 25


def _escape_concat_path(path: Path) -> str:
    """Escape a path for single-quoted ffmpeg concat list entries."""

    return str(path).replace("'", "'\\''")


def _optional_float(value: object) -> float | None:
    """Parse an optional numeric probe field."""

    try:
        return float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return None


def _optional_int(value: object) -> int | None:
    """Parse an optional integer probe field."""

    parsed = _optional_float(value)
    return int(parsed) if parsed is not None else None


def _unique_partial_path(output_path: Path) -> Path:
    """Reserve a hidden partial file beside the output, unique to one pass."""

    handle, name = tempfile.mkstemp(
        dir=output_path.parent,
        prefix=f".{output_path.stem}.",
        suffix=f".partial{output_path.suffix}",
    )
    os.close(handle)
    return Path(name)


class FFmpegTranscoder:
    """Run two-pass chapter transcodes and probes through external executables."""

    def __init__(
        self,
        *,
        ffmpeg_path: str | None = None,
        ffprobe_path: str | None = None,
        sample_rate: int = 44100,
        channel_layout: str = "mono",
        bitrate: str = "128k",
        loudness_filter: str = LOUDNESS_FILTER,
        popen: Callable[..., Any] = subprocess.Popen,
        runner: Callable[..., Any] = subprocess.run,
        run_logger: RunLogger | None = None,
    ) -> None:
        """Initialize executable paths, output format, and process factories."""

        self.ffmpeg_path = ffmpeg_path or resolve_executable("ffmpeg")
        self.ffprobe_path = ffprobe_path or resolve_executable("ffprobe")
        self.sample_rate = sample_rate
        self.channel_layout = channel_layout
        self.bitrate = bitrate
        self.loudness_filter = loudness_filter
        self._popen = popen
        self._runner = runner
        self._run_logger = run_logger

    def create_silence(self, output_path: Path, duration_seconds: float) -> Path:
        """Write an MP3 silence clip of the given duration."""

        self._run_pass(
            "silence",
            [
                "-f",
                "lavfi",
                "-i",
                f"anullsrc=r={self.sample_rate}:cl={self.channel_layout}",
                "-t",
                f"{duration_seconds:.3f}",
                "-q:a",
                "9",
                "-acodec",
                "libmp3lame",
            ],
            output_path,
        )
        return output_path

    def write_concat_list(self, list_path: Path, inputs: Sequence[Path]) -> Path:
        """Write an ffmpeg concat-demuxer list for ordered inputs."""

        list_path.parent.mkdir(parents=True, exist_ok=True)
        lines = [f"file '{_escape_concat_path(path.resolve())}'" for path in inputs]
        list_path.write_text("\n".join(lines) + "\n", encoding="utf-8")
        return list_path

    def concat_resample(
        self,
        list_path: Path,
        intermediate_path: Path,
        *,
        total_seconds: float | None = None,
        on_progress: Callable[[EncodeProgress], None] | None = None,
    ) -> Path:
        """Pass 1: resample every listed input and concatenate into a WAV intermediate."""

        sink = EncodeProgressSink("concat", total_seconds=total_seconds, callback=on_progress)
        self._run_pass(
            "concat",
            [
                "-f",
                "concat",
                "-safe",
                "0",
                "-i",
                str(list_path),
                "-af",
                (
                    f"aresample={self.sample_rate},"
                    f"aformat=sample_fmts=s16:channel_layouts={self.channel_layout}"
                ),
                "-c:a",
                "pcm_s16le",
            ],
            intermediate_path,
            sink=sink,
        )
        return intermediate_path

    def loudness_normalize(
        self,
        intermediate_path: Path,
        output_path: Path,
        *,
        total_seconds: float | None = None,
        on_progress: Callable[[EncodeProgress], None] | None = None,
    ) -> Path:
        """Pass 2: loudness-normalize the intermediate into the final MP3."""

        sink = EncodeProgressSink("loudnorm", total_seconds=total_seconds, callback=on_progress)
        self._run_pass(
            "loudnorm",
            [
                "-i",
                str(intermediate_path),
                "-af",
                self.loudness_filter,
                "-ar",
                str(self.sample_rate),
                "-c:a",
                "libmp3lame",
                "-b:a",
                self.bitrate,
            ],
            output_path,
            sink=sink,
        )
        return output_path

    def join_files(self, inputs: Sequence[Path], output_path: Path) -> Path:
        """Join same-codec files without re-encoding."""

        list_path = output_path.with_name(f"{output_path.stem}.join.txt")
        self.write_concat_list(list_path, inputs)
        try:
            self._run_pass(
                "join",
                ["-f", "concat", "-safe", "0", "-i", str(list_path), "-c", "copy"],
                output_path,
            )
        finally:
            list_path.unlink(missing_ok=True)
        return output_path

    def join_audio_bytes(self, parts: Sequence[bytes]) -> bytes:
        """Join encoded MP3 chunks into one MP3 payload."""

        if len(parts) == 1:
            return parts[0]
        with tempfile.TemporaryDirectory(prefix="chaptervoice-join-") as temp_dir:
            root = Path(temp_dir)
            inputs: list[Path] = []
            for index, part in enumerate(parts):
                chunk_path = root / f"chunk_{index:03d}.mp3"
                chunk_path.write_bytes(part)
                inputs.append(chunk_path)
            output_path = self.join_files(inputs, root / "joined.mp3")
            return output_path.read_bytes()

    def probe_format(self, path: Path) -> ProbeResult:
        """Return format, duration, and first-stream audio properties of a file."""

        completed = self._run_probe(
            [
                "-v",
                "error",
                "-show_entries",
                "format=format_name,duration,bit_rate:stream=sample_rate,channels",
                "-of",
                "json",
                str(path),
            ]
        )
        if completed.returncode != 0:
            raise AssemblySubprocessError(
                pass_name="probe",
                returncode=completed.returncode,
                stderr_tail=str(completed.stderr or ""),
            )
        try:
            payload = json.loads(completed.stdout or "{}")
        except ValueError as exc:
            raise AssemblySubprocessError(
                pass_name="probe",
                returncode=completed.returncode,
                stderr_tail=f"unparseable ffprobe output for {path.name}",
            ) from exc

        format_payload = payload.get("format") if isinstance(payload, dict) else None
        format_payload = format_payload if isinstance(format_payload, dict) else {}
        streams = payload.get("streams") if isinstance(payload, dict) else None
        stream = streams[0] if isinstance(streams, list) and streams else {}
        stream = stream if isinstance(stream, dict) else {}
        return ProbeResult(
            format_name=format_payload.get("format_name"),
            duration_seconds=_optional_float(format_payload.get("duration")),
            bit_rate=_optional_int(format_payload.get("bit_rate")),
            sample_rate=_optional_int(stream.get("sample_rate")),
            channels=_optional_int(stream.get("channels")),
        )

    def probe_duration(self, path: Path) -> float:
        """Return the duration of a file in seconds, `0.0` when unknown."""

        return self.probe_format(path).duration_seconds or 0.0

    def probe_warnings(self, path: Path) -> tuple[str, ...]:
        """Return decoder warnings reported while reading a whole file."""

        completed = self._run_probe(
            ["-v", "warning", "-show_entries", "packet=pts_time", "-of", "csv=p=0", str(path)]
        )
        warnings = [line.strip() for line in str(completed.stderr or "").splitlines() if line.strip()]
        if completed.returncode != 0:
            warnings.append(f"ffprobe exited with code {completed.returncode}")
        return tuple(warnings)

    def _run_probe(self, arguments: list[str]) -> Any:
        """Run ffprobe with captured text output."""

        command = [self.ffprobe_path, *arguments]
        try:
            return self._runner(command, capture_output=True, text=True, check=False)
        except FileNotFoundError as exc:
            raise PipelineStageError(
                stage="assemble",
                detail="`ffprobe` executable was not found.",
                hint="Install ffmpeg (which ships ffprobe) and ensure it is on PATH.",
            ) from exc

    def _run_pass(
        self,
        pass_name: str,
        arguments: list[str],
        output_path: Path,
        *,
        sink: EncodeProgressSink | None = None,
    ) -> None:
        """Run one ffmpeg pass into a temporary file and move it into place on success."""

        output_path.parent.mkdir(parents=True, exist_ok=True)
        partial_path = _unique_partial_path(output_path)
        command = [self.ffmpeg_path, "-y", "-hide_banner", "-nostdin", *arguments, str(partial_path)]
        if self._run_logger is not None:
            self._run_logger.debug("assemble", "ffmpeg_pass_start", pass_name=pass_name)

        stderr_tail: deque[str] = deque(maxlen=_STDERR_TAIL_LINES)
        try:
            try:
                with self._popen(
                    command,
                    stdout=subprocess.DEVNULL,
                    stderr=subprocess.PIPE,
                    text=True,
                    encoding="utf-8",
                    errors="replace",
                ) as process:
                    for line in process.stderr:
                        stripped = line.strip()
                        if stripped:
                            stderr_tail.append(stripped)
                        if sink is not None:
                            sink.feed(line)
                    returncode = process.wait()
            except FileNotFoundError as exc:
                raise PipelineStageError(
                    stage="assemble",
                    detail="`ffmpeg` executable was not found.",
                    hint="Install ffmpeg and ensure it is on PATH, or place it in `bin/`.",
                ) from exc

            if returncode != 0:
                raise AssemblySubprocessError(
                    pass_name=pass_name,
                    returncode=returncode,
                    stderr_tail="\n".join(stderr_tail),
                )
            os.replace(partial_path, output_path)
        finally:
            partial_path.unlink(missing_ok=True)
        if self._run_logger is not None:
            self._run_logger.debug("assemble", "ffmpeg_pass_complete", pass_name=pass_name)
