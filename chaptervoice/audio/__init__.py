"""Chapter audio assembly, pause policy, and transcoder integration.

This package turns cached segment audio into one loudness-normalized chapter
file through an external `ffmpeg` transcoder.
"""

from .assembly import AssemblyEngine
from .ffmpeg import FFmpegTranscoder
from .pauses import DEFAULT_PAUSE_POLICY, PausePolicy, pause_duration_ms
from .progress import EncodeProgressSink, parse_elapsed_seconds

__all__ = [
    "AssemblyEngine",
    "DEFAULT_PAUSE_POLICY",
    "EncodeProgressSink",
    "FFmpegTranscoder",
    "PausePolicy",
    "parse_elapsed_seconds",
    "pause_duration_ms",
]
