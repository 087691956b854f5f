"""Structured progress parsing of transcoder diagnostic output.

Responsibilities:
- Extract elapsed media time (`time=HH:MM:SS.cc`) from ffmpeg stderr lines.
- Ignore every other field so incidental output changes do not break parsing.
- Forward parsed `EncodeProgress` events to an optional callback.
"""

from __future__ import annotations

from dataclasses import dataclass
import re
from typing import Callable

from ..models.datatypes import EncodeProgress

_ELAPSED_TIME_PATTERN = re.compile(r"\btime=\s*(\d+):(\d{1,2}):(\d{1,2}(?:\.\d+)?)")


def parse_elapsed_seconds(line: str) -> float | None:
    """Return the last elapsed media time reported on a line, in seconds."""

    matches = _ELAPSED_TIME_PATTERN.findall(line)
    if not matches:
        return None
    hours, minutes, seconds = matches[-1]
    return int(hours) * 3600 + int(minutes) * 60 + float(seconds)


@dataclass(slots=True)
class EncodeProgressSink:
    """Consume transcoder stderr lines and emit elapsed-time progress events.

    Attributes:
        pass_name: Transcoder pass label attached to every event.
        total_seconds: Expected media duration, when known.
        callback: Receiver of parsed events.
        last_progress: Most recent parsed event.
    """

    pass_name: str
    total_seconds: float | None = None
    callback: Callable[[EncodeProgress], None] | None = None
    last_progress: EncodeProgress | None = None

    def feed(self, line: str) -> EncodeProgress | None:
        """Parse one diagnostic line, emitting an event when it carries elapsed time."""

        elapsed = parse_elapsed_seconds(line)
        if elapsed is None:
            return None
        progress = EncodeProgress(
            pass_name=self.pass_name,
            elapsed_seconds=elapsed,
            total_seconds=self.total_seconds,
        )
        self.last_progress = progress
        if self.callback is not None:
            self.callback(progress)
        return progress
