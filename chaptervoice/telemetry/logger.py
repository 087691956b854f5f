"""Structured run logging utilities.

Responsibilities:
- Emit concise, deterministic phase-level runtime logs through `loguru`.
- Provide event and warning records for attribution fallbacks, segmentation
  invariant checks, cache reuse, and transcoder passes.
"""

from __future__ import annotations

import sys
from typing import TextIO

from loguru import logger as _loguru_logger


def _sanitize_context_value(value: object) -> str:
    """Convert context values into stable, shell-safe tokens."""

    raw = str(value).strip()
    if not raw:
        return "none"
    return "".join(
        character if character.isalnum() or character in {"-", "_", ".", ":", "/"} else "_"
        for character in raw
    )


def _format_context(context: dict[str, object]) -> str:
    """Serialize context key/value pairs in deterministic key order."""

    if not context:
        return ""
    tokens = [
        f"{key}={_sanitize_context_value(context[key])}"
        for key in sorted(context.keys())
    ]
    return " " + " ".join(tokens)


class RunLogger:
    """Emit deterministic phase logs for CLI-observable pipeline activity."""

    def __init__(self, sink: TextIO | None = None, *, level: str = "INFO") -> None:
        """Route chaptervoice records to one sink with message-only formatting."""

        self._sink = sink or sys.stderr
        self._logger = _loguru_logger.bind(component="chaptervoice")
        _loguru_logger.remove()
        _loguru_logger.add(self._sink, format="{message}", level=level, colorize=False)

    def _emit(self, level: str, event: str, stage: str, **context: object) -> None:
        """Emit one structured runtime log line."""

        line = f"[phase] level={level} stage={stage} event={event}{_format_context(context)}"
        self._logger.log(level, line)

    def log_stage_start(self, stage: str, **context: object) -> None:
        """Emit a stage-start runtime event."""

        self._emit("INFO", "start", stage, **context)

    def log_stage_complete(self, stage: str, **context: object) -> None:
        """Emit a stage-complete runtime event."""

        self._emit("INFO", "complete", stage, **context)

    def log_stage_failure(self, stage: str, error_type: str) -> None:
        """Emit a stage-failure runtime event without sensitive payload details."""

        self._emit("ERROR", "failure", stage, error_type=error_type)

    def event(self, stage: str, event: str, **context: object) -> None:
        """Emit an informational event inside a stage."""

        self._emit("INFO", event, stage, **context)

    def debug(self, stage: str, event: str, **context: object) -> None:
        """Emit a debug-level event inside a stage."""

        self._emit("DEBUG", event, stage, **context)

    def warning(self, stage: str, event: str, **context: object) -> None:
        """Emit a recoverable-condition warning inside a stage."""

        self._emit("WARNING", event, stage, **context)
