"""Chapter pipeline package.

This package contains the orchestration facade, per-job progress snapshots,
and stage telemetry helpers.
"""

from .orchestrator import ChapterPipeline
from .progress import ProgressHandle, ProgressStore

__all__ = ["ChapterPipeline", "ProgressHandle", "ProgressStore"]
