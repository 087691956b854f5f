"""Per-job progress snapshots for attribution and assembly runs.

Responsibilities:
- Issue one `ProgressHandle` per job with a monotonically increasing job id.
- Expose only the newest job per `(chapter_id, kind)` through `get`.
- Ignore updates from handles of superseded jobs so concurrent runs cannot
  overwrite each other's visible state.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timezone
import itertools
import threading
from typing import Callable

from ..models.datatypes import ChapterProgress, ProgressSnapshot

PROGRESS_KINDS = ("attribution", "assembly")


def _utc_now() -> datetime:
    """Return the current UTC time."""

    return datetime.now(timezone.utc)


class ProgressStore:
    """In-memory store of the latest progress snapshot per chapter and job kind."""

    def __init__(self, clock: Callable[[], datetime] = _utc_now) -> None:
        """Initialize an empty store."""

        self._clock = clock
        self._lock = threading.Lock()
        self._job_ids = itertools.count(1)
        self._current: dict[tuple[str, str], ProgressSnapshot] = {}

    def start(self, chapter_id: str, kind: str) -> ProgressHandle:
        """Register a new job and make it the visible one for its chapter and kind."""

        if kind not in PROGRESS_KINDS:
            raise ValueError(f"Unsupported progress kind `{kind}`.")
        now = self._clock()
        with self._lock:
            job_id = next(self._job_ids)
            self._current[(chapter_id, kind)] = ProgressSnapshot(
                job_id=job_id,
                chapter_id=chapter_id,
                kind=kind,
                status="running",
                phase="starting",
                message="",
                current=0,
                total=0,
                last_event=None,
                error=None,
                started_at=now,
                updated_at=now,
            )
        return ProgressHandle(self, chapter_id, kind, job_id)

    def get(self, chapter_id: str) -> ChapterProgress:
        """Return the newest attribution and assembly snapshots of a chapter."""

        with self._lock:
            return ChapterProgress(
                chapter_id=chapter_id,
                attribution=self._current.get((chapter_id, "attribution")),
                assembly=self._current.get((chapter_id, "assembly")),
            )

    def _apply(self, handle: ProgressHandle, **changes: object) -> bool:
        """Apply changes when `handle` still owns the visible snapshot."""

        with self._lock:
            snapshot = self._current.get((handle.chapter_id, handle.kind))
            if snapshot is None or snapshot.job_id != handle.job_id:
                return False
            self._current[(handle.chapter_id, handle.kind)] = replace(
                snapshot, updated_at=self._clock(), **changes
            )
            return True


class ProgressHandle:
    """Write access to the snapshot of exactly one job."""

    def __init__(self, store: ProgressStore, chapter_id: str, kind: str, job_id: int) -> None:
        """Bind the handle to one job of one chapter."""

        self._store = store
        self.chapter_id = chapter_id
        self.kind = kind
        self.job_id = job_id

    def update(
        self,
        *,
        phase: str,
        message: str,
        current: int | None = None,
        total: int | None = None,
        event: object | None = None,
    ) -> bool:
        """Record a progress event; returns `False` when the job was superseded."""

        changes: dict[str, object] = {"phase": phase, "message": message, "last_event": event}
        if current is not None:
            changes["current"] = current
        if total is not None:
            changes["total"] = total
        return self._store._apply(self, **changes)

    def complete(self, message: str) -> bool:
        """Mark the job completed."""

        return self._store._apply(self, status="completed", phase="complete", message=message)

    def fail(self, error: str) -> bool:
        """Mark the job failed with a detail message."""

        return self._store._apply(
            self,
            status="failed",
            phase="error",
            message=error,
            error=error,
        )
