"""Domain exceptions for pipeline and CLI diagnostics.

Every user-facing failure is a `PipelineStageError` carrying the stage it
originated in, a detail message, and an optional actionable hint. Subclasses
name the failure kinds callers are expected to branch on.
"""

from __future__ import annotations

from pathlib import Path


class PipelineStageError(RuntimeError):
    """Raised when a specific pipeline stage fails."""

    def __init__(
        self,
        *,
        stage: str,
        detail: str,
        hint: str | None = None,
    ) -> None:
        """Initialize a stage-scoped pipeline error."""

        super().__init__(detail)
        self.stage = stage
        self.detail = detail
        self.hint = hint


class ChapterNotFoundError(PipelineStageError):
    """Raised when an operation references a chapter that is not in the library."""

    def __init__(self, chapter_id: str) -> None:
        """Initialize a missing-chapter error for one chapter identifier."""

        super().__init__(
            stage="chapter",
            detail=f"Chapter `{chapter_id}` was not found in the library.",
            hint="Import the chapter first with `chaptervoice import-chapter`.",
        )
        self.chapter_id = chapter_id


class MissingVoiceAssignmentError(PipelineStageError):
    """Raised when speakers referenced by a chapter have no usable voice."""

    def __init__(self, chapter_id: str, speaker_names: list[str]) -> None:
        """Initialize the error with the sorted set of unvoiced speaker names."""

        self.chapter_id = chapter_id
        self.speaker_names = sorted(set(speaker_names))
        names = ", ".join(self.speaker_names)
        super().__init__(
            stage="voices",
            detail=f"Chapter `{chapter_id}` has speakers without a voice: {names}.",
            hint="Assign voices with `chaptervoice assign-voice <speaker-id> <voice-id>`.",
        )


class SynthesisError(PipelineStageError):
    """Raised when one segment cannot be synthesized after provider retries."""

    def __init__(self, *, chapter_id: str, segment_index: int | None, detail: str) -> None:
        """Initialize a synthesis failure scoped to one chapter segment."""

        self.chapter_id = chapter_id
        self.segment_index = segment_index
        location = (
            f"segment {segment_index}" if segment_index is not None else "closing clip"
        )
        super().__init__(
            stage="tts",
            detail=f"Synthesis failed for chapter `{chapter_id}` {location}: {detail}",
            hint="Already cached segments are kept; rerun the build to retry.",
        )


class AssemblySubprocessError(PipelineStageError):
    """Raised when an external transcoder or prober invocation fails."""

    def __init__(self, *, pass_name: str, returncode: int, stderr_tail: str) -> None:
        """Initialize a transcoder failure with the tail of its diagnostic stream."""

        self.pass_name = pass_name
        self.returncode = returncode
        self.stderr_tail = stderr_tail
        tail = stderr_tail.strip() or "(no stderr output)"
        super().__init__(
            stage="assemble",
            detail=f"ffmpeg pass `{pass_name}` failed with exit code {returncode}: {tail}",
            hint="Inspect the segment files with `chaptervoice debug-merge <chapter-id>`.",
        )


class MissingSegmentFileError(PipelineStageError):
    """Raised by rebuild-from-cache when a referenced audio file is absent."""

    def __init__(self, path: Path) -> None:
        """Initialize the error with the first missing file path."""

        self.path = path
        super().__init__(
            stage="rebuild",
            detail=f"Missing segment file: {path.name} ({path}).",
            hint="Run a full build with `chaptervoice build <chapter-id>` first.",
        )


class BuildInProgressError(PipelineStageError):
    """Raised when a second build is requested while one is running for a chapter."""

    def __init__(self, chapter_id: str) -> None:
        """Initialize a build-conflict error for one chapter."""

        self.chapter_id = chapter_id
        super().__init__(
            stage="build",
            detail=f"A build for chapter `{chapter_id}` is already running.",
            hint="Wait for the running build to finish and inspect its progress.",
        )
