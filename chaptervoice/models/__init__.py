"""Shared typed data models for Chaptervoice.

This package contains dataclasses used across pipeline modules to avoid
cross-module coupling and circular imports.
"""

from .datatypes import (
    ANNOUNCER_SPEAKER,
    NARRATOR_SPEAKER,
    SEGMENT_TYPES,
    UNKNOWN_SPEAKER,
    AssemblyJob,
    AssemblyResult,
    AttributedSegment,
    Chapter,
    CharacterConfig,
    DebugMergeReport,
    Segment,
    SegmentCacheKey,
    Speaker,
    TextSpan,
    Voice,
)

__all__ = [
    "ANNOUNCER_SPEAKER",
    "NARRATOR_SPEAKER",
    "SEGMENT_TYPES",
    "UNKNOWN_SPEAKER",
    "AssemblyJob",
    "AssemblyResult",
    "AttributedSegment",
    "Chapter",
    "CharacterConfig",
    "DebugMergeReport",
    "Segment",
    "SegmentCacheKey",
    "Speaker",
    "TextSpan",
    "Voice",
]
