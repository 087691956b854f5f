"""Persistence components for Chaptervoice.

This package contains the library store contracts, the JSON-file library used
by the CLI, and the filesystem artifact store backing the segment cache.
"""

from .library import ChapterStore, JsonLibraryStore, SegmentStore, SpeakerStore
from .storage import ArtifactStore

__all__ = ["ArtifactStore", "ChapterStore", "JsonLibraryStore", "SegmentStore", "SpeakerStore"]
