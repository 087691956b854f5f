"""Top-level package for Chaptervoice.

This package converts narrative chapter text into a single multi-voice narrated
audio file: quote-aware segmentation, speaker attribution, cached per-segment
synthesis, and two-pass assembly. The main orchestration entry point is
`ChapterPipeline`.
"""

from .pipeline import ChapterPipeline

__all__ = ["ChapterPipeline", "__version__"]

__version__ = "0.1.0"
