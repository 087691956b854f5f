"""Text segmentation and preprocessing components.

This package provides the quote-aware segmenter, provider-length splitting,
and pronunciation overrides used before attribution and synthesis.
"""

from .chunking import split_for_provider
from .pronunciation import apply_pronunciations
from .quotes import QuoteSegmenter, normalize_whitespace, reconstruction_matches

__all__ = [
    "QuoteSegmenter",
    "apply_pronunciations",
    "normalize_whitespace",
    "reconstruction_matches",
    "split_for_provider",
]
