"""Provider-length text splitting for synthesis requests.

Responsibilities:
- Split long segment text on sentence boundaries into chunks under a character limit.
- Fall back to word-boundary splitting for sentences that alone exceed the limit.
- Hard-split single tokens longer than the limit so every chunk fits.
"""

from __future__ import annotations

import re

_SENTENCE_BOUNDARY_PATTERN = re.compile(r"([.!?]+\s+)")


def split_sentences(text: str) -> list[str]:
    """Split text into sentences, keeping terminal punctuation and trailing whitespace."""

    parts = _SENTENCE_BOUNDARY_PATTERN.split(text)
    sentences: list[str] = []
    for index in range(0, len(parts), 2):
        sentence = parts[index]
        if index + 1 < len(parts):
            sentence += parts[index + 1]
        if sentence:
            sentences.append(sentence)
    return sentences


def split_for_provider(text: str, max_chars: int) -> list[str]:
    """Split text into trimmed chunks no longer than `max_chars`.

    Args:
        text: Text to split.
        max_chars: Maximum characters per chunk.

    Returns:
        Ordered non-empty chunks. Text already under the limit is returned as one chunk.
    """

    if max_chars <= 0:
        raise ValueError("`max_chars` must be a positive integer.")
    stripped = text.strip()
    if not stripped:
        return []
    if len(stripped) <= max_chars:
        return [stripped]

    sentence_chunks: list[str] = []
    current = ""
    for sentence in split_sentences(stripped):
        if current and len(current) + len(sentence) > max_chars:
            sentence_chunks.append(current.strip())
            current = sentence
        else:
            current += sentence
    if current.strip():
        sentence_chunks.append(current.strip())

    chunks: list[str] = []
    for chunk in sentence_chunks:
        if len(chunk) <= max_chars:
            chunks.append(chunk)
        else:
            chunks.extend(_split_on_words(chunk, max_chars))
    return chunks


def _split_on_words(text: str, max_chars: int) -> list[str]:
    """Pack whitespace-separated words into chunks under the limit."""

    chunks: list[str] = []
    current = ""
    for word in text.split():
        while len(word) > max_chars:
            if current:
                chunks.append(current)
                current = ""
            chunks.append(word[:max_chars])
            word = word[max_chars:]
        if not word:
            continue
        if current and len(current) + 1 + len(word) > max_chars:
            chunks.append(current)
            current = word
        else:
            current = f"{current} {word}" if current else word
    if current:
        chunks.append(current)
    return chunks
