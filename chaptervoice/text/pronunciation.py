"""Pronunciation overrides applied to synthesis input."""

from __future__ import annotations

import re
from typing import Mapping


def _case_variants(word: str) -> tuple[str, ...]:
    """Return the literal, lower, upper, and capitalized spellings of a word."""

    variants = [word, word.lower(), word.upper(), word[:1].upper() + word[1:]]
    return tuple(dict.fromkeys(variants))


def apply_pronunciations(text: str, pronunciations: Mapping[str, str]) -> str:
    """Replace whole-word occurrences of configured words with spoken forms.

    Stored segment text is never rewritten; only provider input passes through here.
    """

    processed = text
    for word, spoken in pronunciations.items():
        if not word:
            continue
        for variant in _case_variants(word):
            processed = re.sub(
                rf"\b{re.escape(variant)}\b", lambda _match: spoken, processed
            )
    return processed
