"""Unit tests for provider-length chunking and pronunciation overrides."""

from __future__ import annotations

import pytest

from chaptervoice.text.chunking import split_for_provider, split_sentences
from chaptervoice.text.pronunciation import apply_pronunciations


def test_short_text_is_returned_as_single_trimmed_chunk() -> None:
    """Text under the limit should not be split."""

    assert split_for_provider("  Hello there.  ", 100) == ["Hello there."]


def test_blank_text_yields_no_chunks() -> None:
    """Whitespace-only text should produce no synthesis requests."""

    assert split_for_provider(" \n\t", 10) == []


def test_long_text_splits_on_sentence_boundaries() -> None:
    """Sentences should be packed into chunks without crossing the limit."""

    text = "First sentence here. Second one follows! Third asks why? Fourth ends."
    chunks = split_for_provider(text, 42)

    assert chunks == ["First sentence here. Second one follows!", "Third asks why? Fourth ends."]
    assert all(len(chunk) <= 42 for chunk in chunks)


def test_oversized_sentence_falls_back_to_word_splitting() -> None:
    """A single sentence over the limit should split on word boundaries."""

    text = "alpha beta gamma delta epsilon zeta eta theta"
    chunks = split_for_provider(text, 12)

    assert chunks == ["alpha beta", "gamma delta", "epsilon zeta", "eta theta"]


def test_overlong_token_is_hard_split() -> None:
    """A token longer than the limit should be cut so every chunk fits."""

    chunks = split_for_provider("x" * 25, 10)

    assert chunks == ["x" * 10, "x" * 10, "x" * 5]


def test_invalid_limit_is_rejected() -> None:
    """A non-positive limit should fail fast."""

    with pytest.raises(ValueError):
        split_for_provider("text", 0)


def test_split_sentences_keeps_punctuation_and_whitespace() -> None:
    """Sentence splitting should preserve every character."""

    text = "One. Two!  Three"
    sentences = split_sentences(text)

    assert sentences == ["One. ", "Two!  ", "Three"]
    assert "".join(sentences) == text


def test_pronunciations_replace_whole_words_in_any_common_case() -> None:
    """Configured words should be replaced as whole words in literal and case variants."""

    mapping = {"Thayne": "Thane"}

    result = apply_pronunciations("Thayne met THAYNE and thayne, not Thaynes.", mapping)

    assert result == "Thane met Thane and Thane, not Thaynes."


def test_empty_pronunciation_keys_are_ignored() -> None:
    """Blank mapping keys should leave text untouched."""

    assert apply_pronunciations("Nothing changes.", {"": "x"}) == "Nothing changes."


def test_spoken_forms_are_inserted_literally() -> None:
    """Backslashes and group references in spoken forms should not be interpreted."""

    mapping = {"Sean": r"Shawn\1", "Niamh": "Nee\\vuh"}

    result = apply_pronunciations("Sean called Niamh.", mapping)

    assert result == "Shawn\\1 called Nee\\vuh."
