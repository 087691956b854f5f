"""Unit tests for shared config and environment parsing helpers."""

import pytest

from chaptervoice.parsing import (
    normalize_optional_string,
    parse_non_negative_float,
    parse_positive_int,
    parse_string_list,
)


def test_normalize_optional_string_handles_blank_values() -> None:
    """Normalization should return `None` for `None` and blank textual values."""

    assert normalize_optional_string(None) is None
    assert normalize_optional_string("") is None
    assert normalize_optional_string("   ") is None


def test_normalize_optional_string_strips_non_blank_values() -> None:
    """Normalization should return stripped content for non-empty values."""

    assert normalize_optional_string("  value  ") == "value"
    assert normalize_optional_string(42) == "42"


@pytest.mark.parametrize(("value", "expected"), [("3", 3), (" 12 ", 12), (7, 7)])
def test_parse_positive_int_accepts_numeric_tokens(value: object, expected: int) -> None:
    """Positive integers should parse from text and numbers."""

    assert parse_positive_int(value, "batch_size") == expected


@pytest.mark.parametrize("value", ["0", "-2", "abc", True, 1.5])
def test_parse_positive_int_rejects_invalid_values(value: object) -> None:
    """Zero, negatives, booleans, and non-integers should be rejected by name."""

    with pytest.raises(ValueError, match="batch_size"):
        parse_positive_int(value, "batch_size")


def test_parse_non_negative_float_bounds() -> None:
    """Zero is allowed while negatives and booleans are not."""

    assert parse_non_negative_float("0", "delay") == 0.0
    assert parse_non_negative_float(2, "delay") == 2.0
    with pytest.raises(ValueError):
        parse_non_negative_float("-0.1", "delay")
    with pytest.raises(ValueError):
        parse_non_negative_float(False, "delay")


def test_parse_string_list_accepts_lists_and_comma_text() -> None:
    """String lists should drop blanks from sequences and comma-separated text."""

    assert parse_string_list(None, "names") == ()
    assert parse_string_list(" Gravemaw , ,Villy", "names") == ("Gravemaw", "Villy")
    assert parse_string_list(["A", " ", "B"], "names") == ("A", "B")
    with pytest.raises(ValueError):
        parse_string_list({"a": 1}, "names")
