"""Shared parsing helpers for config, environment, and CLI value normalization."""

from __future__ import annotations

from typing import Iterable


def normalize_optional_string(value: object) -> str | None:
    """Normalize an optional value to a stripped non-empty string.

    Args:
        value: Arbitrary input value.

    Returns:
        Stripped string value, or `None` when the value is empty after trimming.
    """

    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    return text


def parse_non_negative_float(value: object, field_name: str) -> float:
    """Parse a float that must be zero or greater.

    Raises:
        ValueError: If the value is not numeric or is negative.
    """

    if isinstance(value, bool):
        raise ValueError(f"`{field_name}` must be a non-negative number.")
    try:
        parsed = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError) as exc:
        raise ValueError(f"`{field_name}` must be a non-negative number.") from exc
    if parsed < 0.0:
        raise ValueError(f"`{field_name}` must be a non-negative number.")
    return parsed


def parse_string_list(value: object, field_name: str) -> tuple[str, ...]:
    """Parse a list of non-empty strings from a sequence or comma-separated text."""

    if value is None:
        return tuple()
    if isinstance(value, str):
        raw_items: Iterable[object] = value.split(",")
    elif isinstance(value, list | tuple):
        raw_items = value
    else:
        raise ValueError(f"`{field_name}` must be a list of strings.")

    items: list[str] = []
    for raw_item in raw_items:
        normalized = normalize_optional_string(raw_item)
        if normalized is not None:
            items.append(normalized)
    return tuple(items)


def parse_positive_int(value: object, field_name: str) -> int:
    """Parse an integer that must be one or greater.

    Raises:
        ValueError: If the value is not an integer or is smaller than one.
    """

    if isinstance(value, bool):
        raise ValueError(f"`{field_name}` must be a positive integer.")
    try:
        parsed = int(str(value).strip())
    except (TypeError, ValueError) as exc:
        raise ValueError(f"`{field_name}` must be a positive integer.") from exc
    if parsed <= 0:
        raise ValueError(f"`{field_name}` must be a positive integer.")
    return parsed
