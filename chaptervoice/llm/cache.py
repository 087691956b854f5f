"""In-run memo of structured provider responses.

Responsibilities:
- Build stable cache keys from provider/model/operation and normalized request identity.
- Reuse parsed responses for repeated identical attribution batches within one run.
- Track hit/miss counters for run telemetry.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from hashlib import sha256
import json
from typing import Any


def _normalize_identity_value(value: Any) -> Any:
    """Normalize identity payload values for stable cache key hashing."""

    if isinstance(value, str):
        return " ".join(value.split())
    if isinstance(value, list | tuple):
        return [_normalize_identity_value(item) for item in value]
    if isinstance(value, dict):
        return {
            str(key): _normalize_identity_value(value[key])
            for key in sorted(value.keys(), key=str)
        }
    return value


def sha256_text(text: str) -> str:
    """Return the hex SHA-256 digest of UTF-8 encoded text."""

    return sha256(text.encode("utf-8")).hexdigest()


@dataclass(slots=True)
class ResponseCache:
    """In-memory cache of parsed JSON responses keyed by request identity."""

    entries: dict[str, dict[str, Any]] = field(default_factory=dict)
    hits: int = 0
    misses: int = 0

    @staticmethod
    def make_key(
        *,
        provider: str,
        model: str,
        operation: str,
        input_identity: Any,
    ) -> str:
        """Build a cache key with a hash of the normalized request identity."""

        canonical_identity = json.dumps(
            _normalize_identity_value(input_identity),
            sort_keys=True,
            ensure_ascii=True,
            separators=(",", ":"),
        )
        return (
            f"response:{provider.strip().lower()}:{model.strip()}:"
            f"{operation.strip().lower()}:{sha256_text(canonical_identity)}"
        )

    def get(self, cache_key: str) -> dict[str, Any] | None:
        """Return a cached payload and update hit/miss counters."""

        if cache_key in self.entries:
            self.hits += 1
            return self.entries[cache_key]
        self.misses += 1
        return None

    def set(self, cache_key: str, value: dict[str, Any]) -> None:
        """Store a parsed payload under a cache key."""

        self.entries[cache_key] = value

    def hit_rate(self) -> float:
        """Return the hit rate for the current cache lifecycle."""

        total = self.hits + self.misses
        if total == 0:
            return 0.0
        return self.hits / float(total)
