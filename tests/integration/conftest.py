"""Integration-test fixtures for isolated CLI runs without network or keyring access."""

from __future__ import annotations

from pathlib import Path

import pytest

from chaptervoice import cli


class InMemoryCredentialStore:
    """Simple in-memory credential store used for CLI tests."""

    def __init__(self, initial_api_key: str | None = None) -> None:
        """Initialize the store with an optional pre-seeded API key."""

        self._api_key = initial_api_key

    def is_available(self) -> bool:
        """Return availability flag expected by the CLI status command."""

        return True

    def get_api_key(self) -> str | None:
        """Return currently stored API key value."""

        return self._api_key

    def set_api_key(self, api_key: str) -> None:
        """Persist a normalized API key value."""

        self._api_key = api_key.strip()

    def clear_api_key(self) -> bool:
        """Clear API key and return whether one existed."""

        existed = self._api_key is not None
        self._api_key = None
        return existed


@pytest.fixture
def credential_stores() -> dict[str, InMemoryCredentialStore]:
    """Provide one empty in-memory store per provider."""

    return {"openai": InMemoryCredentialStore(), "elevenlabs": InMemoryCredentialStore()}


@pytest.fixture(autouse=True)
def _isolated_cli_environment(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
    credential_stores: dict[str, InMemoryCredentialStore],
) -> None:
    """Point library, output, and cache paths at `tmp_path` and replace the keyring."""

    monkeypatch.setenv("CHAPTERVOICE_LIBRARY_PATH", str(tmp_path / "library.json"))
    monkeypatch.setenv("CHAPTERVOICE_OUTPUT_DIR", str(tmp_path / "chapters"))
    monkeypatch.setenv("CHAPTERVOICE_CACHE_DIR", str(tmp_path / "segments"))
    monkeypatch.setenv("CHAPTERVOICE_INTER_BATCH_DELAY_SECONDS", "0")
    for key in ("OPENAI_API_KEY", "ELEVENLABS_API_KEY", "CHAPTERVOICE_CHARACTER_CONFIG"):
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setattr(cli, "create_credential_store", lambda provider: credential_stores[provider])
