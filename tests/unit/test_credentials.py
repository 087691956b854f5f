"""Unit tests for secure credential store helpers."""

from __future__ import annotations

import pytest
from keyring.errors import KeyringError, PasswordDeleteError

from chaptervoice.credentials import KeyringCredentialStore, create_credential_store


class _FakeBackend:
    """Stand-in keyring backend object."""


class FakeKeyringModule:
    """In-memory keyring stub for deterministic credential store tests."""

    def __init__(self, *, fail_writes: bool = False) -> None:
        """Initialize fake storage dictionary."""

        self._storage: dict[tuple[str, str], str] = {}
        self.fail_writes = fail_writes

    def get_keyring(self) -> _FakeBackend:
        """Return a usable backend."""

        return _FakeBackend()

    def get_password(self, service_name: str, account_name: str) -> str | None:
        """Return previously stored password if present."""

        return self._storage.get((service_name, account_name))

    def set_password(self, service_name: str, account_name: str, value: str) -> None:
        """Store password value for the service/account key."""

        if self.fail_writes:
            raise KeyringError("no backend")
        self._storage[(service_name, account_name)] = value

    def delete_password(self, service_name: str, account_name: str) -> None:
        """Delete password value for the service/account key."""

        if (service_name, account_name) not in self._storage:
            raise PasswordDeleteError("not found")
        del self._storage[(service_name, account_name)]


def _patch_keyring(monkeypatch: pytest.MonkeyPatch, fake: FakeKeyringModule) -> None:
    """Route every credential store to the fake keyring module."""

    monkeypatch.setattr(KeyringCredentialStore, "_load_keyring_module", lambda self: fake)


def test_keyring_store_roundtrip_set_get_clear(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keyring store should set/get/clear API key values via keyring backend."""

    _patch_keyring(monkeypatch, FakeKeyringModule())
    store = KeyringCredentialStore()

    assert store.is_available() is True
    assert store.get_api_key() is None

    store.set_api_key("  abc123  ")
    assert store.get_api_key() == "abc123"

    assert store.clear_api_key() is True
    assert store.get_api_key() is None
    assert store.clear_api_key() is False


def test_provider_stores_use_separate_accounts(monkeypatch: pytest.MonkeyPatch) -> None:
    """OpenAI and ElevenLabs keys should not overwrite each other."""

    _patch_keyring(monkeypatch, FakeKeyringModule())
    openai_store = create_credential_store("openai")
    elevenlabs_store = create_credential_store("elevenlabs")

    openai_store.set_api_key("sk-openai")
    elevenlabs_store.set_api_key("el-key")

    assert openai_store.get_api_key() == "sk-openai"
    assert elevenlabs_store.get_api_key() == "el-key"


def test_unknown_provider_is_rejected() -> None:
    """Only supported providers should have credential stores."""

    with pytest.raises(ValueError, match="openai"):
        create_credential_store("azure")


def test_blank_api_key_is_rejected(monkeypatch: pytest.MonkeyPatch) -> None:
    """Empty keys should never be persisted."""

    _patch_keyring(monkeypatch, FakeKeyringModule())

    with pytest.raises(ValueError):
        KeyringCredentialStore().set_api_key("   ")


def test_backend_write_failure_raises_runtime_error(monkeypatch: pytest.MonkeyPatch) -> None:
    """Backend errors while storing should surface as a descriptive runtime error."""

    _patch_keyring(monkeypatch, FakeKeyringModule(fail_writes=True))

    with pytest.raises(RuntimeError, match="Secure credential storage is unavailable"):
        KeyringCredentialStore().set_api_key("sk-test")
