"""Secure credential storage for provider API keys.

Responsibilities:
- Persist the OpenAI and ElevenLabs API keys in the OS keyring.
- Provide read/write/delete operations per provider account.
- Never log or echo secret values.

Key types:
- `CredentialStore`: interface for provider credential persistence.
- `KeyringCredentialStore`: keyring-backed secure credential storage.
"""

from __future__ import annotations

from dataclasses import dataclass

import keyring
from keyring.errors import KeyringError

_DEFAULT_SERVICE_NAME = "chaptervoice"
PROVIDER_ACCOUNTS = {
    "openai": "openai_api_key",
    "elevenlabs": "elevenlabs_api_key",
}


class CredentialStore:
    """Interface for secure provider credential operations."""

    def is_available(self) -> bool:
        """Return whether secure credential operations are available."""

        raise NotImplementedError

    def get_api_key(self) -> str | None:
        """Load the stored API key, when present."""

        raise NotImplementedError

    def set_api_key(self, api_key: str) -> None:
        """Persist an API key."""

        raise NotImplementedError

    def clear_api_key(self) -> bool:
        """Delete a stored API key and return whether one existed."""

        raise NotImplementedError


@dataclass(slots=True)
class KeyringCredentialStore(CredentialStore):
    """Secure credential store backed by the `keyring` package."""

    service_name: str = _DEFAULT_SERVICE_NAME
    account_name: str = PROVIDER_ACCOUNTS["openai"]

    def _load_keyring_module(self):
        """Return the keyring module used for all operations."""

        return keyring

    def is_available(self) -> bool:
        """Return `True` when a usable keyring backend is configured."""

        keyring_module = self._load_keyring_module()
        try:
            backend = keyring_module.get_keyring()
        except KeyringError:
            return False
        return type(backend).__module__ != "keyring.backends.fail"

    def get_api_key(self) -> str | None:
        """Get a normalized API key, returning `None` when missing or unreadable."""

        keyring_module = self._load_keyring_module()
        try:
            value = keyring_module.get_password(self.service_name, self.account_name)
        except KeyringError:
            return None
        if value is None:
            return None
        normalized = value.strip()
        return normalized or None

    def set_api_key(self, api_key: str) -> None:
        """Persist a normalized API key or raise when storage is unavailable."""

        normalized = api_key.strip()
        if not normalized:
            raise ValueError("API key must be a non-empty string.")
        keyring_module = self._load_keyring_module()
        try:
            keyring_module.set_password(self.service_name, self.account_name, normalized)
        except KeyringError as exc:
            raise RuntimeError(
                "Secure credential storage is unavailable. Configure a keyring backend "
                "or pass the key with an environment variable instead."
            ) from exc

    def clear_api_key(self) -> bool:
        """Remove the stored API key and report whether one was present."""

        if self.get_api_key() is None:
            return False
        keyring_module = self._load_keyring_module()
        try:
            keyring_module.delete_password(self.service_name, self.account_name)
        except KeyringError:
            return False
        return True


def create_credential_store(provider: str = "openai") -> CredentialStore:
    """Create the secure credential store for one provider's API key."""

    account_name = PROVIDER_ACCOUNTS.get(provider)
    if account_name is None:
        supported = ", ".join(sorted(PROVIDER_ACCOUNTS))
        raise ValueError(f"Unsupported credential provider `{provider}`; supported: {supported}.")
    return KeyringCredentialStore(account_name=account_name)
