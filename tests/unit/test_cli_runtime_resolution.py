"""Unit tests for CLI provider runtime resolution helpers."""

from __future__ import annotations

import pytest

from chaptervoice.cli_runtime import resolve_provider_runtime_sources, runtime_key_name
from chaptervoice.errors import PipelineStageError


class InMemoryCredentialStore:
    """In-memory credential store implementation for runtime-resolution tests."""

    def __init__(self, initial_api_key: str | None = None) -> None:
        """Initialize the store with an optional initial API key."""

        self._api_key = initial_api_key
        self.stored_values: list[str] = []

    def get_api_key(self) -> str | None:
        """Return currently stored API key value."""

        return self._api_key

    def set_api_key(self, api_key: str) -> None:
        """Persist API key value and keep a history for assertions."""

        self._api_key = api_key
        self.stored_values.append(api_key)


class FailingCredentialStore:
    """Credential store that raises when persisting API key values."""

    def __init__(self, provider: str) -> None:
        """Accept the provider name passed by the factory call."""

        self.provider = provider

    def get_api_key(self) -> str | None:
        """Return no pre-existing secure API key."""

        return None

    def set_api_key(self, api_key: str) -> None:
        """Raise deterministic storage failure used for error-path assertions."""

        raise RuntimeError("no keyring backend")


def _factory(stores: dict[str, InMemoryCredentialStore]):  # type: ignore[no-untyped-def]
    """Return a credential store factory backed by per-provider stores."""

    return lambda provider: stores[provider]


def test_runtime_key_names_follow_provider() -> None:
    """Runtime source keys should be derived from the provider name."""

    assert runtime_key_name("openai") == "openai_api_key"
    assert runtime_key_name("elevenlabs") == "elevenlabs_api_key"


def test_resolve_collects_cli_and_secure_values_without_storing() -> None:
    """Resolver should normalize CLI keys and include secure fallbacks."""

    stores = {
        "openai": InMemoryCredentialStore(initial_api_key="sk-secure"),
        "elevenlabs": InMemoryCredentialStore(initial_api_key="el-secure"),
    }

    runtime_cli_values, runtime_secure_values = resolve_provider_runtime_sources(
        openai_api_key=None,
        elevenlabs_api_key="  el-cli  ",
        prompt_api_key=False,
        store_api_key=False,
        credential_store_factory=_factory(stores),
    )

    assert runtime_cli_values == {"elevenlabs_api_key": "el-cli"}
    assert runtime_secure_values == {
        "openai_api_key": "sk-secure",
        "elevenlabs_api_key": "el-secure",
    }
    assert stores["elevenlabs"].stored_values == []


def test_resolve_stores_entered_keys_when_requested(capsys: pytest.CaptureFixture[str]) -> None:
    """Keys entered for this run should be persisted when storage is enabled."""

    stores = {"openai": InMemoryCredentialStore(), "elevenlabs": InMemoryCredentialStore()}

    runtime_cli_values, _ = resolve_provider_runtime_sources(
        openai_api_key="sk-cli",
        elevenlabs_api_key=None,
        prompt_api_key=False,
        store_api_key=True,
        credential_store_factory=_factory(stores),
    )

    assert runtime_cli_values == {"openai_api_key": "sk-cli"}
    assert stores["openai"].stored_values == ["sk-cli"]
    assert stores["elevenlabs"].stored_values == []
    assert "Stored OpenAI API key in secure credential storage." in capsys.readouterr().out


def test_resolve_prompts_for_openai_key(monkeypatch: pytest.MonkeyPatch) -> None:
    """The prompt path should collect a hidden OpenAI key and store it."""

    prompts: list[dict[str, object]] = []

    def _fake_prompt(*args: object, **kwargs: object) -> str:
        """Return a deterministic prompted key."""

        prompts.append(dict(kwargs))
        return " sk-prompted "

    monkeypatch.setattr("chaptervoice.cli_runtime.typer.prompt", _fake_prompt)
    stores = {"openai": InMemoryCredentialStore(), "elevenlabs": InMemoryCredentialStore()}

    runtime_cli_values, runtime_secure_values = resolve_provider_runtime_sources(
        openai_api_key=None,
        elevenlabs_api_key=None,
        prompt_api_key=True,
        store_api_key=True,
        credential_store_factory=_factory(stores),
    )

    assert runtime_cli_values == {"openai_api_key": "sk-prompted"}
    assert runtime_secure_values == {}
    assert stores["openai"].stored_values == ["sk-prompted"]
    assert prompts[0]["hide_input"] is True


def test_resolve_prompt_blank_skips_storage(monkeypatch: pytest.MonkeyPatch) -> None:
    """Blank prompted API key should not be added to CLI runtime values nor stored."""

    monkeypatch.setattr("chaptervoice.cli_runtime.typer.prompt", lambda *args, **kwargs: "   ")
    stores = {"openai": InMemoryCredentialStore(), "elevenlabs": InMemoryCredentialStore()}

    runtime_cli_values, _ = resolve_provider_runtime_sources(
        openai_api_key=None,
        elevenlabs_api_key=None,
        prompt_api_key=True,
        store_api_key=True,
        credential_store_factory=_factory(stores),
    )

    assert runtime_cli_values == {}
    assert stores["openai"].stored_values == []


def test_explicit_key_skips_prompt(monkeypatch: pytest.MonkeyPatch) -> None:
    """An explicit OpenAI key should make the prompt unnecessary."""

    def _fail_prompt(*args: object, **kwargs: object) -> str:
        raise AssertionError("prompt should not be shown")

    monkeypatch.setattr("chaptervoice.cli_runtime.typer.prompt", _fail_prompt)
    stores = {"openai": InMemoryCredentialStore(), "elevenlabs": InMemoryCredentialStore()}

    runtime_cli_values, _ = resolve_provider_runtime_sources(
        openai_api_key="sk-cli",
        elevenlabs_api_key=None,
        prompt_api_key=True,
        store_api_key=False,
        credential_store_factory=_factory(stores),
    )

    assert runtime_cli_values == {"openai_api_key": "sk-cli"}


def test_storage_failure_raises_stage_error() -> None:
    """Credential-store persistence errors should map to credentials stage diagnostics."""

    with pytest.raises(PipelineStageError) as exc_info:
        resolve_provider_runtime_sources(
            openai_api_key="explicit-api-key",
            elevenlabs_api_key=None,
            prompt_api_key=False,
            store_api_key=True,
            credential_store_factory=FailingCredentialStore,
        )

    assert exc_info.value.stage == "credentials"
    assert "Failed to store OpenAI API key securely:" in exc_info.value.detail
    assert "--no-store-api-key" in (exc_info.value.hint or "")
