"""CLI provider runtime resolution helpers.

This module isolates API-key prompting, runtime source assembly, and secure
API-key persistence from the command wiring layer.
"""

from __future__ import annotations

from typing import Callable, Protocol

import typer

from .credentials import create_credential_store
from .errors import PipelineStageError
from .parsing import normalize_optional_string

_PROVIDER_LABELS = {"openai": "OpenAI", "elevenlabs": "ElevenLabs"}


class CredentialStoreProtocol(Protocol):
    """Protocol for secure credential store operations used by CLI runtime resolution."""

    def get_api_key(self) -> str | None:
        """Return the currently stored API key, if available."""

    def set_api_key(self, api_key: str) -> None:
        """Persist an API key in secure storage."""


def runtime_key_name(provider: str) -> str:
    """Return the runtime source key holding one provider's API key."""

    return f"{provider}_api_key"


def prompt_for_api_key(provider: str) -> str | None:
    """Prompt for a provider API key with hidden input."""

    label = _PROVIDER_LABELS.get(provider, provider)
    return normalize_optional_string(
        typer.prompt(
            f"{label} API key (hidden; leave blank to skip)",
            default="",
            hide_input=True,
            show_default=False,
        )
    )


def resolve_provider_runtime_sources(
    openai_api_key: str | None,
    elevenlabs_api_key: str | None,
    prompt_api_key: bool,
    store_api_key: bool,
    credential_store_factory: Callable[[str], CredentialStoreProtocol] = create_credential_store,
) -> tuple[dict[str, str], dict[str, str]]:
    """Resolve CLI and secure runtime source mappings for provider API keys."""

    runtime_cli_values: dict[str, str] = {}
    entered_in_run: set[str] = set()
    for provider, value in (("openai", openai_api_key), ("elevenlabs", elevenlabs_api_key)):
        normalized = normalize_optional_string(value)
        if normalized is not None:
            runtime_cli_values[runtime_key_name(provider)] = normalized
            entered_in_run.add(provider)

    if prompt_api_key and "openai" not in entered_in_run:
        prompted = prompt_for_api_key("openai")
        if prompted is not None:
            runtime_cli_values[runtime_key_name("openai")] = prompted
            entered_in_run.add("openai")

    runtime_secure_values: dict[str, str] = {}
    for provider in ("openai", "elevenlabs"):
        credential_store = credential_store_factory(provider)
        key_name = runtime_key_name(provider)
        stored_api_key = credential_store.get_api_key()
        if stored_api_key is not None:
            runtime_secure_values[key_name] = stored_api_key

        if provider in entered_in_run and store_api_key:
            try:
                credential_store.set_api_key(runtime_cli_values[key_name])
            except (RuntimeError, ValueError) as exc:
                raise PipelineStageError(
                    stage="credentials",
                    detail=f"Failed to store {_PROVIDER_LABELS[provider]} API key securely: {exc}",
                    hint=(
                        "Install and configure a keyring backend, or rerun with "
                        "`--no-store-api-key` for one-off usage."
                    ),
                ) from exc
            typer.echo(f"Stored {_PROVIDER_LABELS[provider]} API key in secure credential storage.")

    return runtime_cli_values, runtime_secure_values
