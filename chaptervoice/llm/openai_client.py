"""OpenAI HTTP clients for speaker attribution and preset-voice synthesis.

Responsibilities:
- Send JSON-mode chat-completions requests and return the parsed JSON object.
- Send speech requests to `/audio/speech` and return raw audio bytes.
- Reject over-length speech input locally with `PayloadTooLongError`.
"""

from __future__ import annotations

import json
from typing import Any

from ..telemetry.logger import RunLogger
from .http_client import PayloadTooLongError, ProviderError, ProviderHTTPClient
from .rate_limiter import RateLimiter
from .retry import RetryPolicy

OPENAI_BASE_URL = "https://api.openai.com/v1"
OPENAI_SPEECH_MAX_INPUT_CHARS = 4096


class _OpenAIBaseClient(ProviderHTTPClient):
    """Shared OpenAI settings used by the chat and speech clients."""

    provider_label = "OpenAI"
    api_key_hint = (
        "Set `OPENAI_API_KEY`, pass `--openai-api-key`, or store one with "
        "`chaptervoice credentials --set-api-key`."
    )

    def __init__(
        self,
        *,
        api_key: str | None,
        base_url: str = OPENAI_BASE_URL,
        timeout_seconds: float = 60.0,
        retry_policy: RetryPolicy | None = None,
        rate_limiter: RateLimiter | None = None,
        rate_limit_key: str | None = None,
        run_logger: RunLogger | None = None,
    ) -> None:
        """Initialize OpenAI HTTP client settings."""

        super().__init__(
            api_key=api_key,
            base_url=base_url,
            timeout_seconds=timeout_seconds,
            retry_policy=retry_policy,
            rate_limiter=rate_limiter,
            rate_limit_key=rate_limit_key,
            run_logger=run_logger,
        )

    def _auth_headers(self) -> dict[str, str]:
        """Return bearer authentication headers."""

        return {"Authorization": f"Bearer {self.api_key}"}


class OpenAIChatClient(_OpenAIBaseClient):
    """Requests-based OpenAI chat-completions client in JSON response mode."""

    def chat_completion_json(
        self,
        *,
        model: str,
        system_prompt: str,
        user_prompt: str,
        temperature: float = 0.1,
    ) -> dict[str, Any]:
        """Return the first assistant message parsed as a JSON object."""

        self._require_api_key()

        payload = {
            "model": model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "temperature": temperature,
            "response_format": {"type": "json_object"},
        }
        raw_payload = self._post_json_bytes(
            endpoint_path="/chat/completions",
            payload=payload,
        ).decode("utf-8", errors="replace")
        return self._parse_json_object(self._extract_message_text(raw_payload))

    @staticmethod
    def _parse_json_object(text: str) -> dict[str, Any]:
        """Parse assistant message text as a JSON object."""

        try:
            parsed = json.loads(text)
        except json.JSONDecodeError as exc:
            raise ProviderError(
                "OpenAI message content is not valid JSON.",
                failure_kind="malformed_response",
            ) from exc
        if not isinstance(parsed, dict):
            raise ProviderError(
                "OpenAI message content is not a JSON object.",
                failure_kind="malformed_response",
            )
        return parsed

    @staticmethod
    def _extract_message_text(raw_payload: str) -> str:
        """Extract first assistant message text from a chat-completions payload."""

        try:
            payload = json.loads(raw_payload)
        except json.JSONDecodeError as exc:
            raise ProviderError(
                "OpenAI returned invalid JSON payload.",
                failure_kind="malformed_response",
            ) from exc

        choices = payload.get("choices") if isinstance(payload, dict) else None
        if not isinstance(choices, list) or not choices:
            raise ProviderError(
                "OpenAI response missing non-empty `choices` list.",
                failure_kind="malformed_response",
            )

        first_choice = choices[0]
        message = first_choice.get("message") if isinstance(first_choice, dict) else None
        if not isinstance(message, dict):
            raise ProviderError(
                "OpenAI response missing `choices[0].message` object.",
                failure_kind="malformed_response",
            )

        content = message.get("content")
        text = content.strip() if isinstance(content, str) else ""
        if not text:
            raise ProviderError(
                "OpenAI response message content is empty.",
                failure_kind="malformed_response",
            )
        return text


class OpenAISpeechClient(_OpenAIBaseClient):
    """Requests-based OpenAI speech client for preset-voice synthesis."""

    max_input_chars = OPENAI_SPEECH_MAX_INPUT_CHARS

    def synthesize_speech(
        self,
        *,
        model: str,
        voice: str,
        text: str,
        response_format: str = "mp3",
        speed: float = 1.0,
    ) -> bytes:
        """Return synthesized audio bytes from OpenAI `/audio/speech`."""

        self._require_api_key()
        if len(text) > self.max_input_chars:
            raise PayloadTooLongError(
                f"OpenAI speech input has {len(text)} characters; "
                f"the limit is {self.max_input_chars}."
            )

        payload = {
            "model": model,
            "voice": voice,
            "input": text,
            "response_format": response_format,
            "speed": max(0.25, min(4.0, speed)),
        }
        return self._post_json_bytes(
            endpoint_path="/audio/speech",
            payload=payload,
            require_non_empty_response=True,
            empty_response_message="OpenAI speech response is empty.",
        )
