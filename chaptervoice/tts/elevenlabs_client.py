"""ElevenLabs HTTP client for neural-voice synthesis.

Responsibilities:
- Send text-to-speech requests to `/text-to-speech/{voice_id}` and return MP3 bytes.
- Reuse the shared error mapping, retry policy, and pacing of `ProviderHTTPClient`.
- Reject over-length input locally with `PayloadTooLongError`.
"""

from __future__ import annotations

from ..llm.http_client import PayloadTooLongError, ProviderHTTPClient
from ..llm.rate_limiter import RateLimiter
from ..llm.retry import RetryPolicy
from ..telemetry.logger import RunLogger

ELEVENLABS_BASE_URL = "https://api.elevenlabs.io/v1"
ELEVENLABS_MAX_INPUT_CHARS = 10000
DEFAULT_ELEVENLABS_MODEL = "eleven_monolingual_v1"


class ElevenLabsClient(ProviderHTTPClient):
    """Requests-based ElevenLabs speech client."""

    provider_label = "ElevenLabs"
    api_key_hint = (
        "Set `ELEVENLABS_API_KEY`, pass `--elevenlabs-api-key`, or store one with "
        "`chaptervoice credentials --provider elevenlabs --set-api-key`."
    )
    max_input_chars = ELEVENLABS_MAX_INPUT_CHARS

    def __init__(
        self,
        *,
        api_key: str | None,
        base_url: str = ELEVENLABS_BASE_URL,
        timeout_seconds: float = 120.0,
        retry_policy: RetryPolicy | None = None,
        rate_limiter: RateLimiter | None = None,
        run_logger: RunLogger | None = None,
    ) -> None:
        """Initialize ElevenLabs HTTP client settings."""

        super().__init__(
            api_key=api_key,
            base_url=base_url,
            timeout_seconds=timeout_seconds,
            retry_policy=retry_policy,
            rate_limiter=rate_limiter,
            rate_limit_key="elevenlabs",
            run_logger=run_logger,
        )

    def _auth_headers(self) -> dict[str, str]:
        """Return ElevenLabs API-key headers."""

        return {"xi-api-key": self.api_key}

    def synthesize_speech(
        self,
        *,
        voice_id: str,
        text: str,
        model_id: str = DEFAULT_ELEVENLABS_MODEL,
        stability: float = 0.5,
        similarity_boost: float = 0.5,
    ) -> bytes:
        """Return MP3 audio bytes for one request-sized text."""

        self._require_api_key()
        if len(text) > self.max_input_chars:
            raise PayloadTooLongError(
                f"ElevenLabs input has {len(text)} characters; "
                f"the limit is {self.max_input_chars}."
            )

        payload = {
            "text": text,
            "model_id": model_id,
            "voice_settings": {
                "stability": stability,
                "similarity_boost": similarity_boost,
            },
        }
        return self._post_json_bytes(
            endpoint_path=f"/text-to-speech/{voice_id}",
            payload=payload,
            extra_headers={"Accept": "audio/mpeg"},
            require_non_empty_response=True,
            empty_response_message="ElevenLabs speech response is empty.",
        )
