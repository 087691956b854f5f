"""Provider factory helpers for attribution and voice synthesis.

Responsibilities:
- Build the classification client and per-voice synthesis providers from
  resolved runtime configuration.
- Select the concrete `VoiceProvider` once per voice from its provider tag.
- Keep orchestration independent from concrete provider class construction.
"""

from __future__ import annotations

from typing import Callable, Sequence

from .config import ProviderRuntimeConfig
from .errors import PipelineStageError
from .llm.openai_client import OpenAIChatClient, OpenAISpeechClient
from .llm.rate_limiter import RateLimiter
from .llm.retry import RetryPolicy
from .models.datatypes import Voice
from .parsing import normalize_optional_string, parse_non_negative_float
from .telemetry.logger import RunLogger
from .tts.elevenlabs_client import ElevenLabsClient
from .tts.providers import (
    ElevenLabsNeuralVoiceProvider,
    OpenAIPresetVoiceProvider,
    VoiceProvider,
)


class ProviderFactory:
    """Factory for provider-backed clients used by the pipeline."""

    def __init__(
        self,
        runtime: ProviderRuntimeConfig,
        *,
        retry_policy: RetryPolicy | None = None,
        rate_limiter: RateLimiter | None = None,
        run_logger: RunLogger | None = None,
    ) -> None:
        """Initialize shared retry and rate-limit policies for every client."""

        self.runtime = runtime
        self.retry_policy = retry_policy or RetryPolicy()
        self.rate_limiter = rate_limiter
        self.run_logger = run_logger
        self._speech_client: OpenAISpeechClient | None = None
        self._elevenlabs_client: ElevenLabsClient | None = None

    def create_chat_client(self) -> OpenAIChatClient:
        """Create the JSON-mode classification client."""

        return OpenAIChatClient(
            api_key=self.runtime.openai_api_key,
            retry_policy=self.retry_policy,
            rate_limiter=self.rate_limiter,
            rate_limit_key="openai-chat",
            run_logger=self.run_logger,
        )

    def create_voice_provider(
        self,
        voice: Voice,
        *,
        joiner: Callable[[Sequence[bytes]], bytes],
    ) -> VoiceProvider:
        """Create the synthesis provider for one voice from its provider tag."""

        if not voice.is_active:
            raise PipelineStageError(
                stage="voices",
                detail=f"Voice `{voice.id}` is inactive.",
                hint="Assign an active voice to the speaker.",
            )
        settings = voice.settings
        if voice.provider == "openai":
            return OpenAIPresetVoiceProvider(
                client=self._openai_speech_client(),
                voice_name=normalize_optional_string(settings.get("voice_name")) or voice.id,
                model=normalize_optional_string(settings.get("model")) or self.runtime.tts_model,
                speed=parse_non_negative_float(settings.get("speed", 1.0), "speed"),
            )
        if voice.provider == "elevenlabs":
            return ElevenLabsNeuralVoiceProvider(
                client=self._elevenlabs(),
                voice_id=normalize_optional_string(settings.get("voice_id")) or voice.id,
                joiner=joiner,
                model_id=normalize_optional_string(settings.get("model_id"))
                or self.runtime.neural_model,
                stability=parse_non_negative_float(settings.get("stability", 0.5), "stability"),
                similarity_boost=parse_non_negative_float(
                    settings.get("similarity_boost", 0.5), "similarity_boost"
                ),
            )
        raise PipelineStageError(
            stage="voices",
            detail=f"Unsupported voice provider `{voice.provider}` for voice `{voice.id}`.",
            hint="Supported providers: `openai`, `elevenlabs`.",
        )

    def _openai_speech_client(self) -> OpenAISpeechClient:
        """Return the shared OpenAI speech client, creating it once."""

        if self._speech_client is None:
            self._speech_client = OpenAISpeechClient(
                api_key=self.runtime.openai_api_key,
                retry_policy=self.retry_policy,
                rate_limiter=self.rate_limiter,
                rate_limit_key="openai-speech",
                run_logger=self.run_logger,
            )
        return self._speech_client

    def _elevenlabs(self) -> ElevenLabsClient:
        """Return the shared ElevenLabs client, creating it once."""

        if self._elevenlabs_client is None:
            self._elevenlabs_client = ElevenLabsClient(
                api_key=self.runtime.elevenlabs_api_key,
                retry_policy=self.retry_policy,
                rate_limiter=self.rate_limiter,
                run_logger=self.run_logger,
            )
        return self._elevenlabs_client
