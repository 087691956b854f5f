"""Voice provider implementations behind one `synthesize(text)` capability.

Responsibilities:
- Define the `VoiceProvider` protocol used by the synthesizer.
- Provide a preset-voice provider that sends text directly.
- Provide a neural-voice provider that splits long text into sentence-bounded
  chunks under the provider limit and joins the chunk audio into one file.
"""

from __future__ import annotations

from typing import Callable, Protocol, Sequence

from ..llm.openai_client import OpenAISpeechClient
from ..text.chunking import split_for_provider
from .elevenlabs_client import DEFAULT_ELEVENLABS_MODEL, ElevenLabsClient

NEURAL_CHUNK_MAX_CHARS = 9000


class VoiceProvider(Protocol):
    """Synthesis capability bound to one concrete voice."""

    provider_id: str

    def synthesize(self, text: str) -> bytes:
        """Return encoded audio bytes for the given text."""


class OpenAIPresetVoiceProvider:
    """Preset OpenAI voice taking text directly."""

    provider_id = "openai"

    def __init__(
        self,
        *,
        client: OpenAISpeechClient,
        voice_name: str,
        model: str = "tts-1",
        speed: float = 1.0,
    ) -> None:
        """Bind an OpenAI speech client to one preset voice."""

        self.client = client
        self.voice_name = voice_name
        self.model = model
        self.speed = speed

    def synthesize(self, text: str) -> bytes:
        """Return MP3 bytes for the text in this preset voice."""

        return self.client.synthesize_speech(
            model=self.model,
            voice=self.voice_name,
            text=text,
            response_format="mp3",
            speed=self.speed,
        )


class ElevenLabsNeuralVoiceProvider:
    """Neural ElevenLabs voice handling provider-side length limits."""

    provider_id = "elevenlabs"

    def __init__(
        self,
        *,
        client: ElevenLabsClient,
        voice_id: str,
        joiner: Callable[[Sequence[bytes]], bytes],
        model_id: str = DEFAULT_ELEVENLABS_MODEL,
        stability: float = 0.5,
        similarity_boost: float = 0.5,
        max_chunk_chars: int = NEURAL_CHUNK_MAX_CHARS,
    ) -> None:
        """Bind an ElevenLabs client to one voice and an audio joiner."""

        self.client = client
        self.voice_id = voice_id
        self.joiner = joiner
        self.model_id = model_id
        self.stability = stability
        self.similarity_boost = similarity_boost
        self.max_chunk_chars = max_chunk_chars

    def synthesize(self, text: str) -> bytes:
        """Return MP3 bytes, synthesizing and joining chunks for long text."""

        chunks = split_for_provider(text, self.max_chunk_chars)
        if len(chunks) <= 1:
            return self._synthesize_chunk(chunks[0] if chunks else text)
        return self.joiner([self._synthesize_chunk(chunk) for chunk in chunks])

    def _synthesize_chunk(self, chunk: str) -> bytes:
        """Synthesize one request-sized chunk."""

        return self.client.synthesize_speech(
            voice_id=self.voice_id,
            text=chunk,
            model_id=self.model_id,
            stability=self.stability,
            similarity_boost=self.similarity_boost,
        )
