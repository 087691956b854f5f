"""Text-to-speech providers and the segment audio cache.

This package contains the voice provider protocol and implementations, the
content-addressed segment cache, and the cache-aware synthesizer.
"""

from .cache import SegmentAudioCache
from .elevenlabs_client import ElevenLabsClient
from .providers import ElevenLabsNeuralVoiceProvider, OpenAIPresetVoiceProvider, VoiceProvider
from .synthesizer import VoiceSynthesizer

__all__ = [
    "ElevenLabsClient",
    "ElevenLabsNeuralVoiceProvider",
    "OpenAIPresetVoiceProvider",
    "SegmentAudioCache",
    "VoiceProvider",
    "VoiceSynthesizer",
]
