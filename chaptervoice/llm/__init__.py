"""Provider-facing abstractions for speaker attribution.

This package defines the shared HTTP client, retry and rate-limit policies,
prompt templates, and the batched attribution engine.
"""

from .attribution import AttributionEngine
from .cache import ResponseCache
from .http_client import PayloadTooLongError, ProviderError
from .openai_client import OpenAIChatClient, OpenAISpeechClient
from .prompts import PromptLibrary
from .rate_limiter import RateLimiter
from .retry import RetryPolicy

__all__ = [
    "AttributionEngine",
    "OpenAIChatClient",
    "OpenAISpeechClient",
    "PayloadTooLongError",
    "PromptLibrary",
    "ProviderError",
    "RateLimiter",
    "ResponseCache",
    "RetryPolicy",
]
