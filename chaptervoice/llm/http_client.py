"""Shared HTTP plumbing for classification and synthesis providers.

Responsibilities:
- Send JSON POST requests with `requests` and map every failure into `ProviderError`.
- Classify HTTP and transport failures into deterministic failure kinds.
- Apply the shared `RetryPolicy` and optional `RateLimiter` around each request.
- Signal over-length input with the distinct `PayloadTooLongError`.
"""

from __future__ import annotations

import json
import re
import socket
from typing import Any

import requests

from ..telemetry.logger import RunLogger
from .rate_limiter import RateLimiter
from .retry import RetryPolicy


class ProviderError(RuntimeError):
    """Raised when a provider request fails or returns malformed output."""

    def __init__(
        self,
        message: str,
        *,
        failure_kind: str = "unknown",
        status_code: int | None = None,
        provider_code: str | None = None,
    ) -> None:
        """Initialize provider error metadata for stage-aware diagnostics."""

        super().__init__(message)
        self.failure_kind = failure_kind
        self.status_code = status_code
        self.provider_code = provider_code


class PayloadTooLongError(ProviderError):
    """Raised when the provider rejects input text as too long."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        provider_code: str | None = None,
    ) -> None:
        """Initialize an over-length payload error."""

        super().__init__(
            message,
            failure_kind="payload_too_long",
            status_code=status_code,
            provider_code=provider_code,
        )


class ProviderHTTPClient:
    """Base client holding endpoint settings, retry policy, and error mapping."""

    provider_label = "Provider"
    api_key_hint = "Configure the provider API key."
    _MAX_PROVIDER_MESSAGE_CHARS = 180
    _PAYLOAD_TOO_LONG_PHRASES = ("too long", "maximum length", "exceeds", "max_character")

    def __init__(
        self,
        *,
        api_key: str | None,
        base_url: str,
        timeout_seconds: float = 60.0,
        retry_policy: RetryPolicy | None = None,
        rate_limiter: RateLimiter | None = None,
        rate_limit_key: str | None = None,
        run_logger: RunLogger | None = None,
    ) -> None:
        """Initialize HTTP client settings and call policies."""

        self.api_key = api_key.strip() if isinstance(api_key, str) else ""
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.retry_policy = retry_policy or RetryPolicy()
        self.rate_limiter = rate_limiter
        self.rate_limit_key = rate_limit_key or self.provider_label.lower()
        self.retry_attempt_count = 0
        self._run_logger = run_logger

    def _auth_headers(self) -> dict[str, str]:
        """Return provider authentication headers."""

        raise NotImplementedError

    def _require_api_key(self) -> None:
        """Require API key presence before issuing requests."""

        if not self.api_key:
            raise ProviderError(
                f"Missing {self.provider_label} API key. {self.api_key_hint}",
                failure_kind="invalid_api_key",
            )

    def _post_json_bytes(
        self,
        *,
        endpoint_path: str,
        payload: dict[str, Any],
        extra_headers: dict[str, str] | None = None,
        require_non_empty_response: bool = False,
        empty_response_message: str | None = None,
    ) -> bytes:
        """POST a JSON payload with pacing and retries, returning raw response bytes."""

        def _attempt() -> bytes:
            if self.rate_limiter is not None:
                self.rate_limiter.acquire(self.rate_limit_key)
            return self._execute_json_post_bytes(
                endpoint_path=endpoint_path,
                payload=payload,
                extra_headers=extra_headers,
                require_non_empty_response=require_non_empty_response,
                empty_response_message=empty_response_message,
            )

        return self.retry_policy.run(_attempt, on_retry=self._record_retry)

    def _record_retry(self, attempt: int, exc: Exception, delay: float) -> None:
        """Count one retry and log it with the cumulative retry count."""

        self.retry_attempt_count += 1
        if self._run_logger is not None:
            self._run_logger.warning(
                "provider",
                "request_retry",
                provider=self.provider_label,
                attempt=attempt,
                delay_seconds=round(delay, 3),
                reason=exc.failure_kind if isinstance(exc, ProviderError) else type(exc).__name__,
                total_retries=self.retry_attempt_count,
            )

    def _execute_json_post_bytes(
        self,
        *,
        endpoint_path: str,
        payload: dict[str, Any],
        extra_headers: dict[str, str] | None,
        require_non_empty_response: bool,
        empty_response_message: str | None,
    ) -> bytes:
        """Execute one JSON POST request and map failures consistently."""

        endpoint = f"{self.base_url}{endpoint_path}"
        headers = {"Content-Type": "application/json", **self._auth_headers()}
        if extra_headers:
            headers.update(extra_headers)
        label = self.provider_label
        try:
            response = requests.post(
                endpoint,
                headers=headers,
                json=payload,
                timeout=self.timeout_seconds,
            )
            response.raise_for_status()
            response_bytes = bytes(response.content)
        except requests.HTTPError as exc:
            raise self._http_error_to_provider_error(exc) from exc
        except requests.RequestException as exc:
            failure_kind = self._classify_transport_failure(exc)
            if failure_kind == "timeout":
                detail = f"{label} request timed out."
            else:
                detail = f"{label} request transport error: {self._short_message(str(exc))}"
            raise ProviderError(detail, failure_kind=failure_kind) from exc
        except TimeoutError as exc:
            raise ProviderError(f"{label} request timed out.", failure_kind="timeout") from exc

        if require_non_empty_response and not response_bytes:
            raise ProviderError(
                empty_response_message or f"{label} response is empty.",
                failure_kind="malformed_response",
            )
        return response_bytes

    @staticmethod
    def _decode_error_body(exc: requests.HTTPError) -> str:
        """Decode an HTTP error body into a best-effort UTF-8 payload string."""

        response = exc.response
        if response is None:
            return ""
        try:
            return bytes(response.content).decode("utf-8", errors="replace").strip()
        except (TypeError, ValueError):
            return ""

    @classmethod
    def _redact_sensitive_tokens(cls, text: str) -> str:
        """Redact API-key-like tokens from provider error content."""

        redacted = re.sub(r"\bsk-[A-Za-z0-9_-]{8,}\b", "[redacted-key]", text)
        redacted = re.sub(
            r"(?i)bearer\s+[A-Za-z0-9._-]{12,}",
            "Bearer [redacted-token]",
            redacted,
        )
        redacted = re.sub(
            r"(?i)(xi-api-key[\"']?\s*[:=]\s*[\"']?)[A-Za-z0-9_-]{8,}",
            r"\1[redacted-key]",
            redacted,
        )
        return redacted

    @classmethod
    def _short_message(cls, text: str) -> str:
        """Normalize and cap user-facing provider message length."""

        compact = " ".join(text.split())
        if len(compact) <= cls._MAX_PROVIDER_MESSAGE_CHARS:
            return compact
        return f"{compact[: cls._MAX_PROVIDER_MESSAGE_CHARS - 1]}..."

    @classmethod
    def _extract_provider_message(cls, body: str) -> tuple[str, str | None]:
        """Extract a concise provider message and optional provider error code."""

        if not body:
            return "", None

        try:
            payload = json.loads(body)
        except json.JSONDecodeError:
            return cls._short_message(cls._redact_sensitive_tokens(body)), None

        provider_code: str | None = None
        message: str | None = None
        if isinstance(payload, dict):
            # OpenAI nests under `error`, ElevenLabs under `detail`.
            error_payload = payload.get("error")
            if not isinstance(error_payload, dict):
                error_payload = payload.get("detail")
            if isinstance(error_payload, dict):
                code_value = error_payload.get("code", error_payload.get("status"))
                if isinstance(code_value, str) and code_value.strip():
                    provider_code = code_value.strip()
                message_value = error_payload.get("message")
                if isinstance(message_value, str) and message_value.strip():
                    message = message_value.strip()
            elif isinstance(error_payload, str) and error_payload.strip():
                message = error_payload.strip()

        if message is None:
            message = body

        return cls._short_message(cls._redact_sensitive_tokens(message)), provider_code

    @classmethod
    def _classify_http_failure(
        cls,
        status_code: int,
        provider_message: str,
        provider_code: str | None,
    ) -> str:
        """Classify HTTP errors into deterministic diagnostic kinds."""

        message_lower = provider_message.lower()
        normalized_code = provider_code.lower() if provider_code is not None else ""

        if status_code == 401 or "api key" in message_lower:
            return "invalid_api_key"
        if normalized_code in {"insufficient_quota", "quota_exceeded"} or (
            status_code == 429 and "quota" in message_lower
        ):
            return "insufficient_quota"
        if status_code == 413 or normalized_code in {"text_too_long", "string_too_long"} or (
            status_code in {400, 422}
            and any(phrase in message_lower for phrase in cls._PAYLOAD_TOO_LONG_PHRASES)
        ):
            return "payload_too_long"
        if normalized_code == "model_not_found" or (
            "model" in message_lower
            and any(phrase in message_lower for phrase in ("not found", "does not exist", "invalid"))
        ):
            return "invalid_model"
        if status_code == 429:
            return "rate_limited"
        if status_code in {408, 504} or "timeout" in message_lower or "timed out" in message_lower:
            return "timeout"
        if 500 <= status_code < 600:
            return "server_error"
        return "http_error"

    @staticmethod
    def _classify_transport_failure(reason: object) -> str:
        """Classify network-layer failures into deterministic diagnostic kinds."""

        if isinstance(reason, TimeoutError | socket.timeout | requests.Timeout):
            return "timeout"
        return "transport"

    @classmethod
    def _http_error_to_provider_error(cls, exc: requests.HTTPError) -> ProviderError:
        """Convert HTTP errors into normalized provider exceptions with metadata."""

        status_code = exc.response.status_code if exc.response is not None else 0
        body = cls._decode_error_body(exc)
        provider_message, provider_code = cls._extract_provider_message(body)
        failure_kind = cls._classify_http_failure(status_code, provider_message, provider_code)

        label = cls.provider_label
        headline = {
            "invalid_api_key": f"{label} authentication failed",
            "insufficient_quota": f"{label} quota is insufficient for this request",
            "invalid_model": f"{label} rejected the selected model",
            "payload_too_long": f"{label} rejected the input as too long",
            "rate_limited": f"{label} rate limit reached",
            "timeout": f"{label} request timed out",
            "server_error": f"{label} server error",
        }.get(failure_kind, f"{label} request failed")

        if provider_message:
            detail = f"{headline} (HTTP {status_code}): {provider_message}"
        else:
            detail = f"{headline} (HTTP {status_code})."

        if failure_kind == "payload_too_long":
            return PayloadTooLongError(
                detail,
                status_code=status_code,
                provider_code=provider_code,
            )
        return ProviderError(
            detail,
            failure_kind=failure_kind,
            status_code=status_code,
            provider_code=provider_code,
        )
