"""Client for the Ollama Cloud text generation API."""
from __future__ import annotations

import json
import logging
import time
from datetime import datetime, timezone
from typing import Any, Callable
from urllib.parse import urlparse

import httpx

from contentgen.config import DEFAULT_BASE_URL, DEFAULT_MODEL, DEFAULT_TIMEOUT_SECONDS, Settings

from .llm_types import (
    ErrorCode,
    GenerationResponse,
    HealthStatus,
    LLMResult,
    ModelInfo,
    ModelList,
)
from .retry import RetryPolicy

logger = logging.getLogger(__name__)

MAX_RESPONSE_BYTES = 100 * 1024
DEFAULT_RETRY_AFTER_SECONDS = 60.0
NOT_CONFIGURED_MESSAGE = "OLLAMA_CLOUD_API_KEY not configured"


class _ResponseTooLarge(Exception):
    pass


class _DeadlineExceeded(Exception):
    pass


class OllamaCloudClient:
    """Hardened client for Ollama Cloud.

    Provider failures are returned as :class:`LLMResult` errors; nothing here
    raises to the caller for HTTP or network problems.
    """

    def __init__(
        self,
        api_key: str | None,
        *,
        base_url: str = DEFAULT_BASE_URL,
        model: str = DEFAULT_MODEL,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        retry_policy: RetryPolicy | None = None,
        max_response_bytes: int = MAX_RESPONSE_BYTES,
        http_client: httpx.Client | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        parsed = urlparse(base_url)
        if not parsed.scheme or not parsed.netloc:
            raise ValueError("base_url must include scheme and host")

        self._api_key = api_key or None
        self._base_url = base_url.rstrip("/")
        self._model = model
        self._retry_policy = retry_policy or RetryPolicy()
        self._max_response_bytes = max_response_bytes
        self._timeout = timeout
        self._clock = clock
        self._client = http_client or httpx.Client(timeout=httpx.Timeout(timeout))
        self._owns_client = http_client is None

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs: Any) -> "OllamaCloudClient":
        return cls(
            settings.ollama_api_key,
            base_url=settings.ollama_base_url,
            model=settings.ollama_model,
            timeout=settings.ollama_timeout,
            **kwargs,
        )

    @property
    def model(self) -> str:
        return self._model

    def is_configured(self) -> bool:
        return self._api_key is not None

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------
    def _headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self._api_key}",
        }

    def _read_limited(self, response: httpx.Response, deadline: float) -> bytes:
        """Read the body, bounded by size and by the whole-call deadline."""

        declared = response.headers.get("Content-Length")
        if declared is not None and declared.isdigit() and int(declared) > self._max_response_bytes:
            raise _ResponseTooLarge(declared)

        body = bytearray()
        for chunk in response.iter_bytes():
            body.extend(chunk)
            if len(body) > self._max_response_bytes:
                raise _ResponseTooLarge(str(len(body)))
            if self._clock() > deadline:
                raise _DeadlineExceeded
        return bytes(body)

    @staticmethod
    def _retry_after(response: httpx.Response) -> float:
        raw = response.headers.get("Retry-After")
        if raw is None:
            return DEFAULT_RETRY_AFTER_SECONDS
        try:
            return max(float(raw), 0.0)
        except ValueError:
            return DEFAULT_RETRY_AFTER_SECONDS

    def _classify_status(self, response: httpx.Response) -> LLMResult[Any] | None:
        status = response.status_code
        if status in (401, 403):
            return LLMResult.failure(ErrorCode.AUTH_ERROR, "Invalid or expired API key", status_code=status)
        if status == 429:
            return LLMResult.failure(
                ErrorCode.RATE_LIMITED,
                "Rate limit exceeded",
                status_code=status,
                retry_after=self._retry_after(response),
            )
        if status == 404:
            return LLMResult.failure(
                ErrorCode.MODEL_NOT_FOUND, f"Model {self._model} not found", status_code=status
            )
        if not response.is_success:
            return LLMResult.failure(
                ErrorCode.PROVIDER_ERROR,
                f"API error: {status} {response.reason_phrase}".rstrip(),
                status_code=status,
            )
        return None

    def _request_json(self, method: str, path: str, payload: dict[str, Any] | None = None) -> LLMResult[Any]:
        """Send one request and return the decoded JSON body or a classified error."""

        url = f"{self._base_url}{path}"
        # httpx timeouts bound each read; the deadline bounds the whole call
        deadline = self._clock() + self._timeout
        try:
            with self._client.stream(method, url, headers=self._headers(), json=payload) as response:
                failure = self._classify_status(response)
                if failure is not None:
                    return failure
                body = self._read_limited(response, deadline)
        except _ResponseTooLarge:
            logger.error("Provider response exceeded %d bytes on %s", self._max_response_bytes, path)
            return LLMResult.failure(
                ErrorCode.RESPONSE_TOO_LARGE,
                f"Response exceeds {self._max_response_bytes} bytes",
            )
        except (httpx.TimeoutException, _DeadlineExceeded):
            logger.warning("Request to %s timed out", path)
            return LLMResult.failure(ErrorCode.NETWORK_ERROR, "Request timed out")
        except httpx.HTTPError as exc:
            logger.warning("Request to %s failed: %s", path, exc)
            return LLMResult.failure(ErrorCode.NETWORK_ERROR, str(exc) or "Network error")

        try:
            return LLMResult.success(json.loads(body))
        except (UnicodeDecodeError, json.JSONDecodeError):
            return LLMResult.failure(ErrorCode.INVALID_RESPONSE, "Provider returned malformed JSON")

    # ------------------------------------------------------------------
    # public API
    # ------------------------------------------------------------------
    def list_models(self) -> LLMResult[ModelList]:
        if not self.is_configured():
            return LLMResult.failure(ErrorCode.AUTH_ERROR, NOT_CONFIGURED_MESSAGE)

        result = self._request_json("GET", "/api/tags")
        if not result.ok:
            return result

        models = result.data.get("models") if isinstance(result.data, dict) else None
        if not isinstance(models, list):
            return LLMResult.failure(ErrorCode.INVALID_RESPONSE, "Model list missing from response")

        return LLMResult.success(
            ModelList(
                models=[
                    ModelInfo(
                        name=str(item["name"]),
                        modified_at=item.get("modified_at"),
                        size=item.get("size"),
                    )
                    for item in models
                    if isinstance(item, dict) and item.get("name")
                ]
            )
        )

    def generate(
        self,
        prompt: str,
        *,
        system: str | None = None,
        temperature: float = 0.7,
        max_tokens: int = 2048,
    ) -> LLMResult[GenerationResponse]:
        if not self.is_configured():
            return LLMResult.failure(ErrorCode.AUTH_ERROR, NOT_CONFIGURED_MESSAGE)

        request: dict[str, Any] = {
            "model": self._model,
            "prompt": prompt,
            "stream": False,
            "options": {"temperature": temperature, "max_tokens": max_tokens},
        }
        if system:
            request["system"] = system

        def operation() -> LLMResult[GenerationResponse]:
            result = self._request_json("POST", "/api/generate", request)
            if not result.ok:
                return result
            try:
                data = GenerationResponse.from_payload(result.data)
            except (KeyError, TypeError, AttributeError):
                return LLMResult.failure(ErrorCode.INVALID_RESPONSE, "Generation response missing required fields")

            logger.info(
                "Generation completed model=%s prompt_tokens=%s completion_tokens=%s duration_ms=%s",
                data.model,
                data.prompt_eval_count,
                data.eval_count,
                data.total_duration_ms,
            )
            return LLMResult.success(data)

        return self._retry_policy.run(operation, "generate")

    def check_health(self) -> HealthStatus:
        checked_at = datetime.now(timezone.utc).isoformat()

        if not self.is_configured():
            return HealthStatus(
                connected=False,
                model=self._model,
                model_available=False,
                latency_ms=None,
                error=NOT_CONFIGURED_MESSAGE,
                checked_at=checked_at,
            )

        started = time.monotonic()
        try:
            result = self.list_models()
        except Exception as exc:  # health checks report, they never raise
            logger.exception("Health check failed unexpectedly")
            return HealthStatus(
                connected=False,
                model=self._model,
                model_available=False,
                latency_ms=int((time.monotonic() - started) * 1000),
                error=str(exc) or "Unknown error",
                checked_at=checked_at,
            )
        latency_ms = int((time.monotonic() - started) * 1000)

        if not result.ok:
            return HealthStatus(
                connected=False,
                model=self._model,
                model_available=False,
                latency_ms=latency_ms,
                error=result.error.message,
                checked_at=checked_at,
            )

        prefix = self._model.split(":")[0]
        available = any(
            name == self._model or (prefix and name.startswith(prefix)) for name in result.data.names()
        )
        return HealthStatus(
            connected=True,
            model=self._model,
            model_available=available,
            latency_ms=latency_ms,
            error=None,
            checked_at=checked_at,
        )

    def close(self) -> None:
        if self._owns_client:
            self._client.close()
