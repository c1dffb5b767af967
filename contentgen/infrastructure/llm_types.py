"""Value types exchanged with the generation provider."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Generic, TypeVar

T = TypeVar("T")


class ErrorCode(str, Enum):
    AUTH_ERROR = "AUTH_ERROR"
    RATE_LIMITED = "RATE_LIMITED"
    MODEL_NOT_FOUND = "MODEL_NOT_FOUND"
    NETWORK_ERROR = "NETWORK_ERROR"
    PROVIDER_ERROR = "PROVIDER_ERROR"
    RESPONSE_TOO_LARGE = "RESPONSE_TOO_LARGE"
    INVALID_RESPONSE = "INVALID_RESPONSE"


@dataclass(frozen=True, slots=True)
class GenerationError:
    code: ErrorCode
    message: str
    status_code: int | None = None
    retry_after: float | None = None

    def describe(self) -> str:
        return f"{self.code.value}: {self.message}"


@dataclass(frozen=True, slots=True)
class LLMResult(Generic[T]):
    """Either ``data`` or ``error`` is set, never both.

    Callers branch on :attr:`ok` instead of catching exceptions so every
    error code stays visible at the call site.
    """

    data: T | None = None
    error: GenerationError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, data: T) -> "LLMResult[T]":
        return cls(data=data)

    @classmethod
    def failure(
        cls,
        code: ErrorCode,
        message: str,
        *,
        status_code: int | None = None,
        retry_after: float | None = None,
    ) -> "LLMResult[T]":
        return cls(error=GenerationError(code, message, status_code=status_code, retry_after=retry_after))


@dataclass(frozen=True, slots=True)
class GenerationResponse:
    model: str
    response: str
    done: bool = True
    created_at: str | None = None
    total_duration: int | None = None
    prompt_eval_count: int | None = None
    eval_count: int | None = None

    @property
    def total_duration_ms(self) -> float | None:
        """Provider durations are nanoseconds."""

        if self.total_duration is None:
            return None
        return self.total_duration / 1_000_000

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "GenerationResponse":
        return cls(
            model=str(payload["model"]),
            response=str(payload["response"]),
            done=bool(payload.get("done", True)),
            created_at=payload.get("created_at"),
            total_duration=payload.get("total_duration"),
            prompt_eval_count=payload.get("prompt_eval_count"),
            eval_count=payload.get("eval_count"),
        )


@dataclass(frozen=True, slots=True)
class ModelInfo:
    name: str
    modified_at: str | None = None
    size: int | None = None


@dataclass(frozen=True, slots=True)
class ModelList:
    models: list[ModelInfo]

    def names(self) -> list[str]:
        return [model.name for model in self.models]


@dataclass(frozen=True, slots=True)
class HealthStatus:
    connected: bool
    model: str
    model_available: bool
    latency_ms: int | None
    error: str | None
    checked_at: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "connected": self.connected,
            "model": self.model,
            "model_available": self.model_available,
            "latency_ms": self.latency_ms,
            "error": self.error,
            "checked_at": self.checked_at,
        }
