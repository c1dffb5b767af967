"""Retry strategy for calls to the generation provider."""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, TypeVar

from .llm_types import ErrorCode, LLMResult

logger = logging.getLogger(__name__)

T = TypeVar("T")

TRANSIENT_ERRORS = frozenset({ErrorCode.NETWORK_ERROR, ErrorCode.RATE_LIMITED})


def is_transient(code: ErrorCode) -> bool:
    return code in TRANSIENT_ERRORS


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential backoff.

    ``max_attempts`` counts the first call.  The delay before attempt ``n + 1``
    is ``base_delay * multiplier ** (n - 1)`` capped at ``max_delay``; a rate
    limit response waits at least its ``retry_after`` (same cap).
    """

    max_attempts: int = 3
    base_delay: float = 30.0
    multiplier: float = 2.0
    max_delay: float = 300.0
    retryable: Callable[[ErrorCode], bool] = is_transient
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("delays must not be negative")

    def delay_for(self, attempt: int, retry_after: float | None = None) -> float:
        delay = self.base_delay * self.multiplier ** (attempt - 1)
        if retry_after is not None:
            delay = max(delay, float(retry_after))
        return min(delay, self.max_delay)

    def run(self, operation: Callable[[], LLMResult[T]], context: str) -> LLMResult[T]:
        result = operation()
        attempt = 1
        while not result.ok:
            error = result.error
            if not self.retryable(error.code):
                logger.error("Non-retryable %s during %s: %s", error.code.value, context, error.message)
                return result
            if attempt >= self.max_attempts:
                logger.error("All %d attempts exhausted during %s", self.max_attempts, context)
                return result

            delay = self.delay_for(attempt, error.retry_after)
            logger.warning(
                "Retrying %s after %.1fs (attempt %d/%d, %s)",
                context,
                delay,
                attempt,
                self.max_attempts,
                error.code.value,
            )
            self.sleep(delay)
            attempt += 1
            result = operation()
        return result


NO_RETRY = RetryPolicy(max_attempts=1)
