"""Domain entities for the AI generation queue."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class RequestType(str, Enum):
    GENERATE = "generate"
    POST_GENERATION = "post_generation"
    NEWSLETTER_INTRO = "newsletter_intro"
    CONTENT_SUMMARY = "content_summary"


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED})


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class Job:
    """A queued unit of generation work with bounded retry attempts."""

    id: str
    request_type: str
    input_data: dict[str, Any] = field(default_factory=dict)
    status: JobStatus = JobStatus.PENDING
    result: dict[str, Any] | None = None
    error_message: str | None = None
    attempts: int = 0
    max_attempts: int = 3
    created_at: datetime = field(default_factory=utcnow)
    processed_at: datetime | None = None
    user_id: str | None = None
    idempotency_key: str | None = None

    @property
    def attempts_remaining(self) -> int:
        return max(self.max_attempts - self.attempts, 0)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "request_type": self.request_type,
            "input_data": dict(self.input_data),
            "status": self.status.value,
            "result": dict(self.result) if self.result is not None else None,
            "error_message": self.error_message,
            "attempts": self.attempts,
            "max_attempts": self.max_attempts,
            "created_at": self.created_at.isoformat(),
            "processed_at": self.processed_at.isoformat() if self.processed_at else None,
            "user_id": self.user_id,
            "idempotency_key": self.idempotency_key,
        }
