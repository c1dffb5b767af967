"""Domain layer definitions."""

from .jobs import TERMINAL_STATUSES, Job, JobStatus, RequestType
from .payloads import (
    MISSING_PROMPT_MESSAGE,
    GeneratePayload,
    PayloadValidationError,
    PostGenerationPayload,
    parse_payload,
)

__all__ = [
    "GeneratePayload",
    "Job",
    "JobStatus",
    "MISSING_PROMPT_MESSAGE",
    "PayloadValidationError",
    "PostGenerationPayload",
    "RequestType",
    "TERMINAL_STATUSES",
    "parse_payload",
]
