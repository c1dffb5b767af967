"""Typed job payloads keyed by request type.

``Job.input_data`` is an open mapping as stored by the queue.  The worker
narrows it into one of the payload models below before dispatching so that a
malformed job ends as a validation failure instead of a runtime type error.
"""
from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .jobs import RequestType

MISSING_PROMPT_MESSAGE = "Missing required prompt in inputData"


class PayloadValidationError(ValueError):
    """Raised when a job payload can never be processed."""


class GeneratePayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    prompt: str
    system: str | None = None

    @field_validator("prompt")
    @classmethod
    def _prompt_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("prompt must not be blank")
        return value

    @field_validator("system")
    @classmethod
    def _blank_system_is_none(cls, value: str | None) -> str | None:
        if value is not None and not value.strip():
            return None
        return value


class PostGenerationPayload(GeneratePayload):
    idempotency_key: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


SIMPLE_REQUEST_TYPES = frozenset(
    {
        RequestType.GENERATE.value,
        RequestType.NEWSLETTER_INTRO.value,
        RequestType.CONTENT_SUMMARY.value,
    }
)

PAYLOAD_MODELS: dict[str, type[GeneratePayload]] = {
    **{request_type: GeneratePayload for request_type in SIMPLE_REQUEST_TYPES},
    RequestType.POST_GENERATION.value: PostGenerationPayload,
}


def parse_payload(request_type: str, input_data: Any) -> GeneratePayload:
    """Validate ``input_data`` for ``request_type``.

    Raises :class:`PayloadValidationError` with a human readable message.
    """

    if not isinstance(input_data, dict):
        raise PayloadValidationError(MISSING_PROMPT_MESSAGE)

    prompt = input_data.get("prompt")
    if not isinstance(prompt, str) or not prompt.strip():
        raise PayloadValidationError(MISSING_PROMPT_MESSAGE)

    model = PAYLOAD_MODELS.get(request_type)
    if model is None:
        raise PayloadValidationError(f"Unsupported request type: {request_type}")

    try:
        return model.model_validate(input_data)
    except ValidationError as exc:
        first = exc.errors()[0]
        location = ".".join(str(part) for part in first.get("loc", ()))
        raise PayloadValidationError(f"Invalid inputData field '{location}': {first.get('msg')}") from exc
