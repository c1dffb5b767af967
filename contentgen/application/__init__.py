"""Application services."""

from .generation import (
    GenerationRequestError,
    GenerationService,
    Submission,
    build_generation_service,
    configure_generation_service,
    get_generation_service,
    reset_generation_state,
)

__all__ = [
    "GenerationRequestError",
    "GenerationService",
    "Submission",
    "build_generation_service",
    "configure_generation_service",
    "get_generation_service",
    "reset_generation_state",
]
