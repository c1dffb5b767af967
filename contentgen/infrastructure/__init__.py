"""Infrastructure layer exports."""

from .job_store import InMemoryJobStore, JobNotFoundError, JobPage, JobStateError, JobStore, QueueStats
from .llm_types import ErrorCode, GenerationError, GenerationResponse, HealthStatus, LLMResult
from .ollama import OllamaCloudClient
from .retry import NO_RETRY, RetryPolicy

__all__ = [
    "ErrorCode",
    "GenerationError",
    "GenerationResponse",
    "HealthStatus",
    "InMemoryJobStore",
    "JobNotFoundError",
    "JobPage",
    "JobStateError",
    "JobStore",
    "LLMResult",
    "NO_RETRY",
    "OllamaCloudClient",
    "QueueStats",
    "RetryPolicy",
]
