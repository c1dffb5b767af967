"""Application service layer for AI content generation."""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any

from contentgen.config import Settings, load_settings
from contentgen.core.prompt_utils import (
    MAX_DOCUMENT_TEXT_LENGTH,
    hash_text,
    sanitize_document_text,
    truncate_document_text,
    wrap_document_for_prompt,
)
from contentgen.core.prompts import GENERATE_SYSTEM_PROMPT, build_generate_user_prompt
from contentgen.domain.jobs import Job, JobStatus, RequestType
from contentgen.domain.payloads import PAYLOAD_MODELS
from contentgen.infrastructure.job_store import InMemoryJobStore, JobPage, JobStore, QueueStats
from contentgen.infrastructure.ollama import OllamaCloudClient
from contentgen.workers.queue import ProcessingOutcome, QueueWorker

logger = logging.getLogger(__name__)

MAX_INSTRUCTIONS_LENGTH = 2000
MAX_PROMPT_LENGTH = 16000
MAX_PAGE_SIZE = 100


class GenerationRequestError(ValueError):
    """Invalid input from an API caller; ``status_code`` is the HTTP status to report."""

    def __init__(self, message: str, status_code: int = 400) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


@dataclass(frozen=True, slots=True)
class Submission:
    job: Job
    deduplicated: bool = False


def _require_text(value: Any, message: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise GenerationRequestError(message)
    return value.strip()


class GenerationService:
    """Coordinates queue submission, inspection and manual processing."""

    def __init__(self, store: JobStore, client: OllamaCloudClient, worker: QueueWorker) -> None:
        self._store = store
        self._client = client
        self._worker = worker

    @property
    def worker(self) -> QueueWorker:
        return self._worker

    @property
    def client(self) -> OllamaCloudClient:
        return self._client

    # ------------------------------------------------------------------
    # submission
    # ------------------------------------------------------------------
    def submit_post_generation(
        self,
        instructions: Any,
        category: Any,
        document_text: Any = None,
        *,
        user_id: str | None = None,
    ) -> Submission:
        instructions = _require_text(instructions, "Upute su obavezne")
        if len(instructions) > MAX_INSTRUCTIONS_LENGTH:
            raise GenerationRequestError(
                f"Upute mogu imati maksimalno {MAX_INSTRUCTIONS_LENGTH} znakova"
            )
        category = _require_text(category, "Kategorija je obavezna")
        if document_text is not None and not isinstance(document_text, str):
            raise GenerationRequestError("document_text must be a string")

        wrapped: str | None = None
        document_hash: str | None = None
        redactions = 0
        has_document = bool(document_text and document_text.strip())
        if has_document:
            if len(document_text) > MAX_DOCUMENT_TEXT_LENGTH:
                logger.warning(
                    "Document text truncated from %d to %d characters",
                    len(document_text),
                    MAX_DOCUMENT_TEXT_LENGTH,
                )
            sanitized = sanitize_document_text(truncate_document_text(document_text))
            redactions = sanitized.redactions
            document_hash = hash_text(sanitized.sanitized)
            wrapped = wrap_document_for_prompt(sanitized.sanitized)

        prompt = build_generate_user_prompt(instructions, category, wrapped)
        if len(prompt) > MAX_PROMPT_LENGTH:
            raise GenerationRequestError(
                "Upute i dokument su predugi za obradu. Skratite sadržaj i pokušajte ponovno."
            )

        idempotency_key = hash_text(
            json.dumps(
                {"instructions": instructions, "category": category, "documentHash": document_hash},
                ensure_ascii=False,
            )
        )
        existing = self._store.find_by_idempotency_key(
            idempotency_key,
            request_type=RequestType.POST_GENERATION.value,
            user_id=user_id,
        )
        if existing is not None:
            logger.info("Post generation request deduplicated to %s", existing.id)
            return Submission(job=existing, deduplicated=True)

        job = self._store.create(
            RequestType.POST_GENERATION.value,
            {
                "prompt": prompt,
                "system": GENERATE_SYSTEM_PROMPT,
                "idempotency_key": idempotency_key,
                "metadata": {
                    "instructions": instructions,
                    "category": category,
                    "has_document": has_document,
                    "document_hash": document_hash,
                    "document_redactions": redactions,
                },
            },
            user_id=user_id,
            idempotency_key=idempotency_key,
        )
        logger.info(
            "Post generation job created category=%s has_document=%s redactions=%d",
            category,
            has_document,
            redactions,
            extra={"job_id": job.id},
        )
        return Submission(job=job)

    def submit_job(
        self,
        request_type: Any,
        prompt: Any,
        system: Any = None,
        context: Any = None,
        *,
        user_id: str | None = None,
    ) -> Job:
        if request_type not in PAYLOAD_MODELS:
            allowed = ", ".join(sorted(PAYLOAD_MODELS))
            raise GenerationRequestError(f"request_type must be one of: {allowed}")
        prompt = _require_text(prompt, "Prompt je obavezan")
        if system is not None and not isinstance(system, str):
            raise GenerationRequestError("system must be a string")
        if context is not None and not isinstance(context, dict):
            raise GenerationRequestError("context must be an object")

        input_data: dict[str, Any] = {"prompt": prompt}
        if system:
            input_data["system"] = system
        if context:
            input_data["context"] = context

        job = self._store.create(request_type, input_data, user_id=user_id)
        logger.info("AI job created type=%s", request_type, extra={"job_id": job.id})
        return job

    # ------------------------------------------------------------------
    # inspection
    # ------------------------------------------------------------------
    def list_jobs(
        self,
        *,
        page: int = 1,
        limit: int = 20,
        status: str | None = None,
        request_type: str | None = None,
    ) -> JobPage:
        if page < 1 or not 1 <= limit <= MAX_PAGE_SIZE:
            raise GenerationRequestError("Nevaljani parametri upita")
        job_status: JobStatus | None = None
        if status is not None:
            try:
                job_status = JobStatus(status)
            except ValueError as exc:
                raise GenerationRequestError(f"Unknown status: {status}") from exc
        if request_type is not None and request_type not in PAYLOAD_MODELS:
            raise GenerationRequestError(f"Unknown request type: {request_type}")
        return self._store.find_all(page=page, limit=limit, status=job_status, request_type=request_type)

    def get_job(self, job_id: str) -> Job:
        job = self._store.find_by_id(job_id)
        if job is None:
            raise GenerationRequestError("AI zadatak nije pronađen", status_code=404)
        return job

    def cancel_job(self, job_id: str) -> Job:
        current = self.get_job(job_id)
        cancelled = self._store.cancel(job_id)
        if cancelled is None:
            raise GenerationRequestError(
                f"Only pending jobs can be cancelled (job is {current.status.value})",
                status_code=409,
            )
        logger.info("AI job cancelled", extra={"job_id": job_id})
        return cancelled

    def stats(self) -> QueueStats:
        return self._store.get_stats()

    # ------------------------------------------------------------------
    # worker and provider
    # ------------------------------------------------------------------
    async def process_next(self) -> ProcessingOutcome:
        return await self._worker.trigger_processing()

    def worker_status(self) -> dict[str, Any]:
        return {
            "running": self._worker.is_running(),
            "enabled": self._worker.enabled,
            "poll_interval_seconds": self._worker.poll_interval,
            "configured": self._client.is_configured(),
        }

    def check_health(self) -> dict[str, Any]:
        return self._client.check_health().to_dict()

    # ------------------------------------------------------------------
    # testing helpers
    # ------------------------------------------------------------------
    def reset(self) -> None:
        self._store.reset()


def build_generation_service(
    settings: Settings,
    *,
    store: JobStore | None = None,
    client: OllamaCloudClient | None = None,
) -> GenerationService:
    store = store or InMemoryJobStore()
    client = client or OllamaCloudClient.from_settings(settings)
    worker = QueueWorker(
        store,
        client,
        enabled=settings.worker_enabled,
        poll_interval=settings.poll_interval,
    )
    return GenerationService(store, client, worker)


_service: GenerationService | None = None


def configure_generation_service(service: GenerationService | None) -> None:
    global _service
    _service = service


def get_generation_service() -> GenerationService:
    """Return the process-wide generation service, building it on first use."""

    global _service
    if _service is None:
        _service = build_generation_service(load_settings())
    return _service


def reset_generation_state() -> None:
    """Reset the in-memory queue (used in tests)."""

    get_generation_service().reset()
