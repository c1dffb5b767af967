"""Background worker that leases queued AI jobs and processes them."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Protocol

from contentgen.config import DEFAULT_POLL_INTERVAL_SECONDS
from contentgen.core.prompts import GENERATE_SYSTEM_PROMPT, STAGE_TEMPERATURE, parse_article_response
from contentgen.domain.jobs import Job, RequestType
from contentgen.domain.payloads import GeneratePayload, PayloadValidationError, parse_payload
from contentgen.infrastructure.job_store import JobStore
from contentgen.infrastructure.llm_types import ErrorCode, GenerationResponse, LLMResult

from .pipeline import ArticlePipeline, PipelineFailure, TextGenerator

logger = logging.getLogger(__name__)

NOT_CONFIGURED_ERROR = "Ollama Cloud is not configured (missing OLLAMA_CLOUD_API_KEY)"
INTERNAL_ERROR = "INTERNAL_ERROR"


class GenerationClient(TextGenerator, Protocol):
    def is_configured(self) -> bool: ...


@dataclass(frozen=True, slots=True)
class ProcessingOutcome:
    processed: bool
    job_id: str | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"processed": self.processed}
        if self.job_id is not None:
            data["job_id"] = self.job_id
        if self.error is not None:
            data["error"] = self.error
        return data


class QueueWorker:
    """Owns the polling lifecycle and per-job retry bookkeeping.

    Each cycle runs in a worker thread so the event loop stays responsive.
    The worker keeps no "cycle in progress" flag; overlapping manual
    triggers are arbitrated by the store, which refuses to lease a job twice.
    """

    def __init__(
        self,
        store: JobStore,
        client: GenerationClient,
        *,
        pipeline_factory: Callable[[TextGenerator], ArticlePipeline] = ArticlePipeline,
        enabled: bool = True,
        poll_interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
    ) -> None:
        if poll_interval <= 0:
            raise ValueError("poll_interval must be positive")
        self._store = store
        self._client = client
        self._pipeline_factory = pipeline_factory
        self._enabled = enabled
        self._poll_interval = poll_interval
        self._task: asyncio.Task[None] | None = None
        self._cycles: set[asyncio.Future[ProcessingOutcome]] = set()

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def poll_interval(self) -> float:
        return self._poll_interval

    # ------------------------------------------------------------------
    # lifecycle
    # ------------------------------------------------------------------
    def start(self) -> None:
        """Begin polling on the running event loop."""

        if not self._enabled:
            logger.info("AI queue worker is disabled (AI_WORKER_ENABLED=false)")
            return
        if self._task is not None:
            logger.warning("AI queue worker is already running")
            return

        loop = asyncio.get_running_loop()
        logger.info("Starting AI queue worker (poll interval %ss)", self._poll_interval)
        self._task = loop.create_task(self._poll_loop(), name="ai-queue-worker")

    def stop(self) -> None:
        """Stop scheduling cycles; an in-flight cycle runs to completion."""

        if self._task is None:
            return
        task, self._task = self._task, None
        task.cancel()
        logger.info("AI queue worker stopped")

    async def shutdown(self) -> None:
        task = self._task
        self.stop()
        pending: list[asyncio.Future[Any]] = list(self._cycles)
        if task is not None:
            pending.append(task)
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    def is_running(self) -> bool:
        return self._task is not None

    async def _poll_loop(self) -> None:
        while True:
            await self.trigger_processing()
            await asyncio.sleep(self._poll_interval)

    async def trigger_processing(self) -> ProcessingOutcome:
        """Run exactly one lease-and-process cycle off the event loop."""

        cycle = asyncio.ensure_future(asyncio.to_thread(self.process_next))
        self._cycles.add(cycle)
        cycle.add_done_callback(self._cycles.discard)
        # cancelling the poller must not abandon a leased job half way
        return await asyncio.shield(cycle)

    # ------------------------------------------------------------------
    # cycle
    # ------------------------------------------------------------------
    def process_next(self) -> ProcessingOutcome:
        if not self._client.is_configured():
            return ProcessingOutcome(processed=False, error=NOT_CONFIGURED_ERROR)

        job_id: str | None = None
        try:
            job = self._store.find_pending()
            if job is None:
                return ProcessingOutcome(processed=False)
            job_id = job.id
            return self._process_job(job)
        except Exception as exc:
            message = str(exc) or exc.__class__.__name__
            logger.exception("Error during AI queue cycle: %s", message, extra={"job_id": job_id or "-"})
            return ProcessingOutcome(processed=False, job_id=job_id, error=message)

    def _process_job(self, job: Job) -> ProcessingOutcome:
        log_extra = {"job_id": job.id}
        logger.info(
            "Processing AI queue job type=%s attempt=%d",
            job.request_type,
            job.attempts + 1,
            extra=log_extra,
        )
        job = self._store.mark_processing(job.id)

        try:
            payload = parse_payload(job.request_type, job.input_data)
        except PayloadValidationError as exc:
            logger.error("Job payload rejected: %s", exc, extra=log_extra)
            self._store.mark_failed(job.id, str(exc))
            return ProcessingOutcome(processed=True, job_id=job.id)

        try:
            if job.request_type == RequestType.POST_GENERATION.value:
                outcome = self._run_post_generation(payload)
            else:
                outcome = self._run_simple(payload)

            if outcome.ok:
                self._store.mark_completed(job.id, outcome.data)
        except Exception as exc:
            self._record_failure(job, INTERNAL_ERROR, str(exc) or exc.__class__.__name__)
            raise

        if outcome.ok:
            logger.info("AI queue job completed", extra=log_extra)
            return ProcessingOutcome(processed=True, job_id=job.id)

        error = outcome.error
        self._record_failure(job, error.code.value, error.message)
        return ProcessingOutcome(processed=True, job_id=job.id, error=error.describe())

    def _record_failure(self, job: Job, code: str, message: str) -> None:
        log_extra = {"job_id": job.id}
        logger.warning(
            "AI queue job failed code=%s attempt=%d/%d: %s",
            code,
            job.attempts,
            job.max_attempts,
            message,
            extra=log_extra,
        )
        if job.attempts >= job.max_attempts:
            logger.error("AI queue job permanently failed after %d attempts", job.attempts, extra=log_extra)
            self._store.mark_failed(job.id, f"{code}: {message} (after {job.attempts} attempts)")
            return
        logger.info(
            "Resetting job to pending for retry (%d attempts remaining)",
            job.attempts_remaining,
            extra=log_extra,
        )
        self._store.reset_to_pending(job.id)

    # ------------------------------------------------------------------
    # dispatch
    # ------------------------------------------------------------------
    @staticmethod
    def _base_result(response: GenerationResponse) -> dict[str, Any]:
        return {
            "response": response.response,
            "model": response.model,
            "prompt_tokens": response.prompt_eval_count,
            "completion_tokens": response.eval_count,
            "total_duration_ms": response.total_duration_ms,
        }

    def _run_simple(self, payload: GeneratePayload) -> LLMResult[dict[str, Any]]:
        result = self._client.generate(payload.prompt, system=payload.system)
        if not result.ok:
            return LLMResult(error=result.error)
        return LLMResult.success(self._base_result(result.data))

    def _run_post_generation(self, payload: GeneratePayload) -> LLMResult[dict[str, Any]]:
        generated = self._client.generate(
            payload.prompt,
            system=payload.system or GENERATE_SYSTEM_PROMPT,
            temperature=STAGE_TEMPERATURE["generate"],
        )
        if not generated.ok:
            return LLMResult(error=generated.error)

        article, reason = parse_article_response(generated.data.response)
        if article is None:
            return LLMResult.failure(ErrorCode.INVALID_RESPONSE, f"Generated article unusable: {reason}")

        outcome = self._pipeline_factory(self._client).run(article)
        if isinstance(outcome, PipelineFailure):
            return LLMResult.failure(outcome.code, outcome.reason)

        result = self._base_result(generated.data)
        result.update(
            {
                "title": outcome.article.title,
                "content": outcome.article.content,
                "excerpt": outcome.article.excerpt,
                "pipeline_passed": outcome.passed,
                "rewrite_count": outcome.rewrite_count,
                "review_issues": outcome.issues_as_dicts(),
                "warnings": list(outcome.warnings),
            }
        )
        return LLMResult.success(result)
