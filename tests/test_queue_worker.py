from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
import sys
import threading

sys.path.append(str(Path(__file__).resolve().parents[1]))

import pytest

from contentgen.domain.jobs import JobStatus
from contentgen.domain.payloads import MISSING_PROMPT_MESSAGE
from contentgen.infrastructure.job_store import InMemoryJobStore
from contentgen.infrastructure.llm_types import ErrorCode, GenerationResponse, LLMResult
from contentgen.workers.queue import NOT_CONFIGURED_ERROR, ProcessingOutcome, QueueWorker

WORKER_LOGGER = "contentgen.workers.queue"

SUCCESS = LLMResult.success(
    GenerationResponse(
        model="deepseek-v3.2",
        response="Gotov tekst",
        total_duration=1_000_000_000,
        prompt_eval_count=10,
        eval_count=20,
    )
)


class SpyStore(InMemoryJobStore):
    """In-memory store that records which queue operations were called."""

    def __init__(self) -> None:
        super().__init__()
        self.calls: list[str] = []

    def find_pending(self):
        self.calls.append("find_pending")
        return super().find_pending()

    def mark_processing(self, job_id):
        self.calls.append("mark_processing")
        return super().mark_processing(job_id)

    def mark_completed(self, job_id, result):
        self.calls.append("mark_completed")
        return super().mark_completed(job_id, result)

    def mark_failed(self, job_id, error_message):
        self.calls.append("mark_failed")
        return super().mark_failed(job_id, error_message)

    def reset_to_pending(self, job_id):
        self.calls.append("reset_to_pending")
        return super().reset_to_pending(job_id)


class UnreachableStore(SpyStore):
    def find_pending(self):
        raise ConnectionError("store unreachable")


class FakeClient:
    def __init__(self, *responses, configured: bool = True) -> None:
        self.configured = configured
        self._responses = list(responses)
        self.calls: list[dict] = []

    def is_configured(self) -> bool:
        return self.configured

    def generate(self, prompt, *, system=None, temperature=0.7, max_tokens=2048):
        self.calls.append({"prompt": prompt, "system": system, "temperature": temperature})
        item = self._responses.pop(0) if self._responses else SUCCESS
        if isinstance(item, Exception):
            raise item
        if isinstance(item, str):
            return LLMResult.success(GenerationResponse(model="deepseek-v3.2", response=item))
        return item


class BlockingClient(FakeClient):
    """Holds every generate call until ``release`` is set."""

    def __init__(self, *responses) -> None:
        super().__init__(*responses)
        self.started = threading.Event()
        self.release = threading.Event()

    def generate(self, prompt, **kwargs):
        self.started.set()
        if not self.release.wait(timeout=5):
            raise TimeoutError("generate was never released")
        return super().generate(prompt, **kwargs)


def _network_failure() -> LLMResult:
    return LLMResult.failure(ErrorCode.NETWORK_ERROR, "Request timed out")


def test_successful_job_records_result_with_duration_in_ms():
    store = SpyStore()
    job = store.create("generate", {"prompt": "Napiši uvod", "system": "Kratko"})
    client = FakeClient(SUCCESS)

    outcome = QueueWorker(store, client).process_next()

    assert outcome == ProcessingOutcome(processed=True, job_id=job.id)
    stored = store.find_by_id(job.id)
    assert stored.status is JobStatus.COMPLETED
    assert stored.result == {
        "response": "Gotov tekst",
        "model": "deepseek-v3.2",
        "prompt_tokens": 10,
        "completion_tokens": 20,
        "total_duration_ms": 1000,
    }
    assert client.calls[0]["system"] == "Kratko"


def test_transient_failure_with_attempts_left_requeues():
    store = SpyStore()
    job = store.create("generate", {"prompt": "Napiši uvod"})
    client = FakeClient(_network_failure())

    outcome = QueueWorker(store, client).process_next()

    assert outcome.processed is True
    assert outcome.error == "NETWORK_ERROR: Request timed out"
    stored = store.find_by_id(job.id)
    assert stored.status is JobStatus.PENDING
    assert stored.attempts == 1
    assert "reset_to_pending" in store.calls
    assert "mark_failed" not in store.calls


def test_exhausted_attempts_fail_exactly_once():
    store = SpyStore()
    job = store.create("generate", {"prompt": "Napiši uvod"}, max_attempts=3)
    client = FakeClient(_network_failure(), _network_failure(), _network_failure())
    worker = QueueWorker(store, client)

    for _ in range(3):
        worker.process_next()

    stored = store.find_by_id(job.id)
    assert stored.status is JobStatus.FAILED
    assert stored.attempts == 3
    assert stored.error_message == "NETWORK_ERROR: Request timed out (after 3 attempts)"
    assert store.calls.count("mark_failed") == 1
    assert store.calls.count("reset_to_pending") == 2
    assert worker.process_next() == ProcessingOutcome(processed=False)


def test_terminal_provider_error_still_uses_attempt_budget():
    store = SpyStore()
    job = store.create("generate", {"prompt": "Napiši uvod"})
    client = FakeClient(LLMResult.failure(ErrorCode.AUTH_ERROR, "Invalid or expired API key", status_code=401))

    QueueWorker(store, client).process_next()

    assert store.find_by_id(job.id).status is JobStatus.PENDING


def test_last_attempt_failure_does_not_requeue():
    store = SpyStore()
    job = store.create("generate", {"prompt": "Napiši uvod"}, max_attempts=1)
    client = FakeClient(LLMResult.failure(ErrorCode.MODEL_NOT_FOUND, "Model x not found", status_code=404))

    QueueWorker(store, client).process_next()

    assert store.find_by_id(job.id).error_message == "MODEL_NOT_FOUND: Model x not found (after 1 attempts)"
    assert "reset_to_pending" not in store.calls


@pytest.mark.parametrize("input_data", [{}, {"prompt": ""}, {"prompt": "   "}, {"prompt": 42}, {"system": "x"}])
def test_missing_prompt_fails_without_calling_provider(input_data):
    store = SpyStore()
    job = store.create("generate", input_data, max_attempts=3)
    client = FakeClient()

    outcome = QueueWorker(store, client).process_next()

    assert outcome == ProcessingOutcome(processed=True, job_id=job.id)
    stored = store.find_by_id(job.id)
    assert stored.status is JobStatus.FAILED
    assert stored.error_message == MISSING_PROMPT_MESSAGE
    assert client.calls == []


def test_unknown_request_type_is_terminal():
    store = SpyStore()
    job = store.create("translate", {"prompt": "Prevedi"})
    client = FakeClient()

    QueueWorker(store, client).process_next()

    stored = store.find_by_id(job.id)
    assert stored.status is JobStatus.FAILED
    assert stored.error_message == "Unsupported request type: translate"
    assert client.calls == []


def test_no_pending_job_does_not_lease():
    store = SpyStore()

    outcome = QueueWorker(store, FakeClient()).process_next()

    assert outcome == ProcessingOutcome(processed=False)
    assert outcome.to_dict() == {"processed": False}
    assert "mark_processing" not in store.calls


def test_unconfigured_provider_leaves_store_untouched():
    store = SpyStore()
    store.create("generate", {"prompt": "Napiši uvod"})

    outcome = QueueWorker(store, FakeClient(configured=False)).process_next()

    assert outcome.to_dict() == {"processed": False, "error": NOT_CONFIGURED_ERROR}
    assert NOT_CONFIGURED_ERROR == "Ollama Cloud is not configured (missing OLLAMA_CLOUD_API_KEY)"
    assert store.calls == []


def test_store_errors_are_returned_not_raised():
    outcome = QueueWorker(UnreachableStore(), FakeClient()).process_next()

    assert outcome == ProcessingOutcome(processed=False, error="store unreachable")


def test_unexpected_exception_after_lease_is_accounted():
    store = SpyStore()
    job = store.create("generate", {"prompt": "Napiši uvod"}, max_attempts=1)
    client = FakeClient(RuntimeError("kaboom"))

    outcome = QueueWorker(store, client).process_next()

    assert outcome == ProcessingOutcome(processed=False, job_id=job.id, error="kaboom")
    stored = store.find_by_id(job.id)
    assert stored.status is JobStatus.FAILED
    assert stored.error_message == "INTERNAL_ERROR: kaboom (after 1 attempts)"


def test_post_generation_runs_the_pipeline():
    article = {
        "title": "Dan općine",
        "content": "<p>Svečana sjednica počinje u 10 sati.</p>",
        "excerpt": "Dan općine obilježava se 20. lipnja.",
    }
    client = FakeClient(
        json.dumps(article, ensure_ascii=False),
        json.dumps({"pass": True, "issues": []}),
        json.dumps(article, ensure_ascii=False),
    )
    store = SpyStore()
    job = store.create("post_generation", {"prompt": "Napiši članak", "metadata": {"category": "Događanja"}})

    outcome = QueueWorker(store, client).process_next()

    assert outcome.processed is True
    result = store.find_by_id(job.id).result
    assert result["title"] == "Dan općine"
    assert result["pipeline_passed"] is True
    assert result["rewrite_count"] == 0
    assert result["review_issues"] == []
    assert result["warnings"] == []
    assert len(client.calls) == 3
    assert client.calls[0]["temperature"] == 0.3


def test_post_generation_with_unusable_output_is_retried():
    store = SpyStore()
    job = store.create("post_generation", {"prompt": "Napiši članak"})
    client = FakeClient("Nažalost ne mogu.")

    outcome = QueueWorker(store, client).process_next()

    assert outcome.error == "INVALID_RESPONSE: Generated article unusable: JSON extraction failed"
    assert store.find_by_id(job.id).status is JobStatus.PENDING


def test_post_generation_pipeline_failure_uses_stage_reason():
    article = json.dumps({"title": "a", "content": "b", "excerpt": "c"})
    store = SpyStore()
    job = store.create("post_generation", {"prompt": "Napiši članak"}, max_attempts=1)
    client = FakeClient(
        article,
        LLMResult.failure(ErrorCode.AUTH_ERROR, "Invalid or expired API key", status_code=401),
    )

    QueueWorker(store, client).process_next()

    assert (
        store.find_by_id(job.id).error_message
        == "AUTH_ERROR: review failed: Invalid or expired API key (after 1 attempts)"
    )


def test_trigger_processing_runs_one_cycle():
    store = SpyStore()
    job = store.create("generate", {"prompt": "Napiši uvod"})
    worker = QueueWorker(store, FakeClient())

    outcome = asyncio.run(worker.trigger_processing())

    assert outcome.to_dict() == {"processed": True, "job_id": job.id}
    assert store.calls.count("mark_processing") == 1


def test_start_twice_warns_and_keeps_single_task(caplog):
    worker = QueueWorker(SpyStore(), FakeClient(configured=False), poll_interval=60)

    async def scenario():
        worker.start()
        first = worker._task
        worker.start()
        assert worker._task is first
        assert worker.is_running()
        await worker.shutdown()

    with caplog.at_level(logging.INFO, logger=WORKER_LOGGER):
        asyncio.run(scenario())

    messages = [record.getMessage() for record in caplog.records]
    assert messages.count("AI queue worker is already running") == 1
    assert messages.count("AI queue worker stopped") == 1
    assert not worker.is_running()


def test_stop_when_not_running_is_silent(caplog):
    worker = QueueWorker(SpyStore(), FakeClient())

    with caplog.at_level(logging.INFO, logger=WORKER_LOGGER):
        worker.stop()
        worker.stop()

    assert caplog.records == []
    assert not worker.is_running()


def test_disabled_worker_never_starts(caplog):
    worker = QueueWorker(SpyStore(), FakeClient(), enabled=False)

    async def scenario():
        worker.start()
        return worker.is_running()

    with caplog.at_level(logging.INFO, logger=WORKER_LOGGER):
        assert asyncio.run(scenario()) is False

    assert "AI queue worker is disabled (AI_WORKER_ENABLED=false)" in caplog.messages


def test_polling_processes_immediately_on_start():
    store = SpyStore()
    job = store.create("generate", {"prompt": "Napiši uvod"})
    worker = QueueWorker(store, FakeClient(), poll_interval=60)

    async def scenario():
        worker.start()
        for _ in range(200):
            if store.find_by_id(job.id).status is JobStatus.COMPLETED:
                break
            await asyncio.sleep(0.01)
        await worker.shutdown()

    asyncio.run(scenario())

    assert store.find_by_id(job.id).status is JobStatus.COMPLETED


def test_stopping_mid_cycle_lets_leased_job_finish():
    store = SpyStore()
    job = store.create("generate", {"prompt": "Napiši uvod"})
    client = BlockingClient(SUCCESS)
    worker = QueueWorker(store, client, poll_interval=60)

    async def scenario():
        worker.start()
        assert await asyncio.to_thread(client.started.wait, 5)
        worker.stop()
        assert not worker.is_running()
        client.release.set()
        await worker.shutdown()

    asyncio.run(scenario())

    stored = store.find_by_id(job.id)
    assert stored.status is JobStatus.COMPLETED
    assert store.calls.count("mark_completed") == 1
    assert "reset_to_pending" not in store.calls
    assert "mark_failed" not in store.calls
