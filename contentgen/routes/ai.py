from __future__ import annotations

import asyncio
from typing import Any, NoReturn

from fastapi import APIRouter, HTTPException, Query, Response

from contentgen.application import GenerationRequestError, get_generation_service
from contentgen.domain.jobs import Job
from contentgen.infrastructure.job_store import JobPage

router = APIRouter(prefix="/ai", tags=["ai"])


def _raise_http(exc: GenerationRequestError) -> NoReturn:
    raise HTTPException(status_code=exc.status_code, detail=exc.message) from exc


def _page_payload(page: JobPage) -> dict[str, Any]:
    return {
        "jobs": [job.to_dict() for job in page.jobs],
        "pagination": {
            "page": page.page,
            "limit": page.limit,
            "total": page.total,
            "total_pages": page.total_pages,
        },
    }


@router.post("/generate-post", status_code=201)
async def generate_post(payload: dict, response: Response) -> dict:
    service = get_generation_service()
    try:
        submission = service.submit_post_generation(
            payload.get("instructions"),
            payload.get("category"),
            payload.get("document_text"),
        )
    except GenerationRequestError as exc:
        _raise_http(exc)
    if submission.deduplicated:
        response.status_code = 200
        return {
            "job_id": submission.job.id,
            "deduplicated": True,
            "status": submission.job.status.value,
        }
    return {"job_id": submission.job.id}


@router.post("/queue", status_code=201)
async def create_job(payload: dict) -> dict:
    service = get_generation_service()
    try:
        job: Job = service.submit_job(
            payload.get("request_type"),
            payload.get("prompt"),
            payload.get("system"),
            payload.get("context"),
        )
    except GenerationRequestError as exc:
        _raise_http(exc)
    return job.to_dict()


@router.get("/queue")
async def list_jobs(
    status: str | None = Query(default=None),
    request_type: str | None = Query(default=None),
    page: int = Query(default=1),
    limit: int = Query(default=20),
) -> dict:
    service = get_generation_service()
    try:
        result = service.list_jobs(page=page, limit=limit, status=status, request_type=request_type)
    except GenerationRequestError as exc:
        _raise_http(exc)
    return _page_payload(result)


@router.get("/queue/stats")
async def queue_stats() -> dict:
    stats = get_generation_service().stats()
    return {
        "pending": stats.pending,
        "processing": stats.processing,
        "completed": stats.completed,
        "failed": stats.failed,
        "total": stats.total,
    }


@router.post("/queue/process")
async def process_next_job() -> dict:
    outcome = await get_generation_service().process_next()
    return outcome.to_dict()


@router.get("/queue/{job_id}")
async def get_job(job_id: str) -> dict:
    service = get_generation_service()
    try:
        job = service.get_job(job_id)
    except GenerationRequestError as exc:
        _raise_http(exc)
    return job.to_dict()


@router.delete("/queue/{job_id}")
async def cancel_job(job_id: str) -> dict:
    service = get_generation_service()
    try:
        job = service.cancel_job(job_id)
    except GenerationRequestError as exc:
        _raise_http(exc)
    return job.to_dict()


@router.get("/worker")
async def worker_status() -> dict:
    return get_generation_service().worker_status()


@router.get("/health")
async def provider_health() -> dict:
    service = get_generation_service()
    return await asyncio.to_thread(service.check_health)
