from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException

from ...batch_processor import CategorizationJob
from ..deps import Services, require_services, require_token
from ..schemas import ChunkRequest, JobCreateRequest

router = APIRouter(tags=["jobs"], dependencies=[Depends(require_token)])


def _job_or_404(services: Services, job_id: str) -> CategorizationJob:
    job = services.registry.get(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail=f"Unknown job '{job_id}'.")
    return job


@router.post("/jobs", status_code=201)
def create_job(
    payload: JobCreateRequest | None = Body(default=None),
    services: Services = Depends(require_services),
) -> dict[str, Any]:
    catalog = services.catalog_factory()
    job = CategorizationJob.from_settings(
        catalog,
        catalog,
        services.client_factory(),
        services.categorizer,
        chunk_size=payload.chunk_size if payload else None,
    )
    job_id = services.registry.add(job)
    result = job.start()
    return {"job_id": job_id, "state": job.snapshot().to_dict(), "chunk": result.to_dict()}


@router.get("/jobs/{job_id}")
def get_job(job_id: str, services: Services = Depends(require_services)) -> dict[str, Any]:
    job = _job_or_404(services, job_id)
    return {"job_id": job_id, "state": job.snapshot().to_dict()}


@router.post("/jobs/{job_id}/chunks")
def request_chunk(
    job_id: str,
    payload: ChunkRequest | None = Body(default=None),
    services: Services = Depends(require_services),
) -> dict[str, Any]:
    job = _job_or_404(services, job_id)
    result = job.request_chunk(payload.chunk if payload else None)
    return {"job_id": job_id, "state": job.snapshot().to_dict(), "chunk": result.to_dict()}


@router.post("/jobs/{job_id}/cancel")
def cancel_job(job_id: str, services: Services = Depends(require_services)) -> dict[str, Any]:
    job = _job_or_404(services, job_id)
    cancelled = job.cancel()
    return {"job_id": job_id, "cancelled": cancelled, "state": job.snapshot().to_dict()}
