import time
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from ..deps import get_job_service
from ..exceptions import JobStateError
from ..job_service import JobService
from ..schemas import JobCreate, JobsPage, JobStatus, JobType, envelope

router = APIRouter(prefix="/api/v1/jobs", tags=["jobs"])


@router.get("", response_model=JobsPage)
def list_jobs(
    status: Optional[JobStatus] = None,
    type: Optional[JobType] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=200),
    service: JobService = Depends(get_job_service),
):
    return service.list_jobs(status, type, page, limit)


@router.get("/{job_id}")
def get_job(job_id: str, service: JobService = Depends(get_job_service)):
    started = time.perf_counter()
    job = service.get_job(job_id)
    if not job:
        raise HTTPException(status_code=404, detail="Job not found")
    return envelope(job, started)


@router.post("")
def create_job(payload: JobCreate, service: JobService = Depends(get_job_service)):
    started = time.perf_counter()
    return envelope(service.create_job(payload), started)


@router.post("/{job_id}/cancel")
def cancel_job(job_id: str, service: JobService = Depends(get_job_service)):
    started = time.perf_counter()
    try:
        job = service.cancel_job(job_id)
    except JobStateError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    if not job:
        raise HTTPException(status_code=404, detail="Job not found")
    return envelope(job, started)


@router.post("/{job_id}/retry")
def retry_job(job_id: str, service: JobService = Depends(get_job_service)):
    started = time.perf_counter()
    try:
        job = service.retry_job(job_id)
    except JobStateError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    if not job:
        raise HTTPException(status_code=404, detail="Job not found")
    return envelope(job, started)
