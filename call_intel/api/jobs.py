"""
API Router — Job Endpoints.

Manual job creation, creation from an extraction, and the job lifecycle.
Creation failures are returned as a result body with status 422 so that
callers get every validation error at once.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Response
from pydantic import BaseModel

from call_intel.api.deps import Services, get_current_user, get_services
from call_intel.schemas.job import Job, JobCreate, JobCreationResult, JobStats, JobStatus, JobUpdate

router = APIRouter(prefix="/jobs", tags=["Jobs"])


class StatusChangeRequest(BaseModel):
    status: JobStatus


def _creation_response(result: JobCreationResult, response: Response) -> JobCreationResult:
    response.status_code = 201 if result.success else 422
    return result


@router.post("/", response_model=JobCreationResult)
async def create_job(
    body: JobCreate,
    response: Response,
    user_id: str = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> JobCreationResult:
    result = await services.jobs.create_job(user_id, body)
    return _creation_response(result, response)


@router.post("/from-extraction/{extraction_id}", response_model=JobCreationResult)
async def create_job_from_extraction(
    extraction_id: str,
    response: Response,
    user_id: str = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> JobCreationResult:
    """Turn an appointment extraction into a job (at most one per extraction)."""
    result = await services.jobs.create_from_extraction(extraction_id, user_id)
    return _creation_response(result, response)


@router.get("/stats", response_model=JobStats)
async def get_job_stats(
    user_id: str = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> JobStats:
    return await services.jobs.get_job_stats(user_id)


@router.get("/{job_id}", response_model=Job)
async def get_job(
    job_id: str,
    user_id: str = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> Job:
    return await services.jobs.get_job(user_id, job_id)


@router.patch("/{job_id}", response_model=Job)
async def update_job(
    job_id: str,
    body: JobUpdate,
    user_id: str = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> Job:
    return await services.jobs.update_job(user_id, job_id, body)


@router.put("/{job_id}/status", response_model=Job)
async def update_job_status(
    job_id: str,
    body: StatusChangeRequest,
    user_id: str = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> Job:
    """Move a job through its lifecycle. Illegal transitions are rejected."""
    return await services.jobs.update_job_status(user_id, job_id, body.status)


@router.delete("/{job_id}", status_code=204)
async def delete_job(
    job_id: str,
    user_id: str = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> Response:
    await services.jobs.delete_job(user_id, job_id)
    return Response(status_code=204)
