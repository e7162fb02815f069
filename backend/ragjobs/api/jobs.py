from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from ragjobs.api.deps import get_job_service, verify_token
from ragjobs.schemas.jobs import (
    CancelResponse,
    JobEvent,
    JobStats,
    JobStatusView,
    JobSubmitRequest,
    JobSubmitResponse,
    SubmitOptions,
)
from ragjobs.services.jobs import InvalidJobError, JobService

router = APIRouter()


@router.post(
    "/tenants/{tenant_id}/projects/{project_id}/jobs",
    response_model=JobSubmitResponse,
)
async def submit_job(
    tenant_id: str,
    project_id: str,
    body: JobSubmitRequest,
    request: Request,
    service: JobService = Depends(get_job_service),
    _: None = Depends(verify_token),
) -> JobSubmitResponse:
    options = SubmitOptions(
        kind=body.kind,
        user_agent=request.headers.get("user-agent"),
        ip_address=request.client.host if request.client else None,
    )
    try:
        return await service.submit(
            body.documents, tenant_id, project_id, body.credential_ref, options
        )
    except InvalidJobError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@router.get("/tenants/{tenant_id}/jobs")
async def list_jobs(
    tenant_id: str,
    project_id: Optional[str] = None,
    limit: int = Query(50, ge=1, le=500),
    service: JobService = Depends(get_job_service),
    _: None = Depends(verify_token),
) -> Dict[str, Any]:
    jobs = await service.list_jobs(tenant_id, project_id, limit)
    return {"jobs": jobs, "total": len(jobs)}


@router.get("/tenants/{tenant_id}/jobs/stats", response_model=JobStats)
async def job_stats(
    tenant_id: str,
    project_id: Optional[str] = None,
    service: JobService = Depends(get_job_service),
    _: None = Depends(verify_token),
) -> JobStats:
    return await service.stats(tenant_id, project_id)


@router.get("/jobs/{job_id}", response_model=JobStatusView)
async def get_job(
    job_id: str,
    service: JobService = Depends(get_job_service),
    _: None = Depends(verify_token),
) -> JobStatusView:
    view = await service.get_status(job_id)
    if view is None:
        raise HTTPException(status_code=404, detail="job not found")
    return view


@router.get("/jobs/{job_id}/events", response_model=List[JobEvent])
async def get_job_events(
    job_id: str,
    service: JobService = Depends(get_job_service),
    _: None = Depends(verify_token),
) -> List[JobEvent]:
    events = await service.get_events(job_id)
    if events is None:
        raise HTTPException(status_code=404, detail="job not found")
    return events


@router.delete("/jobs/{job_id}", response_model=CancelResponse)
async def cancel_job(
    job_id: str,
    service: JobService = Depends(get_job_service),
    _: None = Depends(verify_token),
) -> CancelResponse:
    cancelled = await service.cancel(job_id)
    return CancelResponse(job_id=job_id, cancelled=cancelled)
