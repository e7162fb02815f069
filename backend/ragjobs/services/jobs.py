import time
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from ragjobs.core.config import SchedulerConfig
from ragjobs.db.jobs_repo import JobsRepo
from ragjobs.schemas.jobs import (
    IndexingJob,
    JobEvent,
    JobMetadata,
    JobProgressView,
    JobStats,
    JobStatus,
    JobStatusView,
    JobSubmitResponse,
    JobSummary,
    StatusBucket,
    SubmitOptions,
)
from ragjobs.services.executor import normalize_units
from ragjobs.services.progress import (
    completion_percentage,
    estimate_processing_seconds,
    estimate_remaining_seconds,
    format_duration,
    format_remaining,
)
from ragjobs.services.registry import ActiveJobRegistry
from ragjobs.services.scheduler import IndexingScheduler
from ragjobs.utils.time import utc_now_dt
from ragjobs.websocket.manager import WebSocketManager, manager

CANCELLED_ERROR = "cancelled"


class InvalidJobError(ValueError):
    pass


class JobService:
    """Entry point used by the HTTP layer to submit and inspect indexing jobs."""

    def __init__(
        self,
        repo: JobsRepo,
        registry: ActiveJobRegistry,
        config: SchedulerConfig,
        scheduler: Optional[IndexingScheduler] = None,
        notifier: WebSocketManager = manager,
        clock: Callable[[], datetime] = utc_now_dt,
    ) -> None:
        self.repo = repo
        self.registry = registry
        self.config = config
        self.scheduler = scheduler
        self.notifier = notifier
        self.clock = clock
        self.started_at = time.time()

    async def submit(
        self,
        payload: Any,
        tenant_id: str,
        project_id: str,
        credential_ref: str,
        options: Optional[SubmitOptions] = None,
    ) -> JobSubmitResponse:
        options = options or SubmitOptions()
        if payload is None or (isinstance(payload, (list, dict, str)) and not payload):
            raise InvalidJobError("payload must not be empty")
        if not credential_ref:
            raise InvalidJobError("credential_ref is required")
        try:
            units = normalize_units(options.kind, payload)
        except ValueError as exc:
            raise InvalidJobError(str(exc)) from exc

        job = await self.repo.create_job(
            tenant_id,
            project_id,
            credential_ref,
            options.kind,
            payload,
            total_units=len(units),
            metadata=JobMetadata(
                user_agent=options.user_agent,
                ip_address=options.ip_address,
                batch_size=len(units),
            ),
        )
        await self.repo.record_event(
            job.job_id, "info", "job queued", {"total_units": len(units)}
        )
        await self.notifier.job_status(job.job_id, JobStatus.PENDING)
        await self.notifier.emit_log(
            "info", f"indexing job queued {job.job_id} ({options.kind.value}, {len(units)} units)"
        )

        estimated_seconds = estimate_processing_seconds(
            len(units), self.config.seconds_per_unit
        )
        return JobSubmitResponse(
            job_id=job.job_id,
            status=JobStatus.PENDING,
            estimated_time=format_duration(estimated_seconds),
            estimated_seconds=estimated_seconds,
            message=(
                "Job queued for background processing. You can check the status "
                f"using the job ID: {job.job_id}"
            ),
        )

    async def get_status(self, job_id: str) -> Optional[JobStatusView]:
        job = await self.repo.fetch_job(job_id)
        if job is None:
            return None
        view = JobStatusView(
            job_id=job.job_id,
            tenant_id=job.tenant_id,
            project_id=job.project_id,
            kind=job.kind,
            status=job.status,
            progress=JobProgressView(
                **job.progress.model_dump(),
                completion_percentage=completion_percentage(job.progress),
            ),
            results=job.results,
            created_at=job.created_at,
            started_at=job.started_at,
            completed_at=job.completed_at,
            processing_time_ms=job.processing_time_ms,
            is_active=self.registry.contains(job.job_id),
            error=job.error,
        )
        if job.status == JobStatus.PROCESSING and job.started_at:
            remaining = estimate_remaining_seconds(
                job.progress, job.started_at, job.updated_at, self.clock()
            )
            if remaining is not None:
                view.estimated_remaining_seconds = remaining
                view.estimated_completion_time = format_remaining(remaining)
        return view

    async def list_jobs(
        self, tenant_id: str, project_id: Optional[str] = None, limit: int = 50
    ) -> List[JobSummary]:
        jobs = await self.repo.fetch_jobs_for_project(tenant_id, project_id, limit)
        return [_to_summary(job) for job in jobs]

    async def cancel(self, job_id: str) -> bool:
        cancelled = await self.repo.cancel_pending(job_id, CANCELLED_ERROR)
        if not cancelled:
            return False
        await self.repo.record_event(job_id, "info", "job cancelled")
        await self.notifier.job_status(job_id, JobStatus.FAILED)
        await self.notifier.emit_log("info", f"indexing job cancelled {job_id}")
        return True

    async def stats(self, tenant_id: str, project_id: Optional[str] = None) -> JobStats:
        rows = await self.repo.job_stats(tenant_id, project_id)
        stats = JobStats(tenant_id=tenant_id, project_id=project_id)
        for row in rows:
            bucket = StatusBucket(
                count=row["count"],
                total_processing_time_ms=row["total_processing_time_ms"],
                total_indexed_chunks=row["total_indexed_chunks"],
            )
            stats.by_status[JobStatus(row["status"])] = bucket
            stats.total_jobs += bucket.count
            stats.total_processing_time_ms += bucket.total_processing_time_ms
            stats.total_indexed_chunks += bucket.total_indexed_chunks
        return stats

    async def get_events(self, job_id: str) -> Optional[List[JobEvent]]:
        if await self.repo.fetch_job(job_id) is None:
            return None
        return await self.repo.fetch_events(job_id)

    def status_snapshot(self) -> Dict[str, Any]:
        scheduler = (
            self.scheduler.snapshot()
            if self.scheduler
            else {"running": False, "active_jobs": self.registry.snapshot()}
        )
        return {
            "uptime_sec": int(time.time() - self.started_at),
            "scheduler": scheduler,
        }


def _to_summary(job: IndexingJob) -> JobSummary:
    return JobSummary(
        job_id=job.job_id,
        kind=job.kind,
        status=job.status,
        progress=job.progress,
        created_at=job.created_at,
        started_at=job.started_at,
        completed_at=job.completed_at,
        processing_time_ms=job.processing_time_ms,
        error=job.error,
    )
