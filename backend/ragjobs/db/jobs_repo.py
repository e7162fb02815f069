import json
import uuid
from typing import Any, Dict, List, Optional

from ragjobs.db.connection import Database
from ragjobs.schemas.jobs import (
    IndexingJob,
    JobEvent,
    JobKind,
    JobMetadata,
    JobProgress,
    JobResults,
    JobStatus,
)
from ragjobs.utils.time import utc_now


def _row_to_job(row: Any) -> IndexingJob:
    return IndexingJob(
        job_id=row["job_id"],
        tenant_id=row["tenant_id"],
        project_id=row["project_id"],
        credential_ref=row["credential_ref"],
        kind=row["kind"],
        status=row["status"],
        payload=json.loads(row["payload_json"]),
        progress=JobProgress.model_validate_json(row["progress_json"]),
        results=JobResults.model_validate_json(row["results_json"]),
        metadata=(
            JobMetadata.model_validate_json(row["metadata_json"])
            if row["metadata_json"]
            else JobMetadata()
        ),
        error=row["error"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        started_at=row["started_at"],
        completed_at=row["completed_at"],
        processing_time_ms=row["processing_time_ms"],
    )


def _row_to_event(row: Any) -> JobEvent:
    return JobEvent(
        event_id=row["event_id"],
        job_id=row["job_id"],
        created_at=row["created_at"],
        level=row["level"],
        message=row["message"],
        meta=json.loads(row["meta_json"]) if row["meta_json"] else None,
    )


class JobsRepo:
    """Persistence for indexing jobs and their event trail.

    Every state change is a conditional update on the current status, so a
    job can only move forward through pending -> processing -> terminal and
    a terminal row is never rewritten.
    """

    def __init__(self, db: Database) -> None:
        self.db = db

    async def create_job(
        self,
        tenant_id: str,
        project_id: str,
        credential_ref: str,
        kind: JobKind,
        payload: Any,
        total_units: int,
        metadata: Optional[JobMetadata] = None,
        now: Optional[str] = None,
    ) -> IndexingJob:
        job_id = f"job_{uuid.uuid4().hex}"
        now = now or utc_now()
        progress = JobProgress(total_units=total_units)
        metadata = metadata or JobMetadata()
        await self.db.execute(
            """
            insert into indexing_jobs (
              job_id, tenant_id, project_id, credential_ref, kind, status,
              payload_json, progress_json, results_json, metadata_json,
              error, created_at, updated_at, started_at, completed_at,
              processing_time_ms
            )
            values (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                job_id,
                tenant_id,
                project_id,
                credential_ref,
                kind.value,
                JobStatus.PENDING.value,
                json.dumps(payload),
                progress.model_dump_json(),
                JobResults().model_dump_json(),
                metadata.model_dump_json(),
                None,
                now,
                now,
                None,
                None,
                None,
            ),
        )
        job = await self.fetch_job(job_id)
        if job is None:
            raise RuntimeError(f"job {job_id} missing after insert")
        return job

    async def fetch_job(self, job_id: str) -> Optional[IndexingJob]:
        row = await self.db.fetchone(
            "select * from indexing_jobs where job_id = ?", (job_id,)
        )
        if row is None:
            return None
        return _row_to_job(row)

    async def fetch_pending(self, limit: int) -> List[IndexingJob]:
        if limit <= 0:
            return []
        rows = await self.db.fetchall(
            """
            select * from indexing_jobs
            where status = ?
            order by created_at asc, rowid asc
            limit ?
            """,
            (JobStatus.PENDING.value, limit),
        )
        return [_row_to_job(row) for row in rows]

    async def fetch_jobs_for_project(
        self, tenant_id: str, project_id: Optional[str] = None, limit: int = 50
    ) -> List[IndexingJob]:
        query = "select * from indexing_jobs where tenant_id = ?"
        params: List[Any] = [tenant_id]
        if project_id:
            query += " and project_id = ?"
            params.append(project_id)
        query += " order by created_at desc, rowid desc limit ?"
        params.append(limit)
        rows = await self.db.fetchall(query, tuple(params))
        return [_row_to_job(row) for row in rows]

    async def fetch_stale_processing(self, updated_before: str) -> List[IndexingJob]:
        rows = await self.db.fetchall(
            """
            select * from indexing_jobs
            where status = ? and updated_at <= ?
            order by created_at asc, rowid asc
            """,
            (JobStatus.PROCESSING.value, updated_before),
        )
        return [_row_to_job(row) for row in rows]

    async def claim_job(self, job_id: str, started_at: Optional[str] = None) -> bool:
        started_at = started_at or utc_now()
        updated = await self.db.execute(
            """
            update indexing_jobs
            set status = ?, started_at = ?, updated_at = ?
            where job_id = ? and status = ?
            """,
            (
                JobStatus.PROCESSING.value,
                started_at,
                started_at,
                job_id,
                JobStatus.PENDING.value,
            ),
        )
        return updated == 1

    async def update_progress(
        self,
        job_id: str,
        progress: JobProgress,
        results: JobResults,
        now: Optional[str] = None,
    ) -> bool:
        updated = await self.db.execute(
            """
            update indexing_jobs
            set progress_json = ?, results_json = ?, updated_at = ?
            where job_id = ? and status = ?
            """,
            (
                progress.model_dump_json(),
                results.model_dump_json(),
                now or utc_now(),
                job_id,
                JobStatus.PROCESSING.value,
            ),
        )
        return updated == 1

    async def complete_job(
        self,
        job_id: str,
        progress: JobProgress,
        results: JobResults,
        completed_at: str,
        processing_time_ms: int,
    ) -> bool:
        updated = await self.db.execute(
            """
            update indexing_jobs
            set status = ?, progress_json = ?, results_json = ?,
                completed_at = ?, processing_time_ms = ?, updated_at = ?
            where job_id = ? and status = ?
            """,
            (
                JobStatus.COMPLETED.value,
                progress.model_dump_json(),
                results.model_dump_json(),
                completed_at,
                processing_time_ms,
                completed_at,
                job_id,
                JobStatus.PROCESSING.value,
            ),
        )
        return updated == 1

    async def fail_job(
        self,
        job_id: str,
        error: str,
        completed_at: str,
        processing_time_ms: Optional[int],
    ) -> bool:
        updated = await self.db.execute(
            """
            update indexing_jobs
            set status = ?, error = ?, completed_at = ?,
                processing_time_ms = ?, updated_at = ?
            where job_id = ? and status = ?
            """,
            (
                JobStatus.FAILED.value,
                error,
                completed_at,
                processing_time_ms,
                completed_at,
                job_id,
                JobStatus.PROCESSING.value,
            ),
        )
        return updated == 1

    async def cancel_pending(self, job_id: str, error: str = "cancelled") -> bool:
        now = utc_now()
        updated = await self.db.execute(
            """
            update indexing_jobs
            set status = ?, error = ?, completed_at = ?, updated_at = ?
            where job_id = ? and status = ?
            """,
            (
                JobStatus.FAILED.value,
                error,
                now,
                now,
                job_id,
                JobStatus.PENDING.value,
            ),
        )
        return updated == 1

    async def job_stats(
        self, tenant_id: str, project_id: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        query = """
            select status,
                   count(*) as count,
                   coalesce(sum(processing_time_ms), 0) as total_processing_time_ms,
                   coalesce(
                     sum(json_extract(progress_json, '$.indexed_chunks')), 0
                   ) as total_indexed_chunks
            from indexing_jobs
            where tenant_id = ?
        """
        params: List[Any] = [tenant_id]
        if project_id:
            query += " and project_id = ?"
            params.append(project_id)
        query += " group by status"
        rows = await self.db.fetchall(query, tuple(params))
        return [
            {
                "status": row["status"],
                "count": row["count"],
                "total_processing_time_ms": row["total_processing_time_ms"],
                "total_indexed_chunks": row["total_indexed_chunks"],
            }
            for row in rows
        ]

    async def record_event(
        self,
        job_id: str,
        level: str,
        message: str,
        meta: Optional[Dict[str, Any]] = None,
    ) -> None:
        await self.db.execute(
            """
            insert into indexing_job_events (job_id, created_at, level, message, meta_json)
            values (?, ?, ?, ?, ?)
            """,
            (job_id, utc_now(), level, message, json.dumps(meta) if meta else None),
        )

    async def fetch_events(self, job_id: str) -> List[JobEvent]:
        rows = await self.db.fetchall(
            """
            select * from indexing_job_events
            where job_id = ?
            order by event_id asc
            """,
            (job_id,),
        )
        return [_row_to_event(row) for row in rows]
