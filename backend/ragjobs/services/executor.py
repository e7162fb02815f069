import asyncio
from datetime import datetime
from typing import Any, Callable, List, Mapping, Optional

from ragjobs.core.config import SchedulerConfig
from ragjobs.core.logging import logger
from ragjobs.db.jobs_repo import JobsRepo
from ragjobs.schemas.jobs import IndexingJob, JobKind, JobStatus
from ragjobs.services.indexer import DocumentIndexer
from ragjobs.services.progress import ProgressTracker, UnitOutcome
from ragjobs.services.registry import ActiveJobRegistry
from ragjobs.utils.time import elapsed_ms, format_iso, utc_now_dt
from ragjobs.websocket.manager import WebSocketManager, manager


def normalize_units(kind: JobKind, payload: Any) -> List[List[Any]]:
    """Split a job payload into the ordered units the executor dispatches."""
    if kind == JobKind.BATCH:
        if not isinstance(payload, list):
            raise ValueError("batch payload must be a list of sub-batches")
        units: List[List[Any]] = []
        for batch in payload:
            if isinstance(batch, Mapping) and isinstance(batch.get("documents"), list):
                units.append(list(batch["documents"]))
            elif isinstance(batch, list):
                units.append(list(batch))
            else:
                units.append([batch])
        return units
    if isinstance(payload, list):
        return [[document] for document in payload]
    return [[payload]]


class JobExecutor:
    def __init__(
        self,
        repo: JobsRepo,
        indexer: DocumentIndexer,
        registry: ActiveJobRegistry,
        config: SchedulerConfig,
        notifier: WebSocketManager = manager,
        clock: Callable[[], datetime] = utc_now_dt,
    ) -> None:
        self.repo = repo
        self.indexer = indexer
        self.registry = registry
        self.config = config
        self.notifier = notifier
        self.clock = clock

    def _now(self) -> str:
        return format_iso(self.clock())

    async def run(self, job: IndexingJob) -> None:
        job_id = job.job_id
        started_at: Optional[str] = None
        try:
            claimed_at = self._now()
            if not await self.repo.claim_job(job_id, claimed_at):
                await self.notifier.emit_log(
                    "info", f"job {job_id} is no longer pending, skipped"
                )
                return
            started_at = claimed_at
            await self.repo.record_event(job_id, "info", "job started")
            await self.notifier.job_status(job_id, JobStatus.PROCESSING)
            await self.notifier.emit_log(
                "info",
                f"indexing job {job_id} started ({job.kind.value}, "
                f"{job.progress.total_units} units)",
            )

            units = normalize_units(job.kind, job.payload)
            if len(units) != job.progress.total_units:
                raise RuntimeError(
                    f"payload has {len(units)} units, expected {job.progress.total_units}"
                )
            tracker = ProgressTracker(len(units))
            await self._run_windows(job, units, tracker)

            completed_at = self._now()
            progress, results = tracker.snapshot()
            if not await self.repo.complete_job(
                job_id,
                progress,
                results,
                completed_at,
                elapsed_ms(started_at, completed_at),
            ):
                raise RuntimeError(f"job {job_id} left processing before completion")
            await self.repo.record_event(
                job_id,
                "info",
                "job completed",
                {
                    "indexed_chunks": progress.indexed_chunks,
                    "failed_units": progress.failed_units,
                },
            )
            await self.notifier.job_status(job_id, JobStatus.COMPLETED)
            await self.notifier.emit_log(
                "info",
                f"indexing job {job_id} completed: {progress.indexed_chunks} chunks, "
                f"{progress.failed_units} failed units",
            )
        except Exception as exc:
            logger.exception("indexing job %s failed", job_id)
            await self._fail(job_id, started_at, str(exc) or exc.__class__.__name__)
        finally:
            await self.registry.discard(job_id)

    async def _run_windows(
        self, job: IndexingJob, units: List[List[Any]], tracker: ProgressTracker
    ) -> None:
        size = max(1, self.config.max_concurrent_units_per_job)
        for start in range(0, len(units), size):
            window = units[start : start + size]
            outcomes = await asyncio.gather(
                *(
                    self._run_unit(job, start + offset, documents)
                    for offset, documents in enumerate(window)
                )
            )
            now = self._now()
            tracker.apply_window(list(outcomes), now)
            progress, results = tracker.snapshot()
            if not await self.repo.update_progress(job.job_id, progress, results, now):
                raise RuntimeError(f"job {job.job_id} is no longer processing")
            await self.notifier.job_progress(job.job_id, progress)
            logger.info(
                "job %s progress: %d/%d units, %d chunks indexed",
                job.job_id,
                progress.processed_units,
                progress.total_units,
                progress.indexed_chunks,
            )

    async def _run_unit(
        self, job: IndexingJob, unit_index: int, documents: List[Any]
    ) -> UnitOutcome:
        attempt = 0
        while True:
            try:
                chunk_ids = await self.indexer.index(
                    documents, job.tenant_id, job.project_id, job.credential_ref
                )
                return UnitOutcome(
                    unit_index=unit_index,
                    success=True,
                    chunk_ids=[str(chunk_id) for chunk_id in chunk_ids],
                )
            except Exception as exc:
                message = str(exc) or exc.__class__.__name__
                if attempt < self.config.retry_attempts:
                    attempt += 1
                    logger.warning(
                        "job %s unit %d failed (attempt %d), retrying: %s",
                        job.job_id,
                        unit_index,
                        attempt,
                        message,
                    )
                    await asyncio.sleep(self.config.retry_delay * attempt)
                    continue
                logger.warning(
                    "job %s unit %d failed: %s", job.job_id, unit_index, message
                )
                return UnitOutcome(unit_index=unit_index, success=False, error=message)

    async def _fail(self, job_id: str, started_at: Optional[str], message: str) -> None:
        try:
            completed_at = self._now()
            processing_time_ms = (
                elapsed_ms(started_at, completed_at) if started_at else None
            )
            if not await self.repo.fail_job(
                job_id, message, completed_at, processing_time_ms
            ):
                return
            await self.repo.record_event(job_id, "error", "job failed", {"error": message})
            await self.notifier.job_status(job_id, JobStatus.FAILED)
            await self.notifier.emit_log(
                "error", f"indexing job {job_id} failed: {message}"
            )
        except Exception:
            logger.exception("could not record failure for job %s", job_id)
