import asyncio
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from ragjobs.core.config import SchedulerConfig
from ragjobs.core.logging import logger
from ragjobs.db.jobs_repo import JobsRepo
from ragjobs.schemas.jobs import IndexingJob, JobStatus
from ragjobs.services.executor import JobExecutor
from ragjobs.services.registry import ActiveJobRegistry
from ragjobs.utils.time import elapsed_ms, format_iso, utc_now_dt
from ragjobs.websocket.manager import WebSocketManager, manager

INTERRUPTED_ERROR = "interrupted: scheduler restarted"


class IndexingScheduler:
    """
    Polls the job store for pending indexing jobs and hands them to the
    executor, keeping at most ``max_concurrent_jobs`` running at once.

    ``start()`` reconciles jobs orphaned by a previous process, ticks once
    immediately and then every ``poll_interval`` seconds. ``tick()`` can be
    driven directly.
    """

    def __init__(
        self,
        repo: JobsRepo,
        executor: JobExecutor,
        registry: ActiveJobRegistry,
        config: SchedulerConfig,
        notifier: WebSocketManager = manager,
        clock: Callable[[], datetime] = utc_now_dt,
    ) -> None:
        self.repo = repo
        self.executor = executor
        self.registry = registry
        self.config = config
        self.notifier = notifier
        self.clock = clock
        self._task: Optional[asyncio.Task] = None
        self._job_tasks: set[asyncio.Task] = set()
        self._ticking = False
        self.last_tick_at: Optional[str] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self.running:
            return
        try:
            await self.reconcile_stale_jobs()
        except Exception as exc:
            await self.notifier.emit_log("error", f"job reconciliation failed: {exc}")
        self._task = asyncio.create_task(self._loop())

    async def stop(self, wait_for_jobs: bool = True) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
            await self.notifier.emit_log("info", "indexing scheduler stopped")
        if wait_for_jobs:
            await self.wait_idle()

    async def wait_idle(self) -> None:
        while self._job_tasks:
            await asyncio.gather(*list(self._job_tasks), return_exceptions=True)

    async def _loop(self) -> None:
        await self.notifier.emit_log("info", "indexing scheduler started")
        while True:
            try:
                await self.tick()
            except Exception as exc:
                await self.notifier.emit_log("error", f"indexing scheduler error: {exc}")
            await asyncio.sleep(self.config.poll_interval)

    async def tick(self) -> List[str]:
        """Claim pending jobs for the free slots and return the launched ids."""
        if self._ticking:
            return []
        self._ticking = True
        try:
            self.last_tick_at = format_iso(self.clock())
            free_slots = self.config.max_concurrent_jobs - len(self.registry)
            if free_slots <= 0:
                return []
            pending = await self.repo.fetch_pending(free_slots)
            launched: List[str] = []
            for job in pending:
                if not await self.registry.try_add(job.job_id):
                    continue
                task = asyncio.create_task(self._run_job(job))
                self._job_tasks.add(task)
                task.add_done_callback(self._job_tasks.discard)
                launched.append(job.job_id)
            if launched:
                logger.info("dispatched %d pending indexing jobs", len(launched))
            return launched
        finally:
            self._ticking = False

    async def _run_job(self, job: IndexingJob) -> None:
        try:
            await self.executor.run(job)
        except Exception as exc:
            logger.exception("unhandled error running job %s", job.job_id)
            await self.notifier.emit_log(
                "error", f"error processing job {job.job_id}: {exc}"
            )
        finally:
            await self.registry.discard(job.job_id)

    async def reconcile_stale_jobs(self) -> List[str]:
        """Fail jobs left in processing by a process that is gone."""
        now_dt = self.clock()
        threshold = format_iso(now_dt - timedelta(seconds=self.config.stale_after))
        now = format_iso(now_dt)
        stale = await self.repo.fetch_stale_processing(threshold)
        failed: List[str] = []
        for job in stale:
            if self.registry.contains(job.job_id):
                continue
            processing_time_ms = (
                elapsed_ms(job.started_at, now) if job.started_at else None
            )
            if not await self.repo.fail_job(
                job.job_id, INTERRUPTED_ERROR, now, processing_time_ms
            ):
                continue
            await self.repo.record_event(job.job_id, "warn", INTERRUPTED_ERROR)
            await self.notifier.job_status(job.job_id, JobStatus.FAILED)
            await self.notifier.emit_log(
                "warn", f"indexing job {job.job_id} marked failed after restart"
            )
            failed.append(job.job_id)
        return failed

    def snapshot(self) -> Dict[str, Any]:
        active = len(self.registry)
        return {
            "running": self.running,
            "poll_interval_sec": self.config.poll_interval,
            "last_tick_at": self.last_tick_at,
            "active_jobs": self.registry.snapshot(),
            "slots": {
                "max": self.config.max_concurrent_jobs,
                "active": active,
                "idle": max(self.config.max_concurrent_jobs - active, 0),
            },
            "max_concurrent_units_per_job": self.config.max_concurrent_units_per_job,
        }
