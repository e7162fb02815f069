import asyncio
from typing import Iterable

import pytest

from fakes import FakeIndexer
from ragjobs.core.config import SchedulerConfig
from ragjobs.db.connection import Database
from ragjobs.db.jobs_repo import JobsRepo
from ragjobs.schemas.jobs import TERMINAL_STATUSES
from ragjobs.services.executor import JobExecutor
from ragjobs.services.jobs import JobService
from ragjobs.services.registry import ActiveJobRegistry
from ragjobs.services.scheduler import IndexingScheduler
from ragjobs.websocket.manager import WebSocketManager


@pytest.fixture
async def db():
    database = Database(":memory:")
    await database.connect()
    yield database
    await database.close()


@pytest.fixture
def repo(db):
    return JobsRepo(db)


@pytest.fixture
def registry():
    return ActiveJobRegistry()


@pytest.fixture
def notifier():
    return WebSocketManager()


@pytest.fixture
def config():
    return SchedulerConfig(
        poll_interval=0.01,
        max_concurrent_jobs=2,
        max_concurrent_units_per_job=3,
        retry_attempts=0,
        retry_delay=0,
        stale_after=0,
        seconds_per_unit=2,
    )


@pytest.fixture
def indexer():
    return FakeIndexer()


@pytest.fixture
def executor(repo, indexer, registry, config, notifier):
    return JobExecutor(repo, indexer, registry, config, notifier)


@pytest.fixture
def scheduler(repo, executor, registry, config, notifier):
    return IndexingScheduler(repo, executor, registry, config, notifier)


@pytest.fixture
def service(repo, registry, config, scheduler, notifier):
    return JobService(repo, registry, config, scheduler, notifier)


@pytest.fixture
def wait_for_jobs(repo):
    async def _wait(job_ids: Iterable[str], timeout: float = 5.0) -> None:
        job_ids = list(job_ids)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while True:
            jobs = [await repo.fetch_job(job_id) for job_id in job_ids]
            if all(job is not None and job.status in TERMINAL_STATUSES for job in jobs):
                return
            if loop.time() > deadline:
                raise AssertionError(f"jobs not finished in time: {job_ids}")
            await asyncio.sleep(0.01)

    return _wait
