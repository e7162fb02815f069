"""
Tests for the sqlite-backed job record store.
"""

import pytest

from ragjobs.db.connection import Database
from ragjobs.db.jobs_repo import JobsRepo
from ragjobs.schemas.jobs import JobKind, JobProgress, JobResults, JobStatus
from ragjobs.utils.time import utc_now


async def _create(repo, tenant="t1", project="p1", units=2, now=None):
    return await repo.create_job(
        tenant,
        project,
        "cred-1",
        JobKind.SINGLE,
        [{"id": f"d{i}"} for i in range(units)],
        total_units=units,
        now=now,
    )


class TestCreateAndFetch:
    async def test_create_job_starts_pending(self, repo):
        job = await _create(repo, units=3)

        assert job.job_id.startswith("job_")
        assert job.status == JobStatus.PENDING
        assert job.progress == JobProgress(total_units=3)
        assert job.results == JobResults()
        assert job.started_at is None
        assert job.payload == [{"id": "d0"}, {"id": "d1"}, {"id": "d2"}]

    async def test_fetch_unknown_job(self, repo):
        assert await repo.fetch_job("job_missing") is None

    async def test_uninitialized_database_raises(self):
        repo = JobsRepo(Database(":memory:"))
        with pytest.raises(RuntimeError, match="database not initialized"):
            await repo.fetch_job("job_x")


class TestPendingQueue:
    async def test_pending_is_fifo(self, repo):
        first = await _create(repo)
        second = await _create(repo)
        third = await _create(repo)

        pending = await repo.fetch_pending(2)
        assert [job.job_id for job in pending] == [first.job_id, second.job_id]

        pending = await repo.fetch_pending(10)
        assert [job.job_id for job in pending] == [
            first.job_id,
            second.job_id,
            third.job_id,
        ]

    async def test_pending_orders_by_created_at(self, repo):
        later = await _create(repo, now="2026-01-01T00:00:02.000Z")
        earlier = await _create(repo, now="2026-01-01T00:00:01.000Z")

        pending = await repo.fetch_pending(2)
        assert [job.job_id for job in pending] == [earlier.job_id, later.job_id]

    async def test_zero_limit(self, repo):
        await _create(repo)
        assert await repo.fetch_pending(0) == []

    async def test_claimed_jobs_leave_queue(self, repo):
        job = await _create(repo)
        assert await repo.claim_job(job.job_id)
        assert await repo.fetch_pending(5) == []


class TestTransitions:
    """Status changes only move forward."""

    async def test_claim_only_once(self, repo):
        job = await _create(repo)

        assert await repo.claim_job(job.job_id, "2026-01-01T00:00:00.000Z") is True
        assert await repo.claim_job(job.job_id) is False

        claimed = await repo.fetch_job(job.job_id)
        assert claimed.status == JobStatus.PROCESSING
        assert claimed.started_at == "2026-01-01T00:00:00.000Z"

    async def test_progress_requires_processing(self, repo):
        job = await _create(repo)
        progress = JobProgress(total_units=2, processed_units=1, successful_units=1)

        assert await repo.update_progress(job.job_id, progress, JobResults()) is False

        await repo.claim_job(job.job_id)
        assert await repo.update_progress(
            job.job_id, progress, JobResults(indexed_ids=["c1"])
        )
        stored = await repo.fetch_job(job.job_id)
        assert stored.progress.processed_units == 1
        assert stored.results.indexed_ids == ["c1"]

    async def test_terminal_job_is_frozen(self, repo):
        job = await _create(repo)
        await repo.claim_job(job.job_id, "2026-01-01T00:00:00.000Z")
        final = JobProgress(total_units=2, processed_units=2, successful_units=2, indexed_chunks=2)
        assert await repo.complete_job(
            job.job_id,
            final,
            JobResults(indexed_ids=["a", "b"]),
            "2026-01-01T00:00:01.500Z",
            1500,
        )

        assert await repo.update_progress(job.job_id, JobProgress(total_units=2), JobResults()) is False
        assert await repo.fail_job(job.job_id, "late", utc_now(), 1) is False
        assert await repo.cancel_pending(job.job_id) is False

        stored = await repo.fetch_job(job.job_id)
        assert stored.status == JobStatus.COMPLETED
        assert stored.progress == final
        assert stored.processing_time_ms == 1500
        assert stored.completed_at == "2026-01-01T00:00:01.500Z"

    async def test_cancel_pending(self, repo):
        job = await _create(repo)

        assert await repo.cancel_pending(job.job_id) is True
        stored = await repo.fetch_job(job.job_id)
        assert stored.status == JobStatus.FAILED
        assert stored.error == "cancelled"
        assert stored.completed_at is not None
        assert await repo.claim_job(job.job_id) is False


class TestQueries:
    async def test_jobs_for_project_newest_first(self, repo):
        first = await _create(repo, project="p1")
        second = await _create(repo, project="p2")
        third = await _create(repo, project="p1")
        await _create(repo, tenant="other")

        all_jobs = await repo.fetch_jobs_for_project("t1")
        assert [job.job_id for job in all_jobs] == [
            third.job_id,
            second.job_id,
            first.job_id,
        ]

        p1_jobs = await repo.fetch_jobs_for_project("t1", "p1", limit=1)
        assert [job.job_id for job in p1_jobs] == [third.job_id]

    async def test_job_stats_groups_by_status(self, repo):
        done = await _create(repo)
        await repo.claim_job(done.job_id)
        await repo.complete_job(
            done.job_id,
            JobProgress(total_units=2, processed_units=2, successful_units=2, indexed_chunks=5),
            JobResults(),
            utc_now(),
            250,
        )
        cancelled = await _create(repo)
        await repo.cancel_pending(cancelled.job_id)
        await _create(repo)
        await _create(repo, project="p2")

        rows = await repo.job_stats("t1", "p1")
        by_status = {row["status"]: row for row in rows}
        assert by_status["completed"]["count"] == 1
        assert by_status["completed"]["total_processing_time_ms"] == 250
        assert by_status["completed"]["total_indexed_chunks"] == 5
        assert by_status["failed"]["count"] == 1
        assert by_status["pending"]["count"] == 1

        rows = await repo.job_stats("t1")
        assert sum(row["count"] for row in rows) == 4

    async def test_stale_processing(self, repo):
        job = await _create(repo)
        await repo.claim_job(job.job_id, "2026-01-01T00:00:00.000Z")

        assert await repo.fetch_stale_processing("2025-12-31T00:00:00.000Z") == []
        stale = await repo.fetch_stale_processing("2026-01-01T00:00:00.000Z")
        assert [j.job_id for j in stale] == [job.job_id]

    async def test_events_roundtrip(self, repo):
        job = await _create(repo)
        await repo.record_event(job.job_id, "info", "job queued", {"total_units": 2})
        await repo.record_event(job.job_id, "error", "job failed")

        events = await repo.fetch_events(job.job_id)
        assert [e.message for e in events] == ["job queued", "job failed"]
        assert events[0].meta == {"total_units": 2}
        assert events[1].meta is None
