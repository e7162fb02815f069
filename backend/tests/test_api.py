"""
HTTP-level tests for the jobs API, run against an in-memory database and a
fake indexer.
"""

import time

import pytest
from fastapi.testclient import TestClient

from fakes import FakeIndexer, make_batches, make_documents
from ragjobs.core.config import SchedulerConfig
from ragjobs.main import create_app


@pytest.fixture
def indexer():
    return FakeIndexer(fail_ids={"doc2"})


@pytest.fixture
def client(monkeypatch, indexer):
    monkeypatch.setattr("ragjobs.api.deps.BACKEND_TOKEN", "")
    app = create_app(
        indexer=indexer,
        db_path=":memory:",
        config=SchedulerConfig(
            poll_interval=0.02,
            max_concurrent_jobs=2,
            max_concurrent_units_per_job=2,
            retry_attempts=0,
            retry_delay=0,
        ),
    )
    with TestClient(app) as test_client:
        yield test_client


def _wait_terminal(client, job_id, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        body = client.get(f"/jobs/{job_id}").json()
        if body["status"] in {"completed", "failed"}:
            return body
        time.sleep(0.02)
    raise AssertionError(f"job {job_id} did not finish")


class TestJobsApi:
    def test_submit_and_poll(self, client):
        response = client.post(
            "/tenants/t1/projects/p1/jobs",
            json={"documents": make_documents(4), "credential_ref": "cred"},
            headers={"User-Agent": "pytest"},
        )
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "pending"
        assert body["estimated_time"] == "~8 seconds"

        final = _wait_terminal(client, body["job_id"])
        assert final["status"] == "completed"
        assert final["progress"]["total_units"] == 4
        assert final["progress"]["successful_units"] == 3
        assert final["progress"]["failed_units"] == 1
        assert final["progress"]["completion_percentage"] == 100
        assert [e["unit_index"] for e in final["results"]["errors"]] == [2]
        assert final["processing_time_ms"] is not None

    def test_submit_batch(self, client):
        response = client.post(
            "/tenants/t1/projects/p1/jobs",
            json={"documents": make_batches(3), "credential_ref": "cred", "kind": "batch"},
        )
        assert response.status_code == 200
        final = _wait_terminal(client, response.json()["job_id"])
        assert final["kind"] == "batch"
        assert final["progress"]["successful_units"] == 3
        assert final["progress"]["indexed_chunks"] == 3

    def test_empty_documents_rejected(self, client):
        response = client.post(
            "/tenants/t1/projects/p1/jobs",
            json={"documents": [], "credential_ref": "cred"},
        )
        assert response.status_code == 400

    def test_missing_credential_rejected(self, client):
        response = client.post(
            "/tenants/t1/projects/p1/jobs",
            json={"documents": make_documents(1)},
        )
        assert response.status_code == 422

    def test_unknown_job(self, client):
        assert client.get("/jobs/job_missing").status_code == 404
        assert client.get("/jobs/job_missing/events").status_code == 404

    def test_cancel(self, client):
        response = client.delete("/jobs/job_missing")
        assert response.status_code == 200
        assert response.json() == {"job_id": "job_missing", "cancelled": False}

    def test_cancel_finished_job(self, client):
        job_id = client.post(
            "/tenants/t1/projects/p1/jobs",
            json={"documents": make_documents(1), "credential_ref": "cred"},
        ).json()["job_id"]
        _wait_terminal(client, job_id)

        assert client.delete(f"/jobs/{job_id}").json()["cancelled"] is False

    def test_list_stats_and_events(self, client):
        ids = []
        for project in ("p1", "p2"):
            response = client.post(
                f"/tenants/t1/projects/{project}/jobs",
                json={"documents": make_documents(2), "credential_ref": "cred"},
            )
            ids.append(response.json()["job_id"])
        for job_id in ids:
            _wait_terminal(client, job_id)

        listing = client.get("/tenants/t1/jobs").json()
        assert listing["total"] == 2
        assert [job["job_id"] for job in listing["jobs"]] == list(reversed(ids))

        listing = client.get("/tenants/t1/jobs", params={"project_id": "p1"}).json()
        assert [job["job_id"] for job in listing["jobs"]] == [ids[0]]

        stats = client.get("/tenants/t1/jobs/stats").json()
        assert stats["total_jobs"] == 2
        assert stats["by_status"]["completed"]["count"] == 2
        assert stats["total_indexed_chunks"] == 4

        events = client.get(f"/jobs/{ids[0]}/events").json()
        assert [e["message"] for e in events] == ["job queued", "job started", "job completed"]


class TestServiceEndpoints:
    def test_health(self, client):
        body = client.get("/health").json()
        assert body["status"] == "ok"
        assert body["database"] == "ok"

    def test_status(self, client):
        body = client.get("/status").json()
        assert body["scheduler"]["running"] is True
        assert body["scheduler"]["slots"]["max"] == 2

    def test_token_required(self, client, monkeypatch):
        monkeypatch.setattr("ragjobs.api.deps.BACKEND_TOKEN", "secret")
        assert client.get("/health").status_code == 401
        assert client.get("/health", headers={"X-Backend-Token": "secret"}).status_code == 200

    def test_events_socket(self, client):
        with client.websocket_connect("/events") as websocket:
            message = websocket.receive_json()
            assert message["type"] == "connected"
            assert message["active_jobs"] == []
