from __future__ import annotations

import dataclasses
from collections.abc import Iterator

import allure
import pytest
from fastapi.testclient import TestClient

from content_jobs.api.app import create_app, status_code_for
from content_jobs.bootstrap import Runtime
from content_jobs.config import ApiSettings
from content_jobs.errors import ContentJobsError, InvalidJobState, JobNotFound

from conftest import ScriptedLlm, qa_response, seo_response, writer_response

pytestmark = [
    allure.epic("HTTP API"),
    allure.feature("Job & Article Endpoints"),
]

SECRET = "runner-s3cret"
IMAGE_JOB = {
    "job_type": "reviewer_image_retry",
    "payload": {"contractor_id": "contractor-1", "images": []},
    "created_by": "importer",
}


@pytest.fixture()
def client(runtime: Runtime) -> Iterator[TestClient]:
    runtime.settings = dataclasses.replace(runtime.settings, api=ApiSettings(runner_secret=SECRET))
    with TestClient(create_app(runtime=runtime)) as test_client:
        yield test_client


def test_health(client: TestClient) -> None:
    assert client.get("/health").json() == {"status": "ok"}


def test_create_and_read_job(client: TestClient) -> None:
    created = client.post("/jobs", json=IMAGE_JOB)

    assert created.status_code == 201
    body = created.json()
    assert body["job_type"] == "reviewer_image_retry"
    assert body["status"] == "pending"
    job_id = body["job_id"]

    job = client.get(f"/jobs/{job_id}").json()
    assert job["payload"] == IMAGE_JOB["payload"]
    assert job["attempts"] == 0
    assert job["max_attempts"] == 3
    assert job["created_by"] == "importer"

    progress = client.get(f"/jobs/{job_id}/progress").json()
    assert progress == {
        "status": "pending",
        "total_items": 0,
        "processed_items": 0,
        "failed_items": 0,
        "percent_complete": 0,
    }
    logs = client.get(f"/jobs/{job_id}/logs").json()
    assert [entry["action"] for entry in logs] == ["created"]
    assert logs[0]["actor_id"] == "importer"


def test_duplicate_active_job_type_conflicts(client: TestClient) -> None:
    assert client.post("/jobs", json=IMAGE_JOB).status_code == 201

    duplicate = client.post("/jobs", json=IMAGE_JOB)

    assert duplicate.status_code == 409
    assert duplicate.json()["error_type"] == "ConcurrencyConflict"


def test_create_job_validates_body(client: TestClient) -> None:
    response = client.post("/jobs", json={"job_type": "reviewer_image_retry", "max_attempts": 0})

    assert response.status_code == 400
    assert response.json()["error_type"] == "ValidationError"


def test_unknown_job_returns_404(client: TestClient) -> None:
    for response in (
        client.get("/jobs/missing"),
        client.get("/jobs/missing/progress"),
        client.get("/jobs/missing/logs"),
        client.post("/jobs/missing/cancel"),
    ):
        assert response.status_code == 404
        assert response.json() == {"detail": "Job not found: missing", "error_type": "JobNotFound"}


def test_list_jobs_filters(client: TestClient) -> None:
    job_id = client.post("/jobs", json=IMAGE_JOB).json()["job_id"]
    client.post("/jobs", json={"job_type": "mystery"})

    listed = client.get("/jobs", params={"job_type": "reviewer_image_retry"}).json()
    assert listed["total"] == 1
    assert listed["items"][0]["id"] == job_id
    assert client.get("/jobs", params={"status": "failed"}).json()["total"] == 0
    assert client.get("/jobs", params={"status": "bogus"}).status_code == 400
    assert client.get("/jobs", params={"limit": 500}).status_code == 400


def test_execute_requires_configured_secret(client: TestClient, runtime: Runtime) -> None:
    job_id = client.post("/jobs", json=IMAGE_JOB).json()["job_id"]

    missing = client.post(f"/jobs/{job_id}/execute")
    wrong = client.post(f"/jobs/{job_id}/execute", headers={"x-job-runner-secret": "nope"})
    runtime.settings = dataclasses.replace(runtime.settings, api=ApiSettings())
    unconfigured = client.post(
        f"/jobs/{job_id}/execute",
        headers={"x-job-runner-secret": SECRET},
    )

    assert missing.status_code == 401
    assert wrong.status_code == 401
    assert unconfigured.status_code == 503
    assert client.get(f"/jobs/{job_id}").json()["status"] == "pending"


def test_execute_runs_job_once(client: TestClient) -> None:
    job_id = client.post("/jobs", json=IMAGE_JOB).json()["job_id"]
    headers = {"x-job-runner-secret": SECRET}

    executed = client.post(f"/jobs/{job_id}/execute", headers=headers)
    again = client.post(f"/jobs/{job_id}/execute", headers=headers)

    assert executed.status_code == 200
    body = executed.json()
    assert body["status"] == "completed"
    assert body["succeeded"] is True
    assert body["will_retry"] is False
    assert body["result"]["total_images"] == 0
    assert again.status_code == 409
    assert again.json()["error_type"] == "InvalidJobState"
    assert "status=completed" in again.json()["detail"]


def test_execute_unregistered_type_fails_permanently(client: TestClient) -> None:
    job_id = client.post("/jobs", json={"job_type": "mystery"}).json()["job_id"]

    body = client.post(
        f"/jobs/{job_id}/execute",
        headers={"x-job-runner-secret": SECRET},
    ).json()

    assert body["status"] == "failed"
    assert body["succeeded"] is False
    assert body["will_retry"] is False
    assert body["last_error"] == "ExecutorNotFound: No executor registered for job type: mystery"

    retried = client.post(f"/jobs/{job_id}/retry", params={"actor_id": "ops"})
    assert retried.status_code == 200
    assert retried.json()["status"] == "pending"
    assert retried.json()["attempts"] == 0


def test_cancel_then_retry_is_rejected(client: TestClient) -> None:
    job_id = client.post("/jobs", json=IMAGE_JOB).json()["job_id"]

    cancelled = client.post(f"/jobs/{job_id}/cancel", params={"actor_id": "ops"})
    retried = client.post(f"/jobs/{job_id}/retry")

    assert cancelled.status_code == 200
    assert cancelled.json()["status"] == "cancelled"
    assert retried.status_code == 409
    assert retried.json()["detail"] == "Only failed jobs can be retried manually, got cancelled."


def test_article_lifecycle_over_http(
    client: TestClient,
    runtime: Runtime,
    llm: ScriptedLlm,
) -> None:
    runtime.seed_personas()
    llm.queue(writer_response(), seo_response(), qa_response(90))

    created = client.post(
        "/articles",
        json={"keyword": "hiking boots", "settings": {"max_iterations": 2}, "created_by": "ed"},
    )
    assert created.status_code == 201
    article_id = created.json()["article_job_id"]
    job_id = created.json()["background_job_id"]

    pending = client.get(f"/articles/{article_id}").json()
    assert pending["status"] == "pending"
    assert pending["settings"]["max_iterations"] == 2
    assert pending["steps"] == []

    executed = client.post(f"/jobs/{job_id}/execute", headers={"x-job-runner-secret": SECRET})
    assert executed.json()["result"]["passed"] is True

    finished = client.get(f"/articles/{article_id}").json()
    assert finished["status"] == "completed"
    assert finished["total_tokens_used"] == 450
    assert [step["agent_type"] for step in finished["steps"]] == ["research", "writer", "seo", "qa"]
    assert finished["steps"][1]["tokens_used"] == 150
    assert finished["final_output"]["qa"]["overall_score"] == 90


def test_article_validation_and_conflicts(client: TestClient) -> None:
    invalid = client.post("/articles", json={"keyword": "boots", "settings": {"max_iterations": 0}})
    empty = client.post("/articles", json={"keyword": ""})
    first = client.post("/articles", json={"keyword": "boots"})
    second = client.post("/articles", json={"keyword": "shoes"})

    assert invalid.status_code == 400
    assert invalid.json()["error_type"] == "ValidationError"
    assert empty.status_code == 400
    assert first.status_code == 201
    assert second.status_code == 409


def test_cancel_article_cancels_its_job(client: TestClient) -> None:
    created = client.post("/articles", json={"keyword": "boots"}).json()

    cancelled = client.post(f"/articles/{created['article_job_id']}/cancel")
    again = client.post(f"/articles/{created['article_job_id']}/cancel")

    assert cancelled.status_code == 200
    assert cancelled.json()["status"] == "cancelled"
    assert client.get(f"/jobs/{created['background_job_id']}").json()["status"] == "cancelled"
    assert again.status_code == 409
    assert client.get("/articles/missing").status_code == 404
    assert client.post("/articles/missing/cancel").status_code == 404


def test_status_code_mapping() -> None:
    assert status_code_for(JobNotFound("x")) == 404
    assert status_code_for(InvalidJobState("x")) == 409
    assert status_code_for(ContentJobsError("x")) == 500
