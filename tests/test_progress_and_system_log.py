from __future__ import annotations

import allure
from sqlalchemy.exc import OperationalError

from content_jobs.jobs.models import JobCreate, JobStatus, ProgressUpdate
from content_jobs.jobs.progress import ProgressReporter
from content_jobs.jobs.repository import JobRepository

pytestmark = [
    allure.epic("Job Queue"),
    allure.feature("Progress & Audit Log"),
]


class BrokenRepository:
    def __init__(self) -> None:
        self.calls = 0

    def report_progress(self, *, job_id: str, update: ProgressUpdate) -> bool:
        self.calls += 1
        raise OperationalError("UPDATE background_jobs", {}, Exception("database is locked"))


def test_reporter_flushes_updates_on_close(repository: JobRepository) -> None:
    created = repository.create_job(JobCreate(job_type="image_enrichment"))
    repository.claim_next_job()

    reporter = ProgressReporter(repository=repository, job_id=created.id)
    reporter(total_items=10, processed_items=0)
    reporter(processed_items=3, failed_items=1)
    reporter.close()

    job = repository.get_job(job_id=created.id)
    assert job is not None
    assert (job.total_items, job.processed_items, job.failed_items) == (10, 3, 1)


def test_reporter_never_raises_on_storage_errors() -> None:
    broken = BrokenRepository()
    reporter = ProgressReporter(repository=broken, job_id="job-1")  # type: ignore[arg-type]

    reporter(processed_items=1)
    reporter(processed_items=2)
    reporter.close()

    assert broken.calls == 2


def test_reporter_ignores_jobs_that_are_not_processing(repository: JobRepository) -> None:
    created = repository.create_job(JobCreate(job_type="image_enrichment"))

    reporter = ProgressReporter(repository=repository, job_id=created.id)
    reporter(processed_items=5)
    reporter.close()

    job = repository.get_job(job_id=created.id)
    assert job is not None
    assert job.processed_items == 0


def test_reporter_writes_periodic_progress_log(repository: JobRepository) -> None:
    created = repository.create_job(JobCreate(job_type="image_enrichment", total_items=4))
    repository.claim_next_job()

    reporter = ProgressReporter(repository=repository, job_id=created.id, log_every=2)
    for processed in range(1, 5):
        reporter(processed_items=processed)
    reporter.close()

    progress_entries = [
        entry
        for entry in repository.system_log.get_job_logs(job_id=created.id)
        if entry.action == "progress"
    ]
    assert [entry.metadata["processed_items"] for entry in progress_entries] == [2, 4]


def test_lifecycle_is_recorded_in_system_log(repository: JobRepository) -> None:
    created = repository.create_job(JobCreate(job_type="image_enrichment", created_by="ops"))
    repository.claim_next_job()
    repository.complete(job_id=created.id, result={"ok": True})

    entries = repository.system_log.get_job_logs(job_id=created.id)

    assert [entry.action for entry in entries] == ["created", "started", "completed"]
    assert entries[0].actor_type == "user"
    assert entries[0].actor_id == "ops"
    assert entries[1].metadata == {"job_type": "image_enrichment", "attempt": 1}
    assert "duration_ms" in entries[2].metadata
    assert all(entry.entity_id == created.id for entry in entries)


def test_permanent_failure_is_logged_as_error(repository: JobRepository) -> None:
    created = repository.create_job(JobCreate(job_type="image_enrichment", max_attempts=1))
    repository.claim_next_job()
    repository.fail(job_id=created.id, error="ValidationError: bad payload")

    errors = repository.system_log.get_recent_errors()

    assert len(errors) == 1
    assert errors[0].action == "failed"
    assert errors[0].metadata["will_retry"] is False
    assert "bad payload" in errors[0].message
    job = repository.get_job(job_id=created.id)
    assert job is not None
    assert job.status == JobStatus.FAILED


def test_retry_is_logged_as_warning(repository: JobRepository) -> None:
    created = repository.create_job(JobCreate(job_type="image_enrichment"))
    repository.claim_next_job()
    repository.fail(job_id=created.id, error="RuntimeError: flaky")

    entries = repository.system_log.get_job_logs(job_id=created.id)

    assert entries[-1].action == "retry_scheduled"
    assert entries[-1].level == "warning"
    assert repository.system_log.get_recent_errors() == []
