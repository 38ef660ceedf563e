from __future__ import annotations

from collections.abc import Iterator
from datetime import timedelta
from pathlib import Path
from typing import Any

import allure
import pytest

from content_jobs.errors import ValidationError
from content_jobs.jobs.dispatcher import JobDispatcher
from content_jobs.jobs.executors.review_photos import ReviewPhotoRepository
from content_jobs.jobs.executors.reviewer_images import (
    ReviewerImageRetryExecutor,
    extension_for,
    parse_payload,
    retry_scheduled_for,
    storage_path_for,
)
from content_jobs.jobs.models import JobCreate, JobStatus
from content_jobs.jobs.registry import ExecutorRegistry
from content_jobs.jobs.repository import JobRepository
from content_jobs.providers.blob import LocalBlobStore
from content_jobs.providers.http import HttpFetcher
from content_jobs.storage.common import utc_now

from conftest import image_transport

pytestmark = [
    allure.epic("Job Queue"),
    allure.feature("Reviewer Image Retry"),
]

JOB_TYPE = "reviewer_image_retry"
BASE_URL = "https://images.example.com"


class ImageHarness:
    def __init__(self, repository: JobRepository, blob_root: Path) -> None:
        self.repository = repository
        self.blob_root = blob_root
        self.sleeps: list[float] = []
        self.fetcher = HttpFetcher(
            transport=image_transport(rate_limited=lambda url: "limited" in url),
        )
        self.photos = ReviewPhotoRepository(repository.engine)
        executors = ExecutorRegistry()
        executors.register_executor(
            ReviewerImageRetryExecutor(
                fetcher=self.fetcher,
                blob_store=LocalBlobStore(blob_root),
                photos=self.photos,
                system_log=repository.system_log,
                delay_between_items_ms=250,
                sleep=self.sleeps.append,
            ),
        )
        self.dispatcher = JobDispatcher(repository=repository, executors=executors)

    def enqueue(self, names: list[str], *, attempt_number: int = 1) -> str:
        job = self.repository.create_job(
            JobCreate(
                job_type=JOB_TYPE,
                payload=payload(names, attempt_number=attempt_number),
                created_by="importer",
            ),
        )
        return job.id


def payload(names: list[str], *, attempt_number: int = 1) -> dict[str, Any]:
    return {
        "contractor_id": "contractor-1",
        "images": [
            {"review_id": f"review-{name}", "original_url": f"{BASE_URL}/{name}.png"}
            for name in names
        ],
        "attempt_number": attempt_number,
    }


@pytest.fixture()
def harness(repository: JobRepository, tmp_path: Path) -> Iterator[ImageHarness]:
    built = ImageHarness(repository, tmp_path / "blobs")
    yield built
    built.fetcher.close()


def test_copies_all_images_when_not_rate_limited(harness: ImageHarness) -> None:
    job_id = harness.enqueue(["a", "b"])

    summary = harness.dispatcher.run_once()

    assert summary.succeeded == 1
    job = harness.repository.get_job(job_id=job_id)
    assert job is not None
    assert job.status == JobStatus.COMPLETED
    assert job.result == {
        "contractor_id": "contractor-1",
        "total_images": 2,
        "downloaded": 2,
        "failed": 0,
        "remaining_images": [],
        "requeued_for_retry": False,
    }
    assert (job.total_items, job.processed_items, job.failed_items) == (2, 2, 0)
    photos = harness.photos.list_for_contractor(contractor_id="contractor-1")
    assert [photo.review_id for photo in photos] == ["review-a", "review-b"]
    for photo in photos:
        assert photo.storage_path.startswith("reviews/contractor-1/")
        assert (harness.blob_root / photo.storage_path).read_bytes() == (
            f"image:{photo.original_url}".encode()
        )
    assert harness.sleeps == [0.25]


def test_rate_limit_requeues_remaining_images_with_cooldown(harness: ImageHarness) -> None:
    job_id = harness.enqueue(["a", "missing", "limited", "d"])
    before = utc_now()

    harness.dispatcher.run_once()

    job = harness.repository.get_job(job_id=job_id)
    assert job is not None
    assert job.status == JobStatus.COMPLETED
    assert job.result is not None
    assert job.result["downloaded"] == 1
    assert job.result["failed"] == 1
    assert job.result["requeued_for_retry"] is True
    assert [image["review_id"] for image in job.result["remaining_images"]] == [
        "review-limited",
        "review-d",
    ]
    assert (job.processed_items, job.failed_items) == (2, 1)
    assert harness.sleeps == [0.25, 0.25]

    pending = harness.repository.list_jobs(status=JobStatus.PENDING, job_type=JOB_TYPE)
    assert pending.total == 1
    follow_up = pending.items[0]
    assert follow_up.payload["attempt_number"] == 2
    assert follow_up.payload["images"] == job.result["remaining_images"]
    assert follow_up.total_items == 2
    assert follow_up.created_by == "importer"
    assert follow_up.scheduled_for is not None
    delay = follow_up.scheduled_for - before
    assert timedelta(minutes=29) < delay < timedelta(minutes=31)

    assert harness.dispatcher.run_once().idle == 1
    actions = [entry.action for entry in harness.repository.system_log.get_job_logs(job_id=job_id)]
    assert "retry_requeued" in actions


def test_last_attempt_abandons_remaining_images(harness: ImageHarness) -> None:
    job_id = harness.enqueue(["a", "limited", "c"], attempt_number=4)

    harness.dispatcher.run_once()

    job = harness.repository.get_job(job_id=job_id)
    assert job is not None
    assert job.result is not None
    assert job.result["downloaded"] == 1
    assert job.result["failed"] == 2
    assert job.result["requeued_for_retry"] is False
    assert len(job.result["remaining_images"]) == 2
    assert harness.repository.list_jobs(status=JobStatus.PENDING).total == 0
    abandoned = [
        entry
        for entry in harness.repository.system_log.get_job_logs(job_id=job_id)
        if entry.action == "retry_abandoned"
    ]
    assert abandoned[0].level == "warning"
    assert abandoned[0].metadata["remaining_images"] == 2


def test_invalid_payload_fails_without_retry(harness: ImageHarness) -> None:
    job = harness.repository.create_job(
        JobCreate(job_type=JOB_TYPE, payload={"contractor_id": "c", "images": "nope"}),
    )

    summary = harness.dispatcher.run_once()

    assert summary.failed == 1
    failed = harness.repository.get_job(job_id=job.id)
    assert failed is not None
    assert failed.status == JobStatus.FAILED
    assert failed.last_error == "ValidationError: payload.images must be a list"


@pytest.mark.parametrize(
    ("raw", "message"),
    [
        ({"images": []}, "contractor_id"),
        ({"contractor_id": "c", "images": ["x"]}, r"images\[0\] must be an object"),
        ({"contractor_id": "c", "images": [{"review_id": "r"}]}, "original_url"),
        ({"contractor_id": "c", "images": [], "attempt_number": 0}, "attempt_number"),
    ],
)
def test_parse_payload_validation(raw: dict[str, Any], message: str) -> None:
    with pytest.raises(ValidationError, match=message):
        parse_payload(raw)


def test_parse_payload_defaults_to_first_attempt() -> None:
    contractor_id, images, attempt = parse_payload(payload(["a"]))

    assert contractor_id == "contractor-1"
    assert images[0].as_payload() == {
        "review_id": "review-a",
        "original_url": f"{BASE_URL}/a.png",
    }
    assert attempt == 1
    assert parse_payload({"contractor_id": "c", "images": []})[2] == 1


def test_retry_schedule_and_storage_paths() -> None:
    now = utc_now()

    assert retry_scheduled_for(1, now=now) == now + timedelta(minutes=15)
    assert retry_scheduled_for(4, now=now) == now + timedelta(minutes=120)
    assert retry_scheduled_for(5, now=now) is None
    assert retry_scheduled_for(0, now=now) is None
    assert extension_for("image/webp; charset=binary") == "webp"
    assert extension_for("application/octet-stream") == "jpg"
    assert storage_path_for(contractor_id="c1", content=b"abc", content_type="image/png") == (
        "reviews/c1/900150983cd2.png"
    )
