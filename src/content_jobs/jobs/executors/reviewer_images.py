"""Re-download reviewer photos that were deferred by provider rate limiting.

Images are copied one at a time into blob storage. When the image host rate
limits us again, the batch stops and the unfinished images are handed to a
new `reviewer_image_retry` job scheduled after an escalating cooldown. After
the last cooldown the leftovers are abandoned and the external URLs stay in
use.
"""

from __future__ import annotations

import hashlib
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from content_jobs.errors import ValidationError
from content_jobs.jobs.executors.base import ProgressCallback
from content_jobs.jobs.executors.review_photos import ReviewPhotoRepository
from content_jobs.jobs.models import ExecutionOutcome, JobCreate, JobType, JobView
from content_jobs.jobs.system_log import SystemLogService
from content_jobs.jobs.throttled import BatchResult, ThrottledBatch
from content_jobs.providers.blob import BlobStore
from content_jobs.providers.http import HttpFetcher
from content_jobs.storage.common import utc_now

logger = logging.getLogger(__name__)

RETRY_COOLDOWN_MINUTES: tuple[int, ...] = (15, 30, 60, 120)
MAX_RETRY_ATTEMPTS = 4

_EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
    "image/gif": "gif",
}


@dataclass(slots=True, frozen=True)
class ReviewImage:
    review_id: str
    original_url: str

    def as_payload(self) -> dict[str, str]:
        return {"review_id": self.review_id, "original_url": self.original_url}


def retry_scheduled_for(attempt_number: int, *, now: datetime | None = None) -> datetime | None:
    """Start time for retry attempt `attempt_number` (1-based); `None` past the last cooldown."""

    if attempt_number < 1 or attempt_number > len(RETRY_COOLDOWN_MINUTES):
        return None
    return (now or utc_now()) + timedelta(minutes=RETRY_COOLDOWN_MINUTES[attempt_number - 1])


def extension_for(content_type: str) -> str:
    mime = content_type.split(";", 1)[0].strip().lower()
    return _EXTENSIONS.get(mime, "jpg")


def storage_path_for(*, contractor_id: str, content: bytes, content_type: str) -> str:
    digest = hashlib.md5(content, usedforsecurity=False).hexdigest()[:12]
    return f"reviews/{contractor_id}/{digest}.{extension_for(content_type)}"


def parse_payload(payload: dict[str, Any]) -> tuple[str, list[ReviewImage], int]:
    contractor_id = payload.get("contractor_id")
    if not isinstance(contractor_id, str) or not contractor_id:
        raise ValidationError("payload.contractor_id must be a non-empty string")
    raw_images = payload.get("images")
    if not isinstance(raw_images, list):
        raise ValidationError("payload.images must be a list")
    images: list[ReviewImage] = []
    for index, raw in enumerate(raw_images):
        if not isinstance(raw, dict):
            raise ValidationError(f"payload.images[{index}] must be an object")
        review_id = raw.get("review_id")
        original_url = raw.get("original_url")
        if not isinstance(review_id, str) or not isinstance(original_url, str) or not original_url:
            raise ValidationError(
                f"payload.images[{index}] needs string review_id and original_url",
            )
        images.append(ReviewImage(review_id=review_id, original_url=original_url))
    attempt_number = payload.get("attempt_number", 1)
    if not isinstance(attempt_number, int) or attempt_number < 1:
        raise ValidationError("payload.attempt_number must be a positive integer")
    return contractor_id, images, attempt_number


class ReviewerImageRetryExecutor:
    """Executor for `reviewer_image_retry` jobs."""

    job_type = JobType.REVIEWER_IMAGE_RETRY.value

    def __init__(  # noqa: PLR0913
        self,
        *,
        fetcher: HttpFetcher,
        blob_store: BlobStore,
        photos: ReviewPhotoRepository,
        system_log: SystemLogService | None = None,
        delay_between_items_ms: int = 300,
        item_timeout_seconds: float = 5.0,
        max_attempts: int = MAX_RETRY_ATTEMPTS,
        sleep: Callable[[float], None] | None = None,
    ) -> None:
        self.fetcher = fetcher
        self.blob_store = blob_store
        self.photos = photos
        self.system_log = system_log
        self.delay_seconds = delay_between_items_ms / 1000
        self.item_timeout_seconds = item_timeout_seconds
        self.max_attempts = min(max_attempts, len(RETRY_COOLDOWN_MINUTES))
        self._sleep = sleep

    def execute(self, job: JobView, progress: ProgressCallback) -> ExecutionOutcome:
        contractor_id, images, attempt_number = parse_payload(job.payload)
        logger.info(
            "Starting retry attempt %s for %s images (contractor: %s)",
            attempt_number,
            len(images),
            contractor_id,
        )
        progress(total_items=len(images), processed_items=0, failed_items=0)
        self._log(
            job.id,
            "retry_start",
            f"Retry attempt {attempt_number}",
            {
                "contractor_id": contractor_id,
                "image_count": len(images),
                "attempt_number": attempt_number,
            },
        )

        def _on_item_done(partial: BatchResult[ReviewImage]) -> None:
            progress(processed_items=partial.attempted, failed_items=len(partial.failed))

        batch_kwargs: dict[str, Any] = {
            "operation": lambda image: self._copy_image(contractor_id, image),
            "delay_seconds": self.delay_seconds,
            "on_item_done": _on_item_done,
        }
        if self._sleep is not None:
            batch_kwargs["sleep"] = self._sleep
        batch = ThrottledBatch(**batch_kwargs).run(images)

        result: dict[str, Any] = {
            "contractor_id": contractor_id,
            "total_images": len(images),
            "downloaded": len(batch.succeeded),
            "failed": len(batch.failed),
            "remaining_images": [],
            "requeued_for_retry": False,
        }
        if not batch.rate_limited:
            self._log(job.id, "retry_complete", "Retry completed successfully", result)
            logger.info(
                "Completed: %s downloaded, %s failed",
                result["downloaded"],
                result["failed"],
            )
            return ExecutionOutcome(result=result)

        deferred = [
            image for image in (batch.rate_limited_item, *batch.remaining) if image is not None
        ]
        result["remaining_images"] = [image.as_payload() for image in deferred]
        next_attempt = attempt_number + 1
        scheduled_for = (
            retry_scheduled_for(next_attempt) if next_attempt <= self.max_attempts else None
        )

        if scheduled_for is None:
            logger.warning(
                "Max retries (%s) exceeded for contractor %s. Abandoning %s images.",
                self.max_attempts,
                contractor_id,
                len(deferred),
            )
            result["failed"] = len(batch.failed) + len(deferred)
            self._log(
                job.id,
                "retry_abandoned",
                "Max retries exceeded",
                {
                    "contractor_id": contractor_id,
                    "remaining_images": len(deferred),
                    "attempt_number": attempt_number,
                },
                level="warning",
            )
            return ExecutionOutcome(result=result)

        result["requeued_for_retry"] = True
        self._log(
            job.id,
            "retry_requeued",
            f"Queued attempt {next_attempt}",
            {
                "contractor_id": contractor_id,
                "remaining_images": len(deferred),
                "next_attempt": next_attempt,
                "scheduled_for": scheduled_for.isoformat(),
            },
        )
        follow_up = JobCreate(
            job_type=self.job_type,
            payload={
                "contractor_id": contractor_id,
                "images": result["remaining_images"],
                "attempt_number": next_attempt,
            },
            created_by=job.created_by,
            scheduled_for=scheduled_for,
            total_items=len(deferred),
        )
        return ExecutionOutcome(result=result, follow_up=follow_up)

    def _copy_image(self, contractor_id: str, image: ReviewImage) -> str:
        downloaded = self.fetcher.download(
            image.original_url,
            timeout_seconds=self.item_timeout_seconds,
        )
        path = storage_path_for(
            contractor_id=contractor_id,
            content=downloaded.content,
            content_type=downloaded.content_type,
        )
        stored_path = self.blob_store.upload(
            path,
            downloaded.content,
            content_type=downloaded.content_type,
        )
        self.photos.link(
            review_id=image.review_id,
            contractor_id=contractor_id,
            original_url=image.original_url,
            storage_path=stored_path,
        )
        return stored_path

    def _log(
        self,
        job_id: str,
        action: str,
        message: str,
        metadata: dict[str, Any],
        *,
        level: str = "info",
    ) -> None:
        if self.system_log is not None:
            self.system_log.log_job_event(
                job_id=job_id,
                action=action,
                message=message,
                level=level,
                metadata=metadata,
            )
