"""Domain models for the background job queue."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class JobStatus(str, Enum):
    """Durable job lifecycle states."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


ACTIVE_STATUSES = frozenset({JobStatus.PENDING, JobStatus.PROCESSING})
TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED})


class JobType(str, Enum):
    """Job types shipped with this package. The column itself is an open string."""

    REVIEWER_IMAGE_RETRY = "reviewer_image_retry"
    ARTICLE_PIPELINE = "article_pipeline"


@dataclass(slots=True)
class JobCreate:
    """Input payload for creating a job."""

    job_type: str
    payload: dict[str, Any] = field(default_factory=dict)
    created_by: str | None = None
    scheduled_for: datetime | None = None
    max_attempts: int = 3
    total_items: int = 0


@dataclass(slots=True)
class JobView:
    """Readable job view for dispatcher, API and CLI."""

    id: str
    job_type: str
    status: JobStatus
    attempts: int
    max_attempts: int
    next_retry_at: datetime | None
    scheduled_for: datetime | None
    total_items: int
    processed_items: int
    failed_items: int
    payload: dict[str, Any]
    result: dict[str, Any] | None
    last_error: str | None
    started_at: datetime | None
    completed_at: datetime | None
    created_by: str | None
    created_at: datetime
    updated_at: datetime


@dataclass(slots=True)
class JobProgress:
    status: JobStatus
    total_items: int
    processed_items: int
    failed_items: int
    percent_complete: int


@dataclass(slots=True)
class ProgressUpdate:
    """Partial counter update; `None` leaves the stored value untouched."""

    total_items: int | None = None
    processed_items: int | None = None
    failed_items: int | None = None

    def as_values(self) -> dict[str, int]:
        values: dict[str, int] = {}
        if self.total_items is not None:
            values["total_items"] = self.total_items
        if self.processed_items is not None:
            values["processed_items"] = self.processed_items
        if self.failed_items is not None:
            values["failed_items"] = self.failed_items
        return values


@dataclass(slots=True)
class JobPage:
    items: list[JobView]
    total: int
    limit: int
    offset: int


@dataclass(slots=True)
class FailOutcome:
    """What `fail` decided for a job."""

    job_id: str
    will_retry: bool
    next_retry_at: datetime | None
    attempts: int
    max_attempts: int


@dataclass(slots=True)
class ExecutionOutcome:
    """Executor return value: job result plus an optional delayed follow-up job."""

    result: dict[str, Any]
    follow_up: JobCreate | None = None


def percent_complete(*, processed_items: int, total_items: int) -> int:
    if total_items <= 0:
        return 0
    return round(processed_items / total_items * 100)
