"""Job executor implementations."""

from content_jobs.jobs.executors.base import JobExecutor, ProgressCallback
from content_jobs.jobs.executors.reviewer_images import ReviewerImageRetryExecutor

__all__ = [
    "JobExecutor",
    "ProgressCallback",
    "ReviewerImageRetryExecutor",
]
