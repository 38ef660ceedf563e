"""Executor interface for job dispatch."""

from __future__ import annotations

from typing import Protocol

from content_jobs.jobs.models import ExecutionOutcome, JobView


class ProgressCallback(Protocol):
    """Best-effort progress sink handed to executors. Never raises."""

    def __call__(
        self,
        *,
        total_items: int | None = None,
        processed_items: int | None = None,
        failed_items: int | None = None,
    ) -> None: ...


class JobExecutor(Protocol):
    """Protocol implemented by job executors."""

    job_type: str

    def execute(self, job: JobView, progress: ProgressCallback) -> ExecutionOutcome:
        """Run one job attempt from the beginning and return its result.

        Raise to fail the attempt; the dispatcher decides retry-or-fail.
        """
