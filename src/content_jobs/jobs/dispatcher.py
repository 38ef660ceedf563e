"""Claim-and-run dispatcher for the background job queue."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from content_jobs.errors import (
    AgentNotFound,
    ExecutorNotFound,
    InvalidJobState,
    JobNotFound,
    ValidationError,
)
from content_jobs.jobs.models import ExecutionOutcome, JobView
from content_jobs.jobs.progress import ProgressReporter
from content_jobs.jobs.registry import ExecutorRegistry
from content_jobs.jobs.repository import JobRepository

logger = logging.getLogger(__name__)

# Configuration and input errors: retrying the same job cannot succeed.
NON_RETRYABLE_ERRORS: tuple[type[Exception], ...] = (
    ExecutorNotFound,
    AgentNotFound,
    ValidationError,
)


@dataclass(slots=True)
class DispatchSummary:
    """Aggregate dispatcher counters for CLI and API reporting."""

    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    retried: int = 0
    reaped: int = 0
    idle: int = 0
    job_id: str | None = None

    def add(self, other: DispatchSummary) -> None:
        self.processed += other.processed
        self.succeeded += other.succeeded
        self.failed += other.failed
        self.retried += other.retried
        self.reaped += other.reaped
        self.idle += other.idle


class JobDispatcher:
    """Reaps stuck jobs, claims one eligible job and runs its executor."""

    def __init__(
        self,
        *,
        repository: JobRepository,
        executors: ExecutorRegistry,
        progress_queue_size: int = 256,
    ) -> None:
        self.repository = repository
        self.executors = executors
        self.progress_queue_size = progress_queue_size

    def run_once(self, *, job_type: str | None = None) -> DispatchSummary:
        """Process at most one job from the queue."""

        summary = DispatchSummary()
        summary.reaped = len(self.repository.reap_stuck_jobs())
        job = self.repository.claim_next_job(job_type=job_type)
        if job is None:
            summary.idle = 1
            return summary
        self._dispatch(job=job, summary=summary)
        return summary

    def execute(self, *, job_id: str) -> DispatchSummary:
        """Claim one specific job if eligible and run it.

        Raises `InvalidJobState` when the job is already processing, terminal,
        or not yet due, so a repeated trigger never executes a job twice.
        """

        existing = self.repository.get_job(job_id=job_id)
        if existing is None:
            raise JobNotFound(job_id)
        summary = DispatchSummary()
        summary.reaped = len(self.repository.reap_stuck_jobs())
        job = self.repository.claim_job(job_id=job_id)
        if job is None:
            current = self.repository.get_job(job_id=job_id) or existing
            raise InvalidJobState(
                f"Job {job_id} is not eligible for execution (status={current.status.value}).",
            )
        self._dispatch(job=job, summary=summary)
        return summary

    def drain(self, *, max_jobs: int, job_type: str | None = None) -> DispatchSummary:
        """Run jobs back to back until the queue is idle or `max_jobs` ran."""

        aggregate = DispatchSummary()
        while aggregate.processed < max_jobs:
            summary = self.run_once(job_type=job_type)
            aggregate.add(summary)
            if summary.processed == 0:
                break
        return aggregate

    def _dispatch(self, *, job: JobView, summary: DispatchSummary) -> None:
        summary.processed = 1
        summary.job_id = job.id

        executor = self.executors.find(job.job_type)
        if executor is None:
            self._record_failure(
                job=job,
                error=ExecutorNotFound(job.job_type),
                retryable=False,
                summary=summary,
            )
            return

        logger.info(
            "Running job %s (%s) attempt %s/%s",
            job.id,
            job.job_type,
            job.attempts,
            job.max_attempts,
        )
        reporter = ProgressReporter(
            repository=self.repository,
            job_id=job.id,
            max_pending=self.progress_queue_size,
        )
        outcome: ExecutionOutcome | None = None
        failure: Exception | None = None
        retryable = True
        try:
            outcome = executor.execute(job, reporter)
        except NON_RETRYABLE_ERRORS as error:
            failure = error
            retryable = False
        except Exception as error:  # noqa: BLE001
            logger.exception("Executor for job %s (%s) raised.", job.id, job.job_type)
            failure = error
        finally:
            reporter.close()

        if failure is not None or outcome is None:
            self._record_failure(
                job=job,
                error=failure or RuntimeError("Executor returned no outcome."),
                retryable=retryable,
                summary=summary,
            )
            return

        if self.repository.complete(
            job_id=job.id,
            result=outcome.result,
            follow_up=outcome.follow_up,
        ):
            summary.succeeded = 1
            logger.info("Job %s (%s) completed.", job.id, job.job_type)
        else:
            logger.warning("Job %s finished but was no longer processing.", job.id)

    def _record_failure(
        self,
        *,
        job: JobView,
        error: Exception,
        retryable: bool,
        summary: DispatchSummary,
    ) -> None:
        message = f"{type(error).__name__}: {error}"
        outcome = self.repository.fail(job_id=job.id, error=message, retryable=retryable)
        if outcome is None:
            return
        if outcome.will_retry:
            summary.retried = 1
        else:
            summary.failed = 1
