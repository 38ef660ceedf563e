"""Exception hierarchy shared by the job queue, executors and article pipeline."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from content_jobs.articles.models import TokenUsage


class ContentJobsError(Exception):
    """Base exception for all application errors."""


class JobNotFound(ContentJobsError):
    def __init__(self, job_id: str) -> None:
        self.job_id = job_id
        super().__init__(f"Job not found: {job_id}")


class ConcurrencyConflict(ContentJobsError):
    """A job of the same type is already pending or processing."""

    def __init__(self, job_type: str, message: str | None = None) -> None:
        self.job_type = job_type
        super().__init__(message or f"A {job_type} job is already pending or processing.")


class InvalidJobState(ContentJobsError):
    """Requested transition is not allowed from the job's current status."""


class DuplicateRegistration(ContentJobsError):
    def __init__(self, key: str) -> None:
        self.key = key
        super().__init__(f"Already registered: {key}")


class ExecutorNotFound(ContentJobsError):
    """No executor is registered for a job type. Never retried."""

    def __init__(self, job_type: str) -> None:
        self.job_type = job_type
        super().__init__(f"No executor registered for job type: {job_type}")


class AgentNotFound(ContentJobsError):
    def __init__(self, agent_type: str) -> None:
        self.agent_type = agent_type
        super().__init__(f"Agent not found: {agent_type}")


class ValidationError(ContentJobsError):
    """Malformed payload, settings or agent input."""


class LlmProviderError(ContentJobsError):
    """LLM completion call failed, or its output could not be used.

    `usage` holds tokens already spent before the failure, if any.
    """

    def __init__(self, message: str, *, usage: TokenUsage | None = None) -> None:
        self.usage = usage
        super().__init__(message)


class StageFailure(ContentJobsError):
    """An article pipeline stage failed; the whole attempt is aborted."""

    def __init__(
        self,
        stage: str,
        message: str,
        *,
        usage: TokenUsage | None = None,
    ) -> None:
        self.stage = stage
        self.message = message
        self.usage = usage
        super().__init__(f"[{stage}] {message}")


class JobTimeoutError(ContentJobsError):
    """Job exceeded its wall-clock budget."""


class RateLimitSignal(ContentJobsError):
    """Provider asked us to back off. Control signal, not a failure."""
