"""Controllers for job queue and worker CLI commands."""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

from content_jobs.bootstrap import open_runtime
from content_jobs.config import Settings
from content_jobs.errors import JobNotFound, ValidationError
from content_jobs.jobs.dispatcher import DispatchSummary
from content_jobs.jobs.models import JobCreate, JobStatus, JobView
from content_jobs.jobs.ticker import JobTicker
from content_jobs.storage.common import utc_now


@dataclass(slots=True)
class JobCreateCommand:
    """CLI input for job creation."""

    db_path: Path | None
    job_type: str
    payload_json: str
    created_by: str | None
    delay_minutes: int
    max_attempts: int


@dataclass(slots=True)
class JobListCommand:
    """CLI input for job listing."""

    db_path: Path | None
    status: str | None
    job_type: str | None
    limit: int
    offset: int


@dataclass(slots=True)
class JobIdCommand:
    """CLI input for commands addressing one job."""

    db_path: Path | None
    job_id: str


@dataclass(slots=True)
class JobTickCommand:
    """CLI input for a manual dispatcher tick."""

    db_path: Path | None
    job_type: str | None
    max_jobs: int


@dataclass(slots=True)
class WorkerRunCommand:
    """CLI input for the recurring worker loop."""

    db_path: Path | None
    interval_seconds: float | None
    max_ticks: int | None


class JobsCliController:
    """Coordinates job queue, dispatcher and worker CLI operations."""

    def create(self, command: JobCreateCommand) -> list[str]:
        payload = _parse_payload(command.payload_json)
        scheduled_for = (
            utc_now() + timedelta(minutes=command.delay_minutes) if command.delay_minutes else None
        )
        settings = Settings.from_env(db_path=command.db_path)
        with open_runtime(settings) as runtime:
            job = runtime.jobs.create_job(
                JobCreate(
                    job_type=command.job_type,
                    payload=payload,
                    created_by=command.created_by,
                    scheduled_for=scheduled_for,
                    max_attempts=command.max_attempts,
                ),
            )
        lines = [f"Job created: job_id={job.id} type={job.job_type} status={job.status.value}"]
        if job.scheduled_for is not None:
            lines.append(f"Scheduled for: {job.scheduled_for.isoformat()}")
        return lines

    def list_jobs(self, command: JobListCommand) -> list[str]:
        status = _parse_status(command.status)
        settings = Settings.from_env(db_path=command.db_path)
        with open_runtime(settings) as runtime:
            page = runtime.jobs.list_jobs(
                status=status,
                job_type=command.job_type,
                limit=command.limit,
                offset=command.offset,
            )

        lines = [f"Jobs: {len(page.items)} of {page.total}"]
        for job in page.items:
            lines.append(
                f"  {job.id} type={job.job_type} status={job.status.value} "
                f"attempts={job.attempts}/{job.max_attempts} "
                f"created_at={job.created_at.isoformat()}",
            )
        return lines

    def inspect(self, command: JobIdCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with open_runtime(settings) as runtime:
            job = runtime.jobs.get_job(job_id=command.job_id)
            logs = runtime.jobs.system_log.get_job_logs(job_id=command.job_id)
        if job is None:
            raise JobNotFound(command.job_id)

        lines = _job_lines(job)
        lines.append(f"Logs: {len(logs)}")
        for entry in logs:
            lines.append(
                f"  {entry.created_at.isoformat()} [{entry.level}] {entry.action}: "
                f"{entry.message}",
            )
        return lines

    def progress(self, command: JobIdCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with open_runtime(settings) as runtime:
            progress = runtime.jobs.get_progress(job_id=command.job_id)
        if progress is None:
            raise JobNotFound(command.job_id)
        return [
            f"Progress: status={progress.status.value} "
            f"processed={progress.processed_items}/{progress.total_items} "
            f"failed={progress.failed_items} percent={progress.percent_complete}",
        ]

    def cancel(self, command: JobIdCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with open_runtime(settings) as runtime:
            job = runtime.jobs.cancel(job_id=command.job_id, actor_id="cli")
        return [f"Job cancelled: job_id={job.id} status={job.status.value}"]

    def retry(self, command: JobIdCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with open_runtime(settings) as runtime:
            job = runtime.jobs.retry(job_id=command.job_id, actor_id="cli")
        return [f"Job re-queued: job_id={job.id} status={job.status.value}"]

    def execute(self, command: JobIdCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with open_runtime(settings) as runtime:
            summary = runtime.dispatcher.execute(job_id=command.job_id)
            job = runtime.jobs.get_job(job_id=command.job_id)
        lines = [_summary_line(summary)]
        if job is not None:
            lines.append(f"Job status: {job.status.value}")
            if job.last_error:
                lines.append(f"Last error: {job.last_error}")
        return lines

    def tick(self, command: JobTickCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        settings.validate_for_worker()
        with open_runtime(settings) as runtime:
            summary = runtime.dispatcher.drain(
                max_jobs=command.max_jobs,
                job_type=command.job_type,
            )
        return [_summary_line(summary)]

    def run_worker(self, command: WorkerRunCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        settings.validate_for_worker()
        interval = command.interval_seconds or settings.queue.tick_interval_seconds
        aggregate = DispatchSummary()
        with open_runtime(settings) as runtime:

            def _tick() -> None:
                aggregate.add(runtime.dispatcher.run_once())

            ticker = JobTicker(tick=_tick, interval_seconds=interval)
            ticker.run_until_signal(max_ticks=command.max_ticks)

        return [
            f"Worker stopped: ticks={ticker.ticks_run} skipped={ticker.ticks_skipped} "
            f"errors={ticker.tick_errors}",
            _summary_line(aggregate),
        ]


def _summary_line(summary: DispatchSummary) -> str:
    return (
        "Dispatcher summary: "
        f"processed={summary.processed} succeeded={summary.succeeded} "
        f"failed={summary.failed} retried={summary.retried} "
        f"reaped={summary.reaped} idle={summary.idle}"
    )


def _job_lines(job: JobView) -> list[str]:
    return [
        f"Job: {job.id}",
        f"Type: {job.job_type}",
        f"Status: {job.status.value}",
        f"Attempts: {job.attempts}/{job.max_attempts}",
        f"Next retry: {_iso(job.next_retry_at)}",
        f"Scheduled for: {_iso(job.scheduled_for)}",
        f"Items: processed={job.processed_items} failed={job.failed_items} "
        f"total={job.total_items}",
        f"Error: {job.last_error or '-'}",
        f"Payload: {json.dumps(job.payload, sort_keys=True)}",
        f"Result: {json.dumps(job.result, sort_keys=True) if job.result is not None else '-'}",
    ]


def _iso(value: datetime | None) -> str:
    return value.isoformat() if value is not None else "-"


def _parse_payload(raw: str) -> dict[str, Any]:
    try:
        payload = json.loads(raw or "{}")
    except json.JSONDecodeError as error:
        raise ValidationError(f"--payload is not valid JSON: {error}") from error
    if not isinstance(payload, dict):
        raise ValidationError("--payload must be a JSON object")
    return payload


def _parse_status(raw: str | None) -> JobStatus | None:
    if raw is None:
        return None
    try:
        return JobStatus(raw.strip().lower())
    except ValueError as error:
        allowed = ", ".join(status.value for status in JobStatus)
        raise ValidationError(f"Unsupported status {raw!r}. Use one of: {allowed}") from error
