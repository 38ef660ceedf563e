"""Persistent job store backed by SQLModel + SQLite."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta
from pathlib import Path
from uuid import uuid4

from sqlalchemy import func
from sqlalchemy import select as sa_select
from sqlalchemy import update as sa_update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import aliased
from sqlmodel import Session, col, select

from content_jobs.config import DEFAULT_RETRY_BACKOFF_MINUTES
from content_jobs.errors import ConcurrencyConflict, InvalidJobState, JobNotFound
from content_jobs.jobs.models import (
    ACTIVE_STATUSES,
    FailOutcome,
    JobCreate,
    JobPage,
    JobProgress,
    JobStatus,
    JobView,
    ProgressUpdate,
    percent_complete,
)
from content_jobs.jobs.system_log import SystemLogService
from content_jobs.storage.alembic_runner import upgrade_head
from content_jobs.storage.common import (
    build_sqlite_engine,
    dump_json,
    load_json_object,
    optional_utc,
    to_db_datetime,
    to_utc_aware_datetime,
    utc_now,
)
from content_jobs.storage.sqlmodel_models import BackgroundJob

logger = logging.getLogger(__name__)

DEFAULT_STUCK_JOB_TIMEOUT = timedelta(minutes=30)
MAX_LIST_LIMIT = 100


class JobRepository:
    """Job queue persistence facade.

    Every state transition is a conditional UPDATE on the row's current status,
    checked through `rowcount`, so concurrent dispatchers never both win the
    same transition. The partial unique index on `job_type` for active
    statuses is the single authority for "one active job per type".
    """

    def __init__(
        self,
        db_path: Path,
        *,
        sqlite_busy_timeout_ms: int = 5_000,
        retry_backoff_minutes: tuple[int, ...] = DEFAULT_RETRY_BACKOFF_MINUTES,
        stuck_job_timeout: timedelta = DEFAULT_STUCK_JOB_TIMEOUT,
    ) -> None:
        if not retry_backoff_minutes:
            raise ValueError("retry_backoff_minutes must not be empty.")
        self.db_path = db_path
        self.retry_backoff_minutes = retry_backoff_minutes
        self.stuck_job_timeout = stuck_job_timeout
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=sqlite_busy_timeout_ms)
        self.system_log = SystemLogService(self.engine)

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()

    def init_schema(self) -> None:
        """Run schema migrations."""

        upgrade_head(self.db_path)

    def create_job(self, payload: JobCreate) -> JobView:
        """Insert a pending job, rejecting a second active job of the same type."""

        with Session(self.engine) as session:
            row = self.stage_job(session=session, payload=payload)
            try:
                session.commit()
            except IntegrityError as error:
                session.rollback()
                raise ConcurrencyConflict(payload.job_type) from error
            session.refresh(row)
            return _to_job_view(row)

    def stage_job(self, *, session: Session, payload: JobCreate) -> BackgroundJob:
        """Add a pending job to the caller's session; the caller commits.

        The active-type check fires on flush or commit as `IntegrityError`.
        """

        if payload.max_attempts <= 0:
            raise ValueError("max_attempts must be a positive integer.")
        job_id = str(uuid4())
        row = _new_job_row(job_id=job_id, payload=payload, now=utc_now())
        session.add(row)
        self.system_log.log_job_created(
            job_id=job_id,
            job_type=payload.job_type,
            created_by=payload.created_by,
            session=session,
        )
        return row

    def to_view(self, row: BackgroundJob) -> JobView:
        return _to_job_view(row)

    def claim_next_job(
        self,
        *,
        job_type: str | None = None,
        now: datetime | None = None,
    ) -> JobView | None:
        """Atomically claim the oldest eligible pending job."""

        while True:
            claim_time = now or utc_now()
            with Session(self.engine) as session:
                statement = (
                    select(BackgroundJob)
                    .where(*_eligible_conditions(claim_time))
                    .order_by(col(BackgroundJob.created_at).asc())
                    .limit(1)
                    .with_for_update(skip_locked=True)
                )
                if job_type is not None:
                    statement = statement.where(BackgroundJob.job_type == job_type)
                candidate = session.exec(statement).one_or_none()
                if candidate is None:
                    return None

                claimed = self._transition_to_processing(
                    session=session,
                    row=candidate,
                    now=claim_time,
                )
                if claimed is None:
                    session.rollback()
                    continue
                session.commit()
                return claimed

    def claim_job(self, *, job_id: str, now: datetime | None = None) -> JobView | None:
        """Claim one specific job if it is currently eligible."""

        claim_time = now or utc_now()
        with Session(self.engine) as session:
            candidate = session.exec(
                select(BackgroundJob)
                .where(BackgroundJob.id == job_id, *_eligible_conditions(claim_time))
                .with_for_update(skip_locked=True),
            ).one_or_none()
            if candidate is None:
                return None
            claimed = self._transition_to_processing(
                session=session,
                row=candidate,
                now=claim_time,
            )
            if claimed is None:
                session.rollback()
                return None
            session.commit()
            return claimed

    def report_progress(self, *, job_id: str, update: ProgressUpdate) -> bool:
        """Update progress counters of a processing job."""

        values = update.as_values()
        if not values:
            return False
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(BackgroundJob)
                .where(
                    col(BackgroundJob.id) == job_id,
                    col(BackgroundJob.status) == JobStatus.PROCESSING.value,
                )
                .values(**values, updated_at=to_db_datetime(utc_now())),
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            session.commit()
            return True

    def complete(
        self,
        *,
        job_id: str,
        result: dict[str, object],
        follow_up: JobCreate | None = None,
    ) -> bool:
        """Mark a processing job completed; optionally enqueue a follow-up job.

        Returns False when the job is no longer processing. A job cancelled
        while its executor ran keeps status `cancelled` but still gets the
        result written.
        """

        try:
            return self._complete(job_id=job_id, result=result, follow_up=follow_up)
        except IntegrityError:
            if follow_up is None:
                raise
            logger.warning(
                "Follow-up %s job for %s lost an active-job race; completing without it.",
                follow_up.job_type,
                job_id,
            )
            return self._complete(job_id=job_id, result=result, follow_up=None)

    def fail(
        self,
        *,
        job_id: str,
        error: str,
        retryable: bool = True,
        now: datetime | None = None,
    ) -> FailOutcome | None:
        """Record a failed attempt: schedule a retry or fail permanently."""

        failed_at = now or utc_now()
        with Session(self.engine) as session:
            row = session.exec(
                select(BackgroundJob).where(
                    BackgroundJob.id == job_id,
                    BackgroundJob.status == JobStatus.PROCESSING.value,
                ),
            ).one_or_none()
            if row is None:
                logger.info("Ignoring failure for job %s: no longer processing.", job_id)
                return None
            outcome = self._fail_row(
                session=session,
                row=row,
                error=error,
                retryable=retryable,
                now=failed_at,
            )
            if outcome is None:
                session.rollback()
                return None
            session.commit()
            return outcome

    def reap_stuck_jobs(self, *, now: datetime | None = None) -> list[FailOutcome]:
        """Fail every processing job whose attempt outlived the stuck-job timeout."""

        reap_time = now or utc_now()
        cutoff = reap_time - self.stuck_job_timeout
        timeout_minutes = int(self.stuck_job_timeout.total_seconds() // 60)
        outcomes: list[FailOutcome] = []
        with Session(self.engine) as session:
            rows = session.exec(
                select(BackgroundJob).where(
                    BackgroundJob.status == JobStatus.PROCESSING.value,
                    col(BackgroundJob.started_at).is_not(None),
                    col(BackgroundJob.started_at) < to_db_datetime(cutoff),
                ),
            ).all()
            for row in rows:
                outcome = self._fail_row(
                    session=session,
                    row=row,
                    error=f"JobTimeoutError: job exceeded {timeout_minutes} minute timeout",
                    retryable=True,
                    now=reap_time,
                )
                if outcome is not None:
                    outcomes.append(outcome)
            session.commit()
        for outcome in outcomes:
            logger.warning(
                "Reaped stuck job %s (attempt %s/%s, will_retry=%s).",
                outcome.job_id,
                outcome.attempts,
                outcome.max_attempts,
                outcome.will_retry,
            )
        return outcomes

    def cancel(self, *, job_id: str, actor_id: str | None = None) -> JobView:
        """Cancel a pending/processing job. Does not interrupt a running executor."""

        now = utc_now()
        with Session(self.engine) as session:
            row = self._get_row(session=session, job_id=job_id)
            previous = JobStatus(row.status)
            if previous not in ACTIVE_STATUSES:
                raise InvalidJobState(f"Job cannot be cancelled from status={row.status}")

            result = session.exec(
                sa_update(BackgroundJob)
                .where(
                    col(BackgroundJob.id) == job_id,
                    col(BackgroundJob.status) == previous.value,
                )
                .values(
                    status=JobStatus.CANCELLED.value,
                    next_retry_at=None,
                    completed_at=to_db_datetime(now),
                    updated_at=to_db_datetime(now),
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                raise InvalidJobState(
                    f"Job state changed concurrently while cancelling (job_id={job_id}).",
                )
            self.system_log.log_job_cancelled(
                job_id=job_id,
                job_type=row.job_type,
                previous_status=previous.value,
                actor_id=actor_id,
                session=session,
            )
            session.commit()
            session.refresh(row)
            return _to_job_view(row)

    def retry(self, *, job_id: str, actor_id: str | None = None) -> JobView:
        """Operator retry of a permanently failed job with a fresh attempt budget."""

        now = utc_now()
        with Session(self.engine) as session:
            row = self._get_row(session=session, job_id=job_id)
            if row.status != JobStatus.FAILED.value:
                raise InvalidJobState(
                    f"Only failed jobs can be retried manually, got {row.status}.",
                )
            try:
                result = session.exec(
                    sa_update(BackgroundJob)
                    .where(
                        col(BackgroundJob.id) == job_id,
                        col(BackgroundJob.status) == JobStatus.FAILED.value,
                    )
                    .values(
                        status=JobStatus.PENDING.value,
                        attempts=0,
                        next_retry_at=None,
                        processed_items=0,
                        failed_items=0,
                        result_json=None,
                        last_error=None,
                        started_at=None,
                        completed_at=None,
                        updated_at=to_db_datetime(now),
                    ),
                )
            except IntegrityError as error:
                session.rollback()
                raise ConcurrencyConflict(row.job_type) from error
            if result.rowcount != 1:
                session.rollback()
                raise InvalidJobState(
                    f"Job state changed concurrently while retrying (job_id={job_id}).",
                )
            self.system_log.log_job_event(
                job_id=job_id,
                action="manual_retry",
                message=f"Job re-queued by operator: {row.job_type}",
                metadata={"job_type": row.job_type, "actor_id": actor_id},
                session=session,
            )
            session.commit()
            session.refresh(row)
            return _to_job_view(row)

    def get_job(self, *, job_id: str) -> JobView | None:
        with Session(self.engine) as session:
            row = session.get(BackgroundJob, job_id)
            return _to_job_view(row) if row is not None else None

    def get_progress(self, *, job_id: str) -> JobProgress | None:
        job = self.get_job(job_id=job_id)
        if job is None:
            return None
        return JobProgress(
            status=job.status,
            total_items=job.total_items,
            processed_items=job.processed_items,
            failed_items=job.failed_items,
            percent_complete=percent_complete(
                processed_items=job.processed_items,
                total_items=job.total_items,
            ),
        )

    def list_jobs(
        self,
        *,
        status: JobStatus | None = None,
        job_type: str | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> JobPage:
        """List jobs newest first with optional status/type filters."""

        if not 1 <= limit <= MAX_LIST_LIMIT:
            raise ValueError(f"limit must be between 1 and {MAX_LIST_LIMIT}.")
        if offset < 0:
            raise ValueError("offset must be >= 0.")

        conditions = []
        if status is not None:
            conditions.append(BackgroundJob.status == status.value)
        if job_type is not None:
            conditions.append(BackgroundJob.job_type == job_type)

        with Session(self.engine) as session:
            total = session.exec(
                select(func.count()).select_from(BackgroundJob).where(*conditions),
            ).one()
            rows = session.exec(
                select(BackgroundJob)
                .where(*conditions)
                .order_by(col(BackgroundJob.created_at).desc())
                .offset(offset)
                .limit(limit),
            ).all()
        return JobPage(
            items=[_to_job_view(row) for row in rows],
            total=int(total),
            limit=limit,
            offset=offset,
        )

    def retry_delay(self, attempts: int) -> timedelta:
        """Backoff after the given number of attempts; the last entry repeats."""

        index = min(max(attempts - 1, 0), len(self.retry_backoff_minutes) - 1)
        return timedelta(minutes=self.retry_backoff_minutes[index])

    def _transition_to_processing(
        self,
        *,
        session: Session,
        row: BackgroundJob,
        now: datetime,
    ) -> JobView | None:
        result = session.exec(
            sa_update(BackgroundJob)
            .where(
                col(BackgroundJob.id) == row.id,
                col(BackgroundJob.status) == JobStatus.PENDING.value,
                col(BackgroundJob.attempts) == row.attempts,
            )
            .values(
                status=JobStatus.PROCESSING.value,
                attempts=row.attempts + 1,
                next_retry_at=None,
                started_at=to_db_datetime(now),
                completed_at=None,
                updated_at=to_db_datetime(now),
            ),
        )
        if result.rowcount != 1:
            return None
        session.refresh(row)
        self.system_log.log_job_started(
            job_id=row.id,
            job_type=row.job_type,
            attempt=row.attempts,
            session=session,
        )
        return _to_job_view(row)

    def _complete(
        self,
        *,
        job_id: str,
        result: dict[str, object],
        follow_up: JobCreate | None,
    ) -> bool:
        now = utc_now()
        with Session(self.engine) as session:
            row = self._get_row(session=session, job_id=job_id)
            if row.status == JobStatus.CANCELLED.value:
                session.exec(
                    sa_update(BackgroundJob)
                    .where(
                        col(BackgroundJob.id) == job_id,
                        col(BackgroundJob.status) == JobStatus.CANCELLED.value,
                    )
                    .values(result_json=dump_json(result), updated_at=to_db_datetime(now)),
                )
                self.system_log.log_job_event(
                    job_id=job_id,
                    action="result_after_cancel",
                    message="Executor finished after cancellation; result recorded.",
                    level="warning",
                    session=session,
                )
                session.commit()
                return False

            updated = session.exec(
                sa_update(BackgroundJob)
                .where(
                    col(BackgroundJob.id) == job_id,
                    col(BackgroundJob.status) == JobStatus.PROCESSING.value,
                )
                .values(
                    status=JobStatus.COMPLETED.value,
                    result_json=dump_json(result),
                    last_error=None,
                    next_retry_at=None,
                    completed_at=to_db_datetime(now),
                    updated_at=to_db_datetime(now),
                ),
            )
            if updated.rowcount != 1:
                session.rollback()
                return False

            started_at = optional_utc(row.started_at)
            duration_ms = (
                int((now - started_at).total_seconds() * 1000) if started_at is not None else None
            )
            self.system_log.log_job_completed(
                job_id=job_id,
                job_type=row.job_type,
                duration_ms=duration_ms,
                session=session,
            )
            if follow_up is not None:
                self._add_follow_up(session=session, parent_id=job_id, follow_up=follow_up, now=now)
            session.commit()
            return True

    def _add_follow_up(
        self,
        *,
        session: Session,
        parent_id: str,
        follow_up: JobCreate,
        now: datetime,
    ) -> None:
        session.flush()
        active = session.exec(
            select(BackgroundJob.id).where(
                BackgroundJob.job_type == follow_up.job_type,
                col(BackgroundJob.status).in_([status.value for status in ACTIVE_STATUSES]),
            ),
        ).first()
        if active is not None:
            logger.warning(
                "Skipping follow-up %s job for %s: job %s is already active.",
                follow_up.job_type,
                parent_id,
                active,
            )
            self.system_log.log_job_event(
                job_id=parent_id,
                action="follow_up_skipped",
                message=f"Follow-up {follow_up.job_type} job skipped: {active} already active.",
                level="warning",
                session=session,
            )
            return
        follow_up_id = str(uuid4())
        session.add(_new_job_row(job_id=follow_up_id, payload=follow_up, now=now))
        self.system_log.log_job_created(
            job_id=follow_up_id,
            job_type=follow_up.job_type,
            created_by=follow_up.created_by,
            session=session,
        )
        self.system_log.log_job_event(
            job_id=parent_id,
            action="follow_up_queued",
            message=f"Follow-up {follow_up.job_type} job queued: {follow_up_id}",
            metadata={
                "follow_up_id": follow_up_id,
                "scheduled_for": (
                    to_utc_aware_datetime(follow_up.scheduled_for).isoformat()
                    if follow_up.scheduled_for is not None
                    else None
                ),
            },
            session=session,
        )

    def _fail_row(  # noqa: PLR0913
        self,
        *,
        session: Session,
        row: BackgroundJob,
        error: str,
        retryable: bool,
        now: datetime,
    ) -> FailOutcome | None:
        will_retry = retryable and row.attempts < row.max_attempts
        next_retry_at = now + self.retry_delay(row.attempts) if will_retry else None
        values: dict[str, object] = {
            "status": JobStatus.PENDING.value if will_retry else JobStatus.FAILED.value,
            "last_error": error,
            "next_retry_at": to_db_datetime(next_retry_at) if next_retry_at else None,
            "completed_at": None if will_retry else to_db_datetime(now),
            "updated_at": to_db_datetime(now),
        }
        result = session.exec(
            sa_update(BackgroundJob)
            .where(
                col(BackgroundJob.id) == row.id,
                col(BackgroundJob.status) == JobStatus.PROCESSING.value,
                col(BackgroundJob.attempts) == row.attempts,
            )
            .values(**values),
        )
        if result.rowcount != 1:
            return None
        self.system_log.log_job_failed(
            job_id=row.id,
            job_type=row.job_type,
            error=error,
            will_retry=will_retry,
            attempts=row.attempts,
            max_attempts=row.max_attempts,
            session=session,
        )
        return FailOutcome(
            job_id=row.id,
            will_retry=will_retry,
            next_retry_at=next_retry_at,
            attempts=row.attempts,
            max_attempts=row.max_attempts,
        )

    def _get_row(self, *, session: Session, job_id: str) -> BackgroundJob:
        row = session.exec(select(BackgroundJob).where(BackgroundJob.id == job_id)).one_or_none()
        if row is None:
            raise JobNotFound(job_id)
        return row


def _eligible_conditions(now: datetime) -> tuple[object, ...]:
    busy = aliased(BackgroundJob)
    db_now = to_db_datetime(now)
    return (
        BackgroundJob.status == JobStatus.PENDING.value,
        col(BackgroundJob.attempts) < col(BackgroundJob.max_attempts),
        (col(BackgroundJob.next_retry_at).is_(None)) | (col(BackgroundJob.next_retry_at) <= db_now),
        (col(BackgroundJob.scheduled_for).is_(None)) | (col(BackgroundJob.scheduled_for) <= db_now),
        col(BackgroundJob.job_type).not_in(
            sa_select(busy.job_type).where(busy.status == JobStatus.PROCESSING.value),
        ),
    )


def _new_job_row(*, job_id: str, payload: JobCreate, now: datetime) -> BackgroundJob:
    return BackgroundJob(
        id=job_id,
        job_type=payload.job_type,
        status=JobStatus.PENDING.value,
        attempts=0,
        max_attempts=payload.max_attempts,
        scheduled_for=(
            to_db_datetime(payload.scheduled_for) if payload.scheduled_for is not None else None
        ),
        total_items=payload.total_items,
        payload_json=dump_json(payload.payload),
        created_by=payload.created_by,
        created_at=to_db_datetime(now),
        updated_at=to_db_datetime(now),
    )


def _to_job_view(row: BackgroundJob) -> JobView:
    result = json.loads(row.result_json) if row.result_json else None
    return JobView(
        id=row.id,
        job_type=row.job_type,
        status=JobStatus(row.status),
        attempts=row.attempts,
        max_attempts=row.max_attempts,
        next_retry_at=optional_utc(row.next_retry_at),
        scheduled_for=optional_utc(row.scheduled_for),
        total_items=row.total_items,
        processed_items=row.processed_items,
        failed_items=row.failed_items,
        payload=load_json_object(row.payload_json),
        result=result if isinstance(result, dict) else None,
        last_error=row.last_error,
        started_at=optional_utc(row.started_at),
        completed_at=optional_utc(row.completed_at),
        created_by=row.created_by,
        created_at=to_utc_aware_datetime(row.created_at),
        updated_at=to_utc_aware_datetime(row.updated_at),
    )
