"""Append-only system log for job lifecycle and pipeline events.

Entries are written either inside the caller's session, so that a state
transition and its audit row commit together, or on their own session as a
best-effort side channel. Best-effort writes never raise: a storage error is
reported through `logging` and the entry is dropped.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, col, select

from content_jobs.storage.common import dump_json, to_utc_aware_datetime, utc_now
from content_jobs.storage.sqlmodel_models import SystemLogEntry

logger = logging.getLogger(__name__)

JOB_LOG_TYPE = "background_job"
PIPELINE_LOG_TYPE = "article_pipeline"
JOB_ENTITY_TYPE = "background_job"

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


@dataclass(slots=True)
class SystemLogView:
    id: int
    log_type: str
    category: str
    action: str
    message: str
    level: str
    entity_type: str | None
    entity_id: str | None
    actor_type: str
    actor_id: str | None
    metadata: dict[str, Any]
    created_at: datetime


class SystemLogService:
    """Writes and queries `system_logs` rows."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def log_job_created(
        self,
        *,
        job_id: str,
        job_type: str,
        created_by: str | None = None,
        session: Session | None = None,
    ) -> None:
        self._emit(
            action="created",
            message=f"Job created: {job_type}",
            job_id=job_id,
            actor_id=created_by,
            metadata={"job_type": job_type},
            session=session,
        )

    def log_job_started(
        self,
        *,
        job_id: str,
        job_type: str,
        attempt: int,
        session: Session | None = None,
    ) -> None:
        self._emit(
            action="started",
            message=f"Job started: {job_type} (attempt {attempt})",
            job_id=job_id,
            metadata={"job_type": job_type, "attempt": attempt},
            session=session,
        )

    def log_job_completed(
        self,
        *,
        job_id: str,
        job_type: str,
        duration_ms: int | None = None,
        session: Session | None = None,
    ) -> None:
        metadata: dict[str, Any] = {"job_type": job_type}
        if duration_ms is not None:
            metadata["duration_ms"] = duration_ms
        self._emit(
            action="completed",
            message=f"Job completed: {job_type}",
            job_id=job_id,
            metadata=metadata,
            session=session,
        )

    def log_job_failed(  # noqa: PLR0913
        self,
        *,
        job_id: str,
        job_type: str,
        error: str,
        will_retry: bool,
        attempts: int,
        max_attempts: int,
        session: Session | None = None,
    ) -> None:
        outcome = "will retry" if will_retry else "permanently failed"
        self._emit(
            action="retry_scheduled" if will_retry else "failed",
            message=f"Job failed ({outcome}): {job_type}: {error}",
            level="warning" if will_retry else "error",
            job_id=job_id,
            metadata={
                "job_type": job_type,
                "error": error,
                "will_retry": will_retry,
                "attempts": attempts,
                "max_attempts": max_attempts,
            },
            session=session,
        )

    def log_job_cancelled(
        self,
        *,
        job_id: str,
        job_type: str,
        previous_status: str,
        actor_id: str | None = None,
        session: Session | None = None,
    ) -> None:
        self._emit(
            action="cancelled",
            message=f"Job cancelled: {job_type}",
            job_id=job_id,
            actor_id=actor_id,
            metadata={"job_type": job_type, "previous_status": previous_status},
            session=session,
        )

    def log_job_event(  # noqa: PLR0913
        self,
        *,
        job_id: str,
        action: str,
        message: str,
        level: str = "info",
        metadata: dict[str, Any] | None = None,
        log_type: str = JOB_LOG_TYPE,
        session: Session | None = None,
    ) -> None:
        self._emit(
            action=action,
            message=message,
            level=level,
            job_id=job_id,
            metadata=metadata,
            log_type=log_type,
            session=session,
        )

    def log_job_progress(
        self,
        *,
        job_id: str,
        processed_items: int,
        total_items: int,
        failed_items: int = 0,
    ) -> None:
        self._emit(
            action="progress",
            message=f"Progress: {processed_items}/{total_items} ({failed_items} failed)",
            level="debug",
            job_id=job_id,
            metadata={
                "processed_items": processed_items,
                "total_items": total_items,
                "failed_items": failed_items,
            },
        )

    def get_job_logs(self, *, job_id: str, limit: int = 100) -> list[SystemLogView]:
        """Return log entries for one job, oldest first."""

        with Session(self.engine) as session:
            rows = session.exec(
                select(SystemLogEntry)
                .where(
                    SystemLogEntry.entity_type == JOB_ENTITY_TYPE,
                    SystemLogEntry.entity_id == job_id,
                )
                .order_by(col(SystemLogEntry.created_at).asc(), col(SystemLogEntry.id).asc())
                .limit(limit),
            ).all()
        return [_to_log_view(row) for row in rows]

    def get_recent_errors(self, *, limit: int = 50) -> list[SystemLogView]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(SystemLogEntry)
                .where(SystemLogEntry.level == "error")
                .order_by(col(SystemLogEntry.created_at).desc(), col(SystemLogEntry.id).desc())
                .limit(limit),
            ).all()
        return [_to_log_view(row) for row in rows]

    def _emit(  # noqa: PLR0913
        self,
        *,
        action: str,
        message: str,
        job_id: str,
        level: str = "info",
        actor_id: str | None = None,
        metadata: dict[str, Any] | None = None,
        log_type: str = JOB_LOG_TYPE,
        session: Session | None = None,
    ) -> None:
        logger.log(_LEVELS.get(level, logging.INFO), "[job %s] %s", job_id, message)
        entry = SystemLogEntry(
            log_type=log_type,
            category="jobs",
            action=action,
            message=message,
            level=level,
            entity_type=JOB_ENTITY_TYPE,
            entity_id=job_id,
            actor_type="user" if actor_id else "system",
            actor_id=actor_id,
            metadata_json=dump_json(metadata) if metadata else None,
            created_at=utc_now(),
        )
        if session is not None:
            session.add(entry)
            return
        try:
            with Session(self.engine) as own_session:
                own_session.add(entry)
                own_session.commit()
        except SQLAlchemyError as error:
            logger.warning("Dropped system log entry %s for job %s: %s", action, job_id, error)


def _to_log_view(row: SystemLogEntry) -> SystemLogView:
    metadata: dict[str, Any] = {}
    if row.metadata_json:
        parsed = json.loads(row.metadata_json)
        if isinstance(parsed, dict):
            metadata = parsed
    return SystemLogView(
        id=row.id or 0,
        log_type=row.log_type,
        category=row.category,
        action=row.action,
        message=row.message,
        level=row.level,
        entity_type=row.entity_type,
        entity_id=row.entity_id,
        actor_type=row.actor_type,
        actor_id=row.actor_id,
        metadata=metadata,
        created_at=to_utc_aware_datetime(row.created_at),
    )
