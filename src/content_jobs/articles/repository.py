"""Persistence for article jobs, their agent steps and AI personas."""

from __future__ import annotations

import json
import logging
from typing import Any
from uuid import uuid4

from sqlalchemy import update as sa_update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from content_jobs.articles.models import (
    AgentType,
    ArticleJobView,
    ArticleSettings,
    ArticleStatus,
    JobStepView,
    Persona,
    PersonaCreate,
    StepStatus,
    TokenUsage,
)
from content_jobs.errors import ConcurrencyConflict, InvalidJobState, ValidationError
from content_jobs.jobs.models import JobCreate, JobType, JobView
from content_jobs.jobs.repository import JobRepository
from content_jobs.storage.common import (
    dump_json,
    load_json_object,
    optional_utc,
    to_db_datetime,
    to_utc_aware_datetime,
    utc_now,
)
from content_jobs.storage.sqlmodel_models import AiPersona, ArticleJobRow, ArticleJobStepRow

logger = logging.getLogger(__name__)

MAX_LIST_LIMIT = 100


class ArticleRepository:
    """Article pipeline persistence facade sharing the job store's engine.

    Step rows move pending -> running -> terminal through conditional
    updates; a step that reached a terminal status is never written again.
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    # Article jobs

    def create_article(
        self,
        *,
        keyword: str,
        settings: ArticleSettings,
        jobs: JobRepository,
        created_by: str | None = None,
    ) -> tuple[ArticleJobView, JobView]:
        """Insert the article and its `article_pipeline` job in one transaction."""

        keyword = keyword.strip()
        if not keyword:
            raise ValidationError("keyword must not be empty")
        now = to_db_datetime(utc_now())
        article_id = str(uuid4())
        with Session(self.engine) as session:
            job_row = jobs.stage_job(
                session=session,
                payload=JobCreate(
                    job_type=JobType.ARTICLE_PIPELINE.value,
                    payload={"article_job_id": article_id},
                    created_by=created_by,
                ),
            )
            article_row = ArticleJobRow(
                id=article_id,
                keyword=keyword,
                settings_json=dump_json(settings.to_dict()),
                status=ArticleStatus.PENDING.value,
                max_iterations=settings.max_iterations,
                background_job_id=job_row.id,
                created_by=created_by,
                created_at=now,
                updated_at=now,
            )
            try:
                session.flush()
                session.add(article_row)
                session.commit()
            except IntegrityError as error:
                session.rollback()
                raise ConcurrencyConflict(JobType.ARTICLE_PIPELINE.value) from error
            session.refresh(article_row)
            session.refresh(job_row)
            return _to_article_view(article_row), jobs.to_view(job_row)

    def get_article(self, *, article_id: str) -> ArticleJobView | None:
        with Session(self.engine) as session:
            row = session.get(ArticleJobRow, article_id)
            return _to_article_view(row) if row is not None else None

    def list_articles(
        self,
        *,
        status: ArticleStatus | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> list[ArticleJobView]:
        if not 1 <= limit <= MAX_LIST_LIMIT:
            raise ValueError(f"limit must be between 1 and {MAX_LIST_LIMIT}.")
        statement = select(ArticleJobRow)
        if status is not None:
            statement = statement.where(ArticleJobRow.status == status.value)
        with Session(self.engine) as session:
            rows = session.exec(
                statement.order_by(col(ArticleJobRow.created_at).desc())
                .offset(offset)
                .limit(limit),
            ).all()
        return [_to_article_view(row) for row in rows]

    def start_processing(self, *, article_id: str, background_job_id: str) -> ArticleJobView:
        """Begin a fresh attempt: iteration and telemetry reset, token total kept."""

        now = to_db_datetime(utc_now())
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(ArticleJobRow)
                .where(
                    col(ArticleJobRow.id) == article_id,
                    col(ArticleJobRow.status).in_(
                        [
                            ArticleStatus.PENDING.value,
                            ArticleStatus.PROCESSING.value,
                            ArticleStatus.FAILED.value,
                        ],
                    ),
                )
                .values(
                    status=ArticleStatus.PROCESSING.value,
                    current_agent=None,
                    current_iteration=1,
                    progress_percent=0,
                    final_output_json=None,
                    last_error=None,
                    background_job_id=background_job_id,
                    started_at=now,
                    completed_at=None,
                    updated_at=now,
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                row = session.get(ArticleJobRow, article_id)
                if row is None:
                    raise ValidationError(f"Article job not found: {article_id}")
                raise InvalidJobState(
                    f"Article job {article_id} cannot start from status={row.status}",
                )
            session.commit()
            row = session.get(ArticleJobRow, article_id)
            if row is None:
                raise ValidationError(f"Article job not found: {article_id}")
            return _to_article_view(row)

    def update_telemetry(  # noqa: PLR0913
        self,
        *,
        article_id: str,
        current_agent: str | None = None,
        current_iteration: int | None = None,
        progress_percent: int | None = None,
        total_tokens_used: int | None = None,
        estimated_cost_usd: float | None = None,
    ) -> bool:
        values: dict[str, Any] = {}
        if current_agent is not None:
            values["current_agent"] = current_agent
        if current_iteration is not None:
            values["current_iteration"] = current_iteration
        if progress_percent is not None:
            values["progress_percent"] = max(0, min(100, progress_percent))
        if total_tokens_used is not None:
            values["total_tokens_used"] = total_tokens_used
        if estimated_cost_usd is not None:
            values["estimated_cost_usd"] = round(estimated_cost_usd, 6)
        if not values:
            return False
        return self._update_processing(article_id=article_id, values=values)

    def complete(self, *, article_id: str, final_output: dict[str, Any]) -> bool:
        now = to_db_datetime(utc_now())
        return self._update_processing(
            article_id=article_id,
            values={
                "status": ArticleStatus.COMPLETED.value,
                "final_output_json": dump_json(final_output),
                "current_agent": None,
                "progress_percent": 100,
                "completed_at": now,
            },
        )

    def fail(self, *, article_id: str, error: str) -> bool:
        now = to_db_datetime(utc_now())
        return self._update_processing(
            article_id=article_id,
            values={
                "status": ArticleStatus.FAILED.value,
                "last_error": error,
                "completed_at": now,
            },
        )

    def set_page_id(self, *, article_id: str, page_id: str) -> None:
        with Session(self.engine) as session:
            session.exec(
                sa_update(ArticleJobRow)
                .where(col(ArticleJobRow.id) == article_id)
                .values(page_id=page_id, updated_at=to_db_datetime(utc_now())),
            )
            session.commit()

    def cancel(self, *, article_id: str) -> ArticleJobView:
        now = to_db_datetime(utc_now())
        with Session(self.engine) as session:
            row = session.get(ArticleJobRow, article_id)
            if row is None:
                raise ValidationError(f"Article job not found: {article_id}")
            result = session.exec(
                sa_update(ArticleJobRow)
                .where(
                    col(ArticleJobRow.id) == article_id,
                    col(ArticleJobRow.status).in_(
                        [ArticleStatus.PENDING.value, ArticleStatus.PROCESSING.value],
                    ),
                )
                .values(status=ArticleStatus.CANCELLED.value, completed_at=now, updated_at=now),
            )
            if result.rowcount != 1:
                session.rollback()
                raise InvalidJobState(f"Article job cannot be cancelled from status={row.status}")
            session.commit()
            session.refresh(row)
            return _to_article_view(row)

    def is_cancelled(self, *, article_id: str) -> bool:
        with Session(self.engine) as session:
            status = session.exec(
                select(ArticleJobRow.status).where(ArticleJobRow.id == article_id),
            ).one_or_none()
        return status == ArticleStatus.CANCELLED.value

    def _update_processing(self, *, article_id: str, values: dict[str, Any]) -> bool:
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(ArticleJobRow)
                .where(
                    col(ArticleJobRow.id) == article_id,
                    col(ArticleJobRow.status) == ArticleStatus.PROCESSING.value,
                )
                .values(**values, updated_at=to_db_datetime(utc_now())),
            )
            if result.rowcount != 1:
                session.rollback()
                logger.info("Article job %s is no longer processing; update dropped.", article_id)
                return False
            session.commit()
            return True

    # Steps

    def create_step(  # noqa: PLR0913
        self,
        *,
        job_id: str,
        agent_type: AgentType,
        iteration: int,
        persona_id: str | None = None,
        step_input: dict[str, Any] | None = None,
        status: StepStatus = StepStatus.PENDING,
    ) -> JobStepView:
        if status not in (StepStatus.PENDING, StepStatus.SKIPPED):
            raise ValueError("Steps are created pending or skipped.")
        now = to_db_datetime(utc_now())
        row = ArticleJobStepRow(
            id=str(uuid4()),
            job_id=job_id,
            agent_type=agent_type.value,
            persona_id=persona_id,
            iteration=iteration,
            status=status.value,
            input_json=dump_json(step_input) if step_input is not None else None,
            completed_at=now if status == StepStatus.SKIPPED else None,
            created_at=now,
        )
        with Session(self.engine) as session:
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_step_view(row)

    def start_step(self, *, step_id: str, persona_id: str | None = None) -> bool:
        values: dict[str, Any] = {
            "status": StepStatus.RUNNING.value,
            "started_at": to_db_datetime(utc_now()),
        }
        if persona_id is not None:
            values["persona_id"] = persona_id
        return self._transition_step(
            step_id=step_id,
            from_statuses=(StepStatus.PENDING,),
            values=values,
        )

    def complete_step(self, *, step_id: str, output: dict[str, Any], usage: TokenUsage) -> bool:
        return self._finish_step(
            step_id=step_id,
            status=StepStatus.COMPLETED,
            usage=usage,
            extra={"output_json": dump_json(output)},
        )

    def fail_step(self, *, step_id: str, error: str, usage: TokenUsage | None = None) -> bool:
        return self._finish_step(
            step_id=step_id,
            status=StepStatus.FAILED,
            usage=usage or TokenUsage(),
            extra={"error_message": error},
        )

    def append_step_log(self, *, step_id: str, entry: dict[str, Any]) -> bool:
        """Append one log entry to a step that has not reached a terminal status."""

        with Session(self.engine) as session:
            row = session.get(ArticleJobStepRow, step_id)
            if row is None or row.status not in (
                StepStatus.PENDING.value,
                StepStatus.RUNNING.value,
            ):
                return False
            logs = json.loads(row.logs_json or "[]")
            logs.append(entry)
            result = session.exec(
                sa_update(ArticleJobStepRow)
                .where(
                    col(ArticleJobStepRow.id) == step_id,
                    col(ArticleJobStepRow.status) == row.status,
                )
                .values(logs_json=dump_json(logs)),
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            session.commit()
            return True

    def list_steps(self, *, job_id: str) -> list[JobStepView]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(ArticleJobStepRow)
                .where(ArticleJobStepRow.job_id == job_id)
                .order_by(
                    col(ArticleJobStepRow.created_at).asc(),
                    col(ArticleJobStepRow.iteration).asc(),
                ),
            ).all()
        return [_to_step_view(row) for row in rows]

    def _finish_step(
        self,
        *,
        step_id: str,
        status: StepStatus,
        usage: TokenUsage,
        extra: dict[str, Any],
    ) -> bool:
        now = utc_now()
        with Session(self.engine) as session:
            row = session.get(ArticleJobStepRow, step_id)
            if row is None:
                return False
            started_at = optional_utc(row.started_at)
            duration_ms = int((now - started_at).total_seconds() * 1000) if started_at else None
            values = {
                "status": status.value,
                "prompt_tokens": usage.input_tokens,
                "completion_tokens": usage.output_tokens,
                "tokens_used": usage.total_tokens,
                "completed_at": to_db_datetime(now),
                "duration_ms": duration_ms,
                **extra,
            }
        return self._transition_step(
            step_id=step_id,
            from_statuses=(StepStatus.PENDING, StepStatus.RUNNING),
            values=values,
        )

    def _transition_step(
        self,
        *,
        step_id: str,
        from_statuses: tuple[StepStatus, ...],
        values: dict[str, Any],
    ) -> bool:
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(ArticleJobStepRow)
                .where(
                    col(ArticleJobStepRow.id) == step_id,
                    col(ArticleJobStepRow.status).in_([status.value for status in from_statuses]),
                )
                .values(**values),
            )
            if result.rowcount != 1:
                session.rollback()
                logger.warning("Step %s transition to %s rejected.", step_id, values.get("status"))
                return False
            session.commit()
            return True

    # Personas

    def create_persona(self, payload: PersonaCreate) -> Persona:
        now = to_db_datetime(utc_now())
        row = AiPersona(
            id=str(uuid4()),
            agent_type=payload.agent_type.value,
            name=payload.name,
            system_prompt=payload.system_prompt,
            model=payload.model,
            temperature=payload.temperature,
            max_tokens=payload.max_tokens,
            is_default=payload.is_default,
            is_active=True,
            created_at=now,
            updated_at=now,
        )
        with Session(self.engine) as session:
            session.add(row)
            try:
                session.commit()
            except IntegrityError as error:
                session.rollback()
                raise ValidationError(
                    f"An active default persona already exists for {payload.agent_type.value}",
                ) from error
            session.refresh(row)
            return _to_persona(row)

    def get_persona(self, *, persona_id: str) -> Persona | None:
        with Session(self.engine) as session:
            row = session.get(AiPersona, persona_id)
            return _to_persona(row) if row is not None else None

    def find_default_persona(self, *, agent_type: AgentType) -> Persona | None:
        with Session(self.engine) as session:
            row = session.exec(
                select(AiPersona).where(
                    AiPersona.agent_type == agent_type.value,
                    col(AiPersona.is_default).is_(True),
                    col(AiPersona.is_active).is_(True),
                ),
            ).first()
            return _to_persona(row) if row is not None else None

    def list_personas(self, *, agent_type: AgentType | None = None) -> list[Persona]:
        statement = select(AiPersona)
        if agent_type is not None:
            statement = statement.where(AiPersona.agent_type == agent_type.value)
        with Session(self.engine) as session:
            rows = session.exec(
                statement.order_by(col(AiPersona.agent_type).asc(), col(AiPersona.name).asc()),
            ).all()
        return [_to_persona(row) for row in rows]

    def seed_default_personas(self, defaults: list[PersonaCreate]) -> list[Persona]:
        """Install each default persona whose agent type has no active default yet."""

        created: list[Persona] = []
        for payload in defaults:
            if self.find_default_persona(agent_type=payload.agent_type) is not None:
                logger.info(
                    "Default %s persona already present; skipping.",
                    payload.agent_type.value,
                )
                continue
            created.append(self.create_persona(payload))
        return created


def _to_article_view(row: ArticleJobRow) -> ArticleJobView:
    final_output = json.loads(row.final_output_json) if row.final_output_json else None
    return ArticleJobView(
        id=row.id,
        keyword=row.keyword,
        settings=ArticleSettings.from_dict(load_json_object(row.settings_json)),
        status=ArticleStatus(row.status),
        current_agent=row.current_agent,
        current_iteration=row.current_iteration,
        max_iterations=row.max_iterations,
        progress_percent=row.progress_percent,
        total_tokens_used=row.total_tokens_used,
        estimated_cost_usd=row.estimated_cost_usd,
        final_output=final_output if isinstance(final_output, dict) else None,
        page_id=row.page_id,
        last_error=row.last_error,
        background_job_id=row.background_job_id,
        created_by=row.created_by,
        created_at=to_utc_aware_datetime(row.created_at),
        started_at=optional_utc(row.started_at),
        completed_at=optional_utc(row.completed_at),
        updated_at=to_utc_aware_datetime(row.updated_at),
    )


def _to_step_view(row: ArticleJobStepRow) -> JobStepView:
    output = json.loads(row.output_json) if row.output_json else None
    logs = json.loads(row.logs_json or "[]")
    return JobStepView(
        id=row.id,
        job_id=row.job_id,
        agent_type=row.agent_type,
        persona_id=row.persona_id,
        iteration=row.iteration,
        status=StepStatus(row.status),
        input=load_json_object(row.input_json) if row.input_json else None,
        output=output if isinstance(output, dict) else None,
        prompt_tokens=row.prompt_tokens,
        completion_tokens=row.completion_tokens,
        tokens_used=row.tokens_used,
        logs=logs if isinstance(logs, list) else [],
        error_message=row.error_message,
        started_at=optional_utc(row.started_at),
        completed_at=optional_utc(row.completed_at),
        duration_ms=row.duration_ms,
        created_at=to_utc_aware_datetime(row.created_at),
    )


def _to_persona(row: AiPersona) -> Persona:
    return Persona(
        id=row.id,
        agent_type=AgentType(row.agent_type),
        name=row.name,
        system_prompt=row.system_prompt,
        model=row.model,
        temperature=row.temperature,
        max_tokens=row.max_tokens,
        is_default=row.is_default,
        is_active=row.is_active,
    )
