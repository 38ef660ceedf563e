"""SQLModel ORM tables for job queue and article pipeline storage."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Index, Text, UniqueConstraint, text
from sqlmodel import Field, SQLModel

ACTIVE_JOB_STATUSES_SQL = "status IN ('pending', 'processing')"


class BackgroundJob(SQLModel, table=True):
    __tablename__ = "background_jobs"  # type: ignore[bad-override]
    __table_args__ = (
        Index("idx_background_jobs_claim", "status", "job_type", "created_at"),
        Index(
            "uq_background_jobs_active_type",
            "job_type",
            unique=True,
            sqlite_where=text(ACTIVE_JOB_STATUSES_SQL),
            postgresql_where=text(ACTIVE_JOB_STATUSES_SQL),
        ),
    )

    id: str = Field(primary_key=True)
    job_type: str
    status: str
    attempts: int = Field(default=0)
    max_attempts: int = Field(default=3)
    next_retry_at: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True)),
    )
    scheduled_for: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True)),
    )
    total_items: int = Field(default=0)
    processed_items: int = Field(default=0)
    failed_items: int = Field(default=0)
    payload_json: str = Field(default="{}", sa_column=Column(Text, nullable=False))
    result_json: str | None = Field(default=None, sa_column=Column(Text))
    last_error: str | None = Field(default=None, sa_column=Column(Text))
    started_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    completed_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    created_by: str | None = None
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class SystemLogEntry(SQLModel, table=True):
    __tablename__ = "system_logs"  # type: ignore[bad-override]
    __table_args__ = (
        Index("idx_system_logs_entity_time", "entity_type", "entity_id", "created_at"),
        Index("idx_system_logs_level_time", "level", "created_at"),
    )

    id: int | None = Field(default=None, primary_key=True)
    log_type: str
    category: str
    action: str
    message: str = Field(sa_column=Column(Text, nullable=False))
    level: str
    entity_type: str | None = None
    entity_id: str | None = None
    actor_type: str = Field(default="system")
    actor_id: str | None = None
    metadata_json: str | None = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class ReviewPhotoLink(SQLModel, table=True):
    __tablename__ = "review_photo_links"  # type: ignore[bad-override]
    __table_args__ = (
        UniqueConstraint("review_id", "original_url", name="uq_review_photo_links_review_url"),
        Index("idx_review_photo_links_contractor", "contractor_id"),
    )

    id: int | None = Field(default=None, primary_key=True)
    review_id: str
    contractor_id: str
    original_url: str = Field(sa_column=Column(Text, nullable=False))
    storage_path: str = Field(sa_column=Column(Text, nullable=False))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class AiPersona(SQLModel, table=True):
    __tablename__ = "ai_personas"  # type: ignore[bad-override]
    __table_args__ = (
        Index("idx_ai_personas_agent_type", "agent_type"),
        Index(
            "uq_ai_personas_default_per_agent",
            "agent_type",
            unique=True,
            sqlite_where=text("is_default = 1 AND is_active = 1"),
            postgresql_where=text("is_default AND is_active"),
        ),
    )

    id: str = Field(primary_key=True)
    agent_type: str
    name: str
    system_prompt: str = Field(sa_column=Column(Text, nullable=False))
    model: str
    temperature: float = Field(default=0.7)
    max_tokens: int = Field(default=4096)
    is_default: bool = Field(default=False)
    is_active: bool = Field(default=True)
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class ArticleJobRow(SQLModel, table=True):
    __tablename__ = "article_jobs"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_article_jobs_status_time", "status", "created_at"),)

    id: str = Field(primary_key=True)
    keyword: str
    settings_json: str = Field(default="{}", sa_column=Column(Text, nullable=False))
    status: str
    current_agent: str | None = None
    current_iteration: int = Field(default=1)
    max_iterations: int = Field(default=3)
    progress_percent: int = Field(default=0)
    total_tokens_used: int = Field(default=0)
    estimated_cost_usd: float = Field(default=0.0)
    final_output_json: str | None = Field(default=None, sa_column=Column(Text))
    page_id: str | None = None
    last_error: str | None = Field(default=None, sa_column=Column(Text))
    background_job_id: str | None = Field(
        default=None,
        sa_column=Column(ForeignKey("background_jobs.id", ondelete="SET NULL")),
    )
    created_by: str | None = None
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    started_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    completed_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class ArticleJobStepRow(SQLModel, table=True):
    __tablename__ = "article_job_steps"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_article_job_steps_job_time", "job_id", "created_at"),)

    id: str = Field(primary_key=True)
    job_id: str = Field(
        sa_column=Column(
            ForeignKey("article_jobs.id", ondelete="CASCADE"),
            nullable=False,
        ),
    )
    agent_type: str
    persona_id: str | None = Field(
        default=None,
        sa_column=Column(ForeignKey("ai_personas.id", ondelete="SET NULL")),
    )
    iteration: int
    status: str
    input_json: str | None = Field(default=None, sa_column=Column(Text))
    output_json: str | None = Field(default=None, sa_column=Column(Text))
    prompt_tokens: int = Field(default=0)
    completion_tokens: int = Field(default=0)
    tokens_used: int = Field(default=0)
    logs_json: str = Field(default="[]", sa_column=Column(Text, nullable=False))
    error_message: str | None = Field(default=None, sa_column=Column(Text))
    started_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    completed_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    duration_ms: int | None = None
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
