"""Request and response models for the HTTP interface."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class CreateJobRequest(BaseModel):
    job_type: str = Field(min_length=1, max_length=100)
    payload: dict[str, Any] = Field(default_factory=dict)
    created_by: str | None = None
    scheduled_for: datetime | None = None
    max_attempts: int = Field(default=3, ge=1, le=20)
    total_items: int = Field(default=0, ge=0)


class CreateJobResponse(BaseModel):
    job_id: str
    job_type: str
    status: str
    created_at: datetime


class JobResponse(BaseModel):
    id: str
    job_type: str
    status: str
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


class JobListResponse(BaseModel):
    items: list[JobResponse]
    total: int
    limit: int
    offset: int


class JobProgressResponse(BaseModel):
    status: str
    total_items: int
    processed_items: int
    failed_items: int
    percent_complete: int


class ExecuteJobResponse(BaseModel):
    job_id: str
    status: str
    succeeded: bool
    will_retry: bool
    result: dict[str, Any] | None
    last_error: str | None


class JobLogResponse(BaseModel):
    id: int
    log_type: str
    action: str
    message: str
    level: str
    actor_type: str
    actor_id: str | None
    metadata: dict[str, Any]
    created_at: datetime


class CreateArticleRequest(BaseModel):
    keyword: str = Field(min_length=1, max_length=200)
    settings: dict[str, Any] | None = None
    created_by: str | None = None


class CreateArticleResponse(BaseModel):
    article_job_id: str
    background_job_id: str
    keyword: str
    status: str
    created_at: datetime


class JobStepResponse(BaseModel):
    id: str
    agent_type: str
    persona_id: str | None
    iteration: int
    status: str
    output: dict[str, Any] | None
    prompt_tokens: int
    completion_tokens: int
    tokens_used: int
    logs: list[dict[str, Any]]
    error_message: str | None
    started_at: datetime | None
    completed_at: datetime | None
    duration_ms: int | None


class ArticleResponse(BaseModel):
    id: str
    keyword: str
    settings: dict[str, Any]
    status: str
    current_agent: str | None
    current_iteration: int
    max_iterations: int
    progress_percent: int
    total_tokens_used: int
    estimated_cost_usd: float
    final_output: dict[str, Any] | None
    page_id: str | None
    last_error: str | None
    background_job_id: str | None
    created_at: datetime
    started_at: datetime | None
    completed_at: datetime | None
    steps: list[JobStepResponse] = Field(default_factory=list)
