"""FastAPI routes for the job queue and the article pipeline."""

from __future__ import annotations

import hmac
import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request

from content_jobs.api.schemas import (
    ArticleResponse,
    CreateArticleRequest,
    CreateArticleResponse,
    CreateJobRequest,
    CreateJobResponse,
    ExecuteJobResponse,
    JobListResponse,
    JobLogResponse,
    JobProgressResponse,
    JobResponse,
    JobStepResponse,
)
from content_jobs.articles.models import ArticleJobView, ArticleSettings, JobStepView
from content_jobs.bootstrap import Runtime
from content_jobs.errors import JobNotFound
from content_jobs.jobs.models import JobCreate, JobStatus, JobView

logger = logging.getLogger(__name__)

router = APIRouter()


def get_runtime(request: Request) -> Runtime:
    return request.app.state.runtime


RuntimeDep = Annotated[Runtime, Depends(get_runtime)]


def require_runner_secret(
    runtime: RuntimeDep,
    x_job_runner_secret: Annotated[str | None, Header()] = None,
) -> None:
    """Guard for the execute trigger; the secret comes from configuration only."""

    expected = runtime.settings.api.runner_secret
    if not expected:
        raise HTTPException(status_code=503, detail="Job runner secret is not configured")
    if not x_job_runner_secret or not hmac.compare_digest(x_job_runner_secret, expected):
        raise HTTPException(status_code=401, detail="Invalid job runner secret")


# ==================== Jobs ====================


@router.post("/jobs", status_code=201)
def create_job(body: CreateJobRequest, runtime: RuntimeDep) -> CreateJobResponse:
    job = runtime.jobs.create_job(
        JobCreate(
            job_type=body.job_type,
            payload=body.payload,
            created_by=body.created_by,
            scheduled_for=body.scheduled_for,
            max_attempts=body.max_attempts,
            total_items=body.total_items,
        ),
    )
    return CreateJobResponse(
        job_id=job.id,
        job_type=job.job_type,
        status=job.status.value,
        created_at=job.created_at,
    )


@router.get("/jobs")
def list_jobs(
    runtime: RuntimeDep,
    status: Annotated[JobStatus | None, Query()] = None,
    job_type: Annotated[str | None, Query()] = None,
    limit: Annotated[int, Query(ge=1, le=100)] = 20,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> JobListResponse:
    page = runtime.jobs.list_jobs(status=status, job_type=job_type, limit=limit, offset=offset)
    return JobListResponse(
        items=[_job_response(job) for job in page.items],
        total=page.total,
        limit=page.limit,
        offset=page.offset,
    )


@router.get("/jobs/{job_id}")
def get_job(job_id: str, runtime: RuntimeDep) -> JobResponse:
    return _job_response(_require_job(runtime, job_id))


@router.get("/jobs/{job_id}/progress")
def get_job_progress(job_id: str, runtime: RuntimeDep) -> JobProgressResponse:
    progress = runtime.jobs.get_progress(job_id=job_id)
    if progress is None:
        raise JobNotFound(job_id)
    return JobProgressResponse(
        status=progress.status.value,
        total_items=progress.total_items,
        processed_items=progress.processed_items,
        failed_items=progress.failed_items,
        percent_complete=progress.percent_complete,
    )


@router.post("/jobs/{job_id}/execute", dependencies=[Depends(require_runner_secret)])
def execute_job(job_id: str, runtime: RuntimeDep) -> ExecuteJobResponse:
    """Claim one job if it is eligible and run it inside this request."""

    summary = runtime.dispatcher.execute(job_id=job_id)
    job = _require_job(runtime, job_id)
    return ExecuteJobResponse(
        job_id=job.id,
        status=job.status.value,
        succeeded=bool(summary.succeeded),
        will_retry=bool(summary.retried),
        result=job.result,
        last_error=job.last_error,
    )


@router.post("/jobs/{job_id}/cancel")
def cancel_job(
    job_id: str,
    runtime: RuntimeDep,
    actor_id: Annotated[str | None, Query()] = None,
) -> JobResponse:
    return _job_response(runtime.jobs.cancel(job_id=job_id, actor_id=actor_id))


@router.post("/jobs/{job_id}/retry")
def retry_job(
    job_id: str,
    runtime: RuntimeDep,
    actor_id: Annotated[str | None, Query()] = None,
) -> JobResponse:
    return _job_response(runtime.jobs.retry(job_id=job_id, actor_id=actor_id))


@router.get("/jobs/{job_id}/logs")
def get_job_logs(
    job_id: str,
    runtime: RuntimeDep,
    limit: Annotated[int, Query(ge=1, le=500)] = 100,
) -> list[JobLogResponse]:
    _require_job(runtime, job_id)
    return [
        JobLogResponse(
            id=entry.id,
            log_type=entry.log_type,
            action=entry.action,
            message=entry.message,
            level=entry.level,
            actor_type=entry.actor_type,
            actor_id=entry.actor_id,
            metadata=entry.metadata,
            created_at=entry.created_at,
        )
        for entry in runtime.jobs.system_log.get_job_logs(job_id=job_id, limit=limit)
    ]


# ==================== Articles ====================


@router.post("/articles", status_code=201)
def create_article(body: CreateArticleRequest, runtime: RuntimeDep) -> CreateArticleResponse:
    article, job = runtime.articles.create_article(
        keyword=body.keyword,
        settings=ArticleSettings.from_dict(body.settings),
        jobs=runtime.jobs,
        created_by=body.created_by,
    )
    return CreateArticleResponse(
        article_job_id=article.id,
        background_job_id=job.id,
        keyword=article.keyword,
        status=article.status.value,
        created_at=article.created_at,
    )


@router.get("/articles/{article_id}")
def get_article(article_id: str, runtime: RuntimeDep) -> ArticleResponse:
    article = runtime.articles.get_article(article_id=article_id)
    if article is None:
        raise HTTPException(status_code=404, detail=f"Article job not found: {article_id}")
    steps = runtime.articles.list_steps(job_id=article_id)
    return _article_response(article, steps)


@router.post("/articles/{article_id}/cancel")
def cancel_article(article_id: str, runtime: RuntimeDep) -> ArticleResponse:
    if runtime.articles.get_article(article_id=article_id) is None:
        raise HTTPException(status_code=404, detail=f"Article job not found: {article_id}")
    article = runtime.cancel_article(article_id=article_id)
    return _article_response(article, runtime.articles.list_steps(job_id=article_id))


def _require_job(runtime: Runtime, job_id: str) -> JobView:
    job = runtime.jobs.get_job(job_id=job_id)
    if job is None:
        raise JobNotFound(job_id)
    return job


def _job_response(job: JobView) -> JobResponse:
    return JobResponse(
        id=job.id,
        job_type=job.job_type,
        status=job.status.value,
        attempts=job.attempts,
        max_attempts=job.max_attempts,
        next_retry_at=job.next_retry_at,
        scheduled_for=job.scheduled_for,
        total_items=job.total_items,
        processed_items=job.processed_items,
        failed_items=job.failed_items,
        payload=job.payload,
        result=job.result,
        last_error=job.last_error,
        started_at=job.started_at,
        completed_at=job.completed_at,
        created_by=job.created_by,
        created_at=job.created_at,
        updated_at=job.updated_at,
    )


def _article_response(article: ArticleJobView, steps: list[JobStepView]) -> ArticleResponse:
    return ArticleResponse(
        id=article.id,
        keyword=article.keyword,
        settings=article.settings.to_dict(),
        status=article.status.value,
        current_agent=article.current_agent,
        current_iteration=article.current_iteration,
        max_iterations=article.max_iterations,
        progress_percent=article.progress_percent,
        total_tokens_used=article.total_tokens_used,
        estimated_cost_usd=article.estimated_cost_usd,
        final_output=article.final_output,
        page_id=article.page_id,
        last_error=article.last_error,
        background_job_id=article.background_job_id,
        created_at=article.created_at,
        started_at=article.started_at,
        completed_at=article.completed_at,
        steps=[
            JobStepResponse(
                id=step.id,
                agent_type=step.agent_type,
                persona_id=step.persona_id,
                iteration=step.iteration,
                status=step.status.value,
                output=step.output,
                prompt_tokens=step.prompt_tokens,
                completion_tokens=step.completion_tokens,
                tokens_used=step.tokens_used,
                logs=step.logs,
                error_message=step.error_message,
                started_at=step.started_at,
                completed_at=step.completed_at,
                duration_ms=step.duration_ms,
            )
            for step in steps
        ],
    )
