"""`article_pipeline` job executor."""

from __future__ import annotations

import logging

from content_jobs.articles.models import ArticleStatus
from content_jobs.articles.orchestrator import ArticlePipelineOrchestrator
from content_jobs.articles.repository import ArticleRepository
from content_jobs.errors import ValidationError
from content_jobs.jobs.executors.base import ProgressCallback
from content_jobs.jobs.models import ExecutionOutcome, JobType, JobView

logger = logging.getLogger(__name__)


class ArticlePipelineExecutor:
    job_type = JobType.ARTICLE_PIPELINE.value

    def __init__(
        self,
        *,
        orchestrator: ArticlePipelineOrchestrator,
        articles: ArticleRepository,
    ) -> None:
        self.orchestrator = orchestrator
        self.articles = articles

    def execute(self, job: JobView, progress: ProgressCallback) -> ExecutionOutcome:
        article_id = job.payload.get("article_job_id")
        if not isinstance(article_id, str) or not article_id:
            raise ValidationError("payload.article_job_id must be a non-empty string")
        article = self.articles.get_article(article_id=article_id)
        if article is None:
            raise ValidationError(f"Article job not found: {article_id}")
        if article.status in (ArticleStatus.CANCELLED, ArticleStatus.COMPLETED):
            logger.info("Article %s is %s; nothing to run.", article_id, article.status.value)
            return ExecutionOutcome(
                result={"article_job_id": article_id, "status": article.status.value},
            )

        try:
            outcome = self.orchestrator.run(
                article_id=article_id,
                background_job_id=job.id,
                progress=progress,
            )
        except Exception as error:
            self.articles.fail(article_id=article_id, error=str(error))
            raise
        return ExecutionOutcome(result=outcome.as_result())
