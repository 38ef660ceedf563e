"""Wires repositories, registries, providers and the dispatcher from `Settings`.

Registries are built here once per runtime and handed to their consumers;
nothing registers itself at import time.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import timedelta

from content_jobs.articles.agents import QaAgent, ResearchAgent, SeoAgent, WriterAgent
from content_jobs.articles.agents.prompts import default_personas
from content_jobs.articles.executor import ArticlePipelineExecutor
from content_jobs.articles.models import ArticleJobView
from content_jobs.articles.orchestrator import ArticlePipelineOrchestrator
from content_jobs.articles.registry import AgentRegistry
from content_jobs.articles.repository import ArticleRepository
from content_jobs.config import Settings
from content_jobs.errors import InvalidJobState
from content_jobs.jobs.dispatcher import JobDispatcher
from content_jobs.jobs.executors import ReviewerImageRetryExecutor
from content_jobs.jobs.executors.review_photos import ReviewPhotoRepository
from content_jobs.jobs.models import ACTIVE_STATUSES
from content_jobs.jobs.registry import ExecutorRegistry
from content_jobs.jobs.repository import JobRepository
from content_jobs.providers.blob import BlobStore, LocalBlobStore
from content_jobs.providers.http import HttpFetcher
from content_jobs.providers.llm import AnthropicProvider, LlmProvider
from content_jobs.providers.publisher import PagePublisher
from content_jobs.providers.serp import DataForSeoClient, KeywordResearchProvider

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class Runtime:
    """Everything a CLI command or API request needs to touch the queue."""

    settings: Settings
    jobs: JobRepository
    articles: ArticleRepository
    executors: ExecutorRegistry
    agents: AgentRegistry
    dispatcher: JobDispatcher
    orchestrator: ArticlePipelineOrchestrator | None = None
    _closers: list[object] = field(default_factory=list)

    def seed_personas(self) -> int:
        created = self.articles.seed_default_personas(
            default_personas(
                model=self.settings.llm.default_model,
                max_tokens=self.settings.llm.max_tokens,
            ),
        )
        return len(created)

    def cancel_article(self, *, article_id: str, actor_id: str | None = None) -> ArticleJobView:
        """Cancel an article and, while it is still active, its pipeline job."""

        article = self.articles.cancel(article_id=article_id)
        if article.background_job_id is not None:
            job = self.jobs.get_job(job_id=article.background_job_id)
            if job is not None and job.status in ACTIVE_STATUSES:
                try:
                    self.jobs.cancel(job_id=job.id, actor_id=actor_id)
                except InvalidJobState:
                    logger.info("Job %s finished before it could be cancelled.", job.id)
        return article

    def close(self) -> None:
        for resource in reversed(self._closers):
            resource.close()  # type: ignore[attr-defined]
        self._closers.clear()
        self.jobs.close()


def build_runtime(  # noqa: PLR0913
    settings: Settings,
    *,
    llm: LlmProvider | None = None,
    keyword_provider: KeywordResearchProvider | None = None,
    fetcher: HttpFetcher | None = None,
    blob_store: BlobStore | None = None,
    publisher: PagePublisher | None = None,
    init_schema: bool = True,
) -> Runtime:
    """Build a runtime; injected providers win over the configured ones.

    The article pipeline executor is registered only when both an LLM and a
    keyword research provider are available.
    """

    jobs = JobRepository(
        settings.db_path,
        sqlite_busy_timeout_ms=settings.sqlite_busy_timeout_ms,
        retry_backoff_minutes=settings.queue.retry_backoff_minutes,
        stuck_job_timeout=timedelta(minutes=settings.queue.stuck_job_timeout_minutes),
    )
    if init_schema:
        jobs.init_schema()
    articles = ArticleRepository(jobs.engine)
    closers: list[object] = []

    if fetcher is None:
        fetcher = HttpFetcher(timeout_seconds=settings.images.item_timeout_seconds)
        closers.append(fetcher)
    executors = ExecutorRegistry()
    executors.register_executor(
        ReviewerImageRetryExecutor(
            fetcher=fetcher,
            blob_store=blob_store or LocalBlobStore(settings.images.blob_root),
            photos=ReviewPhotoRepository(jobs.engine),
            system_log=jobs.system_log,
            delay_between_items_ms=settings.images.delay_between_items_ms,
            item_timeout_seconds=settings.images.item_timeout_seconds,
            max_attempts=settings.images.max_requeues,
        ),
    )

    if llm is None and settings.llm.anthropic_api_key:
        llm = AnthropicProvider(
            api_key=settings.llm.anthropic_api_key,
            timeout_seconds=settings.llm.request_timeout_seconds,
        )
    research = settings.keyword_research
    if keyword_provider is None and research.login and research.password:
        client = DataForSeoClient(
            login=research.login,
            password=research.password,
            base_url=research.base_url,
            timeout_seconds=research.request_timeout_seconds,
        )
        closers.append(client)
        keyword_provider = client

    agents = AgentRegistry()
    orchestrator: ArticlePipelineOrchestrator | None = None
    if llm is not None and keyword_provider is not None:
        agents.register_agent(
            ResearchAgent(
                provider=keyword_provider,
                location_code=research.location_code,
                language_code=research.language_code,
                page_fetcher=fetcher if research.fetch_competitor_pages else None,
            ),
        )
        agents.register_agent(WriterAgent())
        agents.register_agent(SeoAgent())
        agents.register_agent(QaAgent())
        orchestrator = ArticlePipelineOrchestrator(
            articles=articles,
            agents=agents,
            llm=llm,
            system_log=jobs.system_log,
            publisher=publisher,
        )
        executors.register_executor(
            ArticlePipelineExecutor(orchestrator=orchestrator, articles=articles),
        )
    else:
        logger.info("Article pipeline disabled: LLM or keyword research provider not configured.")

    dispatcher = JobDispatcher(
        repository=jobs,
        executors=executors,
        progress_queue_size=settings.queue.progress_queue_size,
    )
    return Runtime(
        settings=settings,
        jobs=jobs,
        articles=articles,
        executors=executors,
        agents=agents,
        dispatcher=dispatcher,
        orchestrator=orchestrator,
        _closers=closers,
    )


@contextmanager
def open_runtime(settings: Settings, **overrides: object) -> Iterator[Runtime]:
    runtime = build_runtime(settings, **overrides)  # type: ignore[arg-type]
    try:
        yield runtime
    finally:
        runtime.close()
