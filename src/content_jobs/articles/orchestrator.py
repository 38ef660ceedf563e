"""Runs one article through research, then write/SEO/QA iterations.

Every attempt starts from research. Each agent invocation is recorded as a
step row before it runs and finished exactly once. Token usage, including
usage carried by a failed call, is added to the article's running total as
soon as the call returns, so a failed attempt keeps what it spent.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from content_jobs.articles.agents.base import AgentContext
from content_jobs.articles.models import (
    DEFAULT_TARGET_WORD_COUNT,
    AgentType,
    ArticleJobView,
    ArticleSettings,
    ArticleStatus,
    Persona,
    StepStatus,
    TokenUsage,
)
from content_jobs.articles.registry import AgentRegistry
from content_jobs.articles.repository import ArticleRepository
from content_jobs.errors import StageFailure
from content_jobs.jobs.executors.base import ProgressCallback
from content_jobs.jobs.system_log import PIPELINE_LOG_TYPE, SystemLogService
from content_jobs.providers.llm import LlmProvider, estimate_cost_usd
from content_jobs.providers.publisher import PagePublisher

logger = logging.getLogger(__name__)

ITERATION_STAGES: tuple[AgentType, ...] = (AgentType.WRITER, AgentType.SEO, AgentType.QA)


class PipelineCancelled(Exception):
    """Article was cancelled by an operator between stages."""


@dataclass(slots=True)
class PipelineOutcome:
    article_id: str
    status: ArticleStatus
    passed: bool
    iterations: int
    total_tokens_used: int
    estimated_cost_usd: float
    page_id: str | None = None

    def as_result(self) -> dict[str, Any]:
        return {
            "article_job_id": self.article_id,
            "status": self.status.value,
            "passed": self.passed,
            "iterations": self.iterations,
            "total_tokens_used": self.total_tokens_used,
            "estimated_cost_usd": round(self.estimated_cost_usd, 6),
            "page_id": self.page_id,
        }


@dataclass(slots=True)
class _RunState:
    article: ArticleJobView
    background_job_id: str
    planned_stages: int
    progress: ProgressCallback | None
    total_tokens: int = 0
    cost_usd: float = 0.0
    completed_stages: int = 0

    @property
    def article_id(self) -> str:
        return self.article.id

    @property
    def settings(self) -> ArticleSettings:
        return self.article.settings

    @property
    def percent(self) -> int:
        if self.planned_stages <= 0:
            return 0
        return min(99, round(self.completed_stages / self.planned_stages * 100))


class ArticlePipelineOrchestrator:
    """Drives the agents for one article job attempt."""

    def __init__(
        self,
        *,
        articles: ArticleRepository,
        agents: AgentRegistry,
        llm: LlmProvider,
        system_log: SystemLogService | None = None,
        publisher: PagePublisher | None = None,
    ) -> None:
        missing = agents.missing_stages()
        if missing:
            raise ValueError(
                f"No agent registered for: {', '.join(stage.value for stage in missing)}",
            )
        self.articles = articles
        self.agents = agents
        self.llm = llm
        self.system_log = system_log
        self.publisher = publisher

    def run(
        self,
        *,
        article_id: str,
        background_job_id: str,
        progress: ProgressCallback | None = None,
    ) -> PipelineOutcome:
        """Run the full pipeline; raise `StageFailure` when a stage fails.

        The caller marks the article failed; this method only records steps
        and telemetry.
        """

        article = self.articles.start_processing(
            article_id=article_id,
            background_job_id=background_job_id,
        )
        settings = article.settings
        per_iteration = sum(1 for stage in ITERATION_STAGES if stage not in settings.skip_agents)
        state = _RunState(
            article=article,
            background_job_id=background_job_id,
            planned_stages=1 + settings.max_iterations * per_iteration,
            progress=progress,
            total_tokens=article.total_tokens_used,
            cost_usd=article.estimated_cost_usd,
        )
        if progress is not None:
            progress(total_items=state.planned_stages, processed_items=0)
        self._log(state, "pipeline_started", f'Article pipeline started for "{article.keyword}"')

        try:
            return self._run_stages(state)
        except PipelineCancelled:
            self._log(state, "pipeline_cancelled", "Article cancelled; pipeline stopped")
            return self._outcome(state, status=ArticleStatus.CANCELLED, passed=False, iterations=0)

    def _run_stages(self, state: _RunState) -> PipelineOutcome:
        settings = state.settings
        keyword = state.article.keyword
        research = self._run_stage(
            state,
            AgentType.RESEARCH,
            {"keyword": keyword},
            iteration=1,
        )
        target_word_count = (
            settings.target_word_count
            or research.get("recommended_word_count")
            or DEFAULT_TARGET_WORD_COUNT
        )

        article: dict[str, Any] = {}
        seo: dict[str, Any] | None = None
        qa: dict[str, Any] = {}
        feedback: str | None = None
        previous: dict[str, Any] | None = None
        iteration = 0
        for iteration in range(1, settings.max_iterations + 1):
            article = self._run_stage(
                state,
                AgentType.WRITER,
                {
                    "keyword": keyword,
                    "research": research,
                    "target_word_count": target_word_count,
                    "context": settings.context,
                    "qa_feedback": feedback,
                    "previous_article": previous,
                },
                iteration=iteration,
            )
            if AgentType.SEO in settings.skip_agents:
                self._skip_stage(state, AgentType.SEO, iteration=iteration)
                seo = None
            else:
                seo = self._run_stage(
                    state,
                    AgentType.SEO,
                    {"keyword": keyword, "article": article, "research": research},
                    iteration=iteration,
                )
            qa = self._run_stage(
                state,
                AgentType.QA,
                {"keyword": keyword, "article": article, "seo": seo},
                iteration=iteration,
            )
            if qa.get("passed"):
                break
            if iteration < settings.max_iterations:
                feedback = str(qa.get("feedback") or "")
                previous = article
                self._log(
                    state,
                    "revision_requested",
                    f"QA score {qa.get('overall_score')} below threshold; revising "
                    f"(iteration {iteration + 1}/{settings.max_iterations})",
                )

        passed = bool(qa.get("passed"))
        final_output = {
            "research": research,
            "article": article,
            "seo": seo,
            "qa": qa,
            "iterations": iteration,
            "passed": passed,
        }
        if not self.articles.complete(article_id=state.article_id, final_output=final_output):
            raise PipelineCancelled
        if state.progress is not None:
            state.progress(processed_items=state.planned_stages)
        self._log(
            state,
            "pipeline_completed",
            f"Article completed after {iteration} iteration(s), passed={passed}",
            metadata={"total_tokens_used": state.total_tokens, "passed": passed},
        )
        outcome = self._outcome(
            state,
            status=ArticleStatus.COMPLETED,
            passed=passed,
            iterations=iteration,
        )
        if settings.auto_post:
            outcome.page_id = self._publish(state, keyword=keyword, article=article, seo=seo)
        return outcome

    def _run_stage(
        self,
        state: _RunState,
        agent_type: AgentType,
        agent_input: dict[str, Any],
        *,
        iteration: int,
    ) -> dict[str, Any]:
        if self.articles.is_cancelled(article_id=state.article_id):
            raise PipelineCancelled
        agent = self.agents.get_agent(agent_type)
        self.articles.update_telemetry(
            article_id=state.article_id,
            current_agent=agent_type.value,
            current_iteration=iteration,
            progress_percent=state.percent,
        )
        step = self.articles.create_step(
            job_id=state.article_id,
            agent_type=agent_type,
            iteration=iteration,
            step_input=agent_input,
        )
        try:
            persona = self._resolve_persona(state.settings, agent_type)
        except StageFailure as error:
            self.articles.fail_step(step_id=step.id, error=error.message)
            self._log(state, "stage_failed", str(error), level="error")
            raise

        self.articles.start_step(step_id=step.id, persona_id=persona.id)
        context = AgentContext(
            article_id=state.article_id,
            iteration=iteration,
            persona=persona,
            llm=self.llm,
            log_sink=lambda entry: self.articles.append_step_log(step_id=step.id, entry=entry),
        )
        try:
            result = agent.run(agent_input, context)
        except Exception as error:  # noqa: BLE001
            usage = getattr(error, "usage", None)
            if usage is not None:
                self._account(state, persona, usage)
            message = error.message if isinstance(error, StageFailure) else str(error)
            self.articles.fail_step(step_id=step.id, error=message, usage=usage)
            self._log(
                state,
                "stage_failed",
                f"{agent_type.value} failed on iteration {iteration}: {message}",
                level="error",
            )
            raise StageFailure(agent_type.value, message, usage=usage) from error

        self._account(state, persona, result.usage)
        self.articles.complete_step(step_id=step.id, output=result.output, usage=result.usage)
        state.completed_stages += 1
        if state.progress is not None:
            state.progress(processed_items=state.completed_stages)
        self._log(
            state,
            "stage_completed",
            f"{agent_type.value} completed on iteration {iteration}",
            level="debug",
            metadata={"tokens_used": result.usage.total_tokens},
        )
        return result.output

    def _skip_stage(self, state: _RunState, agent_type: AgentType, *, iteration: int) -> None:
        self.articles.create_step(
            job_id=state.article_id,
            agent_type=agent_type,
            iteration=iteration,
            status=StepStatus.SKIPPED,
        )
        logger.info("[article %s] Skipping %s", state.article_id, agent_type.value)

    def _resolve_persona(self, settings: ArticleSettings, agent_type: AgentType) -> Persona:
        override_id = settings.persona_overrides.get(agent_type.value)
        if override_id:
            persona = self.articles.get_persona(persona_id=override_id)
            if persona is not None and persona.agent_type == agent_type and persona.is_active:
                return persona
            logger.warning(
                "Persona override %s is not an active %s persona; using the default.",
                override_id,
                agent_type.value,
            )
        persona = self.articles.find_default_persona(agent_type=agent_type)
        if persona is None:
            raise StageFailure(agent_type.value, f"No persona configured for {agent_type.value}")
        return persona

    def _account(self, state: _RunState, persona: Persona, usage: TokenUsage) -> None:
        state.total_tokens += usage.total_tokens
        state.cost_usd += estimate_cost_usd(persona.model, usage)
        self.articles.update_telemetry(
            article_id=state.article_id,
            total_tokens_used=state.total_tokens,
            estimated_cost_usd=state.cost_usd,
        )

    def _publish(
        self,
        state: _RunState,
        *,
        keyword: str,
        article: dict[str, Any],
        seo: dict[str, Any] | None,
    ) -> str | None:
        if self.publisher is None:
            logger.info("auto_post requested for %s but no publisher is configured.", keyword)
            return None
        try:
            page_id = self.publisher.publish(keyword=keyword, article=article, seo=seo)
        except Exception as error:  # noqa: BLE001
            self._log(state, "publish_failed", f"Auto-publish failed: {error}", level="warning")
            return None
        self.articles.set_page_id(article_id=state.article_id, page_id=page_id)
        self._log(state, "published", f"Article published as page {page_id}")
        return page_id

    def _outcome(
        self,
        state: _RunState,
        *,
        status: ArticleStatus,
        passed: bool,
        iterations: int,
    ) -> PipelineOutcome:
        return PipelineOutcome(
            article_id=state.article_id,
            status=status,
            passed=passed,
            iterations=iterations,
            total_tokens_used=state.total_tokens,
            estimated_cost_usd=state.cost_usd,
        )

    def _log(
        self,
        state: _RunState,
        action: str,
        message: str,
        *,
        level: str = "info",
        metadata: dict[str, Any] | None = None,
    ) -> None:
        if self.system_log is None:
            logger.info("[article %s] %s", state.article_id, message)
            return
        self.system_log.log_job_event(
            job_id=state.background_job_id,
            action=action,
            message=f"[article {state.article_id}] {message}",
            level=level,
            metadata={"article_job_id": state.article_id, **(metadata or {})},
            log_type=PIPELINE_LOG_TYPE,
        )
