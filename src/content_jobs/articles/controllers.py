"""Controllers for article and persona CLI commands."""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from content_jobs.articles.models import AgentType, ArticleSettings, ArticleStatus, Persona
from content_jobs.bootstrap import open_runtime
from content_jobs.config import Settings
from content_jobs.errors import ValidationError


@dataclass(slots=True)
class ArticleCreateCommand:
    """CLI input for article creation."""

    db_path: Path | None
    keyword: str
    target_word_count: int | None
    max_iterations: int | None
    auto_post: bool
    skip_agents: tuple[str, ...]
    context: str | None
    created_by: str | None


@dataclass(slots=True)
class ArticleIdCommand:
    db_path: Path | None
    article_id: str


@dataclass(slots=True)
class ArticleListCommand:
    db_path: Path | None
    status: str | None
    limit: int


@dataclass(slots=True)
class PersonaListCommand:
    db_path: Path | None
    agent_type: str | None


class ArticlesCliController:
    """Coordinates article pipeline and persona CLI operations."""

    def create(self, command: ArticleCreateCommand) -> list[str]:
        raw: dict[str, Any] = {"auto_post": command.auto_post}
        if command.target_word_count is not None:
            raw["target_word_count"] = command.target_word_count
        if command.max_iterations is not None:
            raw["max_iterations"] = command.max_iterations
        if command.skip_agents:
            raw["skip_agents"] = list(command.skip_agents)
        if command.context:
            raw["context"] = command.context
        article_settings = ArticleSettings.from_dict(raw)

        settings = Settings.from_env(db_path=command.db_path)
        with open_runtime(settings) as runtime:
            article, job = runtime.articles.create_article(
                keyword=command.keyword,
                settings=article_settings,
                jobs=runtime.jobs,
                created_by=command.created_by,
            )
        lines = [
            f"Article created: article_id={article.id} keyword={article.keyword!r} "
            f"status={article.status.value}",
            f"Pipeline job: job_id={job.id} status={job.status.value}",
        ]
        try:
            settings.validate_for_articles()
        except ValueError as error:
            lines.append(f"Warning: the worker cannot run this pipeline yet. {error}")
        return lines

    def list_articles(self, command: ArticleListCommand) -> list[str]:
        status = None
        if command.status is not None:
            try:
                status = ArticleStatus(command.status.strip().lower())
            except ValueError as error:
                raise ValidationError(f"Unsupported status {command.status!r}") from error
        settings = Settings.from_env(db_path=command.db_path)
        with open_runtime(settings) as runtime:
            articles = runtime.articles.list_articles(status=status, limit=command.limit)

        lines = [f"Articles: {len(articles)}"]
        for article in articles:
            lines.append(
                f"  {article.id} status={article.status.value} "
                f"iteration={article.current_iteration}/{article.max_iterations} "
                f"tokens={article.total_tokens_used} keyword={article.keyword!r}",
            )
        return lines

    def inspect(self, command: ArticleIdCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with open_runtime(settings) as runtime:
            article = runtime.articles.get_article(article_id=command.article_id)
            steps = runtime.articles.list_steps(job_id=command.article_id)
        if article is None:
            raise ValidationError(f"Article job not found: {command.article_id}")

        lines = [
            f"Article: {article.id}",
            f"Keyword: {article.keyword}",
            f"Status: {article.status.value}",
            f"Current agent: {article.current_agent or '-'}",
            f"Iteration: {article.current_iteration}/{article.max_iterations}",
            f"Progress: {article.progress_percent}%",
            f"Tokens: {article.total_tokens_used} (${article.estimated_cost_usd:.4f})",
            f"Background job: {article.background_job_id or '-'}",
            f"Page: {article.page_id or '-'}",
            f"Error: {article.last_error or '-'}",
            f"Settings: {json.dumps(article.settings.to_dict(), sort_keys=True)}",
        ]
        final = article.final_output
        if final is not None:
            article_output = final.get("article") or {}
            qa = final.get("qa") or {}
            lines.append(
                f"Final: title={article_output.get('title')!r} "
                f"words={article_output.get('word_count')} "
                f"qa_score={qa.get('overall_score')} passed={final.get('passed')}",
            )
        lines.append(f"Steps: {len(steps)}")
        for step in steps:
            lines.append(
                f"  iteration={step.iteration} {step.agent_type} status={step.status.value} "
                f"tokens={step.tokens_used} duration_ms={step.duration_ms or '-'}"
                + (f" error={step.error_message}" if step.error_message else ""),
            )
        return lines

    def cancel(self, command: ArticleIdCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with open_runtime(settings) as runtime:
            article = runtime.cancel_article(article_id=command.article_id, actor_id="cli")
        return [f"Article cancelled: article_id={article.id} status={article.status.value}"]

    def seed_personas(self, db_path: Path | None) -> list[str]:
        settings = Settings.from_env(db_path=db_path)
        with open_runtime(settings) as runtime:
            created = runtime.seed_personas()
            personas = runtime.articles.list_personas()
        return [
            f"Default personas created: {created}",
            *_persona_lines(personas),
        ]

    def list_personas(self, command: PersonaListCommand) -> list[str]:
        agent_type = None
        if command.agent_type is not None:
            try:
                agent_type = AgentType(command.agent_type.strip().lower())
            except ValueError as error:
                raise ValidationError(f"Unknown agent type {command.agent_type!r}") from error
        settings = Settings.from_env(db_path=command.db_path)
        with open_runtime(settings) as runtime:
            personas = runtime.articles.list_personas(agent_type=agent_type)
        return [f"Personas: {len(personas)}", *_persona_lines(personas)]


def _persona_lines(personas: list[Persona]) -> list[str]:
    return [
        f"  {persona.id} agent={persona.agent_type.value} name={persona.name!r} "
        f"model={persona.model} temperature={persona.temperature} "
        f"default={persona.is_default} active={persona.is_active}"
        for persona in personas
    ]
