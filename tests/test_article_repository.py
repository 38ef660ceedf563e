from __future__ import annotations

from typing import Any

import allure
import pytest

from content_jobs.articles.agents.prompts import default_personas
from content_jobs.articles.models import (
    AgentType,
    ArticleSettings,
    ArticleStatus,
    PersonaCreate,
    StepStatus,
    TokenUsage,
)
from content_jobs.articles.repository import ArticleRepository
from content_jobs.errors import ConcurrencyConflict, InvalidJobState, ValidationError
from content_jobs.jobs.models import JobStatus
from content_jobs.jobs.repository import JobRepository

pytestmark = [
    allure.epic("Article Pipeline"),
    allure.feature("Article Persistence"),
]


@pytest.fixture()
def articles(repository: JobRepository) -> ArticleRepository:
    return ArticleRepository(repository.engine)


def _writer_persona(name: str = "Punchy Writer", *, is_default: bool = False) -> PersonaCreate:
    return PersonaCreate(
        agent_type=AgentType.WRITER,
        name=name,
        system_prompt="Write tersely.",
        model="claude-haiku-4-5",
        temperature=0.4,
        max_tokens=2048,
        is_default=is_default,
    )


def test_settings_from_dict_accepts_full_payload() -> None:
    settings = ArticleSettings.from_dict(
        {
            "auto_post": True,
            "target_word_count": 1200,
            "max_iterations": 2,
            "persona_overrides": {"writer": "persona-1"},
            "skip_agents": ["seo"],
            "context": "For beginners",
        },
    )

    assert settings.skip_agents == frozenset({AgentType.SEO})
    assert settings.to_dict() == {
        "auto_post": True,
        "target_word_count": 1200,
        "max_iterations": 2,
        "persona_overrides": {"writer": "persona-1"},
        "skip_agents": ["seo"],
        "context": "For beginners",
    }
    assert ArticleSettings.from_dict(None) == ArticleSettings()


@pytest.mark.parametrize(
    ("raw", "message"),
    [
        ({"colour": "blue"}, "Unknown settings: colour"),
        ({"auto_post": "yes"}, "auto_post must be a boolean"),
        ({"target_word_count": 299}, "target_word_count must be between 300 and 10000"),
        ({"target_word_count": True}, "target_word_count"),
        ({"max_iterations": 0}, "max_iterations must be between 1 and 10"),
        ({"max_iterations": 11}, "max_iterations"),
        ({"persona_overrides": {"editor": "p"}}, "unknown stage: editor"),
        ({"persona_overrides": {"writer": ""}}, "must be a persona id"),
        ({"skip_agents": ["qa"]}, "Stage cannot be skipped: qa"),
        ({"skip_agents": ["bogus"]}, "unknown stage: bogus"),
        ({"skip_agents": "seo"}, "skip_agents must be a list"),
        ({"context": 7}, "context must be a string"),
    ],
)
def test_settings_from_dict_rejects_invalid_values(raw: dict[str, Any], message: str) -> None:
    with pytest.raises(ValidationError, match=message):
        ArticleSettings.from_dict(raw)


def test_create_article_enqueues_pipeline_job(
    articles: ArticleRepository,
    repository: JobRepository,
) -> None:
    settings = ArticleSettings(max_iterations=2, context="Budget focus")

    article, job = articles.create_article(
        keyword="  hiking boots ",
        settings=settings,
        jobs=repository,
        created_by="editor@example.com",
    )

    assert article.keyword == "hiking boots"
    assert article.status == ArticleStatus.PENDING
    assert article.max_iterations == 2
    assert article.settings == settings
    assert article.background_job_id == job.id
    assert job.job_type == "article_pipeline"
    assert job.status == JobStatus.PENDING
    assert job.payload == {"article_job_id": article.id}
    assert articles.get_article(article_id=article.id) == article
    assert [entry.action for entry in repository.system_log.get_job_logs(job_id=job.id)] == [
        "created",
    ]


def test_create_article_rejects_empty_keyword(
    articles: ArticleRepository,
    repository: JobRepository,
) -> None:
    with pytest.raises(ValidationError, match="keyword must not be empty"):
        articles.create_article(keyword="   ", settings=ArticleSettings(), jobs=repository)


def test_create_article_conflicts_with_active_pipeline_job(
    articles: ArticleRepository,
    repository: JobRepository,
) -> None:
    articles.create_article(keyword="hiking boots", settings=ArticleSettings(), jobs=repository)

    with pytest.raises(ConcurrencyConflict):
        articles.create_article(keyword="trail shoes", settings=ArticleSettings(), jobs=repository)

    assert [article.keyword for article in articles.list_articles()] == ["hiking boots"]


def test_list_articles_filters_and_validates_limit(
    articles: ArticleRepository,
    repository: JobRepository,
) -> None:
    first, _ = articles.create_article(
        keyword="hiking boots",
        settings=ArticleSettings(),
        jobs=repository,
    )
    articles.cancel(article_id=first.id)
    repository.cancel(job_id=first.background_job_id or "")
    second, _ = articles.create_article(
        keyword="trail shoes",
        settings=ArticleSettings(),
        jobs=repository,
    )

    assert [a.id for a in articles.list_articles()] == [second.id, first.id]
    assert [a.id for a in articles.list_articles(status=ArticleStatus.CANCELLED)] == [first.id]
    with pytest.raises(ValueError, match="limit"):
        articles.list_articles(limit=0)


def test_processing_lifecycle_and_telemetry(
    articles: ArticleRepository,
    repository: JobRepository,
) -> None:
    article, job = articles.create_article(
        keyword="hiking boots",
        settings=ArticleSettings(),
        jobs=repository,
    )
    assert articles.update_telemetry(article_id=article.id, current_agent="writer") is False

    started = articles.start_processing(article_id=article.id, background_job_id=job.id)
    assert started.status == ArticleStatus.PROCESSING
    assert started.current_iteration == 1
    assert started.started_at is not None

    assert articles.update_telemetry(article_id=article.id) is False
    assert articles.update_telemetry(
        article_id=article.id,
        current_agent="qa",
        current_iteration=2,
        progress_percent=140,
        total_tokens_used=450,
        estimated_cost_usd=0.0031500004,
    )
    assert articles.complete(article_id=article.id, final_output={"passed": True})
    articles.set_page_id(article_id=article.id, page_id="page-9")

    finished = articles.get_article(article_id=article.id)
    assert finished is not None
    assert finished.status == ArticleStatus.COMPLETED
    assert finished.current_agent is None
    assert finished.progress_percent == 100
    assert finished.total_tokens_used == 450
    assert finished.estimated_cost_usd == pytest.approx(0.00315)
    assert finished.final_output == {"passed": True}
    assert finished.page_id == "page-9"
    assert finished.completed_at is not None
    assert articles.fail(article_id=article.id, error="late failure") is False


def test_start_processing_keeps_token_total_across_attempts(
    articles: ArticleRepository,
    repository: JobRepository,
) -> None:
    article, job = articles.create_article(
        keyword="hiking boots",
        settings=ArticleSettings(),
        jobs=repository,
    )
    articles.start_processing(article_id=article.id, background_job_id=job.id)
    articles.update_telemetry(article_id=article.id, total_tokens_used=300, current_iteration=2)
    articles.fail(article_id=article.id, error="[writer] bad JSON")

    restarted = articles.start_processing(article_id=article.id, background_job_id=job.id)

    assert restarted.status == ArticleStatus.PROCESSING
    assert restarted.total_tokens_used == 300
    assert restarted.current_iteration == 1
    assert restarted.last_error is None


def test_cancel_rules(articles: ArticleRepository, repository: JobRepository) -> None:
    article, job = articles.create_article(
        keyword="hiking boots",
        settings=ArticleSettings(),
        jobs=repository,
    )

    cancelled = articles.cancel(article_id=article.id)

    assert cancelled.status == ArticleStatus.CANCELLED
    assert articles.is_cancelled(article_id=article.id)
    assert not articles.is_cancelled(article_id="missing")
    with pytest.raises(InvalidJobState, match="status=cancelled"):
        articles.cancel(article_id=article.id)
    with pytest.raises(InvalidJobState):
        articles.start_processing(article_id=article.id, background_job_id=job.id)
    with pytest.raises(ValidationError, match="Article job not found"):
        articles.cancel(article_id="missing")
    with pytest.raises(ValidationError, match="Article job not found"):
        articles.start_processing(article_id="missing", background_job_id=job.id)


def test_step_transitions_happen_once(
    articles: ArticleRepository,
    repository: JobRepository,
) -> None:
    article, _ = articles.create_article(
        keyword="hiking boots",
        settings=ArticleSettings(),
        jobs=repository,
    )
    step = articles.create_step(
        job_id=article.id,
        agent_type=AgentType.WRITER,
        iteration=1,
        step_input={"keyword": "hiking boots"},
    )
    assert step.status == StepStatus.PENDING
    assert step.input == {"keyword": "hiking boots"}

    assert articles.append_step_log(step_id=step.id, entry={"message": "queued"})
    assert articles.start_step(step_id=step.id, persona_id="persona-1")
    assert not articles.start_step(step_id=step.id)
    assert articles.append_step_log(step_id=step.id, entry={"message": "running"})
    assert articles.complete_step(
        step_id=step.id,
        output={"title": "Boots"},
        usage=TokenUsage(input_tokens=100, output_tokens=50),
    )
    assert not articles.fail_step(step_id=step.id, error="too late")
    assert not articles.append_step_log(step_id=step.id, entry={"message": "after"})
    assert not articles.start_step(step_id="missing")
    assert not articles.complete_step(step_id="missing", output={}, usage=TokenUsage())

    (stored,) = articles.list_steps(job_id=article.id)
    assert stored.status == StepStatus.COMPLETED
    assert stored.persona_id == "persona-1"
    assert stored.output == {"title": "Boots"}
    assert (stored.prompt_tokens, stored.completion_tokens, stored.tokens_used) == (100, 50, 150)
    assert [entry["message"] for entry in stored.logs] == ["queued", "running"]
    assert stored.error_message is None
    assert stored.duration_ms is not None
    assert stored.duration_ms >= 0


def test_skipped_and_failed_steps(articles: ArticleRepository, repository: JobRepository) -> None:
    article, _ = articles.create_article(
        keyword="hiking boots",
        settings=ArticleSettings(),
        jobs=repository,
    )

    skipped = articles.create_step(
        job_id=article.id,
        agent_type=AgentType.SEO,
        iteration=1,
        status=StepStatus.SKIPPED,
    )
    failing = articles.create_step(job_id=article.id, agent_type=AgentType.QA, iteration=1)
    assert articles.fail_step(
        step_id=failing.id,
        error="Model output was not valid JSON",
        usage=TokenUsage(input_tokens=200, output_tokens=100),
    )

    assert skipped.status == StepStatus.SKIPPED
    assert skipped.completed_at is not None
    assert not articles.start_step(step_id=skipped.id)
    steps = {step.agent_type: step for step in articles.list_steps(job_id=article.id)}
    assert steps["qa"].status == StepStatus.FAILED
    assert steps["qa"].tokens_used == 300
    assert steps["qa"].duration_ms is None
    with pytest.raises(ValueError, match="pending or skipped"):
        articles.create_step(
            job_id=article.id,
            agent_type=AgentType.QA,
            iteration=2,
            status=StepStatus.RUNNING,
        )


def test_seed_default_personas_is_idempotent(articles: ArticleRepository) -> None:
    defaults = default_personas(model="claude-sonnet-4-20250514", max_tokens=2048)

    created = articles.seed_default_personas(defaults)
    again = articles.seed_default_personas(defaults)

    assert [persona.agent_type for persona in created] == list(AgentType)
    assert again == []
    writer = articles.find_default_persona(agent_type=AgentType.WRITER)
    assert writer is not None
    assert writer.name == "Content Writer"
    assert writer.max_tokens == 2048
    assert writer.temperature == pytest.approx(0.7)
    assert "No emojis" in writer.system_prompt


def test_only_one_active_default_persona_per_stage(articles: ArticleRepository) -> None:
    first = articles.create_persona(_writer_persona("House Writer", is_default=True))
    extra = articles.create_persona(_writer_persona())

    with pytest.raises(ValidationError, match="already exists for writer"):
        articles.create_persona(_writer_persona("Second Default", is_default=True))

    assert articles.find_default_persona(agent_type=AgentType.WRITER) == first
    assert articles.get_persona(persona_id=extra.id) == extra
    assert articles.get_persona(persona_id="missing") is None
    assert [p.name for p in articles.list_personas(agent_type=AgentType.WRITER)] == [
        "House Writer",
        "Punchy Writer",
    ]
    assert articles.list_personas(agent_type=AgentType.QA) == []
