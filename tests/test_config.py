from __future__ import annotations

from pathlib import Path

import allure
import pytest

from content_jobs.config import (
    DEFAULT_RETRY_BACKOFF_MINUTES,
    KeywordResearchSettings,
    LlmSettings,
    QueueSettings,
    Settings,
)

pytestmark = [
    allure.epic("Configuration"),
    allure.feature("Environment Settings"),
]


@pytest.fixture()
def clean_env(monkeypatch: pytest.MonkeyPatch) -> pytest.MonkeyPatch:
    for name in (
        "CONTENT_JOBS_DB_PATH",
        "CONTENT_JOBS_RETRY_BACKOFF_MINUTES",
        "CONTENT_JOBS_RUNNER_SECRET",
        "CONTENT_JOBS_ANTHROPIC_API_KEY",
        "ANTHROPIC_API_KEY",
        "CONTENT_JOBS_RESEARCH_FETCH_COMPETITOR_PAGES",
    ):
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


def test_from_env_defaults(clean_env: pytest.MonkeyPatch) -> None:
    settings = Settings.from_env()

    assert settings.db_path == Path(".content_jobs.db")
    assert settings.queue.retry_backoff_minutes == DEFAULT_RETRY_BACKOFF_MINUTES
    assert settings.queue.stuck_job_timeout_minutes == 30
    assert settings.api.runner_secret is None
    assert settings.llm.anthropic_api_key is None
    assert settings.keyword_research.fetch_competitor_pages is False


def test_from_env_reads_overrides(clean_env: pytest.MonkeyPatch, tmp_path: Path) -> None:
    clean_env.setenv("CONTENT_JOBS_RETRY_BACKOFF_MINUTES", "2, 10,30")
    clean_env.setenv("CONTENT_JOBS_RUNNER_SECRET", "s3cret")
    clean_env.setenv("ANTHROPIC_API_KEY", "sk-test")
    clean_env.setenv("CONTENT_JOBS_RESEARCH_FETCH_COMPETITOR_PAGES", "yes")

    settings = Settings.from_env(db_path=tmp_path / "jobs.db")

    assert settings.db_path == tmp_path / "jobs.db"
    assert settings.queue.retry_backoff_minutes == (2, 10, 30)
    assert settings.api.runner_secret == "s3cret"
    assert settings.llm.anthropic_api_key == "sk-test"
    assert settings.keyword_research.fetch_competitor_pages is True


def test_from_env_rejects_invalid_values(clean_env: pytest.MonkeyPatch) -> None:
    clean_env.setenv("CONTENT_JOBS_RETRY_BACKOFF_MINUTES", "1,soon")
    with pytest.raises(ValueError, match="Invalid integer"):
        Settings.from_env()

    clean_env.delenv("CONTENT_JOBS_RETRY_BACKOFF_MINUTES")
    clean_env.setenv("CONTENT_JOBS_RESEARCH_FETCH_COMPETITOR_PAGES", "maybe")
    with pytest.raises(ValueError, match="Invalid boolean"):
        Settings.from_env()


def test_validate_for_worker_accepts_defaults() -> None:
    Settings().validate_for_worker()


@pytest.mark.parametrize(
    ("queue", "message"),
    [
        (QueueSettings(tick_interval_seconds=0), "TICK_INTERVAL"),
        (QueueSettings(stuck_job_timeout_minutes=0), "STUCK_JOB_TIMEOUT"),
        (QueueSettings(retry_backoff_minutes=()), "at least one delay"),
        (QueueSettings(retry_backoff_minutes=(1, -5)), "must be >= 0"),
        (QueueSettings(default_max_attempts=0), "DEFAULT_MAX_ATTEMPTS"),
    ],
)
def test_validate_for_worker_rejects_bad_queue_settings(
    queue: QueueSettings,
    message: str,
) -> None:
    with pytest.raises(ValueError, match=message):
        Settings(queue=queue).validate_for_worker()


def test_validate_for_articles_requires_provider_credentials() -> None:
    with pytest.raises(ValueError, match="Anthropic API key"):
        Settings().validate_for_articles()

    with pytest.raises(ValueError, match="DataForSEO credentials"):
        Settings(llm=LlmSettings(anthropic_api_key="sk-test")).validate_for_articles()

    Settings(
        llm=LlmSettings(anthropic_api_key="sk-test"),
        keyword_research=KeywordResearchSettings(login="user", password="pass"),
    ).validate_for_articles()
