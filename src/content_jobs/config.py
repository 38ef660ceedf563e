"""Runtime configuration for the job queue, executors and article pipeline."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

DEFAULT_RETRY_BACKOFF_MINUTES: tuple[int, ...] = (1, 5, 15, 60)


@dataclass(slots=True)
class QueueSettings:
    """Dispatcher and ticker settings."""

    tick_interval_seconds: float = 60.0
    stuck_job_timeout_minutes: int = 30
    retry_backoff_minutes: tuple[int, ...] = DEFAULT_RETRY_BACKOFF_MINUTES
    default_max_attempts: int = 3
    progress_queue_size: int = 256


@dataclass(slots=True)
class ApiSettings:
    """HTTP trigger settings."""

    runner_secret: str | None = None
    host: str = "127.0.0.1"
    port: int = 8000


@dataclass(slots=True)
class LlmSettings:
    """LLM provider settings."""

    anthropic_api_key: str | None = None
    default_model: str = "claude-sonnet-4-20250514"
    max_tokens: int = 4096
    temperature: float = 0.7
    request_timeout_seconds: float = 120.0


@dataclass(slots=True)
class KeywordResearchSettings:
    """DataForSEO settings used by the research agent."""

    login: str | None = None
    password: str | None = None
    base_url: str = "https://api.dataforseo.com"
    location_code: int = 2840
    language_code: str = "en"
    request_timeout_seconds: float = 60.0
    fetch_competitor_pages: bool = False


@dataclass(slots=True)
class ImageSettings:
    """Throttled image download settings."""

    blob_root: Path = Path(".content_jobs_blobs")
    delay_between_items_ms: int = 300
    item_timeout_seconds: float = 5.0
    max_requeues: int = 4


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    db_path: Path = Path(".content_jobs.db")
    sqlite_busy_timeout_ms: int = 5_000
    queue: QueueSettings = field(default_factory=QueueSettings)
    api: ApiSettings = field(default_factory=ApiSettings)
    llm: LlmSettings = field(default_factory=LlmSettings)
    keyword_research: KeywordResearchSettings = field(default_factory=KeywordResearchSettings)
    images: ImageSettings = field(default_factory=ImageSettings)

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from environment with sane defaults for local development."""

        return cls(
            db_path=db_path or Path(os.getenv("CONTENT_JOBS_DB_PATH", ".content_jobs.db")),
            sqlite_busy_timeout_ms=int(os.getenv("CONTENT_JOBS_SQLITE_BUSY_TIMEOUT_MS", "5000")),
            queue=QueueSettings(
                tick_interval_seconds=float(
                    os.getenv("CONTENT_JOBS_TICK_INTERVAL_SECONDS", "60"),
                ),
                stuck_job_timeout_minutes=int(
                    os.getenv("CONTENT_JOBS_STUCK_JOB_TIMEOUT_MINUTES", "30"),
                ),
                retry_backoff_minutes=_env_int_tuple(
                    "CONTENT_JOBS_RETRY_BACKOFF_MINUTES",
                    default=DEFAULT_RETRY_BACKOFF_MINUTES,
                ),
                default_max_attempts=int(os.getenv("CONTENT_JOBS_DEFAULT_MAX_ATTEMPTS", "3")),
                progress_queue_size=int(os.getenv("CONTENT_JOBS_PROGRESS_QUEUE_SIZE", "256")),
            ),
            api=ApiSettings(
                runner_secret=os.getenv("CONTENT_JOBS_RUNNER_SECRET") or None,
                host=os.getenv("CONTENT_JOBS_API_HOST", "127.0.0.1"),
                port=int(os.getenv("CONTENT_JOBS_API_PORT", "8000")),
            ),
            llm=LlmSettings(
                anthropic_api_key=(
                    os.getenv("CONTENT_JOBS_ANTHROPIC_API_KEY")
                    or os.getenv("ANTHROPIC_API_KEY")
                    or None
                ),
                default_model=os.getenv(
                    "CONTENT_JOBS_LLM_DEFAULT_MODEL",
                    "claude-sonnet-4-20250514",
                ),
                max_tokens=int(os.getenv("CONTENT_JOBS_LLM_MAX_TOKENS", "4096")),
                temperature=float(os.getenv("CONTENT_JOBS_LLM_TEMPERATURE", "0.7")),
                request_timeout_seconds=float(
                    os.getenv("CONTENT_JOBS_LLM_REQUEST_TIMEOUT_SECONDS", "120"),
                ),
            ),
            keyword_research=KeywordResearchSettings(
                login=os.getenv("CONTENT_JOBS_DATAFORSEO_LOGIN") or None,
                password=os.getenv("CONTENT_JOBS_DATAFORSEO_PASSWORD") or None,
                base_url=os.getenv(
                    "CONTENT_JOBS_DATAFORSEO_BASE_URL",
                    "https://api.dataforseo.com",
                ),
                location_code=int(os.getenv("CONTENT_JOBS_DATAFORSEO_LOCATION_CODE", "2840")),
                language_code=os.getenv("CONTENT_JOBS_DATAFORSEO_LANGUAGE_CODE", "en"),
                request_timeout_seconds=float(
                    os.getenv("CONTENT_JOBS_DATAFORSEO_TIMEOUT_SECONDS", "60"),
                ),
                fetch_competitor_pages=_env_bool(
                    "CONTENT_JOBS_RESEARCH_FETCH_COMPETITOR_PAGES",
                    default=False,
                ),
            ),
            images=ImageSettings(
                blob_root=Path(os.getenv("CONTENT_JOBS_BLOB_ROOT", ".content_jobs_blobs")),
                delay_between_items_ms=int(
                    os.getenv("CONTENT_JOBS_IMAGE_DELAY_BETWEEN_ITEMS_MS", "300"),
                ),
                item_timeout_seconds=float(
                    os.getenv("CONTENT_JOBS_IMAGE_ITEM_TIMEOUT_SECONDS", "5"),
                ),
                max_requeues=int(os.getenv("CONTENT_JOBS_IMAGE_MAX_REQUEUES", "4")),
            ),
        )

    def validate_for_worker(self) -> None:
        """Raise configuration error if queue settings cannot drive a dispatcher."""

        if self.queue.tick_interval_seconds <= 0:
            raise ValueError("CONTENT_JOBS_TICK_INTERVAL_SECONDS must be > 0.")
        if self.queue.stuck_job_timeout_minutes <= 0:
            raise ValueError("CONTENT_JOBS_STUCK_JOB_TIMEOUT_MINUTES must be > 0.")
        if not self.queue.retry_backoff_minutes:
            raise ValueError("CONTENT_JOBS_RETRY_BACKOFF_MINUTES must list at least one delay.")
        if any(minutes < 0 for minutes in self.queue.retry_backoff_minutes):
            raise ValueError("CONTENT_JOBS_RETRY_BACKOFF_MINUTES values must be >= 0.")
        if self.queue.default_max_attempts <= 0:
            raise ValueError("CONTENT_JOBS_DEFAULT_MAX_ATTEMPTS must be a positive integer.")
        if self.images.max_requeues < 0:
            raise ValueError("CONTENT_JOBS_IMAGE_MAX_REQUEUES must be >= 0.")

    def validate_for_articles(self) -> None:
        """Raise configuration error if the article pipeline cannot reach its providers."""

        if not self.llm.anthropic_api_key:
            raise ValueError(
                "An Anthropic API key is required for the article pipeline. "
                "Set CONTENT_JOBS_ANTHROPIC_API_KEY or ANTHROPIC_API_KEY.",
            )
        if not self.keyword_research.login or not self.keyword_research.password:
            raise ValueError(
                "DataForSEO credentials are required for the research stage. "
                "Set CONTENT_JOBS_DATAFORSEO_LOGIN and CONTENT_JOBS_DATAFORSEO_PASSWORD.",
            )


def _env_int_tuple(name: str, default: tuple[int, ...]) -> tuple[int, ...]:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    values: list[int] = []
    for part in raw.split(","):
        token = part.strip()
        if not token:
            continue
        try:
            values.append(int(token))
        except ValueError as error:
            raise ValueError(f"Invalid integer in {name}: {token!r}") from error
    return tuple(values)


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value!r}")
