"""CLI entrypoint for content-jobs."""

import logging
from collections.abc import Callable
from pathlib import Path

import rich_click as click

from content_jobs import __version__
from content_jobs.articles.controllers import (
    ArticleCreateCommand,
    ArticleIdCommand,
    ArticleListCommand,
    ArticlesCliController,
    PersonaListCommand,
)
from content_jobs.errors import ContentJobsError
from content_jobs.jobs.controllers import (
    JobCreateCommand,
    JobIdCommand,
    JobListCommand,
    JobsCliController,
    JobTickCommand,
    WorkerRunCommand,
)

click.rich_click.USE_MARKDOWN = True
JOBS_CONTROLLER = JobsCliController()
ARTICLES_CONTROLLER = ArticlesCliController()

JOB_STATUSES = ("pending", "processing", "completed", "failed", "cancelled")
DB_PATH_OPTION = click.option(
    "--db-path",
    type=click.Path(path_type=Path),
    default=None,
    help="SQLite DB path. Defaults to CONTENT_JOBS_DB_PATH.",
)


@click.group()
@click.version_option(version=__version__, prog_name="content-jobs")
@click.option(
    "--log-level",
    type=click.Choice(["debug", "info", "warning", "error"], case_sensitive=False),
    default="warning",
    show_default=True,
    help="Logging level for stderr output.",
)
def content_jobs(log_level: str) -> None:
    """Background job queue and multi-agent article pipeline."""

    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@content_jobs.group()
def jobs() -> None:
    """Job queue commands."""


@jobs.command("create")
@DB_PATH_OPTION
@click.option("--job-type", required=True, help="Job type, for example reviewer_image_retry.")
@click.option("--payload", "payload_json", default="{}", help="Job payload as a JSON object.")
@click.option("--created-by", default=None, help="Actor recorded as the job creator.")
@click.option(
    "--delay-minutes",
    type=click.IntRange(min=0),
    default=0,
    show_default=True,
    help="Keep the job invisible to the dispatcher for this many minutes.",
)
@click.option(
    "--max-attempts",
    type=click.IntRange(min=1, max=20),
    default=3,
    show_default=True,
    help="Attempts before the job fails permanently.",
)
def jobs_create(  # noqa: PLR0913
    db_path: Path | None,
    job_type: str,
    payload_json: str,
    created_by: str | None,
    delay_minutes: int,
    max_attempts: int,
) -> None:
    """Create a pending job. Fails if a job of the same type is already active."""

    _run(
        lambda: JOBS_CONTROLLER.create(
            JobCreateCommand(
                db_path=db_path,
                job_type=job_type,
                payload_json=payload_json,
                created_by=created_by,
                delay_minutes=delay_minutes,
                max_attempts=max_attempts,
            ),
        ),
    )


@jobs.command("list")
@DB_PATH_OPTION
@click.option("--status", type=click.Choice(JOB_STATUSES), default=None, help="Status filter.")
@click.option("--job-type", default=None, help="Job type filter.")
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=100),
    default=20,
    show_default=True,
    help="Max number of jobs to print.",
)
@click.option("--offset", type=click.IntRange(min=0), default=0, show_default=True)
def jobs_list(
    db_path: Path | None,
    status: str | None,
    job_type: str | None,
    limit: int,
    offset: int,
) -> None:
    """List jobs, newest first."""

    _run(
        lambda: JOBS_CONTROLLER.list_jobs(
            JobListCommand(
                db_path=db_path,
                status=status,
                job_type=job_type,
                limit=limit,
                offset=offset,
            ),
        ),
    )


@jobs.command("inspect")
@DB_PATH_OPTION
@click.argument("job_id")
def jobs_inspect(db_path: Path | None, job_id: str) -> None:
    """Show one job with its system log entries."""

    _run(lambda: JOBS_CONTROLLER.inspect(JobIdCommand(db_path=db_path, job_id=job_id)))


@jobs.command("progress")
@DB_PATH_OPTION
@click.argument("job_id")
def jobs_progress(db_path: Path | None, job_id: str) -> None:
    """Show item counters and percent complete."""

    _run(lambda: JOBS_CONTROLLER.progress(JobIdCommand(db_path=db_path, job_id=job_id)))


@jobs.command("cancel")
@DB_PATH_OPTION
@click.argument("job_id")
def jobs_cancel(db_path: Path | None, job_id: str) -> None:
    """Cancel a pending or processing job."""

    _run(lambda: JOBS_CONTROLLER.cancel(JobIdCommand(db_path=db_path, job_id=job_id)))


@jobs.command("retry")
@DB_PATH_OPTION
@click.argument("job_id")
def jobs_retry(db_path: Path | None, job_id: str) -> None:
    """Re-queue a permanently failed job with a fresh attempt budget."""

    _run(lambda: JOBS_CONTROLLER.retry(JobIdCommand(db_path=db_path, job_id=job_id)))


@jobs.command("execute")
@DB_PATH_OPTION
@click.argument("job_id")
def jobs_execute(db_path: Path | None, job_id: str) -> None:
    """Claim one specific job if it is eligible and run it now."""

    _run(lambda: JOBS_CONTROLLER.execute(JobIdCommand(db_path=db_path, job_id=job_id)))


@jobs.command("tick")
@DB_PATH_OPTION
@click.option("--job-type", default=None, help="Only claim jobs of this type.")
@click.option(
    "--max-jobs",
    type=click.IntRange(min=1),
    default=1,
    show_default=True,
    help="Run jobs back to back until idle or this many ran.",
)
def jobs_tick(db_path: Path | None, job_type: str | None, max_jobs: int) -> None:
    """Reap stuck jobs, then claim and run eligible jobs."""

    _run(
        lambda: JOBS_CONTROLLER.tick(
            JobTickCommand(db_path=db_path, job_type=job_type, max_jobs=max_jobs),
        ),
    )


@content_jobs.group()
def worker() -> None:
    """Recurring dispatcher commands."""


@worker.command("run")
@DB_PATH_OPTION
@click.option(
    "--interval-seconds",
    type=click.FloatRange(min=0, min_open=True),
    default=None,
    help="Tick interval. Defaults to CONTENT_JOBS_TICK_INTERVAL_SECONDS.",
)
@click.option(
    "--max-ticks",
    type=click.IntRange(min=1),
    default=None,
    help="Stop after this many ticks. Runs until SIGINT/SIGTERM when omitted.",
)
def worker_run(
    db_path: Path | None,
    interval_seconds: float | None,
    max_ticks: int | None,
) -> None:
    """Run the dispatcher on a fixed schedule."""

    _run(
        lambda: JOBS_CONTROLLER.run_worker(
            WorkerRunCommand(
                db_path=db_path,
                interval_seconds=interval_seconds,
                max_ticks=max_ticks,
            ),
        ),
    )


@content_jobs.group()
def articles() -> None:
    """Article pipeline commands."""


@articles.command("create")
@DB_PATH_OPTION
@click.argument("keyword")
@click.option(
    "--target-word-count",
    type=click.IntRange(min=300, max=10_000),
    default=None,
    help="Overrides the word count recommended by research.",
)
@click.option(
    "--max-iterations",
    type=click.IntRange(min=1, max=10),
    default=None,
    help="Write/SEO/QA iterations before accepting a best-effort article.",
)
@click.option("--auto-post/--no-auto-post", default=False, show_default=True)
@click.option(
    "--skip-agent",
    "skip_agents",
    multiple=True,
    type=click.Choice(["seo"]),
    help="Stage to skip. Can be repeated.",
)
@click.option("--context", default=None, help="Extra instructions forwarded to the writer.")
@click.option("--created-by", default=None, help="Actor recorded as the creator.")
def articles_create(  # noqa: PLR0913
    db_path: Path | None,
    keyword: str,
    target_word_count: int | None,
    max_iterations: int | None,
    auto_post: bool,
    skip_agents: tuple[str, ...],
    context: str | None,
    created_by: str | None,
) -> None:
    """Create an article job and queue its pipeline run."""

    _run(
        lambda: ARTICLES_CONTROLLER.create(
            ArticleCreateCommand(
                db_path=db_path,
                keyword=keyword,
                target_word_count=target_word_count,
                max_iterations=max_iterations,
                auto_post=auto_post,
                skip_agents=skip_agents,
                context=context,
                created_by=created_by,
            ),
        ),
    )


@articles.command("list")
@DB_PATH_OPTION
@click.option(
    "--status",
    type=click.Choice(JOB_STATUSES),
    default=None,
    help="Status filter.",
)
@click.option("--limit", type=click.IntRange(min=1, max=100), default=20, show_default=True)
def articles_list(db_path: Path | None, status: str | None, limit: int) -> None:
    """List article jobs, newest first."""

    _run(
        lambda: ARTICLES_CONTROLLER.list_articles(
            ArticleListCommand(db_path=db_path, status=status, limit=limit),
        ),
    )


@articles.command("inspect")
@DB_PATH_OPTION
@click.argument("article_id")
def articles_inspect(db_path: Path | None, article_id: str) -> None:
    """Show an article job with its agent steps."""

    _run(
        lambda: ARTICLES_CONTROLLER.inspect(
            ArticleIdCommand(db_path=db_path, article_id=article_id),
        ),
    )


@articles.command("cancel")
@DB_PATH_OPTION
@click.argument("article_id")
def articles_cancel(db_path: Path | None, article_id: str) -> None:
    """Cancel an article job and its active pipeline job."""

    _run(
        lambda: ARTICLES_CONTROLLER.cancel(
            ArticleIdCommand(db_path=db_path, article_id=article_id),
        ),
    )


@content_jobs.group()
def personas() -> None:
    """AI persona commands."""


@personas.command("seed")
@DB_PATH_OPTION
def personas_seed(db_path: Path | None) -> None:
    """Install one default persona per pipeline stage where none exists."""

    _run(lambda: ARTICLES_CONTROLLER.seed_personas(db_path))


@personas.command("list")
@DB_PATH_OPTION
@click.option(
    "--agent-type",
    type=click.Choice(["research", "writer", "seo", "qa"]),
    default=None,
    help="Only list personas for this stage.",
)
def personas_list(db_path: Path | None, agent_type: str | None) -> None:
    """List personas."""

    _run(
        lambda: ARTICLES_CONTROLLER.list_personas(
            PersonaListCommand(db_path=db_path, agent_type=agent_type),
        ),
    )


@content_jobs.group()
def api() -> None:
    """HTTP interface commands."""


@api.command("serve")
@DB_PATH_OPTION
@click.option("--host", default=None, help="Bind host. Defaults to CONTENT_JOBS_API_HOST.")
@click.option(
    "--port",
    type=int,
    default=None,
    help="Bind port. Defaults to CONTENT_JOBS_API_PORT.",
)
def api_serve(db_path: Path | None, host: str | None, port: int | None) -> None:
    """Serve the job API with uvicorn."""

    import uvicorn

    from content_jobs.api.app import create_app
    from content_jobs.config import Settings

    settings = Settings.from_env(db_path=db_path)
    uvicorn.run(
        create_app(settings),
        host=host or settings.api.host,
        port=port or settings.api.port,
    )


def _run(action: Callable[[], list[str]]) -> None:
    try:
        lines = action()
    except (ContentJobsError, ValueError) as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    content_jobs()
