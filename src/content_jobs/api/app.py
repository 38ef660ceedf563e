"""FastAPI application factory."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from content_jobs import __version__
from content_jobs.api.routes import router
from content_jobs.bootstrap import Runtime, build_runtime
from content_jobs.config import Settings
from content_jobs.errors import (
    ConcurrencyConflict,
    ContentJobsError,
    InvalidJobState,
    JobNotFound,
    ValidationError,
)

logger = logging.getLogger(__name__)

_STATUS_CODES: tuple[tuple[type[ContentJobsError], int], ...] = (
    (JobNotFound, 404),
    (ConcurrencyConflict, 409),
    (InvalidJobState, 409),
    (ValidationError, 400),
)


def status_code_for(error: ContentJobsError) -> int:
    for error_type, status_code in _STATUS_CODES:
        if isinstance(error, error_type):
            return status_code
    return 500


def create_app(settings: Settings | None = None, *, runtime: Runtime | None = None) -> FastAPI:
    """Build the app; a passed `runtime` is used as-is and not closed on shutdown."""

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        owned: Runtime | None = None
        if getattr(app.state, "runtime", None) is None:
            owned = build_runtime(settings or Settings.from_env())
            app.state.runtime = owned
        yield
        if owned is not None:
            owned.close()
            app.state.runtime = None
        logger.info("Application shutdown completed")

    app = FastAPI(title="Content Jobs", version=__version__, lifespan=lifespan)
    if runtime is not None:
        app.state.runtime = runtime

    @app.exception_handler(ContentJobsError)
    async def content_jobs_error_handler(request: Request, exc: ContentJobsError) -> JSONResponse:
        status_code = status_code_for(exc)
        if status_code >= 500:
            logger.error(
                "Unhandled %s on %s %s: %s",
                type(exc).__name__,
                request.method,
                request.url,
                exc,
            )
        return JSONResponse(
            status_code=status_code,
            content={"detail": str(exc), "error_type": type(exc).__name__},
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request,
        exc: RequestValidationError,
    ) -> JSONResponse:
        return JSONResponse(
            status_code=400,
            content={
                "detail": "Validation error",
                "error_type": "ValidationError",
                "errors": jsonable_encoder(exc.errors()),
            },
        )

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
        return JSONResponse(
            status_code=400,
            content={"detail": str(exc), "error_type": "ValueError"},
        )

    app.include_router(router)

    @app.get("/health")
    def health_check() -> dict[str, str]:
        return {"status": "ok"}

    return app
