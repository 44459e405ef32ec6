"""FastAPI application entry-point for the seat management service.

Run with ``uvicorn seat_api.main:app``.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from seat_core.state.tables import Base
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from seat_api import __version__
from seat_api.config import APISettings, PlatformEnv, load_api_settings
from seat_api.dependencies import (
    dispose_engine,
    dispose_notifier,
    get_session_factory,
    init_engine,
    init_ledger,
    init_notifier,
)
from seat_api.errors import TeamError, team_error_handler
from seat_api.middleware.auth import AuthenticationMiddleware
from seat_api.middleware.json_formatter import JSONFormatter
from seat_api.middleware.logging import CORRELATION_HEADER, RequestLoggingMiddleware
from seat_api.routers import health, team
from seat_api.services.expired_seat_sweeper import ExpiredSeatSweeper

logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1"


def _configure_logging(settings: APISettings) -> None:
    """Route every logger through one JSON handler when structured logging is on."""
    if not settings.structured_logging:
        return
    handler = logging.StreamHandler()
    handler.setFormatter(JSONFormatter())
    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(logging.INFO)
    logger.info("Structured JSON logging enabled")


async def _ensure_tables(settings: APISettings, engine: AsyncEngine) -> None:
    """Create missing tables in dev and local SQLite mode.

    Staging and production databases are managed by Alembic.
    """
    local = settings.database_url.startswith("sqlite")
    if settings.platform_env != PlatformEnv.DEV and not local:
        return
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Seat store tables ensured (%s)", "sqlite" if local else "dev database")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Wire the engine, ledger, notifier and expired-seat sweeper.

    Everything is torn down in reverse order on shutdown.
    """
    settings = load_api_settings()
    _configure_logging(settings)

    engine = init_engine(settings)
    await _ensure_tables(settings, engine)

    ledger = init_ledger(settings)
    notifier = init_notifier(settings)
    logger.info(
        "Seatsync %s starting (env=%s, billing=%s, invite delivery=%s)",
        __version__,
        settings.platform_env.value,
        "on" if ledger is not None else "off",
        "webhook" if notifier.enabled else "log-only",
    )

    sweeper: ExpiredSeatSweeper | None = None
    if settings.expired_seat_sweep_enabled:
        sweeper = ExpiredSeatSweeper(
            get_session_factory(),
            settings,
            ledger,
            interval_seconds=settings.expired_seat_sweep_interval_seconds,
        )
        await sweeper.start()

    try:
        yield
    finally:
        if sweeper is not None:
            await sweeper.stop()
        await dispose_notifier()
        await dispose_engine()
        logger.info("Seatsync stopped")


async def _database_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.error("Database error on %s: %s", request.url.path, exc, exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"error": True, "code": "INTERNAL_ERROR", "message": "Internal database error"},
    )


def create_app() -> FastAPI:
    """Build the application with middleware, routers and error handlers."""
    settings = load_api_settings()

    app = FastAPI(
        title="Seatsync API",
        description="Team memberships and seat billing for multi-seat accounts.",
        version=__version__,
        lifespan=lifespan,
    )

    # Added innermost first: authentication runs inside the access log,
    # and CORS answers preflight requests before either.
    app.add_middleware(AuthenticationMiddleware, platform_env=settings.platform_env.value)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=["GET", "POST", "PATCH", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "Accept", CORRELATION_HEADER],
        expose_headers=[CORRELATION_HEADER],
    )

    app.include_router(health.router, prefix=API_PREFIX)
    app.include_router(team.router, prefix=API_PREFIX)

    app.add_exception_handler(TeamError, team_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(SQLAlchemyError, _database_error_handler)  # type: ignore[arg-type]
    return app


app = create_app()
