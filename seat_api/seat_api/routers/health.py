"""Liveness endpoint.

Registered under the versioned API prefix (``/api/v1/health``) and exempt
from authentication.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from seat_api import __version__
from seat_api.dependencies import PublicSessionDep
from seat_api.schemas import HealthResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponse)
async def health(session: PublicSessionDep) -> dict[str, Any]:
    """Return service health.

    Always responds 200 so load-balancers see the process as alive; the
    ``db`` field reports whether the database is reachable.
    """
    result: dict[str, Any] = {"status": "healthy", "version": __version__, "db": "ok"}
    try:
        await session.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        logger.warning("DB health check failed: %s", exc)
        result["db"] = "degraded"
    return result
