"""Access log middleware.

One record per request on the ``seat_api.access`` logger.  The level follows
the response: 5xx at ERROR, 4xx at WARNING, otherwise INFO.  Health probes
are logged at DEBUG so they do not drown out team activity.
"""

from __future__ import annotations

import logging
import time
import uuid
from typing import Any

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger("seat_api.access")

CORRELATION_HEADER = "X-Correlation-ID"

_QUIET_PATHS: frozenset[str] = frozenset({"/api/v1/health"})


def _level_for(status_code: int, path: str) -> int:
    if status_code >= 500:
        return logging.ERROR
    if status_code >= 400:
        return logging.WARNING
    if path in _QUIET_PATHS:
        return logging.DEBUG
    return logging.INFO


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Time each request and log who called what.

    The correlation id is taken from ``X-Correlation-ID`` or generated, and
    echoed on the response.  The caller's account, user and role claim come
    from ``request.state`` as set by the authentication middleware; headers
    are never logged, so bearer tokens cannot leak into the log.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        correlation_id = request.headers.get(CORRELATION_HEADER) or uuid.uuid4().hex
        started = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            response.headers[CORRELATION_HEADER] = correlation_id
            return response
        finally:
            summary: dict[str, Any] = {
                "method": request.method,
                "path": request.url.path,
                "status_code": status_code,
                "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                "client": request.client.host if request.client else None,
                "role": getattr(request.state, "role", None),
            }
            logger.log(
                _level_for(status_code, request.url.path),
                "%s %s -> %d",
                request.method,
                request.url.path,
                status_code,
                extra={
                    "request": summary,
                    "correlation_id": correlation_id,
                    "account_id": getattr(request.state, "account_id", None),
                    "user_id": getattr(request.state, "sub", None),
                },
            )
