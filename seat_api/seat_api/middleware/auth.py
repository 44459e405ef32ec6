"""Authentication middleware that verifies bearer tokens.

Extracts ``Authorization: Bearer <token>`` from every request, verifies it
via :class:`HmacTokenAuthProvider`, and populates ``request.state`` with
``identity`` (a :class:`CallerIdentity`), ``account_id``, ``sub``, ``email``
and ``role`` for downstream dependencies and RBAC enforcement.

Endpoints explicitly listed in ``_PUBLIC_PATHS`` bypass authentication.
"""

from __future__ import annotations

import logging
from typing import Any

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from seat_api.errors import Unauthorized
from seat_api.security import HmacTokenAuthProvider, build_auth_provider

logger = logging.getLogger(__name__)

_PUBLIC_PATHS: frozenset[str] = frozenset(
    {
        "/api/v1/health",
        "/docs",
        "/redoc",
        "/openapi.json",
    }
)


def _is_public_path(path: str) -> bool:
    """Return ``True`` if the path should bypass authentication."""
    return path in _PUBLIC_PATHS


def _unauthorized(message: str) -> JSONResponse:
    return JSONResponse(status_code=401, content=Unauthorized(message).to_payload())


class AuthenticationMiddleware(BaseHTTPMiddleware):
    """Starlette middleware that enforces Bearer token authentication.

    On each request the middleware:

    1. Checks whether the path is public (health, docs) and skips auth.
    2. Extracts the ``Authorization: Bearer <token>`` header.
    3. Verifies the token via the auth provider.
    4. Stores the caller identity on ``request.state``.
    5. Returns a structured 401 JSON response on failure.
    """

    def __init__(
        self,
        app: Any,
        *,
        provider: HmacTokenAuthProvider | None = None,
        platform_env: str = "dev",
    ) -> None:
        super().__init__(app)
        self._provider = provider or build_auth_provider(platform_env)
        logger.info("AuthenticationMiddleware initialised (env=%s)", platform_env)

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if _is_public_path(request.url.path):
            return await call_next(request)

        auth_header = request.headers.get("authorization")
        if not auth_header:
            return _unauthorized("Missing Authorization header")

        parts = auth_header.split(None, 1)
        if len(parts) != 2 or parts[0].lower() != "bearer":
            return _unauthorized("Authorization header must use Bearer scheme")

        try:
            identity = self._provider.identify(parts[1])
        except Unauthorized as exc:
            logger.info("Rejected bearer token on %s: %s", request.url.path, exc.message)
            return _unauthorized(exc.message)

        request.state.identity = identity
        request.state.account_id = identity.account_id
        request.state.sub = identity.user_id
        request.state.email = identity.email
        request.state.role = identity.role

        return await call_next(request)
