"""Structured error taxonomy for team and seat operations.

Every error carries an HTTP status and a machine-readable ``code`` so that a
client can render an actionable message (for example an upgrade prompt on
``TEAM_LIMIT_REACHED``).  The application registers a single exception
handler that renders any :class:`TeamError` as::

    {"error": true, "code": "TEAM_LIMIT_REACHED", "message": "..."}
"""

from __future__ import annotations

from typing import Any

from fastapi import Request
from fastapi.responses import JSONResponse


class TeamError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code: int = 500
    default_code: str = "INTERNAL_ERROR"

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code

    def to_payload(self) -> dict[str, Any]:
        """Return the JSON body rendered for this error."""
        return {"error": True, "code": self.code, "message": self.message}


class Unauthorized(TeamError):
    """No valid credential was presented."""

    status_code = 401
    default_code = "UNAUTHORIZED"


class Forbidden(TeamError):
    """The caller is identified but not allowed to perform the action."""

    status_code = 403
    default_code = "FORBIDDEN"


FEATURE_NOT_AVAILABLE = "FEATURE_NOT_AVAILABLE"
TEAM_LIMIT_REACHED = "TEAM_LIMIT_REACHED"


class NotFound(TeamError):
    """The target membership (or related record) does not exist."""

    status_code = 404
    default_code = "NOT_FOUND"


class Conflict(TeamError):
    """Duplicate email or already a member."""

    status_code = 409
    default_code = "CONFLICT"


class InvalidRequest(TeamError):
    """The request is well-formed but not valid for the target's state."""

    status_code = 400
    default_code = "INVALID_REQUEST"


class PaymentRequired(TeamError):
    """The seat charge was declined by the ledger."""

    status_code = 402
    default_code = "PAYMENT_REQUIRED"


class ExternalServiceError(TeamError):
    """The ledger could not be reached or timed out."""

    status_code = 502
    default_code = "EXTERNAL_SERVICE_ERROR"


async def team_error_handler(request: Request, exc: TeamError) -> JSONResponse:
    """Render a :class:`TeamError` as a structured JSON response."""
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())
