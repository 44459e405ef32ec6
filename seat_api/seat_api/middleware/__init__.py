"""Middleware components for the seat management API."""

from __future__ import annotations

from seat_api.middleware.auth import AuthenticationMiddleware
from seat_api.middleware.logging import RequestLoggingMiddleware
from seat_api.middleware.rbac import (
    ROLE_PERMISSIONS,
    Permission,
    Role,
    get_user_role,
    require_permission,
)

__all__ = [
    "AuthenticationMiddleware",
    "Permission",
    "ROLE_PERMISSIONS",
    "RequestLoggingMiddleware",
    "Role",
    "get_user_role",
    "require_permission",
]
