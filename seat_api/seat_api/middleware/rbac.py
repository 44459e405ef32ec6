"""Role-Based Access Control dependencies.

Defines a four-tier role hierarchy (VIEWER, MEMBER, ADMIN, OWNER) with
fine-grained permissions.  Each role inherits all permissions from the
roles below it in the hierarchy.

The role checked here is the claim carried by the bearer token.  The
membership service re-checks the caller against the membership store, which
remains the source of truth for who may manage a team.

Usage in routers::

    from seat_api.middleware.rbac import Permission, Role, require_permission

    @router.post("/invite")
    async def invite(
        ...,
        _role: Role = Depends(require_permission(Permission.MANAGE_TEAM)),
    ) -> ...:
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from enum import Enum, IntEnum

from fastapi import Depends, Request

from seat_api.errors import Forbidden, Unauthorized

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Role hierarchy (higher int = more authority)
# ---------------------------------------------------------------------------


class Role(IntEnum):
    """Member roles ordered by privilege level."""

    VIEWER = 0
    MEMBER = 1
    ADMIN = 2
    OWNER = 3


_ROLE_LOOKUP: dict[str, Role] = {r.name.lower(): r for r in Role}


def parse_role(raw: str) -> Role:
    """Convert a ``role`` claim string into a :class:`Role`.

    Raises :class:`ValueError` if the string does not map to a known role.
    """
    try:
        return _ROLE_LOOKUP[raw.strip().lower()]
    except KeyError:
        raise ValueError(f"Unknown role '{raw}'. Valid roles: {sorted(_ROLE_LOOKUP)}")


# ---------------------------------------------------------------------------
# Permissions
# ---------------------------------------------------------------------------


class Permission(str, Enum):
    """Fine-grained permission tokens checked by endpoint guards."""

    READ_TEAM = "read:team"
    MANAGE_TEAM = "manage:team"
    MANAGE_ROLES = "manage:roles"
    RESYNC_BILLING = "resync:billing"
    TRANSFER_OWNERSHIP = "transfer:ownership"


_VIEWER_PERMS: frozenset[Permission] = frozenset({Permission.READ_TEAM})

_MEMBER_PERMS: frozenset[Permission] = _VIEWER_PERMS

_ADMIN_PERMS: frozenset[Permission] = _MEMBER_PERMS | frozenset(
    {
        Permission.MANAGE_TEAM,
        Permission.MANAGE_ROLES,
        Permission.RESYNC_BILLING,
    }
)

_OWNER_PERMS: frozenset[Permission] = _ADMIN_PERMS | frozenset({Permission.TRANSFER_OWNERSHIP})

ROLE_PERMISSIONS: dict[Role, frozenset[Permission]] = {
    Role.VIEWER: _VIEWER_PERMS,
    Role.MEMBER: _MEMBER_PERMS,
    Role.ADMIN: _ADMIN_PERMS,
    Role.OWNER: _OWNER_PERMS,
}


def role_has_permission(role: Role, permission: Permission) -> bool:
    """Return ``True`` if *role* grants *permission*."""
    return permission in ROLE_PERMISSIONS.get(role, frozenset())


# ---------------------------------------------------------------------------
# FastAPI dependency: extract role from request.state
# ---------------------------------------------------------------------------


def get_user_role(request: Request) -> Role:
    """Extract and validate the caller's role from ``request.state.role``.

    Raises
    ------
    Unauthorized
        If the request carries no authenticated identity.
    Forbidden
        If the role claim value is not a recognised role.
    """
    raw_role: str | None = getattr(request.state, "role", None)
    if raw_role is None:
        raise Unauthorized("Authentication required")
    try:
        return parse_role(raw_role)
    except ValueError:
        logger.warning("Unrecognised role claim '%s'; denying access", raw_role)
        raise Forbidden(f"Unrecognised role '{raw_role}'. Valid roles: {sorted(_ROLE_LOOKUP)}") from None


def require_permission(permission: Permission) -> Callable[..., Role]:
    """Return a FastAPI dependency that enforces a specific permission.

    Returns the resolved :class:`Role` so downstream handlers can inspect
    it if needed.
    """

    def _guard(role: Role = Depends(get_user_role)) -> Role:
        if not role_has_permission(role, permission):
            logger.info(
                "Permission denied: role=%s requires %s",
                role.name,
                permission.value,
            )
            raise Forbidden(
                f"Permission denied: role '{role.name.lower()}' does not have '{permission.value}' permission"
            )
        return role

    return _guard
