"""String enums shared by the state store and the service layer."""

from __future__ import annotations

from enum import Enum


class MembershipStatus(str, Enum):
    """Lifecycle status of a membership row."""

    PENDING = "pending"
    ACTIVE = "active"
    DISABLED = "disabled"
    REASSIGNED = "reassigned"


class MemberRole(str, Enum):
    """Role held by a member within an account."""

    OWNER = "owner"
    ADMIN = "admin"
    MEMBER = "member"
    VIEWER = "viewer"


class TaskStatus(str, Enum):
    """Status of an assignable work item."""

    OPEN = "open"
    IN_PROGRESS = "in_progress"
    DONE = "done"
    CANCELLED = "cancelled"


# Tasks in these states still need an owner and follow a departing member.
OPEN_TASK_STATUSES: frozenset[str] = frozenset({TaskStatus.OPEN.value, TaskStatus.IN_PROGRESS.value})

# Roles that may be granted through invite / change-role.  ``owner`` is only
# ever reached through an ownership transfer.
ASSIGNABLE_ROLES: frozenset[str] = frozenset(
    {MemberRole.ADMIN.value, MemberRole.MEMBER.value, MemberRole.VIEWER.value}
)
