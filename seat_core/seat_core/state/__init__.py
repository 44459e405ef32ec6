"""State persistence layer using PostgreSQL (SQLite for local mode)."""

from seat_core.state.database import advisory_key, dialect_name, get_engine
from seat_core.state.repository import (
    AccountRepository,
    AuditRepository,
    MembershipRepository,
    ProfileRepository,
    TaskRepository,
)

__all__ = [
    "AccountRepository",
    "AuditRepository",
    "MembershipRepository",
    "ProfileRepository",
    "TaskRepository",
    "advisory_key",
    "dialect_name",
    "get_engine",
]
