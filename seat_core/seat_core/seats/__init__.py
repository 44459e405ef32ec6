"""Membership lifecycle vocabulary and seat counting."""

from seat_core.seats.counter import as_utc, count_billable_seats, count_team_size, is_billable
from seat_core.seats.states import MemberRole, MembershipStatus, TaskStatus

__all__ = [
    "MemberRole",
    "MembershipStatus",
    "TaskStatus",
    "as_utc",
    "count_billable_seats",
    "count_team_size",
    "is_billable",
]
