"""Billable seat counting.

The count is always derived from the current membership rows and never kept
as a running counter, so it cannot drift from the rows it describes.  A
disabled member stays billable until ``seat_billing_ends_at`` passes and
then drops out of the count on the next evaluation, with no write needed.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import UTC, datetime
from typing import Protocol

from seat_core.seats.states import MembershipStatus


class SeatRow(Protocol):
    """The subset of a membership row the counter reads."""

    is_owner: bool
    status: str
    seat_billing_ends_at: datetime | None


def as_utc(value: datetime) -> datetime:
    """Return *value* as an aware UTC datetime.

    SQLite hands back naive datetimes for timezone-aware columns.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def is_billable(row: SeatRow, now: datetime) -> bool:
    """Return ``True`` if *row* occupies a paid seat at instant *now*.

    The owner row is never billable.  Pending and active rows always are.
    A disabled row is billable only while its grace period is running.
    """
    if row.is_owner:
        return False
    status = str(getattr(row.status, "value", row.status))
    if status in (MembershipStatus.ACTIVE.value, MembershipStatus.PENDING.value):
        return True
    if status == MembershipStatus.DISABLED.value and row.seat_billing_ends_at is not None:
        return as_utc(row.seat_billing_ends_at) > as_utc(now)
    return False


def count_billable_seats(rows: Iterable[SeatRow], now: datetime | None = None) -> int:
    """Compute the billable seat count for one account.

    Parameters
    ----------
    rows:
        Every membership row of the account, in any state.
    now:
        Evaluation instant.  Defaults to the current UTC time.

    Returns
    -------
    int
        Number of non-owner rows that are active, pending, or disabled
        with ``seat_billing_ends_at`` still in the future.
    """
    instant = now or datetime.now(UTC)
    return sum(1 for row in rows if is_billable(row, instant))


def count_team_size(rows: Iterable[SeatRow]) -> int:
    """Count the non-owner members that hold a place on the team.

    This is the figure compared against the plan's ``max_invited_users``:
    pending and active rows only.  Disabled members in their grace period are
    still billed but no longer occupy a place, so they can be replaced.
    """
    occupying = (MembershipStatus.ACTIVE.value, MembershipStatus.PENDING.value)
    return sum(1 for row in rows if not row.is_owner and str(getattr(row.status, "value", row.status)) in occupying)
