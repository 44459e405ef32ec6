"""Resolve the end of an account's currently paid billing term."""

from __future__ import annotations

import logging
from datetime import UTC, datetime

from seat_core.seats import as_utc
from seat_core.state.repository import AccountRepository
from seat_core.state.tables import AccountTable
from sqlalchemy.ext.asyncio import AsyncSession

from seat_api.services.ledger import LedgerError, SubscriptionLedger

logger = logging.getLogger(__name__)

# Subscription states in which no further term will be paid.
_ENDED_STATUSES = frozenset({"canceled", "incomplete_expired"})


class SubscriptionPeriodResolver:
    """Determine when the current paid term ends.

    The cached ``accounts.current_period_end`` is used while it lies in the
    future.  Otherwise the ledger is queried and the cache refreshed.
    ``None`` means "unknown": there is no subscription, it has ended, or the
    ledger could not be reached.  Callers treat unknown as "no grace period".

    Parameters
    ----------
    session:
        Active database session; used to refresh the cached value.
    ledger:
        Subscription ledger, or ``None`` when billing is disabled.
    """

    def __init__(self, session: AsyncSession, ledger: SubscriptionLedger | None) -> None:
        self._session = session
        self._ledger = ledger
        self._accounts = AccountRepository(session)

    async def resolve(self, account: AccountTable, now: datetime | None = None) -> datetime | None:
        """Return the end of the paid term for *account*, or ``None``."""
        instant = now or datetime.now(UTC)
        if not account.stripe_subscription_id:
            return None

        cached = account.current_period_end
        if cached is not None and as_utc(cached) > instant:
            return as_utc(cached)

        if self._ledger is None:
            return None

        try:
            subscription = await self._ledger.get_subscription(account.stripe_subscription_id)
        except LedgerError as exc:
            logger.warning(
                "Could not resolve billing period for account=%s (%s): %s",
                account.id,
                exc.kind,
                exc.message,
            )
            return None

        if subscription.status in _ENDED_STATUSES or subscription.current_period_end is None:
            return None

        period_end = as_utc(subscription.current_period_end)
        await self._accounts.update_period_end(account.id, period_end)
        account.current_period_end = period_end
        if period_end <= instant:
            return None
        return period_end
