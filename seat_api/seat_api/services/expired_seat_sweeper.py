"""Background sweep that releases disabled seats whose paid term has ended.

The seat counter already stops counting such seats the moment
``seat_billing_ends_at`` passes.  The sweep tidies the rows (clearing the
date) and pushes the lower quantity to the ledger promptly, *without*
proration, since the departing member's term was paid in full.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from datetime import UTC, datetime

from seat_core.seats import MembershipStatus, as_utc
from seat_core.state.repository import AccountRepository, MembershipRepository
from seat_core.state.tables import MembershipTable
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from seat_api.config import APISettings
from seat_api.services.account_lock import account_lock
from seat_api.services.audit_service import AuditAction, AuditService
from seat_api.services.ledger import SubscriptionLedger
from seat_api.services.seat_sync import LedgerSynchronizer

logger = logging.getLogger(__name__)


class ExpiredSeatSweeper:
    """AsyncIO background task that processes expired grace periods.

    Parameters
    ----------
    session_factory:
        An ``async_sessionmaker`` used to open one session per sweep and
        one per affected account.
    settings:
        API settings (seat price ids).
    ledger:
        Subscription ledger, or ``None`` when billing is disabled.
    interval_seconds:
        Pause between sweeps.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: APISettings,
        ledger: SubscriptionLedger | None,
        *,
        interval_seconds: float = 3600.0,
    ) -> None:
        self._session_factory = session_factory
        self._settings = settings
        self._ledger = ledger
        self._interval = interval_seconds
        self._running = False
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        """Whether the sweep loop is active."""
        return self._running

    async def start(self) -> None:
        """Start the sweep background task."""
        if self._running:
            logger.warning("ExpiredSeatSweeper already running; ignoring start()")
            return
        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info("ExpiredSeatSweeper started (interval=%.0fs)", self._interval)

    async def stop(self) -> None:
        """Stop the sweeper gracefully."""
        self._running = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("ExpiredSeatSweeper stopped")

    async def _run_loop(self) -> None:
        while self._running:
            try:
                await self.sweep()
            except asyncio.CancelledError:
                raise
            except (OperationalError, InterfaceError) as exc:
                logger.error("ExpiredSeatSweeper database error: %s", exc, exc_info=True)
            except Exception as exc:
                logger.critical("ExpiredSeatSweeper unexpected error: %s", exc, exc_info=True)
                raise
            await asyncio.sleep(self._interval)

    async def sweep(self, now: datetime | None = None) -> dict[str, int]:
        """Process every account that has at least one expired disabled seat.

        Returns
        -------
        dict[str, int]
            Number of rows released per account id.
        """
        instant = now or datetime.now(UTC)
        async with self._session_factory() as session:
            expired = await MembershipRepository(session, "").list_grace_expired_any_account(instant)

        account_ids: dict[str, int] = defaultdict(int)
        for row in expired:
            account_ids[row.account_id] += 1

        processed: dict[str, int] = {}
        for account_id in account_ids:
            processed[account_id] = await self._process_account(account_id, instant)
        if processed:
            logger.info("Released expired seats: %s", processed)
        return processed

    async def _process_account(self, account_id: str, now: datetime) -> int:
        """Clear expired grace periods of one account and re-sync without proration."""
        async with self._session_factory() as session:
            async with account_lock(session, account_id):
                account = await AccountRepository(session).get(account_id)
                if account is None:
                    logger.warning("Skipping expired seats of unknown account=%s", account_id)
                    return 0

                rows = await MembershipRepository(session, account_id).list_all()
                released: list[MembershipTable] = [
                    row
                    for row in rows
                    if row.status == MembershipStatus.DISABLED.value
                    and row.seat_billing_ends_at is not None
                    and as_utc(row.seat_billing_ends_at) <= now
                ]
                if not released:
                    return 0

                # Expired rows are no longer counted, so the quantity is the same
                # before and after clearing.  Rows stay flagged until a sync lands.
                sync = LedgerSynchronizer(session, self._settings, self._ledger, account_id=account_id)
                result = await sync.sync(
                    account,
                    action=AuditAction.EXPIRED_SEAT_BILLING_PROCESSED,
                    prorate=False,
                    now=now,
                )
                if result.ok:
                    for row in released:
                        row.seat_billing_ends_at = None
                    await session.flush()
                await AuditService(session, account_id=account_id).log(
                    AuditAction.EXPIRED_SEAT_BILLING_PROCESSED,
                    entity_type="account",
                    entity_id=account_id,
                    member_ids=[row.id for row in released],
                    seat_count=result.new_quantity,
                    billing_synced=result.ok,
                )
                await session.commit()
        return len(released) if result.ok else 0
