"""Reconcile an account's subscription seat line item with its membership rows.

The synchronizer always sets an *absolute* quantity recomputed from the
committed membership rows, never an increment.  Calling it twice in a row is
therefore harmless: the second call finds the line item already matching and
makes no ledger mutation.

Every attempt, successful or not, is recorded in the audit log as
``seat_billing_sync`` with the before/after quantity, billing interval,
triggering action and outcome.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any

from seat_core.seats import count_billable_seats
from seat_core.state.repository import MembershipRepository
from seat_core.state.tables import AccountTable
from sqlalchemy.ext.asyncio import AsyncSession

from seat_api.config import APISettings
from seat_api.services.audit_service import AuditAction, AuditService
from seat_api.services.ledger import LedgerError, SubscriptionLedger

logger = logging.getLogger(__name__)

# Operation labels recorded on every attempt.
OP_NOOP = "noop"
OP_SKIPPED = "skipped"
OP_CREATED = "created"
OP_UPDATED = "updated"
OP_DELETED = "deleted"
OP_SWAPPED = "swapped"
OP_LOOKUP = "lookup"


@dataclass(frozen=True)
class SyncResult:
    """Outcome of one synchronisation attempt."""

    account_id: str
    subscription_id: str | None
    previous_quantity: int | None
    new_quantity: int
    billing_interval: str
    operation: str
    ok: bool
    error_kind: str | None = None
    error_message: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class LedgerSynchronizer:
    """Make the subscription's seat line item reflect the billable seat count.

    Parameters
    ----------
    session:
        Active database session holding the account's membership rows.
    settings:
        Supplies the monthly and annual seat price ids.
    ledger:
        Subscription ledger, or ``None`` when billing is disabled (every
        sync is then recorded as ``skipped``).
    account_id:
        Account being synchronised.
    actor:
        Principal recorded on the audit entry.
    """

    def __init__(
        self,
        session: AsyncSession,
        settings: APISettings,
        ledger: SubscriptionLedger | None,
        *,
        account_id: str,
        actor: str = "system",
    ) -> None:
        self._settings = settings
        self._ledger = ledger
        self._account_id = account_id
        self._members = MembershipRepository(session, account_id)
        self._audit = AuditService(session, account_id=account_id, actor=actor)

    @property
    def seat_price_ids(self) -> frozenset[str]:
        """Every price id that identifies a seat line item."""
        ids = {self._settings.stripe_seat_price_id_monthly, self._settings.stripe_seat_price_id_annual}
        return frozenset(price for price in ids if price)

    def price_for_interval(self, billing_interval: str) -> str:
        """Return the seat price id for *billing_interval* (``year`` or ``month``)."""
        if billing_interval == "year":
            return self._settings.stripe_seat_price_id_annual
        return self._settings.stripe_seat_price_id_monthly

    async def compute_quantity(self, now: datetime | None = None) -> int:
        """Recompute the billable seat count from the account's rows."""
        rows = await self._members.list_all()
        return count_billable_seats(rows, now)

    async def sync(
        self,
        account: AccountTable,
        *,
        action: str,
        prorate: bool = True,
        now: datetime | None = None,
    ) -> SyncResult:
        """Recompute the seat count and push it to the ledger.

        Never raises for ledger failures: the returned :class:`SyncResult`
        carries ``ok=False`` and the error kind, and the caller decides
        whether the failure is fatal.

        Parameters
        ----------
        account:
            The account's billing profile.
        action:
            Name of the membership action that triggered the sync; recorded
            on the audit entry.
        prorate:
            Whether the ledger should prorate the change.  Releasing seats
            whose paid term already ended passes ``False``.
        now:
            Evaluation instant for the seat count.

        Returns
        -------
        SyncResult
            What was done and whether it succeeded.
        """
        quantity = await self.compute_quantity(now)
        return await self.apply(account, quantity, action=action, prorate=prorate)

    async def apply(
        self,
        account: AccountTable,
        quantity: int,
        *,
        action: str,
        prorate: bool = True,
    ) -> SyncResult:
        """Set the seat line item to exactly *quantity*."""
        interval = account.billing_interval or "month"
        subscription_id = account.stripe_subscription_id

        if self._ledger is None:
            result = self._result(subscription_id, None, quantity, interval, OP_SKIPPED)
        elif not subscription_id:
            result = self._result(None, None, quantity, interval, OP_NOOP)
        else:
            result = await self._reconcile(self._ledger, subscription_id, quantity, interval, prorate)

        await self._audit.log(
            AuditAction.SEAT_BILLING_SYNC,
            entity_type="subscription",
            entity_id=subscription_id or self._account_id,
            previous_quantity=result.previous_quantity,
            new_quantity=result.new_quantity,
            billing_interval=interval,
            trigger_action=action,
            operation=result.operation,
            prorate=prorate,
            ok=result.ok,
            error_kind=result.error_kind,
        )

        if result.ok:
            logger.info(
                "Seat sync account=%s op=%s quantity %s -> %d",
                self._account_id,
                result.operation,
                result.previous_quantity,
                quantity,
                extra={
                    "account_id": self._account_id,
                    "subscription_id": result.subscription_id,
                    "seat_count": quantity,
                },
            )
        else:
            logger.warning(
                "Seat sync failed account=%s op=%s kind=%s: %s",
                self._account_id,
                result.operation,
                result.error_kind,
                result.error_message,
                extra={"account_id": self._account_id, "subscription_id": result.subscription_id},
            )
        return result

    async def _reconcile(
        self,
        ledger: SubscriptionLedger,
        subscription_id: str,
        quantity: int,
        interval: str,
        prorate: bool,
    ) -> SyncResult:
        target_price = self.price_for_interval(interval)

        try:
            subscription = await ledger.get_subscription(subscription_id)
        except LedgerError as exc:
            return self._failure(subscription_id, None, quantity, interval, OP_LOOKUP, exc)

        item = subscription.find_item(self.seat_price_ids)
        previous = item.quantity if item is not None else 0

        if item is None:
            if quantity == 0:
                return self._result(subscription_id, previous, quantity, interval, OP_NOOP)
            operation = OP_CREATED
        elif quantity == 0:
            operation = OP_DELETED
        elif item.price_id != target_price:
            operation = OP_SWAPPED
        elif item.quantity == quantity:
            return self._result(subscription_id, previous, quantity, interval, OP_NOOP)
        else:
            operation = OP_UPDATED

        try:
            if operation == OP_CREATED:
                await ledger.create_line_item(subscription_id, target_price, quantity, prorate=prorate)
            elif operation == OP_DELETED:
                await ledger.delete_line_item(item.id, prorate=prorate)
            elif operation == OP_SWAPPED:
                # Delete and recreate rather than changing price in place.
                await ledger.delete_line_item(item.id, prorate=prorate)
                await ledger.create_line_item(subscription_id, target_price, quantity, prorate=prorate)
            else:
                await ledger.set_line_item(subscription_id, target_price, quantity, prorate=prorate)
        except LedgerError as exc:
            return self._failure(subscription_id, previous, quantity, interval, operation, exc)

        return self._result(subscription_id, previous, quantity, interval, operation)

    def _result(
        self,
        subscription_id: str | None,
        previous: int | None,
        quantity: int,
        interval: str,
        operation: str,
    ) -> SyncResult:
        return SyncResult(
            account_id=self._account_id,
            subscription_id=subscription_id,
            previous_quantity=previous,
            new_quantity=quantity,
            billing_interval=interval,
            operation=operation,
            ok=True,
        )

    def _failure(
        self,
        subscription_id: str,
        previous: int | None,
        quantity: int,
        interval: str,
        operation: str,
        exc: LedgerError,
    ) -> SyncResult:
        return SyncResult(
            account_id=self._account_id,
            subscription_id=subscription_id,
            previous_quantity=previous,
            new_quantity=quantity,
            billing_interval=interval,
            operation=operation,
            ok=False,
            error_kind=exc.kind,
            error_message=exc.message,
        )
