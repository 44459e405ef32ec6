"""Subscription ledger interface and its Stripe implementation.

The ledger is the external system of record for what an account is billed.
Only line-item mutation on an *existing* subscription is modelled here;
subscription creation and checkout live elsewhere.

Every mutating call takes ``prorate``: ``True`` maps to Stripe's
``create_prorations`` (mid-cycle credit/charge), ``False`` to ``none``
(used when releasing seats whose term was already paid).
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Literal, Protocol, TypeVar

import stripe

logger = logging.getLogger(__name__)

T = TypeVar("T")

LedgerErrorKind = Literal["declined", "unavailable", "not_found"]


# ---------------------------------------------------------------------------
# Value types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LedgerLineItem:
    """One priced line on a subscription."""

    id: str
    price_id: str
    quantity: int


@dataclass(frozen=True)
class LedgerSubscription:
    """Snapshot of an external subscription."""

    id: str
    status: str
    current_period_end: datetime | None
    items: tuple[LedgerLineItem, ...] = ()

    def find_item(self, price_ids: tuple[str, ...] | frozenset[str]) -> LedgerLineItem | None:
        """Return the first line item billed at any of *price_ids*."""
        for item in self.items:
            if item.price_id in price_ids:
                return item
        return None


class LedgerError(Exception):
    """A ledger call failed.

    ``kind`` tells the caller how to react: ``declined`` means the charge
    was refused, ``unavailable`` covers timeouts and connectivity or
    server-side failures, and ``not_found`` means the subscription or item
    does not exist.
    """

    def __init__(self, kind: LedgerErrorKind, message: str) -> None:
        super().__init__(message)
        self.kind: LedgerErrorKind = kind
        self.message = message


class SubscriptionLedger(Protocol):
    """Capability for reading and mutating a subscription's line items."""

    async def get_subscription(self, subscription_id: str) -> LedgerSubscription:
        """Return the subscription or raise ``LedgerError(kind="not_found")``."""
        ...

    async def set_line_item(self, subscription_id: str, price_id: str, quantity: int, *, prorate: bool = True) -> None:
        """Set the quantity of the line item billed at *price_id*."""
        ...

    async def delete_line_item(self, item_id: str, *, prorate: bool = True) -> None:
        """Remove a line item."""
        ...

    async def create_line_item(
        self, subscription_id: str, price_id: str, quantity: int, *, prorate: bool = True
    ) -> LedgerLineItem:
        """Add a line item at *price_id* with *quantity*."""
        ...


# ---------------------------------------------------------------------------
# Stripe implementation
# ---------------------------------------------------------------------------


def _proration_behavior(prorate: bool) -> str:
    return "create_prorations" if prorate else "none"


def _from_epoch(value: Any) -> datetime | None:
    if value in (None, 0, ""):
        return None
    return datetime.fromtimestamp(int(value), tz=UTC)


def _plain(value: Any) -> dict[str, Any]:
    """Return one level of a Stripe payload as a plain ``dict``.

    ``StripeObject`` is not a ``dict`` subclass on current SDKs, so it is
    unwrapped with ``to_dict()``.
    """
    if value is None:
        return {}
    if isinstance(value, dict):
        return value
    to_dict = getattr(value, "to_dict", None)
    if to_dict is None:
        raise TypeError(f"Unexpected Stripe payload type {type(value).__name__}")
    return to_dict()


def _to_subscription(payload: Any) -> LedgerSubscription:
    """Convert a Stripe subscription object into a :class:`LedgerSubscription`."""
    raw = _plain(payload)
    raw_items = [_plain(item) for item in _plain(raw.get("items")).get("data") or []]
    items = tuple(
        LedgerLineItem(
            id=item["id"],
            price_id=_plain(item.get("price")).get("id", ""),
            quantity=int(item.get("quantity") or 0),
        )
        for item in raw_items
    )
    # Newer API versions report the billing period on the items.
    period_end = _from_epoch(raw.get("current_period_end"))
    if period_end is None and raw_items:
        period_end = _from_epoch(raw_items[0].get("current_period_end"))
    return LedgerSubscription(
        id=raw["id"],
        status=str(raw.get("status") or ""),
        current_period_end=period_end,
        items=items,
    )


class StripeSubscriptionLedger:
    """:class:`SubscriptionLedger` backed by the Stripe API.

    The ``stripe`` client is synchronous, so every call runs in a worker
    thread and is bounded by ``timeout_seconds``.

    Parameters
    ----------
    api_key:
        Stripe secret key.
    timeout_seconds:
        Upper bound on each call.  Exceeding it raises
        ``LedgerError(kind="unavailable")``.
    """

    def __init__(self, api_key: str, *, timeout_seconds: float = 10.0) -> None:
        self._api_key = api_key
        self._timeout = timeout_seconds

    async def _call(self, operation: str, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        stripe.api_key = self._api_key
        try:
            return await asyncio.wait_for(asyncio.to_thread(fn, *args, **kwargs), timeout=self._timeout)
        except TimeoutError as exc:
            logger.warning("Stripe %s timed out after %.1fs", operation, self._timeout)
            raise LedgerError("unavailable", f"Stripe {operation} timed out") from exc
        except stripe.CardError as exc:
            raise LedgerError("declined", exc.user_message or str(exc)) from exc
        except stripe.InvalidRequestError as exc:
            if exc.code == "resource_missing":
                raise LedgerError("not_found", str(exc)) from exc
            raise LedgerError("unavailable", str(exc)) from exc
        except stripe.StripeError as exc:
            logger.warning("Stripe %s failed: %s", operation, exc)
            raise LedgerError("unavailable", str(exc)) from exc

    async def get_subscription(self, subscription_id: str) -> LedgerSubscription:
        raw = await self._call(
            "subscription retrieve",
            stripe.Subscription.retrieve,
            subscription_id,
            expand=["items.data.price"],
        )
        try:
            return _to_subscription(raw)
        except (KeyError, TypeError, ValueError) as exc:
            logger.error("Unreadable Stripe subscription %s: %r", subscription_id, exc)
            raise LedgerError("unavailable", f"Unexpected Stripe subscription payload for {subscription_id}") from exc

    async def set_line_item(self, subscription_id: str, price_id: str, quantity: int, *, prorate: bool = True) -> None:
        subscription = await self.get_subscription(subscription_id)
        item = subscription.find_item((price_id,))
        if item is None:
            raise LedgerError("not_found", f"No line item at price {price_id} on {subscription_id}")
        await self._call(
            "item update",
            stripe.SubscriptionItem.modify,
            item.id,
            quantity=quantity,
            proration_behavior=_proration_behavior(prorate),
        )

    async def delete_line_item(self, item_id: str, *, prorate: bool = True) -> None:
        await self._call(
            "item delete",
            stripe.SubscriptionItem.delete,
            item_id,
            proration_behavior=_proration_behavior(prorate),
        )

    async def create_line_item(
        self, subscription_id: str, price_id: str, quantity: int, *, prorate: bool = True
    ) -> LedgerLineItem:
        raw = await self._call(
            "item create",
            stripe.SubscriptionItem.create,
            subscription=subscription_id,
            price=price_id,
            quantity=quantity,
            proration_behavior=_proration_behavior(prorate),
        )
        try:
            item_id = _plain(raw)["id"]
        except (KeyError, TypeError) as exc:
            raise LedgerError("unavailable", f"Unexpected Stripe item payload on {subscription_id}") from exc
        return LedgerLineItem(id=item_id, price_id=price_id, quantity=quantity)
