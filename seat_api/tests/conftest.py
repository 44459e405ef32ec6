"""Shared fixtures for seat API tests.

Provides a file-backed SQLite database (aiosqlite), an in-memory
subscription ledger that can be told to fail on a given call, a seeding
helper for accounts and memberships, and an async httpx client bound to the
application with its dependencies overridden.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# Set AUTH_SECRET BEFORE importing application modules so the
# AuthenticationMiddleware verifies tokens with a deterministic secret
# instead of generating a random one.
_TEST_AUTH_SECRET = "test-secret-key-for-seatsync-tests"
os.environ.setdefault("AUTH_SECRET", _TEST_AUTH_SECRET)

from pydantic import SecretStr
from seat_api.config import APISettings
from seat_api.dependencies import (
    get_account_session,
    get_db_session,
    get_ledger,
    get_notifier,
    get_settings,
)
from seat_api.main import create_app
from seat_api.security import CallerIdentity, HmacTokenAuthProvider
from seat_api.services.ledger import LedgerError, LedgerLineItem, LedgerSubscription
from seat_api.services.membership_service import MembershipService
from seat_api.services.notification_service import NotificationService
from seat_core.state.repository import (
    AccountRepository,
    MembershipRepository,
    ProfileRepository,
    TaskRepository,
)
from seat_core.state.tables import AccountTable, Base, MembershipTable
from sqlalchemy import JSON, DateTime
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.types import TypeDecorator

MONTHLY_PRICE = "price_seat_monthly"
ANNUAL_PRICE = "price_seat_annual"

# ---------------------------------------------------------------------------
# SQLite column patching
# ---------------------------------------------------------------------------


def _patch_columns_for_sqlite() -> None:
    """Substitute Postgres-specific column types for SQLite compatibility.

    ``DateTime(timezone=True)`` columns get a decorator that returns
    UTC-aware values, since SQLite stores datetimes without an offset.
    """

    class _UTCAwareDateTime(TypeDecorator):
        """SQLAlchemy TypeDecorator that ensures datetimes are always UTC-aware."""

        impl = DateTime
        cache_ok = True

        def process_result_value(self, value, dialect):  # type: ignore[override]
            if value is not None and value.tzinfo is None:
                return value.replace(tzinfo=UTC)
            return value

    for table in Base.metadata.tables.values():
        for column in table.columns:
            if isinstance(column.type, JSONB):
                column.type = JSON()
            elif isinstance(column.type, DateTime) and getattr(column.type, "timezone", False):
                column.type = _UTCAwareDateTime()


_patch_columns_for_sqlite()

# ---------------------------------------------------------------------------
# In-memory subscription ledger
# ---------------------------------------------------------------------------


class FakeLedger:
    """In-memory :class:`SubscriptionLedger` for tests.

    ``fail_on`` maps a method name (``get_subscription``, ``set_line_item``,
    ``delete_line_item``, ``create_line_item``) to the ``LedgerError`` kind
    that call should raise; ``fail_once`` does the same for the next call
    only.  Every call is appended to ``calls``.
    """

    def __init__(self) -> None:
        self.subscriptions: dict[str, dict[str, Any]] = {}
        self.calls: list[tuple[Any, ...]] = []
        self.fail_on: dict[str, str] = {}
        self.fail_once: dict[str, str] = {}
        self._next_item = 0

    def add_subscription(
        self,
        subscription_id: str,
        *,
        status: str = "active",
        current_period_end: datetime | None = None,
        items: dict[str, int] | None = None,
    ) -> None:
        line_items: dict[str, LedgerLineItem] = {}
        for price_id, quantity in (items or {}).items():
            item = self._new_item(price_id, quantity)
            line_items[item.id] = item
        self.subscriptions[subscription_id] = {
            "status": status,
            "current_period_end": current_period_end,
            "items": line_items,
        }

    def quantity(self, subscription_id: str) -> int:
        """Return the seat quantity on *subscription_id* (0 when there is no seat item)."""
        items = self.subscriptions[subscription_id]["items"].values()
        return sum(item.quantity for item in items if item.price_id in (MONTHLY_PRICE, ANNUAL_PRICE))

    def price(self, subscription_id: str) -> str | None:
        for item in self.subscriptions[subscription_id]["items"].values():
            return item.price_id
        return None

    @property
    def mutations(self) -> list[tuple[Any, ...]]:
        return [call for call in self.calls if call[0] != "get_subscription"]

    def _new_item(self, price_id: str, quantity: int) -> LedgerLineItem:
        self._next_item += 1
        return LedgerLineItem(id=f"si_{self._next_item}", price_id=price_id, quantity=quantity)

    async def _enter(self, name: str, *args: Any) -> None:
        self.calls.append((name, *args))
        # Yield so concurrent callers can interleave.
        await asyncio.sleep(0)
        kind = self.fail_on.get(name) or self.fail_once.pop(name, None)
        if kind is not None:
            raise LedgerError(kind, f"{name} failed ({kind})")  # type: ignore[arg-type]

    def _subscription(self, subscription_id: str) -> dict[str, Any]:
        try:
            return self.subscriptions[subscription_id]
        except KeyError:
            raise LedgerError("not_found", f"No such subscription: {subscription_id}") from None

    async def get_subscription(self, subscription_id: str) -> LedgerSubscription:
        await self._enter("get_subscription", subscription_id)
        sub = self._subscription(subscription_id)
        return LedgerSubscription(
            id=subscription_id,
            status=sub["status"],
            current_period_end=sub["current_period_end"],
            items=tuple(sub["items"].values()),
        )

    async def set_line_item(self, subscription_id: str, price_id: str, quantity: int, *, prorate: bool = True) -> None:
        await self._enter("set_line_item", subscription_id, price_id, quantity, prorate)
        items = self._subscription(subscription_id)["items"]
        for item_id, item in items.items():
            if item.price_id == price_id:
                items[item_id] = LedgerLineItem(id=item_id, price_id=price_id, quantity=quantity)
                return
        raise LedgerError("not_found", f"No line item at {price_id}")

    async def delete_line_item(self, item_id: str, *, prorate: bool = True) -> None:
        await self._enter("delete_line_item", item_id, prorate)
        for sub in self.subscriptions.values():
            if item_id in sub["items"]:
                del sub["items"][item_id]
                return
        raise LedgerError("not_found", f"No such item: {item_id}")

    async def create_line_item(
        self, subscription_id: str, price_id: str, quantity: int, *, prorate: bool = True
    ) -> LedgerLineItem:
        await self._enter("create_line_item", subscription_id, price_id, quantity, prorate)
        sub = self._subscription(subscription_id)
        item = self._new_item(price_id, quantity)
        sub["items"][item.id] = item
        return item


# ---------------------------------------------------------------------------
# Seeding helper
# ---------------------------------------------------------------------------


class TeamSeeder:
    """Create accounts, memberships, profiles and tasks for a test."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def account(
        self,
        account_id: str = "acct-1",
        *,
        owner_id: str = "owner-1",
        owner_email: str = "owner@example.com",
        plan_tier: str = "growth",
        subscription_id: str | None = "sub_1",
        billing_interval: str = "month",
        current_period_end: datetime | None = None,
        max_invited_users: int | None = None,
    ) -> AccountTable:
        account = await AccountRepository(self._session).create(
            account_id,
            owner_id,
            name="Acme",
            plan_tier=plan_tier,
            stripe_subscription_id=subscription_id,
            billing_interval=billing_interval,
            current_period_end=current_period_end,
            max_invited_users=max_invited_users,
        )
        await ProfileRepository(self._session).upsert(owner_id, owner_email, "Olivia Owner")
        await MembershipRepository(self._session, account_id).create(
            email=owner_email,
            role="owner",
            status="active",
            user_id=owner_id,
            is_owner=True,
            accepted_at=datetime.now(UTC),
        )
        return account

    async def member(
        self,
        email: str,
        *,
        account_id: str = "acct-1",
        user_id: str | None = None,
        role: str = "member",
        status: str = "active",
        seat_billing_ends_at: datetime | None = None,
        invite_token: str | None = None,
        invite_expires_at: datetime | None = None,
    ) -> MembershipTable:
        if user_id is not None:
            await ProfileRepository(self._session).upsert(user_id, email)
        row = await MembershipRepository(self._session, account_id).create(
            email=email,
            role=role,
            status=status,
            user_id=user_id,
            invite_token=invite_token,
            invite_expires_at=invite_expires_at,
        )
        if seat_billing_ends_at is not None:
            row.seat_billing_ends_at = seat_billing_ends_at
            row.disabled_at = datetime.now(UTC)
            await self._session.flush()
        return row

    async def profile(self, user_id: str, email: str, name: str | None = None) -> None:
        await ProfileRepository(self._session).upsert(user_id, email, name)

    async def task(self, title: str, *, assigned_to: str | None, account_id: str = "acct-1", status: str = "open"):
        return await TaskRepository(self._session, account_id).create(title, assigned_to=assigned_to, status=status)

    async def commit(self) -> None:
        await self._session.commit()


# ---------------------------------------------------------------------------
# Settings, database and collaborators
# ---------------------------------------------------------------------------


@pytest.fixture()
def test_settings(tmp_path) -> APISettings:
    """Return a settings object suitable for testing."""
    return APISettings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'seats.db'}",
        platform_env="dev",
        cors_origins=["http://localhost:3000"],
        billing_enabled=False,
        stripe_seat_price_id_monthly=MONTHLY_PRICE,
        stripe_seat_price_id_annual=ANNUAL_PRICE,
        seat_price_monthly=75.0,
        seat_price_annual=720.0,
        invite_expiry_days=7,
        invite_base_url="https://app.example.com/accept-invite",
        notification_secret=SecretStr(""),
        expired_seat_sweep_enabled=False,
    )


@pytest_asyncio.fixture()
async def session_factory(test_settings: APISettings):
    """Yield an ``async_sessionmaker`` over a fresh file-backed SQLite database."""
    engine = create_async_engine(test_settings.database_url, echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, expire_on_commit=False)

    await engine.dispose()


@pytest_asyncio.fixture()
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture()
def seed(db_session: AsyncSession) -> TeamSeeder:
    return TeamSeeder(db_session)


@pytest.fixture()
def fake_ledger() -> FakeLedger:
    return FakeLedger()


@pytest.fixture()
def owner() -> CallerIdentity:
    return CallerIdentity(
        user_id="owner-1",
        email="owner@example.com",
        account_id="acct-1",
        role="owner",
        name="Olivia Owner",
    )


@pytest.fixture()
def make_service(
    db_session: AsyncSession,
    test_settings: APISettings,
    fake_ledger: FakeLedger,
    owner: CallerIdentity,
) -> Callable[..., MembershipService]:
    """Return a factory for :class:`MembershipService` bound to the test session."""

    def _make(
        caller: CallerIdentity | None = None,
        *,
        session: AsyncSession | None = None,
        account_id: str = "acct-1",
        ledger: Any = fake_ledger,
        notifier: NotificationService | None = None,
    ) -> MembershipService:
        return MembershipService(
            session or db_session,
            test_settings,
            account_id=account_id,
            caller=caller or owner,
            ledger=ledger,
            notifier=notifier,
        )

    return _make


# ---------------------------------------------------------------------------
# Auth tokens
# ---------------------------------------------------------------------------

_TOKENS = HmacTokenAuthProvider(SecretStr(_TEST_AUTH_SECRET))


@pytest.fixture()
def auth_headers() -> Callable[..., dict[str, str]]:
    """Return a factory producing ``Authorization`` headers for a caller."""

    def _headers(
        user_id: str = "owner-1",
        *,
        email: str = "owner@example.com",
        account_id: str = "acct-1",
        role: str = "owner",
    ) -> dict[str, str]:
        token = _TOKENS.issue(CallerIdentity(user_id=user_id, email=email, account_id=account_id, role=role))
        return {"Authorization": f"Bearer {token}"}

    return _headers


# ---------------------------------------------------------------------------
# FastAPI app and client (async httpx)
# ---------------------------------------------------------------------------


@pytest.fixture()
def app(test_settings: APISettings, session_factory, fake_ledger: FakeLedger):
    """Create a FastAPI app with dependency overrides for testing.

    Each request gets its own session on the test database, mirroring the
    production session lifecycle.  The notifier runs in log-only mode.
    """
    application = create_app()
    notifier = NotificationService("", invite_base_url=test_settings.invite_base_url)

    async def _override_session():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    application.dependency_overrides[get_account_session] = _override_session
    application.dependency_overrides[get_db_session] = _override_session
    application.dependency_overrides[get_settings] = lambda: test_settings
    application.dependency_overrides[get_ledger] = lambda: fake_ledger
    application.dependency_overrides[get_notifier] = lambda: notifier
    return application


@pytest_asyncio.fixture()
async def client(app) -> AsyncClient:
    """Yield an async httpx client bound to the test app without auth headers."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
