"""FastAPI dependency injection for settings, sessions, identity and collaborators."""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator, Callable
from typing import Annotated

from fastapi import Depends, Request
from seat_core.license import Feature, PlanTier, get_required_tier, is_feature_enabled
from seat_core.state.database import get_engine
from seat_core.state.repository import AccountRepository
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from seat_api.config import APISettings, load_api_settings
from seat_api.errors import FEATURE_NOT_AVAILABLE, Forbidden, Unauthorized
from seat_api.security import CallerIdentity
from seat_api.services.ledger import StripeSubscriptionLedger, SubscriptionLedger
from seat_api.services.notification_service import NotificationService

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------

_settings_cache: APISettings | None = None


def get_settings() -> APISettings:
    """Return the cached :class:`APISettings` singleton."""
    global _settings_cache  # noqa: PLW0603
    if _settings_cache is None:
        _settings_cache = load_api_settings()
    return _settings_cache


SettingsDep = Annotated[APISettings, Depends(get_settings)]

# ---------------------------------------------------------------------------
# Database session
# ---------------------------------------------------------------------------

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def init_engine(settings: APISettings) -> AsyncEngine:
    """Create and cache the global async engine."""
    global _engine, _session_factory  # noqa: PLW0603
    _engine = get_engine(settings.database_url)
    _session_factory = async_sessionmaker(_engine, expire_on_commit=False)
    return _engine


async def dispose_engine() -> None:
    """Dispose the global engine pool (call during shutdown)."""
    global _engine, _session_factory  # noqa: PLW0603
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_factory = None


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Return the global async session factory.

    Used by components that run outside FastAPI's dependency injection
    (e.g. the expired-seat sweeper).
    """
    if _session_factory is None:
        raise RuntimeError(
            "Database engine has not been initialised. Ensure init_engine() is called during application startup."
        )
    return _session_factory


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield an ``AsyncSession`` that needs no authenticated account.

    Only for requests whose account is not known up front: accepting an
    invite resolves the account from the invite token itself.  Everything
    else uses :data:`SessionDep`.

    The session commits on clean exit and rolls back on exception.
    """
    session = get_session_factory()()
    try:
        yield session
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()


async def get_account_session(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """Yield an ``AsyncSession`` for an authenticated account request.

    The account comes from the authenticated request state populated by
    :class:`AuthenticationMiddleware`.
    """
    account_id = getattr(request.state, "account_id", None)
    if account_id is None:
        raise Unauthorized("Authentication required")

    session = get_session_factory()()
    try:
        yield session
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()


SessionDep = Annotated[AsyncSession, Depends(get_account_session)]

# Unauthenticated session; see get_db_session().
PublicSessionDep = Annotated[AsyncSession, Depends(get_db_session)]

# ---------------------------------------------------------------------------
# Subscription ledger
# ---------------------------------------------------------------------------

_ledger: SubscriptionLedger | None = None


def init_ledger(settings: APISettings) -> SubscriptionLedger | None:
    """Create and cache the ledger; ``None`` while billing is disabled."""
    global _ledger  # noqa: PLW0603
    if settings.billing_enabled:
        _ledger = StripeSubscriptionLedger(
            settings.stripe_secret_key.get_secret_value(),
            timeout_seconds=settings.ledger_timeout_seconds,
        )
    else:
        _ledger = None
        logger.info("Seat billing disabled; ledger synchronisation will be skipped")
    return _ledger


def get_ledger() -> SubscriptionLedger | None:
    """Return the cached ledger (``None`` when billing is disabled)."""
    return _ledger


LedgerDep = Annotated[SubscriptionLedger | None, Depends(get_ledger)]

# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------

_notifier: NotificationService | None = None


def init_notifier(settings: APISettings) -> NotificationService:
    """Create and cache the global :class:`NotificationService`."""
    global _notifier  # noqa: PLW0603
    _notifier = NotificationService(
        settings.notification_url,
        invite_base_url=settings.invite_base_url,
        timeout=settings.notification_timeout,
        shared_secret=settings.notification_secret.get_secret_value(),
    )
    return _notifier


async def dispose_notifier() -> None:
    """Close the notifier's underlying HTTP pool."""
    global _notifier  # noqa: PLW0603
    if _notifier is not None:
        await _notifier.close()
        _notifier = None


def get_notifier() -> NotificationService:
    """Return the cached :class:`NotificationService` singleton."""
    if _notifier is None:
        raise RuntimeError(
            "NotificationService has not been initialised. Ensure init_notifier() is called during application startup."
        )
    return _notifier


NotifierDep = Annotated[NotificationService, Depends(get_notifier)]

# ---------------------------------------------------------------------------
# Account / caller identity (populated by AuthenticationMiddleware)
# ---------------------------------------------------------------------------


def get_account_id(request: Request) -> str:
    """Extract account_id from authenticated request state."""
    account_id = getattr(request.state, "account_id", None)
    if account_id is None:
        raise Unauthorized("Authentication required")
    return account_id


AccountDep = Annotated[str, Depends(get_account_id)]


def get_caller(request: Request) -> CallerIdentity:
    """Return the :class:`CallerIdentity` the middleware attached to the request."""
    identity = getattr(request.state, "identity", None)
    if identity is None:
        raise Unauthorized("Authentication required")
    return identity


CallerDep = Annotated[CallerIdentity, Depends(get_caller)]

# ---------------------------------------------------------------------------
# Feature-tier gating
# ---------------------------------------------------------------------------


def require_feature(feature: Feature) -> Callable[..., None]:
    """Return a FastAPI dependency that enforces a plan-tier feature gate.

    Reads the account's ``plan_tier`` and verifies the requested
    :class:`Feature` is enabled for it.  Raises
    ``Forbidden(code="FEATURE_NOT_AVAILABLE")`` with an upgrade message
    otherwise.

    Usage::

        @router.post("/invite")
        async def invite(
            ...,
            _gate: None = Depends(require_feature(Feature.TEAM_USERS)),
        ):
            ...
    """

    async def _gate(session: SessionDep, account_id: AccountDep) -> None:
        account = await AccountRepository(session).get(account_id)
        tier = PlanTier.parse(account.plan_tier if account is not None else None)

        if not is_feature_enabled(tier, feature):
            required_tier = get_required_tier(feature)
            raise Forbidden(
                f"Feature '{feature.value}' requires the "
                f"{required_tier.value.title()} plan or above. "
                f"Your current plan is '{tier.value}'. "
                f"Please upgrade to access this feature.",
                code=FEATURE_NOT_AVAILABLE,
            )

    return _gate  # type: ignore[return-value]
