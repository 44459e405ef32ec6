"""SQLAlchemy 2.0 ORM table definitions for the seat membership store.

All tables use the modern ``Mapped`` / ``mapped_column`` declaration style
introduced in SQLAlchemy 2.0.  The ``Base`` declarative base is exported for
use by Alembic migrations and the repository layer.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    Index,
    Integer,
    String,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# Cross-dialect JSON type: uses JSONB on PostgreSQL for GIN indexing and
# query operators, falls back to plain JSON (stored as TEXT) on SQLite.
_JsonType = JSONB().with_variant(JSON(), "sqlite")


def _utcnow() -> datetime:
    """Return the current UTC timestamp (timezone-aware)."""
    return datetime.now(UTC)


# ---------------------------------------------------------------------------
# Declarative base
# ---------------------------------------------------------------------------


class Base(DeclarativeBase):
    """Shared declarative base for all seat store tables."""


# ---------------------------------------------------------------------------
# Accounts (billing profile)
# ---------------------------------------------------------------------------


class AccountTable(Base):
    """A customer account and its link to the external subscription.

    ``current_period_end`` caches the end of the paid billing term so that
    deactivation does not always need a round trip to the ledger.
    ``max_invited_users`` overrides the plan-tier team limit when set.
    """

    __tablename__ = "accounts"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(256), nullable=False, default="")
    owner_user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    plan_tier: Mapped[str] = mapped_column(String(32), nullable=False, default="starter")
    max_invited_users: Mapped[int | None] = mapped_column(Integer, nullable=True)
    stripe_customer_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    stripe_subscription_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    billing_interval: Mapped[str] = mapped_column(String(16), nullable=False, default="month")
    current_period_end: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False
    )

    __table_args__ = (
        CheckConstraint("billing_interval IN ('month', 'year')", name="ck_accounts_billing_interval"),
        Index("ix_accounts_subscription", "stripe_subscription_id"),
    )


# ---------------------------------------------------------------------------
# Memberships
# ---------------------------------------------------------------------------


class MembershipTable(Base):
    """One row per person per account.

    Rows are never hard-deleted once they have been committed; ``reassigned``
    is the terminal tombstone state and ``reassigned_to_id`` points at the
    replacement row.  At most one non-reassigned row may exist per
    (account_id, email), enforced by a partial unique index.
    """

    __tablename__ = "memberships"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    account_id: Mapped[str] = mapped_column(String(64), nullable=False)
    user_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    email: Mapped[str] = mapped_column(String(320), nullable=False)
    role: Mapped[str] = mapped_column(String(16), nullable=False, default="member")
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")
    is_owner: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    invited_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    invited_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    accepted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    disabled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    seat_billing_ends_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    invite_token: Mapped[str | None] = mapped_column(String(128), nullable=True)
    invite_expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    reassigned_to_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False
    )

    __table_args__ = (
        CheckConstraint("role IN ('owner', 'admin', 'member', 'viewer')", name="ck_memberships_role"),
        CheckConstraint(
            "status IN ('pending', 'active', 'disabled', 'reassigned')",
            name="ck_memberships_status",
        ),
        Index("ix_memberships_account_email", "account_id", "email"),
        Index("ix_memberships_account_status", "account_id", "status"),
        Index("ix_memberships_user", "user_id"),
        Index("ix_memberships_invite_token", "invite_token", unique=True),
        Index("ix_memberships_billing_ends", "status", "seat_billing_ends_at"),
        Index(
            "uq_memberships_live_email",
            "account_id",
            "email",
            unique=True,
            postgresql_where=text("status <> 'reassigned'"),
            sqlite_where=text("status <> 'reassigned'"),
        ),
        Index(
            "uq_memberships_single_owner",
            "account_id",
            unique=True,
            postgresql_where=text("is_owner"),
            sqlite_where=text("is_owner"),
        ),
    )


# ---------------------------------------------------------------------------
# Profiles (identity directory)
# ---------------------------------------------------------------------------


class ProfileTable(Base):
    """Known identities, keyed by the id issued by the identity provider."""

    __tablename__ = "profiles"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    email: Mapped[str] = mapped_column(String(320), nullable=False, unique=True)
    name: Mapped[str | None] = mapped_column(String(256), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------


class TaskTable(Base):
    """Assignable work items owned by an account."""

    __tablename__ = "tasks"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    account_id: Mapped[str] = mapped_column(String(64), nullable=False)
    title: Mapped[str] = mapped_column(String(512), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="open")
    assigned_to: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('open', 'in_progress', 'done', 'cancelled')",
            name="ck_tasks_status",
        ),
        Index("ix_tasks_account_assignee", "account_id", "assigned_to", "status"),
    )


# ---------------------------------------------------------------------------
# Audit log
# ---------------------------------------------------------------------------


class AuditLogTable(Base):
    """Append-only audit log with tamper-evidence via hash chaining.

    The ``entry_hash`` is a SHA-256 digest of the entry's content fields,
    and ``previous_hash`` links to the preceding entry's hash to form a
    tamper-evident chain per account.
    """

    __tablename__ = "audit_log"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    account_id: Mapped[str] = mapped_column(String(64), nullable=False)
    actor: Mapped[str] = mapped_column(String(256), nullable=False)
    action: Mapped[str] = mapped_column(String(128), nullable=False)
    entity_type: Mapped[str | None] = mapped_column(String(128), nullable=True)
    entity_id: Mapped[str | None] = mapped_column(String(512), nullable=True)
    metadata_json: Mapped[dict[str, Any] | None] = mapped_column(_JsonType, nullable=True)
    previous_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    entry_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        Index("ix_audit_account_created", "account_id", "created_at"),
        Index("ix_audit_account_action", "account_id", "action"),
        Index("ix_audit_entity", "account_id", "entity_type", "entity_id"),
    )
