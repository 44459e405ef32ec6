"""Repository classes providing CRUD access to the seat membership store.

Each repository takes an ``AsyncSession`` at construction time and operates
within the caller's transaction boundary.  All writes call ``session.flush()``
so that generated defaults are populated; the caller is responsible for calling
``session.commit()``, usually once per request or per account lock.
"""

from __future__ import annotations

import hashlib
import json
import logging
import uuid
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import case, func, select, text, update
from sqlalchemy.ext.asyncio import AsyncSession

from seat_core.seats.states import OPEN_TASK_STATUSES, MembershipStatus
from seat_core.state.database import advisory_key, dialect_name
from seat_core.state.tables import (
    AccountTable,
    AuditLogTable,
    MembershipTable,
    ProfileTable,
    TaskTable,
)

logger = logging.getLogger(__name__)


def normalize_email(email: str) -> str:
    """Return *email* trimmed and lower-cased for storage and comparison."""
    return email.strip().lower()


# ---------------------------------------------------------------------------
# Accounts
# ---------------------------------------------------------------------------


class AccountRepository:
    """CRUD operations for the ``accounts`` billing profile."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, account_id: str) -> AccountTable | None:
        """Fetch an account by id."""
        return await self._session.get(AccountTable, account_id)

    async def create(
        self,
        account_id: str,
        owner_user_id: str,
        *,
        name: str = "",
        plan_tier: str = "starter",
        stripe_subscription_id: str | None = None,
        billing_interval: str = "month",
        current_period_end: datetime | None = None,
        max_invited_users: int | None = None,
    ) -> AccountTable:
        """Insert a new account row."""
        row = AccountTable(
            id=account_id,
            name=name,
            owner_user_id=owner_user_id,
            plan_tier=plan_tier,
            stripe_subscription_id=stripe_subscription_id,
            billing_interval=billing_interval,
            current_period_end=current_period_end,
            max_invited_users=max_invited_users,
        )
        self._session.add(row)
        await self._session.flush()
        return row

    async def update_period_end(self, account_id: str, period_end: datetime | None) -> None:
        """Refresh the cached end of the current billing term."""
        stmt = update(AccountTable).where(AccountTable.id == account_id).values(current_period_end=period_end)
        await self._session.execute(stmt)
        await self._session.flush()


# ---------------------------------------------------------------------------
# Memberships
# ---------------------------------------------------------------------------


class MembershipRepository:
    """CRUD operations for the ``memberships`` table, scoped to one account.

    Rows are only hard-deleted by :meth:`delete_uncommitted`, which exists
    for compensating a failed invite inside the same transaction.
    """

    def __init__(self, session: AsyncSession, account_id: str) -> None:
        self._session = session
        self._account_id = account_id

    async def create(
        self,
        *,
        email: str,
        role: str,
        status: str,
        user_id: str | None = None,
        is_owner: bool = False,
        invited_by: str | None = None,
        invite_token: str | None = None,
        invite_expires_at: datetime | None = None,
        accepted_at: datetime | None = None,
    ) -> MembershipTable:
        """Insert a membership row for this account."""
        now = datetime.now(UTC)
        row = MembershipTable(
            id=uuid.uuid4().hex,
            account_id=self._account_id,
            user_id=user_id,
            email=normalize_email(email),
            role=role,
            status=status,
            is_owner=is_owner,
            invited_by=invited_by,
            invited_at=now,
            accepted_at=accepted_at,
            invite_token=invite_token,
            invite_expires_at=invite_expires_at,
        )
        self._session.add(row)
        await self._session.flush()
        return row

    async def get_by_id(self, member_id: str) -> MembershipTable | None:
        """Fetch a membership row by primary key within this account."""
        stmt = select(MembershipTable).where(
            MembershipTable.account_id == self._account_id,
            MembershipTable.id == member_id,
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_user_id(self, user_id: str) -> MembershipTable | None:
        """Fetch the live (non-reassigned) row bound to *user_id*."""
        stmt = select(MembershipTable).where(
            MembershipTable.account_id == self._account_id,
            MembershipTable.user_id == user_id,
            MembershipTable.status != MembershipStatus.REASSIGNED.value,
        )
        result = await self._session.execute(stmt)
        return result.scalars().first()

    async def get_live_by_email(self, email: str) -> MembershipTable | None:
        """Fetch the non-reassigned row for *email* (at most one exists)."""
        stmt = select(MembershipTable).where(
            MembershipTable.account_id == self._account_id,
            MembershipTable.email == normalize_email(email),
            MembershipTable.status != MembershipStatus.REASSIGNED.value,
        )
        result = await self._session.execute(stmt)
        return result.scalars().first()

    async def list_all(self) -> list[MembershipTable]:
        """Return every row of the account, tombstones included."""
        stmt = select(MembershipTable).where(MembershipTable.account_id == self._account_id)
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def list_ordered(self) -> list[MembershipTable]:
        """Return every row ordered owner first, then by status, newest first."""
        status_rank = case(
            (MembershipTable.status == MembershipStatus.ACTIVE.value, 0),
            (MembershipTable.status == MembershipStatus.PENDING.value, 1),
            (MembershipTable.status == MembershipStatus.DISABLED.value, 2),
            else_=3,
        )
        stmt = (
            select(MembershipTable)
            .where(MembershipTable.account_id == self._account_id)
            .order_by(
                MembershipTable.is_owner.desc(),
                status_rank,
                MembershipTable.created_at.desc(),
            )
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def delete_uncommitted(self, row: MembershipTable) -> None:
        """Remove a row created earlier in the current transaction."""
        await self._session.delete(row)
        await self._session.flush()

    async def get_pending_by_token_any_account(self, token: str) -> MembershipTable | None:
        """Fetch a pending invite by token across all accounts (for accept).

        Accepting an invite happens before the invitee belongs to the
        account, so the token itself determines the account.
        """
        stmt = select(MembershipTable).where(
            MembershipTable.invite_token == token,
            MembershipTable.status == MembershipStatus.PENDING.value,
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_grace_expired_any_account(self, now: datetime) -> list[MembershipTable]:
        """Return disabled rows whose paid term ended at or before *now*."""
        stmt = (
            select(MembershipTable)
            .where(
                MembershipTable.status == MembershipStatus.DISABLED.value,
                MembershipTable.seat_billing_ends_at.is_not(None),
                MembershipTable.seat_billing_ends_at <= now,
            )
            .order_by(MembershipTable.account_id)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())


# ---------------------------------------------------------------------------
# Profiles
# ---------------------------------------------------------------------------


class ProfileRepository:
    """Lookup and upsert of known identities."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_by_id(self, user_id: str) -> ProfileTable | None:
        """Fetch a profile by identity id."""
        return await self._session.get(ProfileTable, user_id)

    async def get_by_email(self, email: str) -> ProfileTable | None:
        """Fetch a profile by email address (case-insensitive)."""
        stmt = select(ProfileTable).where(ProfileTable.email == normalize_email(email))
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def upsert(self, user_id: str, email: str, name: str | None = None) -> ProfileTable:
        """Create the profile if missing, otherwise refresh its email and name."""
        row = await self.get_by_id(user_id)
        if row is None:
            row = ProfileTable(id=user_id, email=normalize_email(email), name=name)
            self._session.add(row)
        else:
            row.email = normalize_email(email)
            if name is not None:
                row.name = name
        await self._session.flush()
        return row


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------


class TaskRepository:
    """Assignable work items for one account."""

    def __init__(self, session: AsyncSession, account_id: str) -> None:
        self._session = session
        self._account_id = account_id

    async def create(self, title: str, *, assigned_to: str | None = None, status: str = "open") -> TaskTable:
        """Insert a task."""
        row = TaskTable(
            id=uuid.uuid4().hex,
            account_id=self._account_id,
            title=title,
            status=status,
            assigned_to=assigned_to,
        )
        self._session.add(row)
        await self._session.flush()
        return row

    async def reassign_open_tasks(self, from_user_id: str, to_user_id: str | None) -> int:
        """Move every open or in-progress task of *from_user_id*.

        Passing ``None`` for *to_user_id* leaves the tasks unassigned.
        Returns the number of tasks touched.
        """
        stmt = (
            update(TaskTable)
            .where(
                TaskTable.account_id == self._account_id,
                TaskTable.assigned_to == from_user_id,
                TaskTable.status.in_(OPEN_TASK_STATUSES),
            )
            .values(assigned_to=to_user_id, updated_at=datetime.now(UTC))
        )
        result = await self._session.execute(stmt)
        await self._session.flush()
        return int(result.rowcount or 0)

    async def count_open_assigned(self, user_id: str) -> int:
        """Count the open or in-progress tasks assigned to *user_id*."""
        stmt = (
            select(func.count())
            .select_from(TaskTable)
            .where(
                TaskTable.account_id == self._account_id,
                TaskTable.assigned_to == user_id,
                TaskTable.status.in_(OPEN_TASK_STATUSES),
            )
        )
        result = await self._session.execute(stmt)
        return int(result.scalar_one())

    async def list_by_assignee(self, user_id: str | None) -> list[TaskTable]:
        """Return the account's tasks assigned to *user_id* (``None`` = unassigned)."""
        condition = TaskTable.assigned_to.is_(None) if user_id is None else TaskTable.assigned_to == user_id
        stmt = (
            select(TaskTable)
            .where(TaskTable.account_id == self._account_id, condition)
            .order_by(TaskTable.created_at)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())


# ---------------------------------------------------------------------------
# Audit log
# ---------------------------------------------------------------------------


class AuditRepository:
    """Per-account audit trail of membership and billing changes.

    Entries are never updated.  Each row stores the ``entry_hash`` of the
    account's previous row, and its own hash covers that link, so an edited
    row shows up in :meth:`verify_chain`.
    """

    def __init__(self, session: AsyncSession, *, account_id: str) -> None:
        self._session = session
        self._account_id = account_id

    @staticmethod
    def _compute_hash(
        account_id: str,
        actor: str,
        action: str,
        entity_type: str | None,
        entity_id: str | None,
        metadata: dict[str, Any] | None,
        previous_hash: str | None,
        created_at: datetime,
    ) -> str:
        parts = [
            account_id,
            actor,
            action,
            entity_type or "",
            entity_id or "",
            json.dumps(metadata, sort_keys=True, default=str) if metadata else "",
            previous_hash or "",
            created_at.isoformat(),
        ]
        return hashlib.sha256("|".join(parts).encode("utf-8")).hexdigest()

    async def get_latest_hash(self) -> str | None:
        """Return the newest entry's hash, or ``None`` for an empty trail."""
        stmt = (
            select(AuditLogTable.entry_hash)
            .where(AuditLogTable.account_id == self._account_id)
            .order_by(AuditLogTable.created_at.desc())
            .limit(1)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def log(
        self,
        *,
        actor: str,
        action: str,
        entity_type: str | None = None,
        entity_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> str:
        """Append an entry linked to the account's newest one and return its id."""
        entry_id = uuid.uuid4().hex
        now = datetime.now(UTC)

        # Writers of one account must not read the same previous_hash.
        if "postgresql" in dialect_name(self._session):
            await self._session.execute(
                text("SELECT pg_advisory_xact_lock(:lock_id)"),
                {"lock_id": advisory_key("audit_chain", self._account_id)},
            )

        previous_hash = await self.get_latest_hash()
        entry_hash = self._compute_hash(
            account_id=self._account_id,
            actor=actor,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            metadata=metadata,
            previous_hash=previous_hash,
            created_at=now,
        )

        row = AuditLogTable(
            id=entry_id,
            account_id=self._account_id,
            actor=actor,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            metadata_json=metadata,
            previous_hash=previous_hash,
            entry_hash=entry_hash,
            created_at=now,
        )
        self._session.add(row)
        await self._session.flush()

        logger.info(
            "Audit: account=%s actor=%s action=%s entity=%s/%s",
            self._account_id,
            actor,
            action,
            entity_type or "-",
            entity_id or "-",
        )
        return entry_id

    async def query(
        self,
        *,
        action: str | None = None,
        entity_id: str | None = None,
        limit: int = 50,
    ) -> list[AuditLogTable]:
        """Return entries newest first, optionally filtered by action or entity."""
        stmt = select(AuditLogTable).where(AuditLogTable.account_id == self._account_id)
        if action is not None:
            stmt = stmt.where(AuditLogTable.action == action)
        if entity_id is not None:
            stmt = stmt.where(AuditLogTable.entity_id == entity_id)
        stmt = stmt.order_by(AuditLogTable.created_at.desc()).limit(limit)
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def verify_chain(self, *, limit: int = 1000) -> tuple[bool, int]:
        """Recompute the oldest *limit* entries and check every link.

        Returns ``(valid, checked)``, where *checked* counts the entries
        that passed before the first break.
        """
        stmt = (
            select(AuditLogTable)
            .where(AuditLogTable.account_id == self._account_id)
            .order_by(AuditLogTable.created_at.asc())
            .limit(limit)
        )
        result = await self._session.execute(stmt)
        entries = list(result.scalars().all())

        checked = 0
        previous_hash: str | None = None
        for entry in entries:
            if entry.previous_hash != previous_hash:
                logger.warning(
                    "Audit chain break at entry %s: expected previous_hash=%s, got=%s",
                    entry.id,
                    previous_hash,
                    entry.previous_hash,
                )
                return (False, checked)
            created_at = entry.created_at
            if created_at.tzinfo is None:
                created_at = created_at.replace(tzinfo=UTC)
            expected_hash = self._compute_hash(
                account_id=entry.account_id,
                actor=entry.actor,
                action=entry.action,
                entity_type=entry.entity_type,
                entity_id=entry.entity_id,
                metadata=entry.metadata_json,
                previous_hash=entry.previous_hash,
                created_at=created_at,
            )
            if expected_hash != entry.entry_hash:
                logger.warning("Audit hash mismatch at entry %s", entry.id)
                return (False, checked)
            previous_hash = entry.entry_hash
            checked += 1
        return (True, checked)
