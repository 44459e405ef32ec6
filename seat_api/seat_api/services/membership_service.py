"""Membership lifecycle for multi-seat accounts.

Orchestrates invite / accept / deactivate / reactivate / reassign /
change-role and the supporting owner and billing operations.  Every action
that can change the billable seat count runs under the per-account lock
(:func:`account_lock`), recomputes the count from the committed rows and
pushes the absolute quantity to the subscription ledger.

Ledger failures are handled asymmetrically:

* **invite** bills before granting.  A declined or failed charge deletes the
  new row again, so no unbilled seat is ever handed out.
* every other transition keeps the membership change and treats the sync as
  best-effort.  The attempt is audited and ``force_resync`` repairs drift.
"""

from __future__ import annotations

import logging
import secrets
from datetime import UTC, datetime, timedelta
from typing import Any

from seat_core.seats import (
    MemberRole,
    MembershipStatus,
    as_utc,
    count_billable_seats,
    count_team_size,
    is_billable,
)
from seat_core.seats.states import ASSIGNABLE_ROLES
from seat_core.state.repository import (
    AccountRepository,
    MembershipRepository,
    ProfileRepository,
    normalize_email,
)
from seat_core.state.tables import AccountTable, MembershipTable
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from seat_api.config import APISettings
from seat_api.errors import (
    FEATURE_NOT_AVAILABLE,
    TEAM_LIMIT_REACHED,
    Conflict,
    ExternalServiceError,
    Forbidden,
    InvalidRequest,
    NotFound,
    PaymentRequired,
)
from seat_api.security import CallerIdentity
from seat_api.services.account_lock import account_lock
from seat_api.services.audit_service import AuditAction, AuditService
from seat_api.services.entitlement_service import Entitlements, FeatureEntitlementService
from seat_api.services.ledger import SubscriptionLedger
from seat_api.services.notification_service import NotificationService
from seat_api.services.period_resolver import SubscriptionPeriodResolver
from seat_api.services.seat_sync import LedgerSynchronizer, SyncResult
from seat_api.services.task_bridge import TaskReassignmentBridge

logger = logging.getLogger(__name__)

_MANAGER_ROLES = frozenset({MemberRole.OWNER.value, MemberRole.ADMIN.value})


def _iso(value: datetime | None) -> str | None:
    return as_utc(value).isoformat() if value is not None else None


def _new_invite_token() -> str:
    return secrets.token_urlsafe(32)


def _validate_role(role: str) -> None:
    if role not in ASSIGNABLE_ROLES:
        allowed = ", ".join(sorted(ASSIGNABLE_ROLES))
        raise InvalidRequest(f"Role '{role}' cannot be assigned. Use one of: {allowed}.")


def member_to_dict(row: MembershipTable, now: datetime | None = None) -> dict[str, Any]:
    """Serialise a membership row for API responses (the invite token is omitted)."""
    instant = now or datetime.now(UTC)
    return {
        "id": row.id,
        "user_id": row.user_id,
        "email": row.email,
        "role": row.role,
        "status": row.status,
        "is_owner": row.is_owner,
        "billable": is_billable(row, instant),
        "invited_at": _iso(row.invited_at),
        "accepted_at": _iso(row.accepted_at),
        "disabled_at": _iso(row.disabled_at),
        "seat_billing_ends_at": _iso(row.seat_billing_ends_at),
        "invite_expires_at": _iso(row.invite_expires_at),
        "reassigned_to_id": row.reassigned_to_id,
    }


class MembershipService:
    """Membership state machine for one account.

    Parameters
    ----------
    session:
        Active database session.  The service commits at the end of every
        mutating action, while still holding the account lock.
    settings:
        API settings (invite expiry, seat prices).
    account_id:
        The account being managed.
    caller:
        The authenticated principal performing the action.
    ledger:
        Subscription ledger, or ``None`` when billing is disabled.
    notifier:
        Invite delivery client.  ``None`` skips delivery.
    """

    def __init__(
        self,
        session: AsyncSession,
        settings: APISettings,
        *,
        account_id: str,
        caller: CallerIdentity,
        ledger: SubscriptionLedger | None = None,
        notifier: NotificationService | None = None,
    ) -> None:
        self._session = session
        self._settings = settings
        self._account_id = account_id
        self._caller = caller
        self._ledger = ledger
        self._notifier = notifier
        self._accounts = AccountRepository(session)
        self._members = MembershipRepository(session, account_id)
        self._profiles = ProfileRepository(session)
        self._entitlements = FeatureEntitlementService()
        self._audit = AuditService(session, account_id=account_id, actor=caller.user_id)
        self._sync = LedgerSynchronizer(session, settings, ledger, account_id=account_id, actor=caller.user_id)
        self._periods = SubscriptionPeriodResolver(session, ledger)
        self._tasks = TaskReassignmentBridge(session, account_id=account_id)

    def _for_account(self, account_id: str) -> MembershipService:
        """Return a service bound to another account with the same collaborators."""
        return MembershipService(
            self._session,
            self._settings,
            account_id=account_id,
            caller=self._caller,
            ledger=self._ledger,
            notifier=self._notifier,
        )

    # ------------------------------------------------------------------
    # Guards
    # ------------------------------------------------------------------

    async def _load_account(self) -> AccountTable:
        account = await self._accounts.get(self._account_id)
        if account is None:
            raise NotFound(f"Account '{self._account_id}' not found.")
        return account

    async def _require_member(self) -> MembershipTable:
        """The caller must hold an active membership in this account."""
        row = await self._members.get_by_user_id(self._caller.user_id)
        if row is None or row.status != MembershipStatus.ACTIVE.value:
            raise Forbidden("You are not an active member of this account.")
        return row

    async def _require_manager(self) -> MembershipTable:
        """The caller must be an active owner or admin of this account."""
        row = await self._require_member()
        if row.role not in _MANAGER_ROLES:
            raise Forbidden("Only the account owner or an admin can manage the team.")
        return row

    async def _require_target(self, user_id: str) -> MembershipTable:
        row = await self._members.get_by_user_id(user_id)
        if row is None:
            raise NotFound(f"No member with user id '{user_id}' in this account.")
        return row

    async def _find_member(self, member_id: str) -> MembershipTable:
        """Look up by membership id, falling back to the bound user id."""
        row = await self._members.get_by_id(member_id)
        if row is None:
            row = await self._members.get_by_user_id(member_id)
        if row is None:
            raise NotFound(f"Member '{member_id}' not found.")
        return row

    @staticmethod
    def _require_feature(allowed: bool, feature_label: str) -> None:
        if not allowed:
            raise Forbidden(
                f"{feature_label} is not available on your plan. Upgrade to enable it.",
                code=FEATURE_NOT_AVAILABLE,
            )

    def _check_team_limit(self, rows: list[MembershipTable], entitlements: Entitlements) -> None:
        limit = entitlements.max_invited_users
        if limit is None:
            return
        size = count_team_size(rows)
        if size >= limit:
            logger.info("Team limit reached account=%s size=%d limit=%d", self._account_id, size, limit)
            raise Forbidden(
                f"Your plan allows {limit} team member(s). Upgrade your plan to add more.",
                code=TEAM_LIMIT_REACHED,
            )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _create_member(self, **fields: Any) -> MembershipTable:
        try:
            return await self._members.create(**fields)
        except IntegrityError as exc:
            await self._session.rollback()
            raise Conflict(f"'{fields.get('email')}' is already a member of this account.") from exc

    async def _best_effort_sync(self, account: AccountTable, action: str, *, prorate: bool = True) -> SyncResult:
        result = await self._sync.sync(account, action=action, prorate=prorate)
        if not result.ok:
            logger.warning(
                "Seat billing out of sync after %s for account=%s (%s); membership change kept",
                action,
                self._account_id,
                result.error_kind,
            )
        return result

    async def _send_invite(
        self,
        row: MembershipTable,
        account: AccountTable,
        *,
        reassigned_from: str | None = None,
    ) -> bool:
        if self._notifier is None or row.invite_token is None:
            return False
        return await self._notifier.send_invite(
            row.email,
            row.role,
            self._caller.name or self._caller.email,
            account.name,
            row.invite_token,
            reassigned_from=reassigned_from,
        )

    def _invite_expiry(self, now: datetime) -> datetime:
        return now + timedelta(days=self._settings.invite_expiry_days)

    # ------------------------------------------------------------------
    # Invite
    # ------------------------------------------------------------------

    async def invite(self, email: str, role: str) -> dict[str, Any]:
        """Invite *email* to the account and charge its seat.

        The new row is ``active`` when the address belongs to a known
        identity and ``pending`` otherwise.  Either way it is billable from
        this moment, so the ledger is synchronised before the row is
        committed.

        Parameters
        ----------
        email:
            Invitee address; trimmed and lower-cased.
        role:
            ``admin``, ``member`` or ``viewer``.

        Returns
        -------
        dict
            ``member``, ``seat_count`` and ``email_sent``.

        Raises
        ------
        Forbidden
            Caller is not owner/admin, the plan lacks team users
            (``FEATURE_NOT_AVAILABLE``) or the team is full
            (``TEAM_LIMIT_REACHED``).
        Conflict
            The address already has a live membership.
        PaymentRequired
            The seat charge was declined; the invite was rolled back.
        ExternalServiceError
            The ledger was unreachable or timed out; the invite was rolled
            back.
        """
        email = normalize_email(email)
        _validate_role(role)

        async with account_lock(self._session, self._account_id):
            account = await self._load_account()
            await self._require_manager()
            entitlements = self._entitlements.get(account)
            self._require_feature(entitlements.can_have_team_users, "Team members")

            existing = await self._members.get_live_by_email(email)
            if existing is not None:
                if existing.status == MembershipStatus.DISABLED.value:
                    raise Conflict(f"'{email}' is deactivated. Reactivate the member instead.")
                raise Conflict(f"'{email}' is already a member or has a pending invite.")

            rows = await self._members.list_all()
            self._check_team_limit(rows, entitlements)

            now = datetime.now(UTC)
            profile = await self._profiles.get_by_email(email)
            if profile is not None:
                row = await self._create_member(
                    email=email,
                    role=role,
                    status=MembershipStatus.ACTIVE.value,
                    user_id=profile.id,
                    invited_by=self._caller.user_id,
                    accepted_at=now,
                )
            else:
                row = await self._create_member(
                    email=email,
                    role=role,
                    status=MembershipStatus.PENDING.value,
                    invited_by=self._caller.user_id,
                    invite_token=_new_invite_token(),
                    invite_expires_at=self._invite_expiry(now),
                )

            result = await self._sync.sync(account, action=AuditAction.MEMBER_INVITED)
            if not result.ok:
                await self._roll_back_invite(account, row, result)

            await self._audit.log(
                AuditAction.MEMBER_INVITED,
                entity_type="membership",
                entity_id=row.id,
                email=email,
                role=role,
                status=row.status,
                seat_count=result.new_quantity,
            )
            await self._session.commit()

        logger.info("Invited %s to account=%s as %s (%s)", email, self._account_id, role, row.status)
        email_sent = await self._send_invite(row, account)
        return {"member": member_to_dict(row), "seat_count": result.new_quantity, "email_sent": email_sent}

    async def _roll_back_invite(self, account: AccountTable, row: MembershipTable, result: SyncResult) -> None:
        """Delete the uncommitted invite row and raise the mapped error."""
        member_id, email = row.id, row.email
        await self._members.delete_uncommitted(row)
        # Repairs a half-applied ledger change, such as a swap whose create failed.
        repair = await self._sync.sync(account, action=AuditAction.MEMBER_INVITE_ROLLED_BACK)
        await self._audit.log(
            AuditAction.MEMBER_INVITE_ROLLED_BACK,
            entity_type="membership",
            entity_id=member_id,
            email=email,
            error_kind=result.error_kind,
            ledger_repaired=repair.ok,
        )
        await self._session.commit()
        logger.warning(
            "Rolled back invite of %s for account=%s: seat charge failed (%s)",
            email,
            self._account_id,
            result.error_kind,
        )
        if result.error_kind == "declined":
            raise PaymentRequired("The seat charge was declined. Update your payment method and try again.")
        raise ExternalServiceError("The billing provider could not be reached. The invite was not created.")

    # ------------------------------------------------------------------
    # Accept / resend
    # ------------------------------------------------------------------

    async def accept(self, token: str) -> dict[str, Any]:
        """Accept a pending invite as the signed-in caller.

        The invite token determines the account, which need not be the
        account the caller's credential is scoped to.

        Raises
        ------
        NotFound
            The token is unknown or the invite is no longer pending.
        InvalidRequest
            The invite has expired.
        Forbidden
            The invite was addressed to a different email.
        """
        invite = await self._members.get_pending_by_token_any_account(token)
        if invite is None:
            raise NotFound("Invite not found or already used.")
        if invite.account_id != self._account_id:
            return await self._for_account(invite.account_id).accept(token)

        async with account_lock(self._session, self._account_id):
            account = await self._load_account()
            row = await self._members.get_pending_by_token_any_account(token)
            if row is None:
                raise NotFound("Invite not found or already used.")

            now = datetime.now(UTC)
            if row.invite_expires_at is not None and as_utc(row.invite_expires_at) <= now:
                raise InvalidRequest("This invite has expired. Ask an admin to resend it.")
            if normalize_email(self._caller.email) != row.email:
                raise Forbidden("This invite was sent to a different email address.")
            if await self._members.get_by_user_id(self._caller.user_id) is not None:
                raise Conflict("You are already a member of this account.")

            row.user_id = self._caller.user_id
            row.status = MembershipStatus.ACTIVE.value
            row.accepted_at = now
            row.invite_token = None
            row.invite_expires_at = None
            await self._session.flush()
            await self._profiles.upsert(self._caller.user_id, self._caller.email, self._caller.name)

            await self._audit.log(AuditAction.MEMBER_ACCEPTED, entity_type="membership", entity_id=row.id)
            result = await self._best_effort_sync(account, AuditAction.MEMBER_ACCEPTED)
            await self._session.commit()

        logger.info("User %s accepted invite to account=%s", self._caller.user_id, self._account_id)
        return {"member": member_to_dict(row), "seat_count": result.new_quantity, "account_id": self._account_id}

    async def resend_invite(self, member_id: str) -> dict[str, Any]:
        """Issue a fresh token for a pending invite and send it again."""
        async with account_lock(self._session, self._account_id):
            account = await self._load_account()
            await self._require_manager()
            row = await self._find_member(member_id)
            if row.status != MembershipStatus.PENDING.value:
                raise InvalidRequest("Only pending invites can be resent.")

            now = datetime.now(UTC)
            row.invite_token = _new_invite_token()
            row.invite_expires_at = self._invite_expiry(now)
            row.invited_at = now
            await self._session.flush()
            await self._audit.log(
                AuditAction.INVITE_RESENT,
                entity_type="membership",
                entity_id=row.id,
                email=row.email,
            )
            await self._session.commit()

        email_sent = await self._send_invite(row, account)
        return {"member": member_to_dict(row), "email_sent": email_sent}

    # ------------------------------------------------------------------
    # Deactivate / reactivate
    # ------------------------------------------------------------------

    async def deactivate(self, user_id: str, reassign_to: str | None = None) -> dict[str, Any]:
        """Disable an active member and hand over their open tasks.

        The seat stays billable until the end of the paid term
        (``seat_billing_ends_at``).  When the term end is unknown the seat is
        released immediately.

        Parameters
        ----------
        user_id:
            The member to disable.
        reassign_to:
            Active member who receives the open tasks.  ``None`` leaves
            them unassigned.

        Returns
        -------
        dict
            ``member``, ``seat_count``, ``seat_billing_ends_at``,
            ``tasks_reassigned`` and ``billing_synced``.
        """
        async with account_lock(self._session, self._account_id):
            account = await self._load_account()
            await self._require_manager()
            target = await self._require_target(user_id)
            if target.is_owner:
                raise InvalidRequest("The account owner cannot be deactivated.")
            if user_id == self._caller.user_id:
                raise InvalidRequest("You cannot deactivate yourself.")
            if target.status != MembershipStatus.ACTIVE.value:
                raise InvalidRequest(f"Only active members can be deactivated (member is {target.status}).")

            if reassign_to is not None:
                self._require_feature(self._entitlements.get(account).can_reassign_tasks, "Task reassignment")
                replacement = await self._members.get_by_user_id(reassign_to)
                if (
                    replacement is None
                    or replacement.id == target.id
                    or replacement.status != MembershipStatus.ACTIVE.value
                ):
                    raise NotFound(f"Replacement assignee '{reassign_to}' is not an active member.")

            # Tasks move before the status flip, in the same transaction.
            moved = await self._tasks.hand_over(user_id, reassign_to)

            ends_at = await self._periods.resolve(account)
            now = datetime.now(UTC)
            target.status = MembershipStatus.DISABLED.value
            target.disabled_at = now
            target.seat_billing_ends_at = ends_at
            await self._session.flush()

            await self._audit.log(
                AuditAction.MEMBER_DEACTIVATED,
                entity_type="membership",
                entity_id=target.id,
                user_id=user_id,
                reassigned_to=reassign_to,
                tasks_reassigned=moved,
                seat_billing_ends_at=_iso(ends_at),
            )
            result = await self._best_effort_sync(account, AuditAction.MEMBER_DEACTIVATED)
            await self._session.commit()

        logger.info("Deactivated user=%s account=%s billing_ends_at=%s", user_id, self._account_id, _iso(ends_at))
        return {
            "member": member_to_dict(target),
            "seat_count": result.new_quantity,
            "seat_billing_ends_at": _iso(ends_at),
            "tasks_reassigned": moved,
            "billing_synced": result.ok,
        }

    async def reactivate(self, user_id: str) -> dict[str, Any]:
        """Return a disabled member to ``active`` and clear the grace period."""
        async with account_lock(self._session, self._account_id):
            account = await self._load_account()
            await self._require_manager()
            target = await self._require_target(user_id)
            if target.status != MembershipStatus.DISABLED.value:
                raise InvalidRequest(f"Only deactivated members can be reactivated (member is {target.status}).")

            self._check_team_limit(await self._members.list_all(), self._entitlements.get(account))

            target.status = MembershipStatus.ACTIVE.value
            target.disabled_at = None
            target.seat_billing_ends_at = None
            await self._session.flush()

            await self._audit.log(AuditAction.MEMBER_REACTIVATED, entity_type="membership", entity_id=target.id)
            result = await self._best_effort_sync(account, AuditAction.MEMBER_REACTIVATED)
            await self._session.commit()

        return {"member": member_to_dict(target), "seat_count": result.new_quantity, "billing_synced": result.ok}

    # ------------------------------------------------------------------
    # Reassign
    # ------------------------------------------------------------------

    async def reassign(self, member_id: str, new_email: str) -> dict[str, Any]:
        """Hand a seat from one person to another.

        The old row becomes the ``reassigned`` tombstone and a new row is
        created for *new_email*, ``active`` for a known identity and
        ``pending`` otherwise.  One billable row is replaced by another, so
        the seat count is unchanged.

        Raises
        ------
        InvalidRequest
            The target is the owner or already reassigned.
        Conflict
            *new_email* already has a live membership, or the target is a
            disabled member whose paid term is over (reactivate first).
        """
        new_email = normalize_email(new_email)

        async with account_lock(self._session, self._account_id):
            account = await self._load_account()
            await self._require_manager()
            target = await self._find_member(member_id)
            if target.is_owner:
                raise InvalidRequest("The account owner's seat cannot be reassigned.")
            if target.status == MembershipStatus.REASSIGNED.value:
                raise InvalidRequest("This seat has already been reassigned.")
            if new_email == target.email:
                raise Conflict("The seat is already assigned to this email.")
            if await self._members.get_live_by_email(new_email) is not None:
                raise Conflict(f"'{new_email}' is already a member or has a pending invite.")

            now = datetime.now(UTC)
            rows = await self._members.list_all()
            if not is_billable(target, now):
                raise Conflict("This member's paid seat has ended. Reactivate them before reassigning the seat.")
            if target.status == MembershipStatus.DISABLED.value:
                # A disabled row holds no team place; its replacement will.
                self._check_team_limit(rows, self._entitlements.get(account))

            before = count_billable_seats(rows, now)
            tasks_unassigned = 0
            if target.user_id:
                tasks_unassigned = await self._tasks.hand_over(target.user_id, None)

            previous_email = target.email
            target.status = MembershipStatus.REASSIGNED.value
            target.invite_token = None
            target.invite_expires_at = None
            await self._session.flush()

            profile = await self._profiles.get_by_email(new_email)
            if profile is not None:
                replacement = await self._create_member(
                    email=new_email,
                    role=target.role,
                    status=MembershipStatus.ACTIVE.value,
                    user_id=profile.id,
                    invited_by=self._caller.user_id,
                    accepted_at=now,
                )
            else:
                replacement = await self._create_member(
                    email=new_email,
                    role=target.role,
                    status=MembershipStatus.PENDING.value,
                    invited_by=self._caller.user_id,
                    invite_token=_new_invite_token(),
                    invite_expires_at=self._invite_expiry(now),
                )
            target.reassigned_to_id = replacement.id
            await self._session.flush()

            after = count_billable_seats(await self._members.list_all(), now)
            if after != before:
                logger.error(
                    "Seat count changed by reassignment account=%s before=%d after=%d",
                    self._account_id,
                    before,
                    after,
                )

            await self._audit.log(
                AuditAction.MEMBER_REASSIGNED,
                entity_type="membership",
                entity_id=target.id,
                from_email=previous_email,
                to_email=new_email,
                new_member_id=replacement.id,
                tasks_unassigned=tasks_unassigned,
            )
            result = await self._best_effort_sync(account, AuditAction.MEMBER_REASSIGNED)
            await self._session.commit()

        email_sent = await self._send_invite(replacement, account, reassigned_from=previous_email)
        return {
            "previous_member": member_to_dict(target),
            "member": member_to_dict(replacement),
            "seat_count": result.new_quantity,
            "tasks_unassigned": tasks_unassigned,
            "email_sent": email_sent,
        }

    # ------------------------------------------------------------------
    # Roles and ownership
    # ------------------------------------------------------------------

    async def change_role(self, user_id: str, role: str) -> dict[str, Any]:
        """Change the role of an active or disabled member."""
        _validate_role(role)

        async with account_lock(self._session, self._account_id):
            account = await self._load_account()
            await self._require_manager()
            self._require_feature(self._entitlements.get(account).can_manage_roles, "Role management")
            target = await self._require_target(user_id)
            if target.is_owner:
                raise InvalidRequest("The account owner's role cannot be changed. Transfer ownership instead.")
            if target.status not in (MembershipStatus.ACTIVE.value, MembershipStatus.DISABLED.value):
                raise InvalidRequest(f"Cannot change the role of a {target.status} member.")

            previous_role = target.role
            target.role = role
            await self._session.flush()
            await self._audit.log(
                AuditAction.MEMBER_ROLE_CHANGED,
                entity_type="membership",
                entity_id=target.id,
                previous_role=previous_role,
                new_role=role,
            )
            await self._session.commit()

        return {"member": member_to_dict(target), "previous_role": previous_role}

    async def transfer_ownership(self, new_owner_user_id: str) -> dict[str, Any]:
        """Make an active admin the account owner; the old owner becomes an admin.

        The owner seat is never billable, so the two members swap billable
        status and the ledger is re-synchronised (best-effort).
        """
        async with account_lock(self._session, self._account_id):
            account = await self._load_account()
            current = await self._require_member()
            if not current.is_owner:
                raise Forbidden("Only the account owner can transfer ownership.")
            self._require_feature(self._entitlements.get(account).can_transfer_ownership, "Ownership transfer")
            target = await self._require_target(new_owner_user_id)
            if target.id == current.id:
                raise InvalidRequest("You already own this account.")
            if target.status != MembershipStatus.ACTIVE.value or target.role != MemberRole.ADMIN.value:
                raise InvalidRequest("Ownership can only be transferred to an active admin.")

            current.is_owner = False
            current.role = MemberRole.ADMIN.value
            await self._session.flush()
            target.is_owner = True
            target.role = MemberRole.OWNER.value
            account.owner_user_id = new_owner_user_id
            await self._session.flush()

            await self._audit.log(
                AuditAction.OWNERSHIP_TRANSFERRED,
                entity_type="account",
                entity_id=self._account_id,
                previous_owner=current.user_id,
                new_owner=new_owner_user_id,
            )
            result = await self._best_effort_sync(account, AuditAction.OWNERSHIP_TRANSFERRED)
            await self._session.commit()

        return {
            "previous_owner": member_to_dict(current),
            "owner": member_to_dict(target),
            "seat_count": result.new_quantity,
        }

    # ------------------------------------------------------------------
    # Billing
    # ------------------------------------------------------------------

    async def force_resync(self) -> dict[str, Any]:
        """Recompute the seat count and re-apply it to the ledger.

        Raises
        ------
        ExternalServiceError
            The ledger call failed.  The attempt is still audited.
        """
        async with account_lock(self._session, self._account_id):
            account = await self._load_account()
            await self._require_manager()
            result = await self._sync.sync(account, action="force_resync")
            await self._session.commit()

        if not result.ok:
            raise ExternalServiceError(f"Seat billing resync failed ({result.error_kind}): {result.error_message}")
        return result.to_dict()

    async def preview_billing(self) -> dict[str, Any]:
        """Project the seat cost from the current billable count."""
        account = await self._load_account()
        await self._require_member()
        seats = count_billable_seats(await self._members.list_all())
        annual = account.billing_interval == "year"
        price = self._settings.seat_price_annual if annual else self._settings.seat_price_monthly
        return {
            "billable_seats": seats,
            "billing_interval": "year" if annual else "month",
            "price_per_seat": price,
            "estimated_cost": round(seats * price, 2),
            "cost_label": "per year" if annual else "per month",
            "subscription_configured": bool(account.stripe_subscription_id),
        }

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def list_members(self) -> dict[str, Any]:
        """Return the team with the live seat count and team limit.

        Reassigned tombstones are shown only while their replacement is
        still pending, so the UI can show who the seat came from.
        """
        account = await self._load_account()
        await self._require_member()
        rows = await self._members.list_ordered()
        by_id = {row.id: row for row in rows}
        now = datetime.now(UTC)

        visible = []
        for row in rows:
            if row.status == MembershipStatus.REASSIGNED.value:
                replacement = by_id.get(row.reassigned_to_id or "")
                if replacement is None or replacement.status != MembershipStatus.PENDING.value:
                    continue
            visible.append(member_to_dict(row, now))

        entitlements = self._entitlements.get(account)
        return {
            "members": visible,
            "total": len(visible),
            "seat_count": count_billable_seats(rows, now),
            "team_size": count_team_size(rows),
            "team_limit": entitlements.max_invited_users,
            "plan_tier": entitlements.plan_tier.value,
        }

    async def count_assigned_tasks(self, user_id: str) -> dict[str, Any]:
        """Count the open tasks currently assigned to *user_id*."""
        await self._require_member()
        count = await self._tasks.count_assigned(user_id)
        return {"user_id": user_id, "open_tasks": count}
