"""Team membership and seat billing endpoints.

Mutations require the ``manage:team`` permission and the ``team_users`` plan
gate; role changes additionally need ``manage:roles``.  Listing and task
counts are available to any authenticated member of the account.  The
membership service re-checks every caller against the membership store.

Errors are raised as :class:`TeamError` subclasses and rendered by the
application-level handler, so endpoints do not catch them.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends
from seat_core.license import Feature

from seat_api.dependencies import (
    AccountDep,
    CallerDep,
    LedgerDep,
    NotifierDep,
    PublicSessionDep,
    SessionDep,
    SettingsDep,
    require_feature,
)
from seat_api.middleware.rbac import Permission, Role, require_permission
from seat_api.schemas import (
    AcceptInviteRequest,
    AcceptInviteResponse,
    AssignedTasksResponse,
    BillingPreviewResponse,
    DeactivateMemberRequest,
    DeactivateMemberResponse,
    InviteMemberRequest,
    InviteMemberResponse,
    ReactivateMemberResponse,
    ReassignSeatRequest,
    ReassignSeatResponse,
    ResendInviteResponse,
    SeatSyncResponse,
    TeamMembersResponse,
    TransferOwnershipRequest,
    TransferOwnershipResponse,
    UpdateRoleRequest,
    UpdateRoleResponse,
)
from seat_api.services.membership_service import MembershipService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/team", tags=["team"])


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


@router.get("/members", response_model=TeamMembersResponse)
async def list_members(
    session: SessionDep,
    settings: SettingsDep,
    account_id: AccountDep,
    caller: CallerDep,
    _role: Role = Depends(require_permission(Permission.READ_TEAM)),
) -> dict[str, Any]:
    """List the team with the live billable seat count and team limit."""
    service = MembershipService(session, settings, account_id=account_id, caller=caller)
    return await service.list_members()


@router.get("/members/{user_id}/assigned-tasks", response_model=AssignedTasksResponse)
async def count_assigned_tasks(
    user_id: str,
    session: SessionDep,
    settings: SettingsDep,
    account_id: AccountDep,
    caller: CallerDep,
    _role: Role = Depends(require_permission(Permission.READ_TEAM)),
) -> dict[str, Any]:
    """Count a member's open tasks, e.g. before deciding on a replacement."""
    service = MembershipService(session, settings, account_id=account_id, caller=caller)
    return await service.count_assigned_tasks(user_id)


@router.get("/billing/preview", response_model=BillingPreviewResponse)
async def preview_billing(
    session: SessionDep,
    settings: SettingsDep,
    account_id: AccountDep,
    caller: CallerDep,
    _role: Role = Depends(require_permission(Permission.READ_TEAM)),
) -> dict[str, Any]:
    """Project the seat cost at the current billable seat count."""
    service = MembershipService(session, settings, account_id=account_id, caller=caller)
    return await service.preview_billing()


# ---------------------------------------------------------------------------
# Invites
# ---------------------------------------------------------------------------


@router.post("/invite", response_model=InviteMemberResponse, status_code=201)
async def invite_member(
    body: InviteMemberRequest,
    session: SessionDep,
    settings: SettingsDep,
    account_id: AccountDep,
    caller: CallerDep,
    ledger: LedgerDep,
    notifier: NotifierDep,
    _role: Role = Depends(require_permission(Permission.MANAGE_TEAM)),
    _gate: None = Depends(require_feature(Feature.TEAM_USERS)),
) -> dict[str, Any]:
    """Invite a new team member and charge the seat.

    Returns 402 when the charge is declined and 502 when the billing
    provider is unreachable; in both cases no member is created.
    """
    service = MembershipService(
        session, settings, account_id=account_id, caller=caller, ledger=ledger, notifier=notifier
    )
    return await service.invite(body.email, body.role)


@router.post("/invites/accept", response_model=AcceptInviteResponse)
async def accept_invite(
    body: AcceptInviteRequest,
    session: PublicSessionDep,
    settings: SettingsDep,
    caller: CallerDep,
    ledger: LedgerDep,
) -> dict[str, Any]:
    """Accept an invite as the signed-in user.

    The invite token decides the account, so no account-scoped session or
    role is required.
    """
    service = MembershipService(session, settings, account_id=caller.account_id, caller=caller, ledger=ledger)
    return await service.accept(body.token)


@router.post("/members/{member_id}/resend", response_model=ResendInviteResponse)
async def resend_invite(
    member_id: str,
    session: SessionDep,
    settings: SettingsDep,
    account_id: AccountDep,
    caller: CallerDep,
    notifier: NotifierDep,
    _role: Role = Depends(require_permission(Permission.MANAGE_TEAM)),
) -> dict[str, Any]:
    """Issue a new token for a pending invite and send it again."""
    service = MembershipService(session, settings, account_id=account_id, caller=caller, notifier=notifier)
    return await service.resend_invite(member_id)


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


@router.post("/members/{user_id}/deactivate", response_model=DeactivateMemberResponse)
async def deactivate_member(
    user_id: str,
    session: SessionDep,
    settings: SettingsDep,
    account_id: AccountDep,
    caller: CallerDep,
    ledger: LedgerDep,
    body: DeactivateMemberRequest | None = None,
    _role: Role = Depends(require_permission(Permission.MANAGE_TEAM)),
) -> dict[str, Any]:
    """Deactivate a member; their seat stays billable until the paid term ends."""
    service = MembershipService(session, settings, account_id=account_id, caller=caller, ledger=ledger)
    reassign_to = body.reassign_to if body is not None else None
    return await service.deactivate(user_id, reassign_to=reassign_to)


@router.post("/members/{user_id}/reactivate", response_model=ReactivateMemberResponse)
async def reactivate_member(
    user_id: str,
    session: SessionDep,
    settings: SettingsDep,
    account_id: AccountDep,
    caller: CallerDep,
    ledger: LedgerDep,
    _role: Role = Depends(require_permission(Permission.MANAGE_TEAM)),
    _gate: None = Depends(require_feature(Feature.TEAM_USERS)),
) -> dict[str, Any]:
    """Reactivate a deactivated member."""
    service = MembershipService(session, settings, account_id=account_id, caller=caller, ledger=ledger)
    return await service.reactivate(user_id)


@router.post("/members/{member_id}/reassign", response_model=ReassignSeatResponse)
async def reassign_seat(
    member_id: str,
    body: ReassignSeatRequest,
    session: SessionDep,
    settings: SettingsDep,
    account_id: AccountDep,
    caller: CallerDep,
    ledger: LedgerDep,
    notifier: NotifierDep,
    _role: Role = Depends(require_permission(Permission.MANAGE_TEAM)),
    _gate: None = Depends(require_feature(Feature.TEAM_USERS)),
) -> dict[str, Any]:
    """Hand a seat to a different person without changing the seat count."""
    service = MembershipService(
        session, settings, account_id=account_id, caller=caller, ledger=ledger, notifier=notifier
    )
    return await service.reassign(member_id, body.new_email)


@router.patch("/members/{user_id}/role", response_model=UpdateRoleResponse)
async def update_member_role(
    user_id: str,
    body: UpdateRoleRequest,
    session: SessionDep,
    settings: SettingsDep,
    account_id: AccountDep,
    caller: CallerDep,
    _role: Role = Depends(require_permission(Permission.MANAGE_ROLES)),
    _gate: None = Depends(require_feature(Feature.ROLE_MANAGEMENT)),
) -> dict[str, Any]:
    """Change a member's role.  Requires the role management plan feature."""
    service = MembershipService(session, settings, account_id=account_id, caller=caller)
    return await service.change_role(user_id, body.role)


@router.post("/transfer-ownership", response_model=TransferOwnershipResponse)
async def transfer_ownership(
    body: TransferOwnershipRequest,
    session: SessionDep,
    settings: SettingsDep,
    account_id: AccountDep,
    caller: CallerDep,
    ledger: LedgerDep,
    _role: Role = Depends(require_permission(Permission.TRANSFER_OWNERSHIP)),
) -> dict[str, Any]:
    """Make an active admin the account owner."""
    service = MembershipService(session, settings, account_id=account_id, caller=caller, ledger=ledger)
    return await service.transfer_ownership(body.new_owner_user_id)


# ---------------------------------------------------------------------------
# Billing repair
# ---------------------------------------------------------------------------


@router.post("/billing/resync", response_model=SeatSyncResponse)
async def resync_billing(
    session: SessionDep,
    settings: SettingsDep,
    account_id: AccountDep,
    caller: CallerDep,
    ledger: LedgerDep,
    _role: Role = Depends(require_permission(Permission.RESYNC_BILLING)),
) -> dict[str, Any]:
    """Recompute the seat count and re-apply it to the subscription."""
    service = MembershipService(session, settings, account_id=account_id, caller=caller, ledger=ledger)
    result = await service.force_resync()
    logger.info("Manual seat resync for account=%s by %s: %s", account_id, caller.user_id, result["operation"])
    return result
