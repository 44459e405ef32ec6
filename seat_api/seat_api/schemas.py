"""Pydantic request and response models for the team API."""

from __future__ import annotations

from pydantic import BaseModel, Field

_ASSIGNABLE_ROLE_PATTERN = "^(viewer|member|admin)$"
_EMAIL_PATTERN = r"^\s*[^@\s]+@[^@\s]+\.[^@\s]+\s*$"


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


class InviteMemberRequest(BaseModel):
    """Request body for inviting a new team member."""

    email: str = Field(
        ...,
        min_length=3,
        max_length=320,
        pattern=_EMAIL_PATTERN,
        description="Email address of the invitee.",
    )
    role: str = Field(
        default="member",
        pattern=_ASSIGNABLE_ROLE_PATTERN,
        description="Role to assign to the new member.",
    )


class AcceptInviteRequest(BaseModel):
    """Request body for accepting an invite."""

    token: str = Field(..., min_length=16, max_length=128, description="Invite token from the email link.")


class DeactivateMemberRequest(BaseModel):
    """Request body for deactivating a member."""

    reassign_to: str | None = Field(
        default=None,
        max_length=64,
        description="User id of the active member who takes over open tasks.  Omit to unassign them.",
    )


class ReassignSeatRequest(BaseModel):
    """Request body for handing a seat to a different person."""

    new_email: str = Field(
        ...,
        min_length=3,
        max_length=320,
        pattern=_EMAIL_PATTERN,
        description="Email address of the new seat holder.",
    )


class UpdateRoleRequest(BaseModel):
    """Request body for changing a team member's role."""

    role: str = Field(
        ...,
        pattern=_ASSIGNABLE_ROLE_PATTERN,
        description="New role for the team member.",
    )


class TransferOwnershipRequest(BaseModel):
    """Request body for transferring account ownership."""

    new_owner_user_id: str = Field(..., min_length=1, max_length=64)


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------


class TeamMemberResponse(BaseModel):
    """A single membership row."""

    id: str
    user_id: str | None = None
    email: str
    role: str
    status: str
    is_owner: bool
    billable: bool
    invited_at: str | None = None
    accepted_at: str | None = None
    disabled_at: str | None = None
    seat_billing_ends_at: str | None = None
    invite_expires_at: str | None = None
    reassigned_to_id: str | None = None


class TeamMembersResponse(BaseModel):
    """Team list with live seat usage."""

    members: list[TeamMemberResponse]
    total: int
    seat_count: int
    team_size: int
    team_limit: int | None = None
    plan_tier: str


class InviteMemberResponse(BaseModel):
    member: TeamMemberResponse
    seat_count: int
    email_sent: bool


class AcceptInviteResponse(BaseModel):
    member: TeamMemberResponse
    seat_count: int
    account_id: str


class ResendInviteResponse(BaseModel):
    member: TeamMemberResponse
    email_sent: bool


class DeactivateMemberResponse(BaseModel):
    """Result of a deactivation.

    ``seat_billing_ends_at`` is ``null`` when the billing term end was
    unknown and the seat was released immediately.
    """

    member: TeamMemberResponse
    seat_count: int
    seat_billing_ends_at: str | None = None
    tasks_reassigned: int
    billing_synced: bool


class ReactivateMemberResponse(BaseModel):
    member: TeamMemberResponse
    seat_count: int
    billing_synced: bool


class ReassignSeatResponse(BaseModel):
    previous_member: TeamMemberResponse
    member: TeamMemberResponse
    seat_count: int
    tasks_unassigned: int
    email_sent: bool


class UpdateRoleResponse(BaseModel):
    member: TeamMemberResponse
    previous_role: str


class TransferOwnershipResponse(BaseModel):
    previous_owner: TeamMemberResponse
    owner: TeamMemberResponse
    seat_count: int


class AssignedTasksResponse(BaseModel):
    user_id: str
    open_tasks: int


class SeatSyncResponse(BaseModel):
    """Outcome of a manual seat billing resync."""

    account_id: str
    subscription_id: str | None = None
    previous_quantity: int | None = None
    new_quantity: int
    billing_interval: str
    operation: str
    ok: bool
    error_kind: str | None = None
    error_message: str | None = None


class BillingPreviewResponse(BaseModel):
    billable_seats: int
    billing_interval: str
    price_per_seat: float
    estimated_cost: float
    cost_label: str
    subscription_configured: bool


class HealthResponse(BaseModel):
    status: str
    version: str
    db: str
