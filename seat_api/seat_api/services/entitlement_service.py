"""Plan entitlement lookup for team features."""

from __future__ import annotations

from dataclasses import dataclass

from seat_core.license import Feature, PlanTier, get_max_invited_users, is_feature_enabled
from seat_core.state.tables import AccountTable


@dataclass(frozen=True)
class Entitlements:
    """Team-related limits and permissions of an account's plan."""

    plan_tier: PlanTier
    can_have_team_users: bool
    can_manage_roles: bool
    can_reassign_tasks: bool
    can_transfer_ownership: bool
    max_invited_users: int | None


class FeatureEntitlementService:
    """Resolve :class:`Entitlements` from an account's billing profile.

    ``accounts.max_invited_users`` overrides the tier default when set, which
    is how custom contracts raise (or lower) the team limit.
    """

    def get(self, account: AccountTable) -> Entitlements:
        tier = PlanTier.parse(account.plan_tier)
        limit = account.max_invited_users
        if limit is None:
            limit = get_max_invited_users(tier)
        return Entitlements(
            plan_tier=tier,
            can_have_team_users=is_feature_enabled(tier, Feature.TEAM_USERS),
            can_manage_roles=is_feature_enabled(tier, Feature.ROLE_MANAGEMENT),
            can_reassign_tasks=is_feature_enabled(tier, Feature.TASK_REASSIGNMENT),
            can_transfer_ownership=is_feature_enabled(tier, Feature.OWNERSHIP_TRANSFER),
            max_invited_users=limit,
        )
