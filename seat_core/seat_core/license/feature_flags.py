"""Feature flags and tier-based entitlement gating.

Four plan tiers control access to team features:

* **Starter** -- Single-user accounts; no invited team members.
* **Growth** -- Adds team members with a fixed set of roles.
* **Professional** -- Adds role management and a larger team.
* **Enterprise** -- Unlimited team size.
"""

from __future__ import annotations

from enum import Enum


class PlanTier(str, Enum):
    """Subscription plan tier determining feature access."""

    STARTER = "starter"
    GROWTH = "growth"
    PROFESSIONAL = "professional"
    ENTERPRISE = "enterprise"

    @classmethod
    def parse(cls, raw: str | None) -> PlanTier:
        """Map a stored tier string to a tier, falling back to Starter."""
        try:
            return cls((raw or "").strip().lower())
        except ValueError:
            return cls.STARTER


class Feature(str, Enum):
    """Team features that can be gated by plan tier."""

    TEAM_USERS = "team_users"
    ROLE_MANAGEMENT = "role_management"
    TASK_REASSIGNMENT = "task_reassignment"
    OWNERSHIP_TRANSFER = "ownership_transfer"


# Features available at each tier.  Higher tiers include all lower-tier
# features automatically.

_STARTER_FEATURES: frozenset[Feature] = frozenset()

_GROWTH_FEATURES: frozenset[Feature] = _STARTER_FEATURES | frozenset(
    {
        Feature.TEAM_USERS,
        Feature.TASK_REASSIGNMENT,
        Feature.OWNERSHIP_TRANSFER,
    }
)

_PROFESSIONAL_FEATURES: frozenset[Feature] = _GROWTH_FEATURES | frozenset(
    {
        Feature.ROLE_MANAGEMENT,
    }
)

_ENTERPRISE_FEATURES: frozenset[Feature] = _PROFESSIONAL_FEATURES

TIER_FEATURES: dict[PlanTier, frozenset[Feature]] = {
    PlanTier.STARTER: _STARTER_FEATURES,
    PlanTier.GROWTH: _GROWTH_FEATURES,
    PlanTier.PROFESSIONAL: _PROFESSIONAL_FEATURES,
    PlanTier.ENTERPRISE: _ENTERPRISE_FEATURES,
}

# Team size cap per tier (non-owner pending + active members).
# ``None`` means unlimited.
_TIER_TEAM_LIMITS: dict[PlanTier, int | None] = {
    PlanTier.STARTER: 0,
    PlanTier.GROWTH: 5,
    PlanTier.PROFESSIONAL: 25,
    PlanTier.ENTERPRISE: None,
}


def is_feature_enabled(tier: PlanTier, feature: Feature) -> bool:
    """Check whether a feature is enabled for the given plan tier.

    Parameters
    ----------
    tier:
        The account's plan tier.
    feature:
        The feature to check.

    Returns
    -------
    bool
        ``True`` if the feature is included in the tier's entitlements.
    """
    return feature in TIER_FEATURES.get(tier, _STARTER_FEATURES)


def get_max_invited_users(tier: PlanTier) -> int | None:
    """Return the default team size cap for *tier* (``None`` = unlimited)."""
    return _TIER_TEAM_LIMITS.get(tier, 0)


def get_required_tier(feature: Feature) -> PlanTier:
    """Return the minimum tier required for a feature.

    Parameters
    ----------
    feature:
        The feature to look up.

    Returns
    -------
    PlanTier
        The lowest tier that includes the feature.
    """
    for tier in (PlanTier.STARTER, PlanTier.GROWTH, PlanTier.PROFESSIONAL, PlanTier.ENTERPRISE):
        if feature in TIER_FEATURES[tier]:
            return tier
    return PlanTier.ENTERPRISE
