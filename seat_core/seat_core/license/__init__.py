"""Plan tiers and the team entitlements each tier grants."""

from seat_core.license.feature_flags import (
    Feature,
    PlanTier,
    get_max_invited_users,
    get_required_tier,
    is_feature_enabled,
)

__all__ = [
    "Feature",
    "PlanTier",
    "get_max_invited_users",
    "get_required_tier",
    "is_feature_enabled",
]
