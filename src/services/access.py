from __future__ import annotations

from typing import Mapping

from domain.access import AccessDecision

TIER_ORDER = ("FREE", "AUTHENTICATED")


class StaticAccessPolicy:
    """Tier lookup from static configuration.

    Entitlement decisions belong to the subscription system; this policy
    only answers with whatever tiers it was configured with.
    """

    def __init__(
        self,
        *,
        default_tier: str,
        feature_tiers: Mapping[str, str],
        user_tiers: Mapping[str, str] | None = None,
    ) -> None:
        self.default_tier = default_tier
        self.feature_tiers = dict(feature_tiers)
        self.user_tiers = dict(user_tiers or {})

    def validate_access(self, user_id: str, feature_key: str) -> AccessDecision:
        tier = self.user_tiers.get(user_id, self.default_tier)
        required_tier = self.feature_tiers.get(feature_key, TIER_ORDER[0])
        return AccessDecision(
            allowed=_tier_rank(tier) >= _tier_rank(required_tier),
            tier=tier,
            required_tier=required_tier,
        )


def _tier_rank(tier: str) -> int:
    try:
        return TIER_ORDER.index(tier.upper())
    except ValueError:
        return -1


__all__ = ["StaticAccessPolicy", "TIER_ORDER"]
