from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Protocol


class FeatureKey(StrEnum):
    DIVIDEND_TRACKING = "dividend_tracking"
    BENCHMARKING = "benchmarking"
    TAX_REPORTS = "tax_reports"


@dataclass(frozen=True)
class AccessDecision:
    allowed: bool
    tier: str
    required_tier: str


class FeatureLockedError(Exception):
    def __init__(self, *, feature: str, tier: str, required_tier: str) -> None:
        self.feature = feature
        self.tier = tier
        self.required_tier = required_tier
        super().__init__(f"This feature requires a {required_tier} subscription")


class AccessValidator(Protocol):
    def validate_access(self, user_id: str, feature_key: str) -> AccessDecision: ...


def require_feature(validator: AccessValidator, user_id: str, feature_key: str) -> None:
    decision = validator.validate_access(user_id, feature_key)
    if not decision.allowed:
        raise FeatureLockedError(feature=feature_key, tier=decision.tier, required_tier=decision.required_tier)
