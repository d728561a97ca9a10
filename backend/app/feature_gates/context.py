"""Read-side view of a user's entitlements for feature gating."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List

from ..entitlements import EntitlementSet, TierKey, bundle_for_tiers, describe_entitlements
from .enforcement import require_entitlement, require_tier, tier_satisfied


@dataclass(frozen=True)
class EntitlementContext:
    """Facade exposing gating helpers for one user's entitlements at ``now``."""

    entitlements: EntitlementSet
    now: datetime

    @property
    def active_tiers(self) -> List[TierKey]:
        return [entitlement.tier_id for entitlement in self.entitlements.active(self.now)]

    @property
    def feature_flags(self) -> Dict[str, bool]:
        return bundle_for_tiers(self.active_tiers).to_flags()

    @property
    def summary(self) -> str:
        return describe_entitlements(self.entitlements, self.now)

    def has(self, flag: str) -> bool:
        return bool(self.feature_flags.get(flag))

    def require(self, flag: str, *, error_code: str = "entitlement_required") -> None:
        """Ensure an entitlement flag is present and enabled."""

        require_entitlement(self.feature_flags, flag, error_code=error_code)

    def has_tier(self, tier: TierKey) -> bool:
        return tier_satisfied(self.active_tiers, tier)

    def require_tier(self, tier: TierKey) -> None:
        require_tier(self.active_tiers, tier)
