"""Domain models for subscription tiers and entitlements."""
from __future__ import annotations

from dataclasses import dataclass, fields
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class TierKey(str, Enum):
    """Canonical identifiers for subscription tiers."""

    ADS_FREE = "ads_free"
    BASIC = "basic"
    PRO = "pro"


class BillingTerm(str, Enum):
    """Supported billing terms."""

    MONTHLY = "monthly"
    ANNUAL = "annual"

    @property
    def duration(self) -> timedelta:
        """Coverage granted by one purchase of this term."""

        return timedelta(days=365) if self is BillingTerm.ANNUAL else timedelta(days=30)


@dataclass(frozen=True)
class FeatureBundle:
    """Represents a normalized set of dashboard feature flags."""

    ads_disabled: bool = False
    charts_enabled: bool = False
    air_quality_enabled: bool = False
    alerts_enabled: bool = False
    premium_maps_enabled: bool = False

    def merge(self, other: "FeatureBundle") -> "FeatureBundle":
        """Combine two bundles; a feature granted by either side stays granted."""

        if other is self:
            return self
        data = {
            field.name: getattr(self, field.name) or getattr(other, field.name)
            for field in fields(self)
        }
        return FeatureBundle(**data)

    def to_flags(self) -> Dict[str, bool]:
        """Serialize bundle to flattened flag keys."""

        return {
            "ads.disabled": self.ads_disabled,
            "charts.enabled": self.charts_enabled,
            "air_quality.enabled": self.air_quality_enabled,
            "alerts.enabled": self.alerts_enabled,
            "maps.premium": self.premium_maps_enabled,
        }


def _ensure_aware(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


class Entitlement(BaseModel):
    """A tier grant for one user with its expiry timestamp."""

    tier_id: TierKey = Field(alias="tierId")
    term: BillingTerm
    expires_at: datetime = Field(alias="expiresAt")

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @field_validator("expires_at")
    @classmethod
    def _aware_expiry(cls, value: datetime) -> datetime:
        return _ensure_aware(value)

    def is_active(self, now: datetime) -> bool:
        return self.expires_at > _ensure_aware(now)


class EntitlementSet(BaseModel):
    """All entitlements held by one user, keyed by tier.

    Expired entries are kept until purged; they are inert for gating.
    """

    user_id: str
    entitlements: Dict[TierKey, Entitlement] = Field(default_factory=dict)

    model_config = ConfigDict(frozen=True)

    def get(self, tier_id: TierKey) -> Optional[Entitlement]:
        return self.entitlements.get(tier_id)

    def is_active(self, tier_id: TierKey, now: datetime) -> bool:
        entitlement = self.entitlements.get(tier_id)
        return entitlement is not None and entitlement.is_active(now)

    def active(self, now: datetime) -> List[Entitlement]:
        """Return active entitlements ordered by soonest expiry."""

        return sorted(
            (entitlement for entitlement in self.entitlements.values() if entitlement.is_active(now)),
            key=lambda entitlement: entitlement.expires_at,
        )

    def with_entitlements(self, updates: Dict[TierKey, Entitlement]) -> "EntitlementSet":
        return EntitlementSet(user_id=self.user_id, entitlements={**self.entitlements, **updates})

