"""Static catalog definitions for subscription tiers."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Dict, FrozenSet, Iterable, Tuple

from .models import BillingTerm, EntitlementSet, FeatureBundle, TierKey


@dataclass(frozen=True)
class TierDefinition:
    """Describes a subscription tier, its prices and the tiers it covers."""

    key: TierKey
    display_name: str
    monthly_price_usd: float
    annual_price_usd: float
    bundle: FeatureBundle
    features: Tuple[str, ...] = ()
    implies: Tuple[TierKey, ...] = ()

    def price_for(self, term: BillingTerm) -> float:
        if term == BillingTerm.ANNUAL:
            return self.annual_price_usd
        return self.monthly_price_usd


ADS_FREE_BUNDLE = FeatureBundle(ads_disabled=True)

BASIC_BUNDLE = FeatureBundle(
    charts_enabled=True,
    air_quality_enabled=True,
)

PRO_BUNDLE = FeatureBundle(
    charts_enabled=True,
    air_quality_enabled=True,
    alerts_enabled=True,
    premium_maps_enabled=True,
)

TIER_CATALOG: Dict[TierKey, TierDefinition] = {
    TierKey.ADS_FREE: TierDefinition(
        key=TierKey.ADS_FREE,
        display_name="Ads Free",
        monthly_price_usd=1,
        annual_price_usd=10,
        bundle=ADS_FREE_BUNDLE,
        features=("No ads", "Clean experience"),
    ),
    TierKey.BASIC: TierDefinition(
        key=TierKey.BASIC,
        display_name="Basic",
        monthly_price_usd=5,
        annual_price_usd=50,
        bundle=BASIC_BUNDLE,
        features=("Charts", "Air quality"),
    ),
    TierKey.PRO: TierDefinition(
        key=TierKey.PRO,
        display_name="Pro",
        monthly_price_usd=10,
        annual_price_usd=100,
        bundle=PRO_BUNDLE,
        features=("Alerts", "Premium maps"),
        implies=(TierKey.BASIC,),
    ),
}


def get_tier_definition(tier: TierKey) -> TierDefinition:
    """Return a tier definition, raising if unsupported."""

    try:
        return TIER_CATALOG[tier]
    except KeyError as exc:  # pragma: no cover - guarded by static catalog
        raise KeyError(f"Unknown tier: {tier}") from exc


def _implication_closure(catalog: Dict[TierKey, TierDefinition]) -> Dict[TierKey, FrozenSet[TierKey]]:
    closure: Dict[TierKey, FrozenSet[TierKey]] = {}
    for root in catalog:
        seen = set()
        pending = list(catalog[root].implies)
        while pending:
            tier = pending.pop()
            if tier == root:
                raise ValueError(f"Tier implication cycle through {root.value}")
            if tier in seen:
                continue
            seen.add(tier)
            pending.extend(catalog[tier].implies)
        closure[root] = frozenset(seen)
    return closure


_IMPLIED_TIERS = _implication_closure(TIER_CATALOG)


def implied_tiers(tier: TierKey) -> FrozenSet[TierKey]:
    """Tiers strictly covered by ``tier`` (transitive, excluding itself)."""

    return _IMPLIED_TIERS[tier]


def bundle_for_tiers(tiers: Iterable[TierKey]) -> FeatureBundle:
    bundle = FeatureBundle()
    for tier in tiers:
        bundle = bundle.merge(get_tier_definition(tier).bundle)
    return bundle


def describe_entitlements(entitlement_set: EntitlementSet, now: datetime) -> str:
    """Summarize active tiers, e.g. ``Basic active until 2026-11-17``."""

    parts = [
        f"{get_tier_definition(entitlement.tier_id).display_name} active until "
        f"{entitlement.expires_at.date().isoformat()}"
        for entitlement in entitlement_set.active(now)
    ]
    return " | ".join(parts) if parts else "No active plan"
