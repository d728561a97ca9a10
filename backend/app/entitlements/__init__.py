"""Entitlements domain models and services."""

from .catalog import (
    TIER_CATALOG,
    TierDefinition,
    bundle_for_tiers,
    describe_entitlements,
    get_tier_definition,
    implied_tiers,
)
from .cache import EntitlementCache, InMemoryEntitlementCache
from .models import (
    BillingTerm,
    Entitlement,
    EntitlementSet,
    FeatureBundle,
    TierKey,
)
from .store import EntitlementRepository, EntitlementStore

__all__ = [
    "TIER_CATALOG",
    "TierDefinition",
    "bundle_for_tiers",
    "describe_entitlements",
    "get_tier_definition",
    "implied_tiers",
    "EntitlementCache",
    "InMemoryEntitlementCache",
    "BillingTerm",
    "Entitlement",
    "EntitlementSet",
    "FeatureBundle",
    "TierKey",
    "EntitlementRepository",
    "EntitlementStore",
]
