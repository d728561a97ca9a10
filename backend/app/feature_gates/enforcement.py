"""Helpers for enforcing tier entitlements on API and service layers."""
from __future__ import annotations

from typing import Iterable, Mapping, Optional

from ..entitlements import TierKey, get_tier_definition, implied_tiers
from .exceptions import FeatureGateError


def require_entitlement(
    feature_flags: Mapping[str, bool],
    flag: str,
    *,
    error_code: str = "entitlement_required",
    message: Optional[str] = None,
) -> None:
    """Ensure a feature flag is enabled before proceeding.

    Parameters
    ----------
    feature_flags:
        Flags derived from the caller's active tiers, e.g. ``charts.enabled``.
    flag:
        The canonical feature flag that must evaluate truthy.
    error_code:
        Override for the surfaced error code. Defaults to
        ``"entitlement_required"``.
    message:
        Human-friendly explanation; a message naming the flag is used when
        omitted.
    """

    if not feature_flags.get(flag):
        raise FeatureGateError.missing_flag(flag, code=error_code, message=message)


def tier_satisfied(active_tiers: Iterable[TierKey], tier: TierKey) -> bool:
    """Whether ``tier`` is active directly or through a tier that implies it."""

    return any(active == tier or tier in implied_tiers(active) for active in active_tiers)


def require_tier(active_tiers: Iterable[TierKey], tier: TierKey) -> None:
    if not tier_satisfied(active_tiers, tier):
        raise FeatureGateError.missing_tier(tier.value, get_tier_definition(tier).display_name)
