from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from backend.app.entitlements import BillingTerm, Entitlement, EntitlementSet, TierKey
from backend.app.feature_gates import (
    EntitlementContext,
    FeatureGateError,
    require_entitlement,
    require_tier,
)

NOW = datetime(2026, 7, 1, tzinfo=timezone.utc)


@pytest.fixture
def pro_context() -> EntitlementContext:
    entitlements = EntitlementSet(
        user_id="user-1",
        entitlements={
            TierKey.PRO: Entitlement(tier_id=TierKey.PRO, term=BillingTerm.MONTHLY, expires_at=NOW + timedelta(days=5)),
            TierKey.ADS_FREE: Entitlement(
                tier_id=TierKey.ADS_FREE,
                term=BillingTerm.MONTHLY,
                expires_at=NOW - timedelta(days=1),
            ),
        },
    )
    return EntitlementContext(entitlements, NOW)


def test_require_entitlement_allows_enabled_flag() -> None:
    require_entitlement({"charts.enabled": True}, "charts.enabled")


def test_require_entitlement_raises_when_missing() -> None:
    with pytest.raises(FeatureGateError) as exc:
        require_entitlement({"charts.enabled": False}, "charts.enabled")

    assert exc.value.code == "entitlement_required"
    assert exc.value.payload["missing_entitlement"] == "charts.enabled"
    assert exc.value.to_http_exception().status_code == 403


def test_context_flags_follow_active_tiers(pro_context: EntitlementContext) -> None:
    assert pro_context.has("alerts.enabled") is True
    assert pro_context.has("charts.enabled") is True
    assert pro_context.has("ads.disabled") is False

    pro_context.require("maps.premium")
    with pytest.raises(FeatureGateError):
        pro_context.require("ads.disabled")


def test_pro_satisfies_basic_requirement(pro_context: EntitlementContext) -> None:
    assert pro_context.has_tier(TierKey.BASIC) is True
    assert pro_context.has_tier(TierKey.ADS_FREE) is False

    with pytest.raises(FeatureGateError) as exc:
        pro_context.require_tier(TierKey.ADS_FREE)

    assert exc.value.code == "tier_required"
    assert exc.value.payload["required_tier"] == "ads_free"


def test_expired_entitlements_are_inert(pro_context: EntitlementContext) -> None:
    later = EntitlementContext(pro_context.entitlements, NOW + timedelta(days=6))

    assert later.active_tiers == []
    assert later.summary == "No active plan"
    with pytest.raises(FeatureGateError):
        require_tier(later.active_tiers, TierKey.BASIC)
