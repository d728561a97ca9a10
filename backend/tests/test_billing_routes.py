from __future__ import annotations

import pathlib
import sys
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest
from fastapi import HTTPException
from fastapi.testclient import TestClient

ROOT = pathlib.Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import backend.main as backend_main
from backend.app.billing import OrderBuilder, PurchaseService, RateCache, SignatureVerifier
from backend.app.billing.config import load_billing_config
from backend.app.billing.providers import FixedRateProvider, LocalSandboxPaymentProvider
from backend.app.billing.repository import InMemoryPurchaseAttemptRepository
from backend.app.entitlements import BillingTerm, EntitlementStore, TierKey
from backend.app.entitlements.repository import InMemoryEntitlementRepository
from backend.app.feature_gates import EntitlementContext
from backend.app.routes import billing as billing_routes
from backend.app.schemas.billing import OrderRequest, PurchaseRequest, VerifyRequest
from backend.app.services.billing import LoggingBillingEventLogger

NOW = datetime(2026, 2, 1, tzinfo=timezone.utc)


@pytest.fixture
def service(monkeypatch) -> PurchaseService:
    clock = lambda: NOW  # noqa: E731
    config = load_billing_config({"RAZORPAY_KEY_ID": "rzp_test_key", "RAZORPAY_KEY_SECRET": "route-secret"})
    purchase_service = PurchaseService(
        order_builder=OrderBuilder(RateCache(FixedRateProvider(83.0), clock=clock), LocalSandboxPaymentProvider()),
        verifier=SignatureVerifier(config.razorpay_key_secret),
        store=EntitlementStore(InMemoryEntitlementRepository(), clock=clock),
        attempts=InMemoryPurchaseAttemptRepository(),
        event_logger=LoggingBillingEventLogger(),
        clock=clock,
    )
    monkeypatch.setattr(billing_routes, "get_purchase_service", lambda: purchase_service)
    monkeypatch.setattr(billing_routes, "get_billing_config", lambda: config)
    return purchase_service


@pytest.fixture
def client() -> TestClient:
    return TestClient(backend_main.app)


def _auth_header(subject: str = "user-1") -> dict:
    return {"Authorization": f"Bearer {backend_main.create_access_token(subject=subject)}"}


def test_list_plans_exposes_catalog() -> None:
    response = billing_routes.list_plans()

    plans = {plan.tier_id: plan for plan in response.plans}
    assert plans[TierKey.PRO].monthly_price_usd == 10
    assert plans[TierKey.PRO].implies == [TierKey.BASIC]
    assert plans[TierKey.ADS_FREE].flags["ads.disabled"] is True


def test_create_order_converts_amount(service) -> None:
    user = SimpleNamespace(id="user-1")

    response = billing_routes.create_order(OrderRequest(amountUSD=2.5), current_user=user)

    assert response.amount_local == 208
    assert response.order.amount_minor_units == 20800


def test_create_order_rejects_bad_amount(service) -> None:
    user = SimpleNamespace(id="user-1")

    with pytest.raises(HTTPException) as exc:
        billing_routes.create_order(OrderRequest(amountUSD="abc"), current_user=user)

    assert exc.value.status_code == 400
    assert exc.value.detail["error"] == "invalid_amount"


def test_purchase_returns_checkout_options(service) -> None:
    user = SimpleNamespace(id="user-1")

    response = billing_routes.start_purchase(PurchaseRequest(tierId="pro", term="annual"), current_user=user)

    assert response.state == "awaiting_completion"
    assert response.quote.charge_usd == 100
    assert response.checkout.key == "rzp_test_key"
    assert response.checkout.amount == 830000
    assert response.checkout.order_id == response.order.id
    assert response.checkout.description == "Pro (annual)"


def test_purchase_of_unknown_tier_is_bad_request(service) -> None:
    user = SimpleNamespace(id="user-1")

    with pytest.raises(HTTPException) as exc:
        billing_routes.start_purchase(PurchaseRequest(tierId="platinum", term="monthly"), current_user=user)

    assert exc.value.status_code == 400


def test_purchase_of_active_tier_conflicts(service) -> None:
    service.store.grant("user-1", TierKey.BASIC, BillingTerm.MONTHLY, NOW)
    user = SimpleNamespace(id="user-1")

    with pytest.raises(HTTPException) as exc:
        billing_routes.start_purchase(PurchaseRequest(tierId="basic", term="monthly"), current_user=user)

    assert exc.value.status_code == 409


def test_verify_grants_and_returns_entitlements(service) -> None:
    user = SimpleNamespace(id="user-1")
    purchase = billing_routes.start_purchase(PurchaseRequest(tierId="basic", term="monthly"), current_user=user)
    signature = service.verifier.sign(purchase.order.id, "pay_123")

    response = billing_routes.verify_payment(
        VerifyRequest(orderId=purchase.order.id, paymentId="pay_123", signature=signature)
    )

    assert response.success is True
    assert response.entitlements.active_tiers == [TierKey.BASIC]
    assert response.entitlements.summary == f"Basic active until {(NOW + timedelta(days=30)).date().isoformat()}"


def test_verify_with_bad_signature_reports_failure(service) -> None:
    user = SimpleNamespace(id="user-1")
    purchase = billing_routes.start_purchase(PurchaseRequest(tierId="basic", term="monthly"), current_user=user)

    response = billing_routes.verify_payment(
        VerifyRequest(orderId=purchase.order.id, paymentId="pay_123", signature="deadbeef")
    )

    assert response.success is False
    assert response.reason
    assert service.store.active_tiers("user-1") == []


def test_verify_for_bare_order_checks_signature_only(service) -> None:
    signature = service.verifier.sign("order_plain", "pay_1")

    ok = billing_routes.verify_payment(VerifyRequest(orderId="order_plain", paymentId="pay_1", signature=signature))
    bad = billing_routes.verify_payment(VerifyRequest(orderId="order_plain", paymentId="pay_2", signature=signature))

    assert ok.success is True
    assert ok.entitlements is None
    assert bad.success is False


def test_entitlements_endpoint_reports_summary(service) -> None:
    service.store.grant("user-1", TierKey.PRO, BillingTerm.MONTHLY, NOW)

    response = billing_routes.get_entitlements(current_user=SimpleNamespace(id="user-1"))

    assert set(response.active_tiers) == {TierKey.PRO, TierKey.BASIC}
    assert response.flags["alerts.enabled"] is True
    assert "Pro active until" in response.summary


def test_entitlements_response_matches_feature_gate_context(service) -> None:
    service.store.grant("user-1", TierKey.ADS_FREE, BillingTerm.MONTHLY, NOW - timedelta(days=31))
    service.store.grant("user-1", TierKey.PRO, BillingTerm.ANNUAL, NOW)
    context = EntitlementContext(service.store.get_entitlements("user-1"), NOW)

    response = billing_routes.get_entitlements(current_user=SimpleNamespace(id="user-1"))

    assert response.active_tiers == context.active_tiers
    assert response.flags == context.feature_flags
    assert response.summary == context.summary
    assert response.flags["ads.disabled"] is context.has("ads.disabled")


def test_order_requires_login(service, client: TestClient) -> None:
    response = client.post("/api/billing/order", json={"amountUSD": 5})

    assert response.status_code == 401
    assert response.json()["detail"] == "Please login first"


def test_order_with_missing_amount_is_bad_request(service, client: TestClient) -> None:
    response = client.post("/api/billing/order", json={}, headers=_auth_header())

    assert response.status_code == 400


def test_order_over_http_uses_provider_amount(service, client: TestClient) -> None:
    response = client.post("/api/billing/order", json={"amountUSD": 2.5}, headers=_auth_header())

    assert response.status_code == 200
    body = response.json()
    assert body["amountLocal"] == 208
    assert body["order"]["amount"] == 20800


def test_verify_with_missing_field_is_bad_request(service, client: TestClient) -> None:
    response = client.post("/api/billing/verify", json={"orderId": "order_1", "paymentId": "pay_1"})

    assert response.status_code == 400
    assert response.json()["detail"]["missing_fields"] == ["signature"]


def test_verify_with_wrong_signature_is_ok_with_failure_body(service, client: TestClient) -> None:
    response = client.post(
        "/api/billing/verify",
        json={"orderId": "order_1", "paymentId": "pay_1", "signature": "nope"},
    )

    assert response.status_code == 200
    assert response.json()["success"] is False
