from __future__ import annotations

import re
from decimal import Decimal
from typing import Dict, List

import pytest

from backend.app.billing import InvalidAmount, OrderBuilder, OrderCreationFailed, RateCache, RateUnavailable
from backend.app.billing.orders import new_receipt_ref, round_half_away_from_zero
from backend.app.billing.providers import FixedRateProvider, LocalSandboxPaymentProvider


class CountingRateProvider:
    def __init__(self, rate: float) -> None:
        self.rate = rate
        self.calls = 0

    def fetch_rate(self) -> float:
        self.calls += 1
        return self.rate


class FailingRateProvider:
    def fetch_rate(self) -> float:
        raise RateUnavailable("rate service down")


class RecordingPaymentProvider:
    def __init__(self) -> None:
        self.requests: List[Dict[str, object]] = []

    def create_order(self, *, amount_minor_units: int, currency: str, receipt_ref: str) -> Dict[str, object]:
        self.requests.append(
            {"amount_minor_units": amount_minor_units, "currency": currency, "receipt_ref": receipt_ref}
        )
        return {"id": "order_123", "amount": amount_minor_units, "currency": currency, "receipt": receipt_ref}


class ExplodingPaymentProvider:
    def create_order(self, *, amount_minor_units: int, currency: str, receipt_ref: str) -> Dict[str, object]:
        raise RuntimeError("gateway timeout")


def test_build_order_rounds_half_away_from_zero() -> None:
    provider = RecordingPaymentProvider()
    builder = OrderBuilder(RateCache(FixedRateProvider(83.0)), provider, currency="inr")

    priced = builder.build_order(2.5)

    assert priced.amount_local == 208
    assert priced.order.amount_minor_units == 20800
    assert priced.order.currency == "INR"
    assert priced.rate == 83.0
    assert provider.requests[0]["amount_minor_units"] == 20800


def test_minor_units_are_whole_local_units() -> None:
    builder = OrderBuilder(RateCache(FixedRateProvider(83.37)), RecordingPaymentProvider())

    priced = builder.build_order(5)

    assert priced.amount_local == 417
    assert priced.order.amount_minor_units % 100 == 0


def test_rounding_helper_handles_ties_in_both_directions() -> None:
    assert round_half_away_from_zero(Decimal("2.5")) == 3
    assert round_half_away_from_zero(Decimal("-2.5")) == -3
    assert round_half_away_from_zero(Decimal("207.49")) == 207


@pytest.mark.parametrize("amount", [None, 0, -3, "10", float("inf"), float("nan"), True])
def test_invalid_amount_is_rejected_before_rate_lookup(amount) -> None:
    rate_provider = CountingRateProvider(83.0)
    payment_provider = RecordingPaymentProvider()
    builder = OrderBuilder(RateCache(rate_provider), payment_provider)

    with pytest.raises(InvalidAmount):
        builder.build_order(amount)

    assert rate_provider.calls == 0
    assert payment_provider.requests == []


def test_rate_failure_propagates_without_creating_order() -> None:
    payment_provider = RecordingPaymentProvider()
    builder = OrderBuilder(RateCache(FailingRateProvider()), payment_provider)

    with pytest.raises(RateUnavailable):
        builder.build_order(10)

    assert payment_provider.requests == []


def test_provider_error_is_wrapped() -> None:
    builder = OrderBuilder(RateCache(FixedRateProvider(83.0)), ExplodingPaymentProvider())

    with pytest.raises(OrderCreationFailed) as exc:
        builder.build_order(10)

    assert exc.value.status_code == 500


def test_sandbox_provider_records_orders() -> None:
    provider = LocalSandboxPaymentProvider()
    builder = OrderBuilder(RateCache(FixedRateProvider(80.0)), provider)

    priced = builder.build_order(1)

    assert priced.order.id in provider.orders
    assert provider.orders[priced.order.id]["amount"] == 8000


def test_receipt_refs_are_unique_and_timestamped() -> None:
    first = new_receipt_ref()
    second = new_receipt_ref()

    assert re.fullmatch(r"receipt_\d+_[0-9a-f]{8}", first)
    assert first != second
