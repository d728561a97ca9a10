"""Conversion of USD prices into provider orders in the local currency."""
from __future__ import annotations

import logging
import math
import secrets
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, Dict, Optional, Protocol

from pydantic import ValidationError

from .exceptions import InvalidAmount, OrderCreationFailed
from .models import Order, PricedOrder
from .rates import RateCache

logger = logging.getLogger("billing")

MINOR_UNITS_PER_UNIT = 100


class PaymentProvider(Protocol):
    """External payment processor integration."""

    def create_order(
        self,
        *,
        amount_minor_units: int,
        currency: str,
        receipt_ref: str,
    ) -> Dict[str, object]:
        """Create a provider order and return its ``id``, ``amount`` and ``currency``."""


def round_half_away_from_zero(value: Decimal) -> int:
    """Round to the nearest integer, ties away from zero (2.5 -> 3, -2.5 -> -3)."""

    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def convert_to_local(amount_usd: float, rate: float) -> int:
    """Whole local currency units charged for ``amount_usd`` at ``rate``."""

    return round_half_away_from_zero(Decimal(str(amount_usd)) * Decimal(str(rate)))


def new_receipt_ref(now: Optional[datetime] = None) -> str:
    moment = now or datetime.now(timezone.utc)
    return f"receipt_{int(moment.timestamp() * 1000)}_{secrets.token_hex(4)}"


def _validated_amount(amount_usd: object) -> float:
    if isinstance(amount_usd, bool) or not isinstance(amount_usd, (int, float)):
        raise InvalidAmount()
    value = float(amount_usd)
    if not math.isfinite(value) or value <= 0:
        raise InvalidAmount()
    return value


class OrderBuilder:
    """Creates provider orders for USD amounts using the cached exchange rate."""

    def __init__(
        self,
        rate_cache: RateCache,
        provider: PaymentProvider,
        *,
        currency: str = "INR",
        receipt_factory: Callable[[], str] = new_receipt_ref,
    ) -> None:
        self._rate_cache = rate_cache
        self._provider = provider
        self._currency = currency.upper()
        self._receipt_factory = receipt_factory

    @property
    def currency(self) -> str:
        return self._currency

    def build_order(self, amount_usd: object) -> PricedOrder:
        amount = _validated_amount(amount_usd)
        rate = self._rate_cache.get_rate()
        amount_local = convert_to_local(amount, rate)
        amount_minor_units = amount_local * MINOR_UNITS_PER_UNIT
        receipt_ref = self._receipt_factory()

        try:
            response = self._provider.create_order(
                amount_minor_units=amount_minor_units,
                currency=self._currency,
                receipt_ref=receipt_ref,
            )
            order = Order(
                id=str(response["id"]),
                amount_minor_units=int(response.get("amount", amount_minor_units)),
                currency=str(response.get("currency", self._currency)),
                receipt_ref=str(response.get("receipt", receipt_ref)),
            )
        except OrderCreationFailed:
            raise
        except (KeyError, TypeError, ValueError, ValidationError) as exc:
            logger.warning("Provider returned an unusable order", extra={"receipt_ref": receipt_ref})
            raise OrderCreationFailed(f"Provider returned an unusable order: {exc}") from exc
        except Exception as exc:
            logger.warning(
                "Order creation failed",
                extra={"receipt_ref": receipt_ref, "error": str(exc)},
            )
            raise OrderCreationFailed(str(exc) or None) from exc

        logger.info(
            "Order created",
            extra={
                "order_id": order.id,
                "amount_usd": amount,
                "amount_local": amount_local,
                "currency": order.currency,
                "rate": rate,
            },
        )
        return PricedOrder(order=order, amount_usd=amount, amount_local=amount_local, rate=rate)


__all__ = [
    "MINOR_UNITS_PER_UNIT",
    "OrderBuilder",
    "PaymentProvider",
    "convert_to_local",
    "new_receipt_ref",
    "round_half_away_from_zero",
]
