"""HTTP clients and local doubles for the exchange rate and payment providers."""
from __future__ import annotations

import base64
import json
import logging
from typing import Dict
from urllib import error as urllib_error, parse as urllib_parse, request as urllib_request
from uuid import uuid4

from .exceptions import OrderCreationFailed, RateUnavailable

logger = logging.getLogger("billing")


class ExchangeRateApiProvider:
    """Reads the latest ``base -> quote`` rate from ExchangeRate-API."""

    def __init__(
        self,
        *,
        api_key: str,
        base_currency: str = "USD",
        quote_currency: str = "INR",
        api_url: str = "https://v6.exchangerate-api.com/v6",
        timeout: float = 10.0,
    ) -> None:
        if not api_key:
            raise ValueError("EXCHANGE_RATE_API_KEY missing")
        self._api_key = api_key
        self._base_currency = base_currency.upper()
        self._quote_currency = quote_currency.upper()
        self._api_url = api_url.rstrip("/")
        self._timeout = timeout

    def fetch_rate(self) -> float:
        url = (
            f"{self._api_url}/{urllib_parse.quote(self._api_key)}/latest/"
            f"{urllib_parse.quote(self._base_currency)}"
        )
        try:
            with urllib_request.urlopen(url, timeout=self._timeout) as response:
                body = response.read()
            payload = json.loads(body.decode("utf-8"))
        except (urllib_error.URLError, urllib_error.HTTPError, json.JSONDecodeError, UnicodeDecodeError) as exc:
            logger.warning(
                "Exchange rate lookup failed",
                extra={"base_currency": self._base_currency, "error": str(exc)},
            )
            raise RateUnavailable(f"Failed to fetch {self._base_currency}->{self._quote_currency} rate") from exc

        rates = payload.get("conversion_rates") if isinstance(payload, dict) else None
        rate = rates.get(self._quote_currency) if isinstance(rates, dict) else None
        if rate is None:
            raise RateUnavailable(f"Failed to fetch {self._base_currency}->{self._quote_currency} rate")
        return rate


class FixedRateProvider:
    """Returns a constant rate for local development and tests."""

    def __init__(self, rate: float) -> None:
        self._rate = rate

    def fetch_rate(self) -> float:
        return self._rate


class RazorpayPaymentProvider:
    """Creates orders through the Razorpay Orders API."""

    def __init__(
        self,
        *,
        key_id: str,
        key_secret: str,
        api_url: str = "https://api.razorpay.com/v1",
        timeout: float = 10.0,
    ) -> None:
        if not key_id or not key_secret:
            raise ValueError("RAZORPAY_KEY_ID and RAZORPAY_KEY_SECRET must be provided")
        credentials = f"{key_id}:{key_secret}".encode("utf-8")
        self._authorization = "Basic " + base64.b64encode(credentials).decode("ascii")
        self._api_url = api_url.rstrip("/")
        self._timeout = timeout

    def __repr__(self) -> str:
        return f"RazorpayPaymentProvider(api_url={self._api_url!r})"

    def create_order(
        self,
        *,
        amount_minor_units: int,
        currency: str,
        receipt_ref: str,
    ) -> Dict[str, object]:
        body = json.dumps(
            {"amount": amount_minor_units, "currency": currency, "receipt": receipt_ref}
        ).encode("utf-8")
        request = urllib_request.Request(
            f"{self._api_url}/orders",
            data=body,
            method="POST",
            headers={"Content-Type": "application/json", "Authorization": self._authorization},
        )
        try:
            with urllib_request.urlopen(request, timeout=self._timeout) as response:
                payload = json.loads(response.read().decode("utf-8"))
        except urllib_error.HTTPError as exc:
            logger.warning(
                "Razorpay rejected order",
                extra={"receipt_ref": receipt_ref, "status": exc.code},
            )
            raise OrderCreationFailed(f"Payment provider responded with HTTP {exc.code}") from exc
        except (urllib_error.URLError, json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise OrderCreationFailed("Payment provider is unreachable") from exc

        if not isinstance(payload, dict) or "id" not in payload:
            raise OrderCreationFailed("Payment provider returned no order id")
        return payload


class LocalSandboxPaymentProvider:
    """Minimal provider implementation for local development and tests."""

    def __init__(self) -> None:
        self.orders: Dict[str, Dict[str, object]] = {}

    def create_order(
        self,
        *,
        amount_minor_units: int,
        currency: str,
        receipt_ref: str,
    ) -> Dict[str, object]:
        order_id = f"order_{uuid4().hex[:14]}"
        order = {
            "id": order_id,
            "amount": amount_minor_units,
            "currency": currency,
            "receipt": receipt_ref,
            "status": "created",
        }
        self.orders[order_id] = order
        return order


__all__ = [
    "ExchangeRateApiProvider",
    "FixedRateProvider",
    "LocalSandboxPaymentProvider",
    "RazorpayPaymentProvider",
]
