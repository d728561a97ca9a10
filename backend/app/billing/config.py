"""Billing configuration helpers."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, Optional
import os


@dataclass(frozen=True)
class BillingConfig:
    """Configuration for exchange rates, payment provider and entitlement storage."""

    payment_provider: str
    razorpay_key_id: str
    razorpay_key_secret: str = ""
    razorpay_api_url: str = "https://api.razorpay.com/v1"
    exchange_rate_api_key: Optional[str] = None
    exchange_rate_api_url: str = "https://v6.exchangerate-api.com/v6"
    base_currency: str = "USD"
    local_currency: str = "INR"
    sandbox_rate: float = 83.0
    http_timeout_seconds: float = 10.0
    min_charge_usd: float = 1.0
    entitlement_storage: str = "memory"
    entitlement_cache_ttl_seconds: int = 60

    def __repr__(self) -> str:
        return (
            f"BillingConfig(payment_provider={self.payment_provider!r}, "
            f"local_currency={self.local_currency!r}, "
            f"entitlement_storage={self.entitlement_storage!r})"
        )


def _to_int(value: Optional[str], *, default: int) -> int:
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Expected integer value, got {value!r}") from exc


def _to_float(value: Optional[str], *, default: float) -> float:
    if value is None or value == "":
        return default
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Expected float value, got {value!r}") from exc


def load_billing_config(env: Optional[Mapping[str, str]] = None) -> BillingConfig:
    """Load :class:`BillingConfig` from environment variables."""

    env_mapping = os.environ if env is None else env

    provider = (env_mapping.get("PAYMENT_PROVIDER") or "sandbox").strip().lower() or "sandbox"
    if provider not in {"razorpay", "sandbox"}:
        raise ValueError(f"Unsupported PAYMENT_PROVIDER {provider!r}")

    key_id = env_mapping.get("RAZORPAY_KEY_ID", "")
    key_secret = env_mapping.get("RAZORPAY_KEY_SECRET", "")
    if provider == "sandbox":
        key_id = key_id or "rzp_test_sandbox"
        key_secret = key_secret or "sandbox-secret"

    exchange_rate_api_key = env_mapping.get("EXCHANGE_RATE_API_KEY") or None
    if provider == "razorpay" and exchange_rate_api_key is None:
        raise ValueError("EXCHANGE_RATE_API_KEY is required when PAYMENT_PROVIDER=razorpay")

    storage = (env_mapping.get("ENTITLEMENT_STORAGE") or "memory").strip().lower()
    if storage not in {"memory", "postgres"}:
        raise ValueError(f"Unsupported ENTITLEMENT_STORAGE {storage!r}")

    return BillingConfig(
        payment_provider=provider,
        razorpay_key_id=key_id,
        razorpay_key_secret=key_secret,
        razorpay_api_url=env_mapping.get("RAZORPAY_API_URL", "https://api.razorpay.com/v1").rstrip("/"),
        exchange_rate_api_key=exchange_rate_api_key,
        exchange_rate_api_url=env_mapping.get(
            "EXCHANGE_RATE_API_URL", "https://v6.exchangerate-api.com/v6"
        ).rstrip("/"),
        base_currency=(env_mapping.get("BILLING_BASE_CURRENCY") or "USD").upper(),
        local_currency=(env_mapping.get("BILLING_LOCAL_CURRENCY") or "INR").upper(),
        sandbox_rate=_to_float(env_mapping.get("SANDBOX_USD_RATE"), default=83.0),
        http_timeout_seconds=max(0.1, _to_float(env_mapping.get("BILLING_HTTP_TIMEOUT"), default=10.0)),
        min_charge_usd=max(0.0, _to_float(env_mapping.get("BILLING_MIN_CHARGE_USD"), default=1.0)),
        entitlement_storage=storage,
        entitlement_cache_ttl_seconds=max(0, _to_int(env_mapping.get("ENTITLEMENT_CACHE_TTL_SECONDS"), default=60)),
    )


__all__ = ["BillingConfig", "load_billing_config"]
