"""Application wiring for the purchase service."""
from __future__ import annotations

import logging
from functools import lru_cache

from ..billing import (
    BillingAuditEvent,
    BillingEventLogger,
    OrderBuilder,
    PaymentProvider,
    PurchaseAttemptRepository,
    PurchaseService,
    RateCache,
    RateProvider,
    SignatureVerifier,
)
from ..billing.config import BillingConfig, load_billing_config
from ..billing.providers import (
    ExchangeRateApiProvider,
    FixedRateProvider,
    LocalSandboxPaymentProvider,
    RazorpayPaymentProvider,
)
from ..billing.repository import InMemoryPurchaseAttemptRepository, PostgresPurchaseAttemptRepository
from ..entitlements import EntitlementRepository, EntitlementStore, InMemoryEntitlementCache
from ..entitlements.repository import InMemoryEntitlementRepository, PostgresEntitlementRepository


logger = logging.getLogger("billing")


class LoggingBillingEventLogger(BillingEventLogger):
    """Simple event logger forwarding billing audit events to logging."""

    def log(self, event: BillingAuditEvent) -> None:
        logger.info(
            "Billing event %s attempt=%s actor=%s metadata=%s",
            event.event_type.value,
            event.attempt_id,
            event.actor_id,
            event.metadata,
        )


@lru_cache(maxsize=1)
def get_billing_config() -> BillingConfig:
    return load_billing_config()


def _build_rate_provider(config: BillingConfig) -> RateProvider:
    if config.exchange_rate_api_key:
        return ExchangeRateApiProvider(
            api_key=config.exchange_rate_api_key,
            base_currency=config.base_currency,
            quote_currency=config.local_currency,
            api_url=config.exchange_rate_api_url,
            timeout=config.http_timeout_seconds,
        )
    if config.payment_provider != "sandbox":
        raise ValueError("EXCHANGE_RATE_API_KEY is required when PAYMENT_PROVIDER=razorpay")
    logger.warning(
        "EXCHANGE_RATE_API_KEY not set; using fixed sandbox rate",
        extra={"rate": config.sandbox_rate, "currency": config.local_currency},
    )
    return FixedRateProvider(config.sandbox_rate)


def _build_payment_provider(config: BillingConfig) -> PaymentProvider:
    if config.payment_provider == "razorpay":
        return RazorpayPaymentProvider(
            key_id=config.razorpay_key_id,
            key_secret=config.razorpay_key_secret,
            api_url=config.razorpay_api_url,
            timeout=config.http_timeout_seconds,
        )
    return LocalSandboxPaymentProvider()


def _build_repositories(config: BillingConfig) -> tuple[EntitlementRepository, PurchaseAttemptRepository]:
    if config.entitlement_storage == "postgres":
        return PostgresEntitlementRepository(), PostgresPurchaseAttemptRepository()
    return InMemoryEntitlementRepository(), InMemoryPurchaseAttemptRepository()


@lru_cache(maxsize=1)
def get_purchase_service() -> PurchaseService:
    config = get_billing_config()
    entitlement_repository, attempt_repository = _build_repositories(config)
    store = EntitlementStore(
        entitlement_repository,
        cache=InMemoryEntitlementCache(ttl_seconds=config.entitlement_cache_ttl_seconds),
    )
    order_builder = OrderBuilder(
        RateCache(_build_rate_provider(config)),
        _build_payment_provider(config),
        currency=config.local_currency,
    )
    service = PurchaseService(
        order_builder=order_builder,
        verifier=SignatureVerifier(config.razorpay_key_secret),
        store=store,
        attempts=attempt_repository,
        event_logger=LoggingBillingEventLogger(),
        min_charge_usd=config.min_charge_usd,
    )
    logger.info("Purchase service configured", extra={"billing_config": repr(config)})
    return service


__all__ = ["get_billing_config", "get_purchase_service", "LoggingBillingEventLogger"]
