"""Billing domain package: exchange rates, provider orders and tier purchases."""

from .exceptions import (
    BillingError,
    InvalidAmount,
    MalformedTransaction,
    OrderCreationFailed,
    RateUnavailable,
    SignatureMismatch,
    TierAlreadyActive,
    UnknownOrder,
    UnknownTier,
)
from .models import (
    AwaitingCompletion,
    BillingAuditEvent,
    BillingAuditEventType,
    Granted,
    Order,
    OrderCreated,
    PricedOrder,
    PurchaseAttempt,
    PurchaseCheckout,
    Quote,
    RateSnapshot,
    Rejected,
    Requested,
    Transaction,
    Verifying,
)
from .orders import OrderBuilder, PaymentProvider
from .rates import RATE_TTL, RateCache, RateProvider
from .service import BillingEventLogger, PurchaseAttemptRepository, PurchaseService
from .signatures import SignatureVerifier

__all__ = [
    "AwaitingCompletion",
    "BillingAuditEvent",
    "BillingAuditEventType",
    "BillingError",
    "BillingEventLogger",
    "Granted",
    "InvalidAmount",
    "MalformedTransaction",
    "Order",
    "OrderBuilder",
    "OrderCreated",
    "OrderCreationFailed",
    "PaymentProvider",
    "PricedOrder",
    "PurchaseAttempt",
    "PurchaseAttemptRepository",
    "PurchaseCheckout",
    "PurchaseService",
    "Quote",
    "RATE_TTL",
    "RateCache",
    "RateProvider",
    "RateSnapshot",
    "RateUnavailable",
    "Rejected",
    "Requested",
    "SignatureMismatch",
    "SignatureVerifier",
    "TierAlreadyActive",
    "Transaction",
    "UnknownOrder",
    "UnknownTier",
    "Verifying",
]
