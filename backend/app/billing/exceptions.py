"""Errors raised by the payment and purchase flows."""
from __future__ import annotations

from typing import Any, Dict, Mapping, Optional

from fastapi import HTTPException, status


class BillingError(Exception):
    """Base class for failures that terminate a purchase attempt."""

    code = "billing_error"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Billing operation failed."

    def __init__(self, message: Optional[str] = None, *, detail: Optional[Mapping[str, Any]] = None) -> None:
        self.message = message or self.default_message
        self.detail = dict(detail or {})
        super().__init__(self.message)

    @property
    def payload(self) -> Mapping[str, Any]:
        """Serialized representation suitable for JSON responses."""

        body: Dict[str, Any] = {"error": self.code, "message": self.message}
        body.update(self.detail)
        return body

    def to_http_exception(self) -> HTTPException:
        return HTTPException(status_code=self.status_code, detail=dict(self.payload))


class RateUnavailable(BillingError):
    code = "rate_unavailable"
    default_message = "Exchange rate is unavailable."


class InvalidAmount(BillingError):
    code = "invalid_amount"
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "amountUSD must be a positive number."


class OrderCreationFailed(BillingError):
    code = "order_creation_failed"
    default_message = "Order creation failed."


class SignatureMismatch(BillingError):
    code = "signature_mismatch"
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Payment signature verification failed."


class MalformedTransaction(BillingError):
    code = "malformed_transaction"
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "orderId, paymentId and signature are required."


class UnknownOrder(BillingError):
    code = "unknown_order"
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "No purchase is awaiting completion for this order."


class UnknownTier(BillingError):
    code = "unknown_tier"
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Unknown subscription tier."


class TierAlreadyActive(BillingError):
    code = "tier_already_active"
    status_code = status.HTTP_409_CONFLICT
    default_message = "This plan is already active."


__all__ = [
    "BillingError",
    "InvalidAmount",
    "MalformedTransaction",
    "OrderCreationFailed",
    "RateUnavailable",
    "SignatureMismatch",
    "TierAlreadyActive",
    "UnknownOrder",
    "UnknownTier",
]
