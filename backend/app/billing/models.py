"""Domain models for the payment and purchase flows."""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Dict, Literal, Optional, Type, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from ..entitlements.models import BillingTerm, Entitlement, TierKey
from .exceptions import MalformedTransaction


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RateSnapshot(BaseModel):
    """A fetched exchange rate together with its validity window."""

    rate: float = Field(gt=0)
    fetched_at: datetime
    expires_at: datetime

    model_config = ConfigDict(frozen=True)

    def is_fresh(self, now: datetime) -> bool:
        return now < self.expires_at


class Order(BaseModel):
    """Provider order created for a single purchase attempt."""

    id: str
    amount_minor_units: int = Field(alias="amount", ge=0)
    currency: str = Field(min_length=3, max_length=3)
    receipt_ref: str = Field(alias="receipt")

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class PricedOrder(BaseModel):
    """An order together with the conversion that produced its amount."""

    order: Order
    amount_usd: float
    amount_local: int
    rate: float

    model_config = ConfigDict(frozen=True)


class Transaction(BaseModel):
    """Payment completion fields returned by the checkout callback."""

    order_id: str = Field(min_length=1)
    payment_id: str = Field(min_length=1)
    signature: str = Field(min_length=1)

    model_config = ConfigDict(frozen=True)

    @classmethod
    def from_fields(
        cls,
        order_id: Optional[str],
        payment_id: Optional[str],
        signature: Optional[str],
    ) -> "Transaction":
        missing = [
            name
            for name, value in (("orderId", order_id), ("paymentId", payment_id), ("signature", signature))
            if not isinstance(value, str) or not value
        ]
        if missing:
            raise MalformedTransaction(detail={"missing_fields": missing})
        return cls(order_id=order_id, payment_id=payment_id, signature=signature)


class Quote(BaseModel):
    """Charge computed for a tier purchase, including any upgrade credit."""

    tier_id: TierKey
    term: BillingTerm
    price_usd: float
    credit_usd: float = 0
    credited_tier: Optional[TierKey] = None
    charge_usd: float

    model_config = ConfigDict(frozen=True)


class BillingAuditEventType(str, Enum):
    """Audit event categories emitted by the purchase flow."""

    ORDER_CREATED = "order_created"
    PURCHASE_GRANTED = "purchase_granted"
    PURCHASE_REJECTED = "purchase_rejected"


class BillingAuditEvent(BaseModel):
    """Structured audit event for analytics and notifications."""

    event_type: BillingAuditEventType
    attempt_id: Optional[str] = None
    actor_id: Optional[str] = None
    metadata: Dict[str, str] = Field(default_factory=dict)
    occurred_at: datetime = Field(default_factory=_utcnow)

    model_config = ConfigDict(frozen=True)


_Attempt = TypeVar("_Attempt", bound="_AttemptBase")


class _AttemptBase(BaseModel):
    attempt_id: str
    user_id: str
    tier_id: TierKey
    term: BillingTerm
    charge_usd: float
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    model_config = ConfigDict(frozen=True)

    @property
    def is_terminal(self) -> bool:
        return False

    def _advance(self, target: Type[_Attempt], now: Optional[datetime] = None, **changes: object) -> _Attempt:
        data = {
            name: getattr(self, name)
            for name in target.model_fields
            if name != "state" and hasattr(self, name)
        }
        data.update(changes)
        data["updated_at"] = now or _utcnow()
        return target(**data)


class _Rejectable(_AttemptBase):
    def reject(self, code: str, reason: str, now: Optional[datetime] = None) -> "Rejected":
        return self._advance(Rejected, now, reason_code=code, reason=reason)


class Requested(_Rejectable):
    state: Literal["requested"] = "requested"

    def order_created(self, priced: PricedOrder, now: Optional[datetime] = None) -> "OrderCreated":
        return self._advance(
            OrderCreated,
            now,
            order=priced.order,
            amount_local=priced.amount_local,
            rate=priced.rate,
        )


class OrderCreated(_Rejectable):
    state: Literal["order_created"] = "order_created"
    order: Order
    amount_local: int
    rate: float

    def await_completion(self, now: Optional[datetime] = None) -> "AwaitingCompletion":
        return self._advance(AwaitingCompletion, now)


class AwaitingCompletion(_Rejectable):
    state: Literal["awaiting_completion"] = "awaiting_completion"
    order: Order
    amount_local: int
    rate: float

    def begin_verification(self, transaction: Transaction, now: Optional[datetime] = None) -> "Verifying":
        return self._advance(Verifying, now, payment_id=transaction.payment_id)


class Verifying(_Rejectable):
    state: Literal["verifying"] = "verifying"
    order: Order
    amount_local: int
    rate: float
    payment_id: str

    def grant(self, entitlement: Entitlement, now: Optional[datetime] = None) -> "Granted":
        return self._advance(Granted, now, entitlement=entitlement)


class Granted(_AttemptBase):
    state: Literal["granted"] = "granted"
    order: Order
    amount_local: int
    rate: float
    payment_id: str
    entitlement: Entitlement

    @property
    def is_terminal(self) -> bool:
        return True


class Rejected(_AttemptBase):
    state: Literal["rejected"] = "rejected"
    order: Optional[Order] = None
    reason_code: str
    reason: str

    @property
    def is_terminal(self) -> bool:
        return True


PurchaseAttempt = Annotated[
    Union[Requested, OrderCreated, AwaitingCompletion, Verifying, Granted, Rejected],
    Field(discriminator="state"),
]

purchase_attempt_adapter = TypeAdapter(PurchaseAttempt)


class PurchaseCheckout(BaseModel):
    """A purchase awaiting payment together with the quote it was priced from."""

    attempt: AwaitingCompletion
    quote: Quote

    model_config = ConfigDict(frozen=True)


__all__ = [
    "AwaitingCompletion",
    "BillingAuditEvent",
    "BillingAuditEventType",
    "Granted",
    "Order",
    "OrderCreated",
    "PricedOrder",
    "PurchaseAttempt",
    "PurchaseCheckout",
    "Quote",
    "RateSnapshot",
    "Rejected",
    "Requested",
    "Transaction",
    "Verifying",
    "purchase_attempt_adapter",
]
