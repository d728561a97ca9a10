"""API schemas for billing endpoints."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..billing import Order, PricedOrder, Quote
from ..entitlements import BillingTerm, TierDefinition, TierKey, get_tier_definition
from ..feature_gates import EntitlementContext


class PlanResponse(BaseModel):
    tier_id: TierKey = Field(alias="tierId")
    name: str
    monthly_price_usd: float = Field(alias="monthlyPriceUsd")
    annual_price_usd: float = Field(alias="annualPriceUsd")
    features: List[str] = Field(default_factory=list)
    implies: List[TierKey] = Field(default_factory=list)
    flags: Dict[str, bool] = Field(default_factory=dict)

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_definition(cls, definition: TierDefinition) -> "PlanResponse":
        return cls(
            tier_id=definition.key,
            name=definition.display_name,
            monthly_price_usd=definition.monthly_price_usd,
            annual_price_usd=definition.annual_price_usd,
            features=list(definition.features),
            implies=list(definition.implies),
            flags=definition.bundle.to_flags(),
        )


class PlanListResponse(BaseModel):
    plans: List[PlanResponse]


class OrderRequest(BaseModel):
    # Validated by OrderBuilder; anything non-numeric surfaces as InvalidAmount.
    amount_usd: Optional[Any] = Field(default=None, alias="amountUSD")

    model_config = ConfigDict(populate_by_name=True)


class OrderResponse(BaseModel):
    order: Order
    amount_usd: float = Field(alias="amountUSD")
    amount_local: int = Field(alias="amountLocal")
    rate: float

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_priced(cls, priced: PricedOrder) -> "OrderResponse":
        return cls(
            order=priced.order,
            amount_usd=priced.amount_usd,
            amount_local=priced.amount_local,
            rate=priced.rate,
        )


class PurchaseRequest(BaseModel):
    tier_id: Optional[str] = Field(default=None, alias="tierId")
    term: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)


class QuoteResponse(BaseModel):
    tier_id: TierKey = Field(alias="tierId")
    term: BillingTerm
    price_usd: float = Field(alias="priceUSD")
    credit_usd: float = Field(alias="creditUSD")
    credited_tier: Optional[TierKey] = Field(default=None, alias="creditedTier")
    charge_usd: float = Field(alias="chargeUSD")

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_quote(cls, quote: Quote) -> "QuoteResponse":
        return cls(
            tier_id=quote.tier_id,
            term=quote.term,
            price_usd=quote.price_usd,
            credit_usd=quote.credit_usd,
            credited_tier=quote.credited_tier,
            charge_usd=quote.charge_usd,
        )


class CheckoutOptions(BaseModel):
    """Options handed to the provider's checkout widget."""

    key: str
    amount: int
    currency: str
    order_id: str
    description: str


class PurchaseResponse(BaseModel):
    attempt_id: str = Field(alias="attemptId")
    state: str
    order: Order
    amount_local: int = Field(alias="amountLocal")
    rate: float
    quote: QuoteResponse
    checkout: CheckoutOptions

    model_config = ConfigDict(populate_by_name=True)


class VerifyRequest(BaseModel):
    order_id: Optional[str] = Field(default=None, alias="orderId")
    payment_id: Optional[str] = Field(default=None, alias="paymentId")
    signature: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)


class EntitlementView(BaseModel):
    tier_id: TierKey = Field(alias="tierId")
    name: str
    term: BillingTerm
    expires_at: datetime = Field(alias="expiresAt")
    active: bool

    model_config = ConfigDict(populate_by_name=True)


class EntitlementsResponse(BaseModel):
    user_id: str = Field(alias="userId")
    entitlements: List[EntitlementView] = Field(default_factory=list)
    active_tiers: List[TierKey] = Field(default_factory=list, alias="activeTiers")
    flags: Dict[str, bool] = Field(default_factory=dict)
    summary: str

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_context(cls, context: EntitlementContext) -> "EntitlementsResponse":
        entitlement_set, now = context.entitlements, context.now
        views = [
            EntitlementView(
                tier_id=entitlement.tier_id,
                name=get_tier_definition(entitlement.tier_id).display_name,
                term=entitlement.term,
                expires_at=entitlement.expires_at,
                active=entitlement.is_active(now),
            )
            for entitlement in sorted(entitlement_set.entitlements.values(), key=lambda item: item.tier_id.value)
        ]
        return cls(
            user_id=entitlement_set.user_id,
            entitlements=views,
            active_tiers=context.active_tiers,
            flags=context.feature_flags,
            summary=context.summary,
        )


class VerifyResponse(BaseModel):
    success: bool
    reason: Optional[str] = None
    attempt_id: Optional[str] = Field(default=None, alias="attemptId")
    entitlements: Optional[EntitlementsResponse] = None

    model_config = ConfigDict(populate_by_name=True)
