"""API routes exposing plans, orders, purchases and entitlements."""
from __future__ import annotations

import logging
import os
from functools import lru_cache
from typing import Any, Callable, Optional

from fastapi import APIRouter, Cookie, Depends, Header, HTTPException, status

from ..billing import BillingError, PurchaseService, Rejected, Transaction, UnknownOrder, UnknownTier
from ..billing.service import is_granted
from ..entitlements import TIER_CATALOG, BillingTerm, TierKey, get_tier_definition
from ..feature_gates import EntitlementContext
from ..schemas.billing import (
    CheckoutOptions,
    EntitlementsResponse,
    OrderRequest,
    OrderResponse,
    PlanListResponse,
    PlanResponse,
    PurchaseRequest,
    PurchaseResponse,
    QuoteResponse,
    VerifyRequest,
    VerifyResponse,
)
from ..services.billing import get_billing_config, get_purchase_service

logger = logging.getLogger("billing")


def _resolve_get_current_user() -> Callable[..., Any]:  # pragma: no cover
    try:
        from backend.main import get_current_user as resolved
    except ModuleNotFoundError as exc:
        if exc.name != "backend":
            raise
        from ...main import get_current_user as resolved  # type: ignore[no-redef]
    return resolved


@lru_cache(maxsize=1)
def _get_current_user_callable() -> Callable[..., Any]:
    return _resolve_get_current_user()


_SESSION_COOKIE_NAME = os.getenv("SESSION_COOKIE_NAME", "session")


def _get_current_user(
    authorization: Optional[str] = Header(None),
    session_token: Optional[str] = Cookie(None, alias=_SESSION_COOKIE_NAME),
):
    resolved = _get_current_user_callable()
    return resolved(authorization=authorization, session_token=session_token)


def _parse_purchase(payload: PurchaseRequest) -> tuple[TierKey, BillingTerm]:
    try:
        tier = TierKey(payload.tier_id)
    except ValueError as exc:
        raise UnknownTier(detail={"tierId": payload.tier_id}) from exc
    try:
        term = BillingTerm(payload.term)
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="term must be 'monthly' or 'annual'",
        ) from exc
    return tier, term


def _entitlements_for(service: PurchaseService, user_id: str) -> EntitlementsResponse:
    context = EntitlementContext(service.store.get_entitlements(user_id), service.store.now())
    return EntitlementsResponse.from_context(context)


router = APIRouter(prefix="/api/billing", tags=["billing"])


@router.get("/plans", response_model=PlanListResponse)
def list_plans() -> PlanListResponse:
    return PlanListResponse(plans=[PlanResponse.from_definition(definition) for definition in TIER_CATALOG.values()])


@router.post("/order", response_model=OrderResponse)
def create_order(
    payload: OrderRequest,
    *,
    current_user=Depends(_get_current_user),
) -> OrderResponse:
    service = get_purchase_service()
    try:
        priced = service.order_for_amount(payload.amount_usd)
    except BillingError as exc:
        raise exc.to_http_exception() from exc
    return OrderResponse.from_priced(priced)


@router.post("/purchases", response_model=PurchaseResponse)
def start_purchase(
    payload: PurchaseRequest,
    *,
    current_user=Depends(_get_current_user),
) -> PurchaseResponse:
    service = get_purchase_service()
    try:
        tier, term = _parse_purchase(payload)
        checkout = service.start_purchase(str(current_user.id), tier, term)
    except BillingError as exc:
        raise exc.to_http_exception() from exc

    attempt = checkout.attempt
    definition = get_tier_definition(tier)
    return PurchaseResponse(
        attempt_id=attempt.attempt_id,
        state=attempt.state,
        order=attempt.order,
        amount_local=attempt.amount_local,
        rate=attempt.rate,
        quote=QuoteResponse.from_quote(checkout.quote),
        checkout=CheckoutOptions(
            key=get_billing_config().razorpay_key_id,
            amount=attempt.order.amount_minor_units,
            currency=attempt.order.currency,
            order_id=attempt.order.id,
            description=f"{definition.display_name} ({term.value})",
        ),
    )


@router.post("/verify", response_model=VerifyResponse)
def verify_payment(payload: VerifyRequest) -> VerifyResponse:
    service = get_purchase_service()
    try:
        transaction = Transaction.from_fields(payload.order_id, payload.payment_id, payload.signature)
    except BillingError as exc:
        raise exc.to_http_exception() from exc

    try:
        attempt = service.complete_purchase(transaction)
    except UnknownOrder:
        verified = service.verify_signature(transaction)
        logger.info(
            "Verified payment without a purchase attempt",
            extra={"order_id": transaction.order_id, "verified": verified},
        )
        if verified:
            return VerifyResponse(success=True)
        return VerifyResponse(success=False, reason="Payment signature verification failed.")
    except BillingError as exc:
        return VerifyResponse(success=False, reason=exc.message)

    if is_granted(attempt):
        return VerifyResponse(
            success=True,
            attempt_id=attempt.attempt_id,
            entitlements=_entitlements_for(service, attempt.user_id),
        )
    if isinstance(attempt, Rejected):
        return VerifyResponse(success=False, reason=attempt.reason, attempt_id=attempt.attempt_id)
    return VerifyResponse(
        success=False,
        reason="Payment verification is already in progress.",
        attempt_id=attempt.attempt_id,
    )


@router.get("/entitlements", response_model=EntitlementsResponse)
def get_entitlements(
    *,
    current_user=Depends(_get_current_user),
) -> EntitlementsResponse:
    service = get_purchase_service()
    return _entitlements_for(service, str(current_user.id))
