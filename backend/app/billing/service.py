"""Purchase orchestration from tier request to granted entitlement."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional, Protocol
from uuid import uuid4

from ..entitlements.catalog import get_tier_definition, implied_tiers
from ..entitlements.models import BillingTerm, EntitlementSet, TierKey
from ..entitlements.store import EntitlementStore
from .exceptions import BillingError, SignatureMismatch, TierAlreadyActive, UnknownOrder
from .models import (
    AwaitingCompletion,
    BillingAuditEvent,
    BillingAuditEventType,
    Granted,
    PricedOrder,
    PurchaseAttempt,
    PurchaseCheckout,
    Quote,
    Rejected,
    Requested,
    Transaction,
)
from .orders import OrderBuilder
from .signatures import SignatureVerifier

logger = logging.getLogger("billing")


class PurchaseAttemptRepository(Protocol):
    """Persistence operations required by the purchase service."""

    def save(self, attempt: PurchaseAttempt) -> PurchaseAttempt:
        ...

    def get(self, attempt_id: str) -> Optional[PurchaseAttempt]:
        ...

    def get_by_order(self, order_id: str) -> Optional[PurchaseAttempt]:
        ...

    def transition(self, attempt: PurchaseAttempt, *, expected_state: str) -> bool:
        """Store ``attempt`` only if the stored attempt is still in ``expected_state``."""


class BillingEventLogger(Protocol):
    """Captures structured billing audit events."""

    def log(self, event: BillingAuditEvent) -> None:
        ...


@dataclass
class PurchaseService:
    """Drives a tier purchase through order creation, verification and grant.

    Attempts move ``Requested -> OrderCreated -> AwaitingCompletion ->
    Verifying -> Granted | Rejected`` and never move backwards. Nothing is
    granted unless the payment signature verifies, and no lock is held while
    the customer completes checkout.
    """

    order_builder: OrderBuilder
    verifier: SignatureVerifier
    store: EntitlementStore
    attempts: PurchaseAttemptRepository
    event_logger: BillingEventLogger
    min_charge_usd: float = 1.0
    clock: Callable[[], datetime] = field(default=lambda: datetime.now(timezone.utc))

    def _now(self) -> datetime:
        return self.clock()

    def quote(self, user_id: str, tier: TierKey, term: BillingTerm) -> Quote:
        entitlements = self.store.get_entitlements(user_id, fresh=True)
        return self._quote(entitlements, tier, term, self._now())

    def _quote(self, entitlements: EntitlementSet, tier: TierKey, term: BillingTerm, now: datetime) -> Quote:
        price = get_tier_definition(tier).price_for(term)
        credit = 0.0
        credited_tier: Optional[TierKey] = None
        for implied in sorted(implied_tiers(tier), key=lambda key: key.value):
            if not entitlements.is_active(implied, now):
                continue
            implied_price = get_tier_definition(implied).price_for(term)
            if implied_price > credit:
                credit = implied_price
                credited_tier = implied
        return Quote(
            tier_id=tier,
            term=term,
            price_usd=price,
            credit_usd=credit,
            credited_tier=credited_tier,
            charge_usd=max(price - credit, self.min_charge_usd),
        )

    def order_for_amount(self, amount_usd: object) -> PricedOrder:
        """Create a provider order for a bare USD amount."""

        return self.order_builder.build_order(amount_usd)

    def verify_signature(self, transaction: Transaction) -> bool:
        return self.verifier.verify(transaction.order_id, transaction.payment_id, transaction.signature)

    def start_purchase(self, user_id: str, tier: TierKey, term: BillingTerm) -> PurchaseCheckout:
        """Price the tier, create the provider order and wait for payment.

        Raises the :class:`BillingError` that rejected the attempt.
        """

        now = self._now()
        entitlements = self.store.get_entitlements(user_id, fresh=True)
        quote = self._quote(entitlements, tier, term, now)
        requested = Requested(
            attempt_id=f"pa_{uuid4().hex}",
            user_id=user_id,
            tier_id=tier,
            term=term,
            charge_usd=quote.charge_usd,
            created_at=now,
            updated_at=now,
        )

        existing = entitlements.get(tier)
        if existing is not None and existing.is_active(now):
            display_name = get_tier_definition(tier).display_name
            error = TierAlreadyActive(
                f"{display_name} is already active until {existing.expires_at.date().isoformat()}.",
                detail={"expiresAt": existing.expires_at.isoformat()},
            )
            self._reject(requested, error, now)
            raise error

        try:
            priced = self.order_builder.build_order(quote.charge_usd)
        except BillingError as exc:
            self._reject(requested, exc, now)
            raise

        awaiting = requested.order_created(priced, now).await_completion(now)
        self.attempts.save(awaiting)
        self.event_logger.log(
            BillingAuditEvent(
                event_type=BillingAuditEventType.ORDER_CREATED,
                attempt_id=awaiting.attempt_id,
                actor_id=user_id,
                metadata={
                    "order_id": awaiting.order.id,
                    "tier": tier.value,
                    "term": term.value,
                    "charge_usd": str(quote.charge_usd),
                },
            )
        )
        return PurchaseCheckout(attempt=awaiting, quote=quote)

    def complete_purchase(self, transaction: Transaction) -> PurchaseAttempt:
        """Verify a completed payment and grant the requested tier.

        Returns the resulting ``Granted`` or ``Rejected`` attempt. A transaction
        for an attempt that already left ``AwaitingCompletion`` returns the
        stored attempt without granting again.
        """

        attempt = self.attempts.get_by_order(transaction.order_id)
        if attempt is None:
            raise UnknownOrder(detail={"orderId": transaction.order_id})
        if attempt.is_terminal:
            logger.info(
                "Ignoring completion for settled purchase",
                extra={"attempt_id": attempt.attempt_id, "state": attempt.state},
            )
            return attempt
        if not isinstance(attempt, AwaitingCompletion):
            logger.info(
                "Completion already in progress",
                extra={"attempt_id": attempt.attempt_id, "state": attempt.state},
            )
            return attempt

        now = self._now()
        verifying = attempt.begin_verification(transaction, now)
        if not self.attempts.transition(verifying, expected_state=attempt.state):
            return self.attempts.get(attempt.attempt_id) or attempt

        if not self.verify_signature(transaction):
            rejected = verifying.reject(SignatureMismatch.code, SignatureMismatch.default_message, now)
            self.attempts.transition(rejected, expected_state=verifying.state)
            self._log_rejection(rejected)
            return rejected

        try:
            entitlement = self.store.grant(attempt.user_id, attempt.tier_id, attempt.term, now)
        except Exception:
            rejected = verifying.reject("grant_failed", "Entitlement could not be recorded.", now)
            self.attempts.transition(rejected, expected_state=verifying.state)
            self._log_rejection(rejected)
            raise

        granted = verifying.grant(entitlement, now)
        self.attempts.transition(granted, expected_state=verifying.state)
        self.event_logger.log(
            BillingAuditEvent(
                event_type=BillingAuditEventType.PURCHASE_GRANTED,
                attempt_id=granted.attempt_id,
                actor_id=granted.user_id,
                metadata={
                    "order_id": granted.order.id,
                    "payment_id": granted.payment_id,
                    "tier": granted.tier_id.value,
                    "expires_at": entitlement.expires_at.isoformat(),
                },
            )
        )
        return granted

    def _reject(self, attempt: Requested, error: BillingError, now: datetime) -> Rejected:
        rejected = attempt.reject(error.code, error.message, now)
        self.attempts.save(rejected)
        self._log_rejection(rejected)
        return rejected

    def _log_rejection(self, rejected: Rejected) -> None:
        metadata = {"reason_code": rejected.reason_code, "tier": rejected.tier_id.value}
        if rejected.order is not None:
            metadata["order_id"] = rejected.order.id
        self.event_logger.log(
            BillingAuditEvent(
                event_type=BillingAuditEventType.PURCHASE_REJECTED,
                attempt_id=rejected.attempt_id,
                actor_id=rejected.user_id,
                metadata=metadata,
            )
        )


def is_granted(attempt: PurchaseAttempt) -> bool:
    return isinstance(attempt, Granted)


__all__ = [
    "BillingEventLogger",
    "PurchaseAttemptRepository",
    "PurchaseService",
    "is_granted",
]
