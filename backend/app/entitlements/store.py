"""Server-authoritative store for per-user tier entitlements."""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from threading import Lock
from typing import Callable, Dict, List, Optional, Protocol

from .cache import EntitlementCache
from .catalog import implied_tiers
from .models import BillingTerm, Entitlement, EntitlementSet, TierKey

logger = logging.getLogger(__name__)

EntitlementMutation = Callable[[EntitlementSet], Dict[TierKey, Entitlement]]


class EntitlementRepository(Protocol):
    """Persistence operations required by the entitlement store."""

    def load(self, user_id: str) -> EntitlementSet:
        ...

    def update(self, user_id: str, mutate: EntitlementMutation) -> EntitlementSet:
        """Apply ``mutate`` to the user's current set and persist its result atomically."""

    def delete_expired(self, user_id: str, now: datetime) -> int:
        ...


class EntitlementStore:
    """Maintains each user's tier entitlements with expiry and tier composition."""

    def __init__(
        self,
        repository: EntitlementRepository,
        *,
        cache: Optional[EntitlementCache] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._repository = repository
        self._cache = cache
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._locks: Dict[str, Lock] = {}
        self._locks_guard = Lock()

    def _user_lock(self, user_id: str) -> Lock:
        with self._locks_guard:
            lock = self._locks.get(user_id)
            if lock is None:
                lock = self._locks[user_id] = Lock()
            return lock

    def now(self) -> datetime:
        return self._clock()

    def get_entitlements(self, user_id: str, *, fresh: bool = False) -> EntitlementSet:
        """Return the user's entitlement set, expired rows included."""

        if self._cache is None:
            return self._repository.load(user_id)
        if not fresh:
            cached = self._cache.get(user_id)
            if cached is not None:
                return cached

        # Cache fills and invalidations both hold the user lock.
        with self._user_lock(user_id):
            entitlement_set = self._repository.load(user_id)
            self._cache.set(user_id, entitlement_set)
        return entitlement_set

    def is_active(self, user_id: str, tier: TierKey, now: Optional[datetime] = None) -> bool:
        moment = now or self._clock()
        return self.get_entitlements(user_id).is_active(tier, moment)

    def active_tiers(self, user_id: str, now: Optional[datetime] = None) -> List[TierKey]:
        moment = now or self._clock()
        return [entitlement.tier_id for entitlement in self.get_entitlements(user_id).active(moment)]

    def grant(
        self,
        user_id: str,
        tier: TierKey,
        term: BillingTerm,
        now: Optional[datetime] = None,
    ) -> Entitlement:
        """Grant ``tier`` for one ``term`` starting at ``now``.

        The tier's expiry is overwritten, not stacked. Every tier implied by
        ``tier`` is extended to at least the new expiry and never shortened.
        """

        moment = now or self._clock()
        expires_at = moment + term.duration
        granted = Entitlement(tier_id=tier, term=term, expires_at=expires_at)

        def _apply(current: EntitlementSet) -> Dict[TierKey, Entitlement]:
            updates: Dict[TierKey, Entitlement] = {tier: granted}
            for implied in implied_tiers(tier):
                existing = current.get(implied)
                if existing is None:
                    updates[implied] = Entitlement(tier_id=implied, term=term, expires_at=expires_at)
                elif existing.expires_at < expires_at:
                    updates[implied] = existing.model_copy(update={"expires_at": expires_at})
            return updates

        with self._user_lock(user_id):
            updated = self._repository.update(user_id, _apply)
            if self._cache is not None:
                self._cache.invalidate(user_id)

        logger.info(
            "Entitlement granted",
            extra={
                "user_id": user_id,
                "tier": tier.value,
                "term": term.value,
                "expires_at": expires_at.isoformat(),
                "active_tiers": [entitlement.tier_id.value for entitlement in updated.active(moment)],
            },
        )
        return granted

    def purge_expired(self, user_id: str, now: Optional[datetime] = None) -> int:
        """Delete entitlements that expired at or before ``now``."""

        moment = now or self._clock()
        with self._user_lock(user_id):
            removed = self._repository.delete_expired(user_id, moment)
            if self._cache is not None:
                self._cache.invalidate(user_id)
        if removed:
            logger.debug("Purged %s expired entitlements for user %s", removed, user_id)
        return removed
