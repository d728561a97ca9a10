"""Exchange rate lookup with a single cached snapshot."""
from __future__ import annotations

import logging
import math
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, Protocol

from .exceptions import RateUnavailable
from .models import RateSnapshot

logger = logging.getLogger("billing")

RATE_TTL = timedelta(hours=1)


class RateProvider(Protocol):
    """External source for the USD to local currency rate."""

    def fetch_rate(self) -> float:
        ...


class RateCache:
    """Memoizes one exchange rate for ``RATE_TTL`` and refreshes it lazily.

    Concurrent callers that miss the cache may each fetch; the last snapshot
    written wins, which is safe because every fetch describes the same pair.
    """

    def __init__(
        self,
        provider: RateProvider,
        *,
        clock: Optional[Callable[[], datetime]] = None,
        ttl: timedelta = RATE_TTL,
    ) -> None:
        self._provider = provider
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._ttl = ttl
        self._snapshot: Optional[RateSnapshot] = None

    @property
    def snapshot(self) -> Optional[RateSnapshot]:
        return self._snapshot

    def invalidate(self) -> None:
        self._snapshot = None

    def get_rate(self) -> float:
        now = self._clock()
        snapshot = self._snapshot
        if snapshot is not None and snapshot.is_fresh(now):
            return snapshot.rate
        return self._refresh(now).rate

    def _refresh(self, now: datetime) -> RateSnapshot:
        try:
            raw_rate = self._provider.fetch_rate()
        except RateUnavailable:
            raise
        except Exception as exc:
            logger.warning("Exchange rate fetch failed", extra={"error": str(exc)})
            raise RateUnavailable(f"Exchange rate provider failed: {exc}") from exc

        rate = _validated_rate(raw_rate)
        snapshot = RateSnapshot(rate=rate, fetched_at=now, expires_at=now + self._ttl)
        self._snapshot = snapshot
        logger.info(
            "Exchange rate refreshed",
            extra={"rate": rate, "rate_expires_at": snapshot.expires_at.isoformat()},
        )
        return snapshot


def _validated_rate(value: object) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise RateUnavailable("Exchange rate provider returned no rate")
    rate = float(value)
    if not math.isfinite(rate) or rate <= 0:
        raise RateUnavailable(f"Exchange rate provider returned an invalid rate: {value!r}")
    return rate


__all__ = ["RATE_TTL", "RateCache", "RateProvider"]
