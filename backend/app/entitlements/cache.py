"""Read-through cache abstractions for entitlement sets."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from threading import Lock
from typing import Callable, Dict, Optional, Protocol

from .models import EntitlementSet


class EntitlementCache(Protocol):
    """Protocol describing cache operations used by the entitlement store."""

    def get(self, user_id: str) -> Optional[EntitlementSet]:
        ...

    def set(self, user_id: str, value: EntitlementSet) -> None:
        ...

    def invalidate(self, user_id: str) -> None:
        ...


@dataclass
class _CacheEntry:
    value: EntitlementSet
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


class InMemoryEntitlementCache:
    """Simple in-memory cache suitable for tests and single-process deployments."""

    def __init__(
        self,
        *,
        ttl_seconds: int = 60,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._entries: Dict[str, _CacheEntry] = {}
        self._lock = Lock()
        self._ttl = timedelta(seconds=max(ttl_seconds, 0))
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def get(self, user_id: str) -> Optional[EntitlementSet]:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(user_id)
            if not entry:
                return None
            if entry.is_expired(now):
                self._entries.pop(user_id, None)
                return None
            return entry.value

    def set(self, user_id: str, value: EntitlementSet) -> None:
        if not self._ttl:
            return
        expires_at = self._clock() + self._ttl
        with self._lock:
            self._entries[user_id] = _CacheEntry(value=value, expires_at=expires_at)

    def invalidate(self, user_id: str) -> None:
        with self._lock:
            self._entries.pop(user_id, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
