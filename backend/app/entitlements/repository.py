"""Persistence layer for user entitlements."""
from __future__ import annotations

from contextlib import contextmanager
from copy import deepcopy
from datetime import datetime
from threading import Lock
from typing import Dict, Iterable, Iterator, Optional

import psycopg2
import psycopg2.extras
from psycopg2.extensions import connection as PgConnection
from psycopg2.extensions import cursor as PgCursor

from .models import BillingTerm, Entitlement, EntitlementSet, TierKey
from .store import EntitlementMutation

try:  # pragma: no cover - resolve connection helper when imported from FastAPI app
    from backend.app_context import get_conn
except ModuleNotFoundError as exc:  # pragma: no cover
    if exc.name != "backend":
        raise
    from ...app_context import get_conn  # type: ignore[no-redef]


@contextmanager
def managed_connection(conn: Optional[PgConnection] = None):
    """Context manager that manages transaction boundaries for optional connections."""

    if conn is not None:
        yield conn, False
        return

    connection = get_conn()
    try:
        yield connection, True
        connection.commit()
    except Exception:
        connection.rollback()
        raise
    finally:
        connection.close()


def _rows_to_entitlement_set(user_id: str, rows: Iterable[dict]) -> EntitlementSet:
    entitlements: Dict[TierKey, Entitlement] = {}
    for row in rows:
        entitlement = Entitlement(
            tier_id=TierKey(row["tier_id"]),
            term=BillingTerm(row["term"]),
            expires_at=row["expires_at"],
        )
        entitlements[entitlement.tier_id] = entitlement
    return EntitlementSet(user_id=user_id, entitlements=entitlements)


class InMemoryEntitlementRepository:
    """Entitlement repository kept in process memory."""

    def __init__(self) -> None:
        self._rows: Dict[str, Dict[TierKey, Entitlement]] = {}
        self._lock = Lock()

    def load(self, user_id: str) -> EntitlementSet:
        with self._lock:
            rows = dict(self._rows.get(user_id, {}))
        return EntitlementSet(user_id=user_id, entitlements=rows)

    def update(self, user_id: str, mutate: EntitlementMutation) -> EntitlementSet:
        with self._lock:
            current = EntitlementSet(user_id=user_id, entitlements=deepcopy(self._rows.get(user_id, {})))
            updates = mutate(current)
            updated = current.with_entitlements(updates)
            self._rows[user_id] = dict(updated.entitlements)
            return updated

    def delete_expired(self, user_id: str, now: datetime) -> int:
        with self._lock:
            rows = self._rows.get(user_id, {})
            stale = [tier for tier, entitlement in rows.items() if not entitlement.is_active(now)]
            for tier in stale:
                rows.pop(tier, None)
            return len(stale)


class PostgresEntitlementRepository:
    """Concrete repository persisting entitlements in PostgreSQL."""

    def __init__(self, *, conn: Optional[PgConnection] = None) -> None:
        self._conn = conn

    @contextmanager
    def _cursor(self) -> Iterator[PgCursor]:
        with managed_connection(self._conn) as (connection, managed):
            cursor = connection.cursor(cursor_factory=psycopg2.extras.RealDictCursor)
            try:
                yield cursor
                if managed:
                    connection.commit()
            except Exception:
                if managed:
                    connection.rollback()
                raise
            finally:
                cursor.close()

    def load(self, user_id: str) -> EntitlementSet:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT tier_id, term, expires_at
                FROM user_entitlements
                WHERE user_id = %s
                """,
                (user_id,),
            )
            rows = cursor.fetchall() or []
            return _rows_to_entitlement_set(user_id, rows)

    def update(self, user_id: str, mutate: EntitlementMutation) -> EntitlementSet:
        with self._cursor() as cursor:
            # Serializes writers for this user until the transaction ends.
            cursor.execute("SELECT pg_advisory_xact_lock(hashtext(%s))", (user_id,))
            cursor.execute(
                """
                SELECT tier_id, term, expires_at
                FROM user_entitlements
                WHERE user_id = %s
                FOR UPDATE
                """,
                (user_id,),
            )
            current = _rows_to_entitlement_set(user_id, cursor.fetchall() or [])
            updates = mutate(current)
            for entitlement in updates.values():
                cursor.execute(
                    """
                    INSERT INTO user_entitlements (user_id, tier_id, term, expires_at)
                    VALUES (%(user_id)s, %(tier_id)s, %(term)s, %(expires_at)s)
                    ON CONFLICT (user_id, tier_id) DO UPDATE SET
                        term = EXCLUDED.term,
                        expires_at = EXCLUDED.expires_at,
                        updated_at = NOW()
                    """,
                    {
                        "user_id": user_id,
                        "tier_id": entitlement.tier_id.value,
                        "term": entitlement.term.value,
                        "expires_at": entitlement.expires_at,
                    },
                )
            return current.with_entitlements(updates)

    def delete_expired(self, user_id: str, now: datetime) -> int:
        with self._cursor() as cursor:
            cursor.execute(
                """
                DELETE FROM user_entitlements
                WHERE user_id = %s AND expires_at <= %s
                """,
                (user_id, now),
            )
            return cursor.rowcount


__all__ = [
    "InMemoryEntitlementRepository",
    "PostgresEntitlementRepository",
    "managed_connection",
]
