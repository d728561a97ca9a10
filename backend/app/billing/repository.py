"""Persistence layer for purchase attempts."""
from __future__ import annotations

from contextlib import contextmanager
from threading import Lock
from typing import Dict, Iterator, Optional

import psycopg2
import psycopg2.extras
from psycopg2.extensions import connection as PgConnection
from psycopg2.extensions import cursor as PgCursor

from ..entitlements.repository import managed_connection
from .models import PurchaseAttempt, purchase_attempt_adapter


def _order_id(attempt: PurchaseAttempt) -> Optional[str]:
    order = getattr(attempt, "order", None)
    return order.id if order is not None else None


def _row_to_attempt(row: dict) -> PurchaseAttempt:
    return purchase_attempt_adapter.validate_python(row["payload"])


class InMemoryPurchaseAttemptRepository:
    """Purchase attempts kept in process memory."""

    def __init__(self) -> None:
        self._attempts: Dict[str, PurchaseAttempt] = {}
        self._order_index: Dict[str, str] = {}
        self._lock = Lock()

    def save(self, attempt: PurchaseAttempt) -> PurchaseAttempt:
        with self._lock:
            self._attempts[attempt.attempt_id] = attempt
            order_id = _order_id(attempt)
            if order_id:
                self._order_index[order_id] = attempt.attempt_id
        return attempt

    def get(self, attempt_id: str) -> Optional[PurchaseAttempt]:
        with self._lock:
            return self._attempts.get(attempt_id)

    def get_by_order(self, order_id: str) -> Optional[PurchaseAttempt]:
        with self._lock:
            attempt_id = self._order_index.get(order_id)
            return self._attempts.get(attempt_id) if attempt_id else None

    def transition(self, attempt: PurchaseAttempt, *, expected_state: str) -> bool:
        with self._lock:
            current = self._attempts.get(attempt.attempt_id)
            if current is None or current.state != expected_state:
                return False
            self._attempts[attempt.attempt_id] = attempt
            return True


class PostgresPurchaseAttemptRepository:
    """Concrete repository persisting purchase attempts in PostgreSQL."""

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

    def save(self, attempt: PurchaseAttempt) -> PurchaseAttempt:
        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO purchase_attempts (
                    attempt_id,
                    user_id,
                    order_id,
                    state,
                    payload
                )
                VALUES (%(attempt_id)s, %(user_id)s, %(order_id)s, %(state)s, %(payload)s)
                ON CONFLICT (attempt_id) DO UPDATE SET
                    order_id = EXCLUDED.order_id,
                    state = EXCLUDED.state,
                    payload = EXCLUDED.payload,
                    updated_at = NOW()
                RETURNING *
                """,
                {
                    "attempt_id": attempt.attempt_id,
                    "user_id": attempt.user_id,
                    "order_id": _order_id(attempt),
                    "state": attempt.state,
                    "payload": psycopg2.extras.Json(attempt.model_dump(mode="json")),
                },
            )
            row = cursor.fetchone()
            if not row:
                raise RuntimeError("Failed to persist purchase attempt")
            return _row_to_attempt(row)

    def get(self, attempt_id: str) -> Optional[PurchaseAttempt]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT *
                FROM purchase_attempts
                WHERE attempt_id = %s
                LIMIT 1
                """,
                (attempt_id,),
            )
            row = cursor.fetchone()
            return _row_to_attempt(row) if row else None

    def get_by_order(self, order_id: str) -> Optional[PurchaseAttempt]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT *
                FROM purchase_attempts
                WHERE order_id = %s
                LIMIT 1
                """,
                (order_id,),
            )
            row = cursor.fetchone()
            return _row_to_attempt(row) if row else None

    def transition(self, attempt: PurchaseAttempt, *, expected_state: str) -> bool:
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE purchase_attempts
                SET state = %s, payload = %s, updated_at = NOW()
                WHERE attempt_id = %s AND state = %s
                """,
                (
                    attempt.state,
                    psycopg2.extras.Json(attempt.model_dump(mode="json")),
                    attempt.attempt_id,
                    expected_state,
                ),
            )
            return cursor.rowcount > 0


__all__ = ["InMemoryPurchaseAttemptRepository", "PostgresPurchaseAttemptRepository"]
