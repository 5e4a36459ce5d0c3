"""Repository for Subscription persistence."""

from __future__ import annotations

import logging
import sqlite3
import uuid
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, Optional, Union

from ...domain.errors import StorageError
from ...domain.models import Subscription, SubscriptionFields, SubscriptionStatus
from ...domain.policies import insert_values, merge_fields

logger = logging.getLogger(__name__)

_DATETIME_COLUMNS = (
    "current_period_start",
    "current_period_end",
    "cancel_at",
    "canceled_at",
    "created_at",
    "updated_at",
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SQLiteSubscriptionRepository:
    """Repository for managing Subscription rows in SQLite.

    A connection is opened per operation. Writes run inside ``BEGIN IMMEDIATE``
    so the read-merge-write of one delivery cannot interleave with another.
    """

    def __init__(
        self,
        db_path: Union[str, Path],
        clock: Optional[Callable[[], datetime]] = None,
        busy_timeout: float = 5.0,
    ):
        path = Path(db_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        self.db_path = str(path)
        self._clock = clock or _utcnow
        self._busy_timeout = busy_timeout
        self._initialize_table()

    def _initialize_table(self) -> None:
        """Create subscriptions table if it doesn't exist."""
        with self._transaction() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS subscriptions (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL UNIQUE,
                    status TEXT NOT NULL,
                    plan TEXT,
                    external_customer_id TEXT,
                    external_subscription_id TEXT UNIQUE,
                    current_period_start TEXT,
                    current_period_end TEXT,
                    cancel_at TEXT,
                    canceled_at TEXT,
                    cancel_at_period_end INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_subscriptions_external_customer_id "
                "ON subscriptions(external_customer_id)"
            )

    # Connection handling ----------------------------------------------------
    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, timeout=self._busy_timeout, isolation_level=None)
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        try:
            conn = self._connect()
        except sqlite3.Error as exc:
            raise StorageError(f"Unable to open subscription store: {exc}") from exc
        try:
            conn.execute("BEGIN IMMEDIATE")
            yield conn
            conn.execute("COMMIT")
        except sqlite3.Error as exc:
            self._rollback(conn)
            raise StorageError(f"Subscription store write failed: {exc}") from exc
        except BaseException:
            self._rollback(conn)
            raise
        finally:
            conn.close()

    @contextmanager
    def _reading(self) -> Iterator[sqlite3.Connection]:
        try:
            conn = self._connect()
        except sqlite3.Error as exc:
            raise StorageError(f"Unable to open subscription store: {exc}") from exc
        try:
            yield conn
        except sqlite3.Error as exc:
            raise StorageError(f"Subscription store read failed: {exc}") from exc
        finally:
            conn.close()

    @staticmethod
    def _rollback(conn: sqlite3.Connection) -> None:
        if conn.in_transaction:
            try:
                conn.execute("ROLLBACK")
            except sqlite3.Error:
                logger.warning("Rollback failed for subscription transaction", exc_info=True)

    # Reads ------------------------------------------------------------------
    def find_by_user_id(self, user_id: str) -> Optional[Subscription]:
        """Get the subscription row owned by a user."""
        with self._reading() as conn:
            return self._select(conn, "user_id", user_id)

    def find_by_external_subscription_id(self, external_subscription_id: str) -> Optional[Subscription]:
        """Get subscription by processor subscription ID."""
        with self._reading() as conn:
            return self._select(conn, "external_subscription_id", external_subscription_id)

    # Writes -----------------------------------------------------------------
    def upsert_by_user_id(self, user_id: str, fields: SubscriptionFields) -> Subscription:
        """Insert the user's row, or merge ``fields`` into it."""
        with self._transaction() as conn:
            existing = self._select(conn, "user_id", user_id)
            if existing is None:
                return self._insert(conn, user_id, fields)
            return self._merge(conn, existing, fields)

    def upsert_by_external_subscription_id(
        self,
        external_subscription_id: str,
        fields: SubscriptionFields,
        user_id: Optional[str] = None,
    ) -> Optional[Subscription]:
        """Merge into the row keyed by ``external_subscription_id``.

        Without such a row the event is attached to ``user_id`` (inserting or
        re-keying that user's row). Returns ``None`` when neither is available.
        """
        fields = replace(fields, external_subscription_id=external_subscription_id)
        with self._transaction() as conn:
            existing = self._select(conn, "external_subscription_id", external_subscription_id)
            if existing is not None:
                return self._merge(conn, existing, fields)
            if not user_id:
                return None
            owned = self._select(conn, "user_id", user_id)
            if owned is None:
                return self._insert(conn, user_id, fields)
            return self._merge(conn, owned, fields)

    def mark_canceled(self, external_subscription_id: str, canceled_at: datetime) -> Optional[Subscription]:
        """Set status to canceled. Returns ``None`` for untracked subscriptions."""
        fields = SubscriptionFields(status=SubscriptionStatus.CANCELED, canceled_at=canceled_at)
        with self._transaction() as conn:
            existing = self._select(conn, "external_subscription_id", external_subscription_id)
            if existing is None:
                return None
            return self._merge(conn, existing, fields)

    def update_status_by_external_subscription_id(
        self,
        external_subscription_id: str,
        status: SubscriptionStatus,
        current_period_start: Optional[datetime] = None,
        current_period_end: Optional[datetime] = None,
    ) -> Optional[Subscription]:
        """Update status and billing window of an existing row only."""
        fields = SubscriptionFields(
            status=status,
            current_period_start=current_period_start,
            current_period_end=current_period_end,
        )
        with self._transaction() as conn:
            existing = self._select(conn, "external_subscription_id", external_subscription_id)
            if existing is None:
                return None
            return self._merge(conn, existing, fields)

    # Helpers ----------------------------------------------------------------
    def _select(self, conn: sqlite3.Connection, column: str, value: str) -> Optional[Subscription]:
        row = conn.execute(
            f"SELECT * FROM subscriptions WHERE {column} = ?", (value,)
        ).fetchone()
        if not row:
            return None
        return self._row_to_subscription(row)

    def _insert(self, conn: sqlite3.Connection, user_id: str, fields: SubscriptionFields) -> Subscription:
        now = self._clock()
        values = insert_values(fields)
        values.update(id=uuid.uuid4().hex, user_id=user_id, created_at=now, updated_at=now)
        columns = ", ".join(values)
        placeholders = ", ".join("?" for _ in values)
        conn.execute(
            f"INSERT INTO subscriptions ({columns}) VALUES ({placeholders})",
            tuple(self._to_db(value) for value in values.values()),
        )
        logger.info(
            "Inserted subscription %s for user %s (external=%s)",
            values["id"],
            user_id,
            values.get("external_subscription_id"),
        )
        return self._select(conn, "id", values["id"])

    def _merge(self, conn: sqlite3.Connection, existing: Subscription, fields: SubscriptionFields) -> Subscription:
        decision = merge_fields(existing, fields)
        if decision.superseded:
            logger.info(
                "Ignoring event for superseded subscription %s; row %s tracks %s",
                fields.external_subscription_id,
                existing.id,
                existing.external_subscription_id,
            )
            return existing
        if decision.stale:
            logger.info(
                "Stale billing window for %s (stored end %s, incoming end %s)",
                existing.external_subscription_id,
                existing.current_period_end,
                fields.current_period_end,
            )
        if not decision.changes:
            return existing

        changes: Dict[str, Any] = dict(decision.changes)
        changes["updated_at"] = self._clock()
        assignments = ", ".join(f"{column} = ?" for column in changes)
        conn.execute(
            f"UPDATE subscriptions SET {assignments} WHERE id = ?",
            (*(self._to_db(value) for value in changes.values()), existing.id),
        )
        logger.debug("Updated subscription %s: %s", existing.id, sorted(decision.changes))
        return self._select(conn, "id", existing.id)

    @staticmethod
    def _to_db(value: Any) -> Any:
        if isinstance(value, datetime):
            return value.isoformat()
        if isinstance(value, Enum):
            return value.value
        if isinstance(value, bool):
            return int(value)
        return value

    @staticmethod
    def _row_to_subscription(row: sqlite3.Row) -> Subscription:
        """Convert database row to Subscription entity."""
        data = dict(row)
        for column in _DATETIME_COLUMNS:
            if data[column] is not None:
                data[column] = datetime.fromisoformat(data[column])
        data["cancel_at_period_end"] = bool(data["cancel_at_period_end"])
        return Subscription(**data)
