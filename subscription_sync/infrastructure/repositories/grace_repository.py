"""Repository for post-checkout payment grace flags."""

import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Optional, Union

from ...domain.errors import StorageError
from ...domain.models import PaymentGrace


class SQLitePaymentGraceRepository:
    """Stores at most one grace flag per user in SQLite."""

    def __init__(self, db_path: Union[str, Path]):
        path = Path(db_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        self.db_path = str(path)
        self._initialize_table()

    def _initialize_table(self) -> None:
        self._execute("""
            CREATE TABLE IF NOT EXISTS payment_grace (
                user_id TEXT PRIMARY KEY,
                checkout_session_id TEXT,
                granted_at TEXT NOT NULL,
                expires_at TEXT NOT NULL
            )
        """)

    def get_grace(self, user_id: str) -> Optional[PaymentGrace]:
        try:
            with sqlite3.connect(self.db_path) as conn:
                conn.row_factory = sqlite3.Row
                row = conn.execute(
                    "SELECT * FROM payment_grace WHERE user_id = ?", (user_id,)
                ).fetchone()
        except sqlite3.Error as exc:
            raise StorageError(f"Payment grace read failed: {exc}") from exc

        if not row:
            return None

        return PaymentGrace(
            user_id=row["user_id"],
            checkout_session_id=row["checkout_session_id"],
            granted_at=datetime.fromisoformat(row["granted_at"]),
            expires_at=datetime.fromisoformat(row["expires_at"]),
        )

    def save_grace(self, grace: PaymentGrace) -> PaymentGrace:
        self._execute(
            """
            INSERT INTO payment_grace (user_id, checkout_session_id, granted_at, expires_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(user_id) DO UPDATE SET
                checkout_session_id = excluded.checkout_session_id,
                granted_at = excluded.granted_at,
                expires_at = excluded.expires_at
            """,
            (
                grace.user_id,
                grace.checkout_session_id,
                grace.granted_at.isoformat(),
                grace.expires_at.isoformat(),
            ),
        )
        return grace

    def _execute(self, sql: str, params: tuple = ()) -> None:
        conn = None
        try:
            conn = sqlite3.connect(self.db_path)
            with conn:
                conn.execute(sql, params)
        except sqlite3.Error as exc:
            raise StorageError(f"Payment grace write failed: {exc}") from exc
        finally:
            if conn is not None:
                conn.close()
