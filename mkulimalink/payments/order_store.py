"""
order_store.py - SQLite persistence for orders and their timeline.

Orders are never deleted. Updates go through compare_and_set(), which
only writes when the stored version still matches what the caller read.
"""

import sqlite3
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple
import logging

from ..errors import PersistenceError

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("OrderStore")

ORDER_COLUMNS = (
    'id', 'buyer', 'seller', 'product', 'quantity', 'unit_price', 'total_amount',
    'status', 'payment_status', 'payment_method', 'transaction_id',
    'cancellation_reason', 'cancelled_at', 'refund_amount', 'refund_reason',
    'refund_requested_at', 'refunded_at', 'version', 'created_at', 'updated_at',
)

UPDATABLE_COLUMNS = {
    'status', 'payment_status', 'payment_method', 'transaction_id',
    'cancellation_reason', 'cancelled_at', 'refund_amount', 'refund_reason',
    'refund_requested_at', 'refunded_at',
}


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class OrderStore:

    def __init__(self, db_path: str):
        self.db_path = str(db_path)
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _get_connection(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self):
        conn = self._get_connection()
        cursor = conn.cursor()

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS orders (
                id TEXT PRIMARY KEY,
                buyer TEXT NOT NULL,
                seller TEXT NOT NULL,
                product TEXT NOT NULL,
                quantity INTEGER NOT NULL CHECK (quantity >= 1),
                unit_price INTEGER NOT NULL,
                total_amount INTEGER NOT NULL,
                status TEXT NOT NULL DEFAULT 'pending',
                payment_status TEXT NOT NULL DEFAULT 'pending',
                payment_method TEXT NOT NULL DEFAULT 'tigopesa',
                transaction_id TEXT,
                cancellation_reason TEXT,
                cancelled_at TEXT,
                refund_amount INTEGER,
                refund_reason TEXT,
                refund_requested_at TEXT,
                refunded_at TEXT,
                version INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        ''')
        cursor.execute(
            'CREATE INDEX IF NOT EXISTS idx_orders_transaction ON orders (transaction_id)'
        )

        # Order timeline
        cursor.execute('''
            CREATE TABLE IF NOT EXISTS order_events (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                order_id TEXT NOT NULL,
                event_type TEXT NOT NULL,
                note TEXT,
                created_at TEXT NOT NULL,
                FOREIGN KEY (order_id) REFERENCES orders(id)
            )
        ''')

        # Seller revenue, credited when a payment completes
        cursor.execute('''
            CREATE TABLE IF NOT EXISTS seller_balances (
                seller TEXT PRIMARY KEY,
                balance INTEGER NOT NULL DEFAULT 0,
                updated_at TEXT NOT NULL
            )
        ''')

        conn.commit()
        conn.close()
        logger.info(f"Order store initialized at: {self.db_path}")

    # ==================== Orders ====================

    def create(self, order: Dict[str, Any]) -> Dict[str, Any]:
        """Insert a new order. Missing id/timestamps are filled in."""
        now = utc_now()
        record = {
            'id': order.get('id') or str(uuid.uuid4()),
            'status': 'pending',
            'payment_status': 'pending',
            'payment_method': 'tigopesa',
            'version': 0,
            'created_at': now,
            'updated_at': now,
            **{k: v for k, v in order.items() if v is not None},
        }
        columns = [c for c in ORDER_COLUMNS if c in record]
        placeholders = ', '.join('?' for _ in columns)

        conn = self._get_connection()
        try:
            conn.execute(
                f"INSERT INTO orders ({', '.join(columns)}) VALUES ({placeholders})",
                [record[c] for c in columns],
            )
            conn.execute(
                "INSERT INTO order_events (order_id, event_type, note, created_at) VALUES (?, ?, ?, ?)",
                (record['id'], 'created', None, now),
            )
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise PersistenceError(f"Failed to create order: {e}") from e
        finally:
            conn.close()

        return self.get(record['id'])

    def get(self, order_id: str) -> Optional[Dict[str, Any]]:
        conn = self._get_connection()
        row = conn.execute("SELECT * FROM orders WHERE id = ?", (order_id,)).fetchone()
        conn.close()
        return dict(row) if row else None

    def find_by_transaction_id(self, transaction_id: str) -> Optional[Dict[str, Any]]:
        conn = self._get_connection()
        row = conn.execute(
            "SELECT * FROM orders WHERE transaction_id = ?", (transaction_id,)
        ).fetchone()
        conn.close()
        return dict(row) if row else None

    def compare_and_set(
        self,
        order_id: str,
        expected_version: int,
        changes: Dict[str, Any],
        event_type: Optional[str] = None,
        note: Optional[str] = None,
        credit: Optional[Tuple[str, int]] = None,
    ) -> bool:
        """
        Apply changes only if the order is still at expected_version.

        The update, its timeline entry and the optional (seller, amount)
        balance credit commit together. A negative amount is a debit.

        Returns:
            True if the row was updated, False if another writer got there first
        """
        unknown = set(changes) - UPDATABLE_COLUMNS
        if unknown:
            raise ValueError(f"Columns cannot be updated: {sorted(unknown)}")

        now = utc_now()
        assignments = ', '.join(f"{column} = ?" for column in changes)
        params = list(changes.values()) + [now, order_id, expected_version]

        conn = self._get_connection()
        try:
            cursor = conn.execute(
                f"UPDATE orders SET {assignments}, version = version + 1, updated_at = ? "
                f"WHERE id = ? AND version = ?",
                params,
            )
            if cursor.rowcount != 1:
                conn.rollback()
                return False
            if event_type:
                conn.execute(
                    "INSERT INTO order_events (order_id, event_type, note, created_at) VALUES (?, ?, ?, ?)",
                    (order_id, event_type, note, now),
                )
            if credit:
                seller, amount = credit
                conn.execute(
                    "INSERT INTO seller_balances (seller, balance, updated_at) VALUES (?, ?, ?) "
                    "ON CONFLICT(seller) DO UPDATE SET balance = balance + excluded.balance, "
                    "updated_at = excluded.updated_at",
                    (seller, amount, now),
                )
            conn.commit()
            return True
        except sqlite3.Error as e:
            conn.rollback()
            raise PersistenceError(f"Failed to update order {order_id}: {e}") from e
        finally:
            conn.close()

    def get_events(self, order_id: str) -> List[Dict[str, Any]]:
        """Order timeline, oldest first."""
        conn = self._get_connection()
        rows = conn.execute(
            "SELECT event_type, note, created_at FROM order_events WHERE order_id = ? ORDER BY id ASC",
            (order_id,),
        ).fetchall()
        conn.close()
        return [dict(row) for row in rows]

    # ==================== Seller Balances ====================

    def get_seller_balance(self, seller: str) -> int:
        conn = self._get_connection()
        row = conn.execute("SELECT balance FROM seller_balances WHERE seller = ?", (seller,)).fetchone()
        conn.close()
        return row['balance'] if row else 0
