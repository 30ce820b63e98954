"""
local_db.py - SQLite Store for Offline Actions and Read Caches

This module persists user mutations made while the client is offline
(the pending action queue) and short-lived read caches for products,
market prices and generic keyed values.
"""

import json
import sqlite3
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional
import logging

from ..errors import PersistenceError, ValidationError

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("LocalDB")

SCHEMA_VERSION = 1
DEFAULT_CACHE_TTL = 3600  # seconds


class LocalDatabase:
    """SQLite database manager for the offline queue and caches."""

    def __init__(self, db_path: str, clock: Optional[Callable[[], float]] = None):
        self.db_path = str(db_path)
        self._clock = clock or time.time
        self._ensure_data_dir()
        self._init_db()

    def _ensure_data_dir(self):
        """Create the database directory if it doesn't exist."""
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

    def _get_connection(self) -> sqlite3.Connection:
        """Get a database connection with row factory."""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self):
        """Initialize database schema if the store is older than SCHEMA_VERSION."""
        conn = self._get_connection()
        cursor = conn.cursor()

        version = cursor.execute("PRAGMA user_version").fetchone()[0]
        if version < 1:
            # Pending Actions Table
            cursor.execute('''
                CREATE TABLE IF NOT EXISTS pending_actions (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    action_type TEXT NOT NULL,
                    payload TEXT NOT NULL,
                    enqueued_at TEXT NOT NULL
                )
            ''')

            # Product Cache (natural key: _id)
            cursor.execute('''
                CREATE TABLE IF NOT EXISTS products (
                    id TEXT PRIMARY KEY,
                    data TEXT NOT NULL
                )
            ''')

            # Price Cache (natural key: product)
            cursor.execute('''
                CREATE TABLE IF NOT EXISTS prices (
                    product TEXT PRIMARY KEY,
                    data TEXT NOT NULL
                )
            ''')

            # Generic TTL Cache
            cursor.execute('''
                CREATE TABLE IF NOT EXISTS cache (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    expires_at REAL NOT NULL
                )
            ''')

            # Activity Logs Table
            cursor.execute('''
                CREATE TABLE IF NOT EXISTS activity_logs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    event_type TEXT NOT NULL,
                    status TEXT DEFAULT 'pending',
                    details TEXT,
                    created_at TEXT DEFAULT CURRENT_TIMESTAMP
                )
            ''')

            cursor.execute(f"PRAGMA user_version = {SCHEMA_VERSION}")

        conn.commit()
        conn.close()
        logger.info(f"SQLite store initialized at: {self.db_path}")

    def close(self):
        """Connections are per-operation; nothing is held open between calls."""
        logger.info(f"LocalDatabase closed: {self.db_path}")

    # ==================== Pending Action Queue ====================

    def enqueue_action(self, action_type: str, payload: Dict[str, Any]) -> Dict:
        """
        Append an action to the pending queue and commit it.

        Args:
            action_type: Action identifier, e.g. CREATE_PRODUCT
            payload: JSON-serialisable action data

        Returns:
            The stored action with its assigned id

        Raises:
            ValidationError: empty action type or unserialisable payload
            PersistenceError: the write could not be committed
        """
        if not action_type:
            raise ValidationError("action_type is required")
        try:
            encoded = json.dumps(payload)
        except (TypeError, ValueError) as e:
            raise ValidationError(f"Payload is not JSON-serialisable: {e}") from e

        enqueued_at = datetime.now(timezone.utc).isoformat()

        try:
            conn = self._get_connection()
        except sqlite3.Error as e:
            raise PersistenceError(f"Cannot open offline store: {e}") from e

        try:
            cursor = conn.cursor()
            cursor.execute('''
                INSERT INTO pending_actions (action_type, payload, enqueued_at)
                VALUES (?, ?, ?)
            ''', (action_type, encoded, enqueued_at))
            action_id = cursor.lastrowid
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            logger.error(f"Failed to queue {action_type}: {e}")
            raise PersistenceError(f"Failed to queue {action_type}: {e}") from e
        finally:
            conn.close()

        logger.info(f"Queued action #{action_id}: {action_type}")
        return {
            'id': action_id,
            'action_type': action_type,
            'payload': payload,
            'enqueued_at': enqueued_at,
        }

    def list_pending(self) -> List[Dict]:
        """Get all pending actions, oldest first."""
        conn = self._get_connection()
        cursor = conn.cursor()

        cursor.execute('''
            SELECT id, action_type, payload, enqueued_at
            FROM pending_actions
            ORDER BY id ASC
        ''')

        actions = [
            {
                'id': row['id'],
                'action_type': row['action_type'],
                'payload': json.loads(row['payload']),
                'enqueued_at': row['enqueued_at'],
            }
            for row in cursor.fetchall()
        ]

        conn.close()
        return actions

    def remove_action(self, action_id: int):
        """Delete one queued action. Unknown ids are ignored."""
        try:
            conn = self._get_connection()
            try:
                conn.execute("DELETE FROM pending_actions WHERE id = ?", (action_id,))
                conn.commit()
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to remove action #{action_id}: {e}") from e

    def get_pending_count(self) -> int:
        """Get count of pending actions."""
        conn = self._get_connection()
        cursor = conn.cursor()
        cursor.execute("SELECT COUNT(*) FROM pending_actions")
        count = cursor.fetchone()[0]
        conn.close()
        return count

    # ==================== Product & Price Caches ====================

    def _put_keyed(self, table: str, key_column: str, key_field: str, records: List[Dict]):
        conn = self._get_connection()
        try:
            conn.executemany(
                f"INSERT OR REPLACE INTO {table} ({key_column}, data) VALUES (?, ?)",
                [(str(record[key_field]), json.dumps(record)) for record in records],
            )
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise PersistenceError(f"Failed to cache {table}: {e}") from e
        finally:
            conn.close()

    def _get_all(self, table: str) -> List[Dict]:
        conn = self._get_connection()
        rows = conn.execute(f"SELECT data FROM {table}").fetchall()
        conn.close()
        return [json.loads(row['data']) for row in rows]

    def cache_products(self, products: List[Dict]):
        """Store products keyed by their _id."""
        self._put_keyed('products', 'id', '_id', products)

    def get_cached_products(self) -> List[Dict]:
        return self._get_all('products')

    def cache_prices(self, prices: List[Dict]):
        """Store market prices keyed by product."""
        self._put_keyed('prices', 'product', 'product', prices)

    def get_cached_prices(self) -> List[Dict]:
        return self._get_all('prices')

    # ==================== Generic TTL Cache ====================

    def set_cache(self, key: str, value: Any, ttl: float = DEFAULT_CACHE_TTL):
        """Store a value that expires after ttl seconds."""
        expires_at = self._clock() + ttl
        conn = self._get_connection()
        try:
            conn.execute('''
                INSERT OR REPLACE INTO cache (key, value, expires_at)
                VALUES (?, ?, ?)
            ''', (key, json.dumps(value), expires_at))
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise PersistenceError(f"Failed to cache {key}: {e}") from e
        finally:
            conn.close()

    def get_cache(self, key: str) -> Optional[Any]:
        """Return a cached value, or None if absent or expired (expired entries are evicted)."""
        conn = self._get_connection()
        try:
            row = conn.execute(
                "SELECT value, expires_at FROM cache WHERE key = ?", (key,)
            ).fetchone()
            if row is None:
                return None
            if row['expires_at'] < self._clock():
                conn.execute("DELETE FROM cache WHERE key = ?", (key,))
                conn.commit()
                return None
            return json.loads(row['value'])
        finally:
            conn.close()

    def clear_cache(self, key: str):
        conn = self._get_connection()
        conn.execute("DELETE FROM cache WHERE key = ?", (key,))
        conn.commit()
        conn.close()

    # ==================== Activity Logging ====================

    def log_activity(self, event_type: str, status: str = 'pending', details: str = None):
        """Log a client activity event."""
        conn = self._get_connection()
        cursor = conn.cursor()

        cursor.execute('''
            INSERT INTO activity_logs (event_type, status, details)
            VALUES (?, ?, ?)
        ''', (event_type, status, details))

        conn.commit()
        conn.close()

    def get_recent_logs(self, limit: int = 50) -> List[Dict]:
        """Get recent activity logs, newest first."""
        conn = self._get_connection()
        cursor = conn.cursor()

        cursor.execute('''
            SELECT * FROM activity_logs
            ORDER BY id DESC
            LIMIT ?
        ''', (limit,))

        logs = [dict(row) for row in cursor.fetchall()]
        conn.close()
        return logs
