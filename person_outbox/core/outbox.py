"""
Durable pending-operation store (SQLite).

Holds mutations that could not reach the remote store. Entries are appended
by the router, read and deleted by the reconciliation worker, never updated.
list_all() returns entries in insertion order, which is the replay order.
"""

import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Generator, List, Optional

from . import config
from .schema import OperationKind, PendingOperation
from ..util.logging import logger


class PendingOperationStore:
    """Append / scan / delete-by-id queue backed by a SQLite file."""

    def __init__(self, db_path: Optional[str] = None):
        self.db_path = db_path or config.OUTBOX_DB_PATH
        self._lock = threading.Lock()
        config.ensure_db_directory(self.db_path)
        self.init_db()

    @contextmanager
    def get_db(self) -> Generator[sqlite3.Connection, None, None]:
        """Get a SQLite connection to the queue file."""
        conn = sqlite3.connect(self.db_path, timeout=30)
        try:
            conn.execute("PRAGMA synchronous=FULL")
            yield conn
        finally:
            conn.close()

    def init_db(self):
        """Create the queue table if needed."""
        with self.get_db() as conn:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute('''
                CREATE TABLE IF NOT EXISTS pending_operations (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    identifier TEXT NOT NULL,
                    kind TEXT NOT NULL,
                    payload TEXT NOT NULL,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            ''')
            conn.commit()

    def append(self, identifier: str, kind: OperationKind, payload: str) -> int:
        """Queue a mutation and return its sequence id."""
        kind_value = kind.value if isinstance(kind, OperationKind) else str(kind)
        with self._lock, self.get_db() as conn:
            cursor = conn.execute(
                "INSERT INTO pending_operations (identifier, kind, payload) VALUES (?, ?, ?)",
                (identifier, kind_value, payload)
            )
            conn.commit()
            pending_id = cursor.lastrowid

        logger.log_outbox_operation("append", pending_id, identifier, kind_value, payload)
        return pending_id

    def list_all(self) -> List[PendingOperation]:
        """All queued operations, oldest first."""
        with self.get_db() as conn:
            rows = conn.execute(
                "SELECT id, identifier, kind, payload, created_at FROM pending_operations ORDER BY id ASC"
            ).fetchall()

        return [
            PendingOperation(
                id=row[0],
                identifier=row[1],
                kind=row[2],
                payload=row[3],
                created_at=_parse_created_at(row[4])
            )
            for row in rows
        ]

    def delete_by_id(self, pending_id: int) -> bool:
        """Remove one queued operation. Returns False if it was already gone."""
        with self._lock, self.get_db() as conn:
            cursor = conn.execute("DELETE FROM pending_operations WHERE id = ?", (pending_id,))
            conn.commit()
            removed = cursor.rowcount > 0

        if removed:
            logger.log_outbox_operation("delete", pending_id)
        return removed

    def count(self) -> int:
        with self.get_db() as conn:
            return conn.execute("SELECT COUNT(*) FROM pending_operations").fetchone()[0]

    def health_check(self) -> bool:
        """Check that the queue table is reachable."""
        try:
            with self.get_db() as conn:
                tables = conn.execute(
                    "SELECT name FROM sqlite_master WHERE type='table' AND name='pending_operations'"
                ).fetchall()
                return len(tables) == 1
        except sqlite3.Error:
            return False


def _parse_created_at(value) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except (TypeError, ValueError):
        return None
