"""
SQLite key table administration.

Backs the `keys` CLI commands. The proxy itself only reads the table, once,
at startup (see sources.SqliteKeySource).
"""

import sqlite3
import logging
from pathlib import Path
from typing import List
from contextlib import contextmanager

logger = logging.getLogger("ollama-auth-proxy.keys.storage")


class KeyDatabase:
    """SQLite storage for the `api_keys(key TEXT)` table."""

    def __init__(self, db_path: str = "./keys.db"):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    @contextmanager
    def _conn(self):
        """Context manager for database connections."""
        conn = sqlite3.connect(self.db_path)
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_db(self):
        """Create the key table if it does not exist."""
        with self._conn() as conn:
            conn.execute("CREATE TABLE IF NOT EXISTS api_keys (key TEXT)")

    def add(self, key: str) -> bool:
        """Insert a key. Returns False if it was already present."""
        key = key.strip()
        if not key:
            raise ValueError("API key must not be empty")

        with self._conn() as conn:
            existing = conn.execute(
                "SELECT 1 FROM api_keys WHERE key = ?", (key,)
            ).fetchone()
            if existing:
                return False
            conn.execute("INSERT INTO api_keys (key) VALUES (?)", (key,))

        logger.info(f"Added API key to {self.db_path}")
        return True

    def remove(self, key: str) -> bool:
        """Delete a key. Returns False if it was not present."""
        with self._conn() as conn:
            cursor = conn.execute("DELETE FROM api_keys WHERE key = ?", (key.strip(),))
            removed = cursor.rowcount > 0

        if removed:
            logger.info(f"Removed API key from {self.db_path}")
        return removed

    def list(self) -> List[str]:
        """All stored keys in insertion order."""
        with self._conn() as conn:
            rows = conn.execute(
                "SELECT key FROM api_keys WHERE key IS NOT NULL ORDER BY rowid"
            ).fetchall()
        return [row[0] for row in rows]
