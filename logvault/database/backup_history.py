"""Backup history journal stored in SQLite."""

import logging
import sqlite3
import threading
from datetime import datetime
from pathlib import Path

logger = logging.getLogger(__name__)


class BackupHistory:
    """Thread-safe SQLite journal of backup outcomes."""

    def __init__(self, db_path: str):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._local = threading.local()
        self._init_db()

    def _get_connection(self) -> sqlite3.Connection:
        if not hasattr(self._local, "connection") or self._local.connection is None:
            self._local.connection = sqlite3.connect(
                str(self.db_path), timeout=10
            )
            self._local.connection.row_factory = sqlite3.Row
            self._local.connection.execute("PRAGMA journal_mode=WAL")
            self._local.connection.execute("PRAGMA synchronous=NORMAL")
        return self._local.connection

    def _init_db(self):
        conn = self._get_connection()
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS backup_events (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                timestamp TEXT NOT NULL,
                identity TEXT NOT NULL,
                status TEXT NOT NULL,
                source_path TEXT,
                backup_path TEXT,
                detail TEXT
            );

            CREATE INDEX IF NOT EXISTS idx_backup_events_timestamp
                ON backup_events(timestamp);
            CREATE INDEX IF NOT EXISTS idx_backup_events_identity
                ON backup_events(identity);
        """)
        conn.commit()
        logger.info("Backup history initialized at %s", self.db_path)

    def record(
        self,
        identity: str,
        status: str,
        source_path: str = None,
        backup_path: str = None,
        detail: str = None,
    ) -> int:
        """Insert one backup outcome. Returns the row ID."""
        conn = self._get_connection()
        cursor = conn.execute(
            """
            INSERT INTO backup_events (
                timestamp, identity, status, source_path, backup_path, detail
            ) VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                datetime.now().isoformat(),
                identity,
                status,
                source_path,
                backup_path,
                detail,
            ),
        )
        conn.commit()
        logger.debug("Recorded %s backup for %s", status, identity)
        return cursor.lastrowid

    def get_events(
        self,
        identity: str = None,
        status: str = None,
        limit: int = 100,
    ) -> list[dict]:
        """Most recent outcomes first, with optional filters."""
        conn = self._get_connection()
        query = "SELECT * FROM backup_events WHERE 1=1"
        params = []

        if identity:
            query += " AND identity = ?"
            params.append(identity)
        if status:
            query += " AND status = ?"
            params.append(status)

        query += " ORDER BY id DESC LIMIT ?"
        params.append(limit)

        rows = conn.execute(query, params).fetchall()
        return [dict(row) for row in rows]

    def close(self):
        if hasattr(self._local, "connection") and self._local.connection:
            self._local.connection.close()
            self._local.connection = None
