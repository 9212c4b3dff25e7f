"""SQLite database for tubeloop settings and the event log.

Creates the schema on first open.
"""

import logging
import os
import sqlite3
import threading
import time

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS settings (
    key TEXT PRIMARY KEY,
    value TEXT,
    updated_at REAL NOT NULL
);

CREATE TABLE IF NOT EXISTS events (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    event_type TEXT NOT NULL,
    content_id TEXT,
    session_id INTEGER,
    state TEXT,
    title TEXT NOT NULL DEFAULT '',
    detail TEXT NOT NULL DEFAULT '',
    created_at REAL NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_events_created ON events(created_at);
CREATE INDEX IF NOT EXISTS idx_events_type ON events(event_type);
CREATE INDEX IF NOT EXISTS idx_events_session ON events(session_id);
"""


class Database:
    """Thread-safe SQLite database manager for tubeloop."""

    def __init__(self, db_path: str):
        self.db_path = db_path
        self._local = threading.local()
        directory = os.path.dirname(db_path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        self._init_schema()

    def _get_conn(self) -> sqlite3.Connection:
        """Get a thread-local connection."""
        if not hasattr(self._local, "conn") or self._local.conn is None:
            self._local.conn = sqlite3.connect(self.db_path)
            self._local.conn.row_factory = sqlite3.Row
            self._local.conn.execute("PRAGMA journal_mode=WAL")
            self._local.conn.execute("PRAGMA busy_timeout=5000")
        return self._local.conn

    def _init_schema(self):
        """Create tables if they don't exist and stamp the schema version."""
        conn = self._get_conn()
        conn.executescript(SCHEMA_SQL)

        row = conn.execute("SELECT version FROM schema_version").fetchone()
        if row is None:
            conn.execute("INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,))
        conn.commit()
        logger.info("Database initialized at %s (schema v%d)", self.db_path, SCHEMA_VERSION)

    # SD card I/O errors on the Pi can last several seconds
    _RETRY_DELAYS = [0.5, 1.0, 2.0, 4.0]

    def _retry_on_io_error(self, operation, description: str = "DB operation"):
        """Run a DB operation with retry+backoff for transient I/O errors."""
        try:
            return operation(self._get_conn())
        except sqlite3.OperationalError as e:
            err = str(e)
            if "disk I/O error" not in err and "database is locked" not in err:
                raise
            last_exc = e
            for attempt, delay in enumerate(self._RETRY_DELAYS, start=1):
                logger.warning(
                    "SQLite %s error (attempt %d/%d): %s, retrying in %.1fs",
                    description, attempt, len(self._RETRY_DELAYS), e, delay,
                )
                self.close()
                time.sleep(delay)
                try:
                    return operation(self._get_conn())
                except sqlite3.OperationalError as retry_e:
                    last_exc = retry_e
            raise last_exc

    def execute(self, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        """Execute a SQL statement. Retries on I/O error with backoff."""
        return self._retry_on_io_error(lambda conn: conn.execute(sql, params), "execute")

    def commit(self):
        self._retry_on_io_error(lambda conn: conn.commit(), "commit")

    def fetchone(self, sql: str, params: tuple = ()) -> dict | None:
        row = self.execute(sql, params).fetchone()
        return dict(row) if row else None

    def fetchall(self, sql: str, params: tuple = ()) -> list[dict]:
        return [dict(row) for row in self.execute(sql, params).fetchall()]

    def close(self):
        """Close the thread-local connection."""
        if hasattr(self._local, "conn") and self._local.conn:
            self._local.conn.close()
            self._local.conn = None
