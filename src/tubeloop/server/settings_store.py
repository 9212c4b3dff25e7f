"""Persistent key-value settings with change subscriptions.

This is the configuration store the playback supervisor watches. The
settings UI (or the HTTP API) writes a key, every subscriber of that key
is called with the new value.
"""

import logging
import threading
import time
from typing import Callable

from tubeloop.server.database import Database

logger = logging.getLogger(__name__)

Handler = Callable[[str | None], None]


class SettingsStore:
    """SQLite-backed settings. Thread-safe."""

    def __init__(self, db: Database):
        self._db = db
        self._subscribers: dict[str, list[Handler]] = {}
        self._lock = threading.Lock()

    def get(self, key: str, default: str | None = None) -> str | None:
        row = self._db.fetchone("SELECT value FROM settings WHERE key = ?", (key,))
        if row is None or row["value"] is None:
            return default
        return row["value"]

    def set(self, key: str, value: str | None):
        """Store value and notify subscribers of key."""
        self._db.execute(
            "INSERT INTO settings (key, value, updated_at) VALUES (?, ?, ?) "
            "ON CONFLICT(key) DO UPDATE SET value = excluded.value, "
            "updated_at = excluded.updated_at",
            (key, value, time.time()),
        )
        self._db.commit()
        logger.info("Setting %s updated", key)

        with self._lock:
            handlers = list(self._subscribers.get(key, ()))
        for handler in handlers:
            try:
                handler(value)
            except Exception as e:
                logger.warning("Settings subscriber for %s failed: %s", key, e)

    def delete(self, key: str):
        self.set(key, None)

    def all(self) -> dict[str, str | None]:
        rows = self._db.fetchall("SELECT key, value FROM settings ORDER BY key")
        return {r["key"]: r["value"] for r in rows}

    def subscribe(self, key: str, handler: Handler):
        with self._lock:
            self._subscribers.setdefault(key, []).append(handler)

    def unsubscribe(self, key: str, handler: Handler):
        with self._lock:
            handlers = self._subscribers.get(key, [])
            try:
                handlers.remove(handler)
            except ValueError:
                pass

    def subscriber_count(self, key: str) -> int:
        with self._lock:
            return len(self._subscribers.get(key, ()))
