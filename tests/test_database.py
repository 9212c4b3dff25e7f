"""Tests for the SQLite wrapper."""

import sqlite3
import threading
from unittest.mock import patch

import pytest

from tubeloop.server.database import SCHEMA_VERSION, Database


class TestDatabase:
    def test_schema_created(self, db):
        tables = {r["name"] for r in db.fetchall("SELECT name FROM sqlite_master WHERE type='table'")}
        assert {"settings", "events", "schema_version"} <= tables
        assert db.fetchone("SELECT version FROM schema_version")["version"] == SCHEMA_VERSION

    def test_creates_parent_directory(self, tmp_path):
        path = tmp_path / "nested" / "dir" / "t.db"
        Database(str(path))
        assert path.exists()

    def test_reopen_keeps_data(self, tmp_path):
        path = str(tmp_path / "t.db")
        first = Database(path)
        first.execute("INSERT INTO settings (key, value, updated_at) VALUES ('a', 'b', 0)")
        first.commit()
        second = Database(path)
        assert second.fetchone("SELECT value FROM settings WHERE key = 'a'")["value"] == "b"

    def test_version_stamped_once(self, tmp_path):
        path = str(tmp_path / "t.db")
        Database(path)
        db = Database(path)
        rows = db.fetchall("SELECT version FROM schema_version")
        assert rows == [{"version": SCHEMA_VERSION}]

    def test_events_table_tracks_sessions(self, db):
        columns = {r["name"] for r in db.fetchall("PRAGMA table_info(events)")}
        assert {"content_id", "session_id", "state"} <= columns

    def test_thread_local_connections(self, db):
        conns = []

        def grab():
            conns.append(db._get_conn())

        t = threading.Thread(target=grab)
        t.start()
        t.join()
        assert conns[0] is not db._get_conn()

    def test_fetchone_none(self, db):
        assert db.fetchone("SELECT * FROM settings WHERE key = 'missing'") is None

    def test_non_io_errors_raise(self, db):
        with pytest.raises(sqlite3.OperationalError):
            db.execute("SELECT * FROM no_such_table")

    def test_locked_database_retries(self, db):
        calls = {"n": 0}
        real = db._get_conn

        class Flaky:
            def execute(self, sql, params=()):
                calls["n"] += 1
                if calls["n"] == 1:
                    raise sqlite3.OperationalError("database is locked")
                return real().execute(sql, params)

        with patch.object(db, "_get_conn", return_value=Flaky()), \
                patch("tubeloop.server.database.time.sleep") as sleep:
            db.execute("SELECT 1")
        assert calls["n"] == 2
        sleep.assert_called_once_with(0.5)
