"""Tests for the DatabaseConnection class."""

import sqlite3
import threading

import pytest

from habit_sync.database.connection import DatabaseConnection


class TestDatabaseConnectionInit:
    def test_creates_db_file_on_connect(self, tmp_path):
        db_path = tmp_path / "test.db"
        db = DatabaseConnection(str(db_path))
        db.execute("CREATE TABLE t (id INTEGER PRIMARY KEY)")
        assert db_path.exists()

    def test_creates_parent_dirs(self, tmp_path):
        db_path = tmp_path / "sub" / "deep" / "test.db"
        DatabaseConnection(str(db_path))
        assert db_path.parent.exists()

    def test_db_path_stored(self, tmp_path):
        db_path = tmp_path / "stored.db"
        db = DatabaseConnection(str(db_path))
        assert db.db_path == db_path


class TestGetConnection:
    def test_row_factory_is_row(self, tmp_path):
        db = DatabaseConnection(str(tmp_path / "row.db"))
        with db.get_connection() as conn:
            assert conn.row_factory == sqlite3.Row

    def test_busy_timeout_applied(self, tmp_path):
        db = DatabaseConnection(str(tmp_path / "busy.db"), timeout=2.5)
        with db.get_connection() as conn:
            assert conn.execute("PRAGMA busy_timeout").fetchone()[0] == 2500

    def test_auto_commits(self, tmp_path):
        db = DatabaseConnection(str(tmp_path / "commit.db"))
        with db.get_connection() as conn:
            conn.execute("CREATE TABLE t (id INTEGER PRIMARY KEY, v TEXT)")
            conn.execute("INSERT INTO t (v) VALUES ('hello')")
        rows = db.execute("SELECT v FROM t")
        assert [r["v"] for r in rows] == ["hello"]

    def test_rollback_on_exception(self, tmp_path):
        db = DatabaseConnection(str(tmp_path / "rollback.db"))
        db.execute("CREATE TABLE t (id INTEGER PRIMARY KEY, v TEXT)")
        db.execute("INSERT INTO t (v) VALUES ('keep')")
        with pytest.raises(RuntimeError):
            with db.get_connection() as conn:
                conn.execute("INSERT INTO t (v) VALUES ('discard')")
                raise RuntimeError("fail")
        rows = db.execute("SELECT v FROM t")
        assert [r["v"] for r in rows] == ["keep"]


class TestTransaction:
    def test_commits_on_success(self, tmp_path):
        db = DatabaseConnection(str(tmp_path / "tx.db"))
        db.execute("CREATE TABLE t (id INTEGER PRIMARY KEY, v TEXT)")
        with db.transaction() as conn:
            assert conn.in_transaction
            conn.execute("INSERT INTO t (v) VALUES ('a')")
        assert len(db.execute("SELECT * FROM t")) == 1

    def test_rolls_back_on_error(self, tmp_path):
        db = DatabaseConnection(str(tmp_path / "txr.db"))
        db.execute("CREATE TABLE t (id INTEGER PRIMARY KEY, v TEXT UNIQUE)")
        db.execute("INSERT INTO t (v) VALUES ('a')")
        with pytest.raises(sqlite3.IntegrityError):
            with db.transaction() as conn:
                conn.execute("INSERT INTO t (v) VALUES ('b')")
                conn.execute("INSERT INTO t (v) VALUES ('a')")
        rows = db.execute("SELECT v FROM t")
        assert [r["v"] for r in rows] == ["a"]

    def test_second_writer_waits_for_first(self, tmp_path):
        db = DatabaseConnection(str(tmp_path / "lock.db"), timeout=5.0)
        db.execute("CREATE TABLE t (id INTEGER PRIMARY KEY, v TEXT)")
        holding = threading.Event()
        release = threading.Event()

        def first_writer():
            with db.transaction() as conn:
                conn.execute("INSERT INTO t (v) VALUES ('first')")
                holding.set()
                release.wait(5)

        thread = threading.Thread(target=first_writer)
        thread.start()
        assert holding.wait(5)
        threading.Timer(0.1, release.set).start()
        with db.transaction() as conn:
            conn.execute("INSERT INTO t (v) VALUES ('second')")
        thread.join(5)

        rows = db.execute("SELECT v FROM t ORDER BY id")
        assert [r["v"] for r in rows] == ["first", "second"]


class TestExecuteScript:
    def test_runs_multi_statement(self, tmp_path):
        db = DatabaseConnection(str(tmp_path / "script.db"))
        db.execute_script("""
            CREATE TABLE a (id INTEGER PRIMARY KEY);
            INSERT INTO a (id) VALUES (1);
        """)
        assert len(db.execute("SELECT * FROM a")) == 1
