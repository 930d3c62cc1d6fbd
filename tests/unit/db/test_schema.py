"""Tests for schema initialization and the migration runner."""

from __future__ import annotations

import sqlite3

from memoria.db.migrations import MIGRATIONS, current_version, run_migrations
from memoria.db.schema import CURRENT_VERSION, REQUIRED_TABLES, initialize


def _tables(conn) -> set[str]:
    rows = conn.execute("SELECT name FROM sqlite_master WHERE type='table'").fetchall()
    return {r[0] for r in rows}


def test_initialize_creates_required_tables(tmp_db):
    tables = _tables(tmp_db)
    for name in REQUIRED_TABLES:
        assert name in tables


def test_initialize_records_version(tmp_db):
    assert current_version(tmp_db) == CURRENT_VERSION == MIGRATIONS[-1][0]


def test_initialize_idempotent(tmp_db):
    initialize(tmp_db)
    initialize(tmp_db)
    count = tmp_db.execute("SELECT COUNT(*) FROM schema_version").fetchone()[0]
    assert count == len(MIGRATIONS)


def test_fresh_database_version_zero(tmp_path):
    conn = sqlite3.connect(tmp_path / "fresh.sqlite")
    conn.execute(
        "CREATE TABLE schema_version (version INTEGER NOT NULL, applied_at DATETIME)"
    )
    assert current_version(conn) == 0
    run_migrations(conn)
    assert current_version(conn) == CURRENT_VERSION
    conn.close()


def test_chunks_path_index_exists(tmp_db):
    row = tmp_db.execute(
        "SELECT name FROM sqlite_master WHERE type='index' AND name='idx_chunks_path'"
    ).fetchone()
    assert row is not None


def test_fts_table_is_searchable(tmp_db):
    tmp_db.execute(
        "INSERT INTO chunks_fts (text, id, path) VALUES (?, ?, ?)",
        ("the quick brown fox", "c1", "a.md"),
    )
    rows = tmp_db.execute(
        "SELECT id FROM chunks_fts WHERE chunks_fts MATCH ?", ('"fox"',)
    ).fetchall()
    assert [r[0] for r in rows] == ["c1"]
