"""Database schema initialization."""

from __future__ import annotations

import sqlite3

from memoria.db.migrations import MIGRATIONS, run_migrations

CURRENT_VERSION = MIGRATIONS[-1][0]

# Tables every initialized database must contain (vec tables excluded).
REQUIRED_TABLES: tuple[str, ...] = ("files", "chunks", "embedding_cache", "chunks_fts")


def initialize(conn: sqlite3.Connection) -> None:
    """Initialize the database schema via the migration runner (idempotent)."""
    run_migrations(conn)
