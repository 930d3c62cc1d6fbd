"""Shared pytest fixtures."""

from __future__ import annotations

from datetime import datetime
from zoneinfo import ZoneInfo

import pytest

from memoria.db.connection import Database
from memoria.db.repository import Repository
from memoria.db.schema import initialize
from memoria.db.vectors import ensure_vec_table, model_to_slug
from memoria.ingest.embeddings import EmbeddingBackend
from memoria.store import MemoryStore

FAKE_MODEL = "fake/embed-4"
FAKE_DIMS = 4

# Fixed "now" for store tests: 2026-03-15 09:30 UTC.
FIXED_NOW = datetime(2026, 3, 15, 9, 30, tzinfo=ZoneInfo("UTC"))


@pytest.fixture
def tmp_db(tmp_path):
    """File-based DB in tmp_path with schema initialized, closed after test."""
    db = Database(tmp_path / "memory.sqlite")
    conn = db.connect()
    initialize(conn)
    yield conn
    conn.close()


@pytest.fixture
def repo(tmp_db):
    """Text-only repository (no vec table)."""
    return Repository(tmp_db)


@pytest.fixture
def vec_repo(tmp_db):
    """Repository mirroring vectors into a 4-dim vec table."""
    table = ensure_vec_table(tmp_db, model_to_slug(FAKE_MODEL), FAKE_DIMS)
    return Repository(tmp_db, vec_table=table)


@pytest.fixture
def store(tmp_path):
    return MemoryStore(tmp_path / "data", clock=lambda: FIXED_NOW)


def keyword_embedder(text: str) -> list[float]:
    """Deterministic 4-dim embedding: one axis per topic keyword."""
    lowered = text.lower()
    vec = [
        1.0 if "coffee" in lowered else 0.0,
        1.0 if "deploy" in lowered else 0.0,
        1.0 if "birthday" in lowered else 0.0,
        0.1,
    ]
    return vec


@pytest.fixture
def fake_backend():
    return EmbeddingBackend(model=FAKE_MODEL, dimensions=FAKE_DIMS, embed_fn=keyword_embedder)
