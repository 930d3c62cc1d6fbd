"""Tests for the Repository pattern."""

from __future__ import annotations

import sqlite3
import threading

import pytest

from memoria.db.models import Chunk, FileRecord
from memoria.ingest.base import chunk_id, text_hash


def _file(path="mem/a.md", hash="h1", mtime=1_000):
    return FileRecord(path=path, hash=hash, mtime=mtime)


def _chunk(path="mem/a.md", start=1, end=3, text="hello world"):
    return Chunk(
        id=chunk_id(path, start - 1),
        path=path,
        start_line=start,
        end_line=end,
        text_hash=text_hash(text),
        text=text,
    )


# ------------------------------------------------------------------
# File manifest
# ------------------------------------------------------------------

def test_get_file_not_found(repo):
    assert repo.get_file("missing.md") is None
    assert repo.get_file_hash("missing.md") is None


def test_replace_chunks_records_file(repo):
    repo.replace_chunks(_file(hash="abc"), [_chunk()])
    record = repo.get_file("mem/a.md")
    assert record == FileRecord(path="mem/a.md", hash="abc", mtime=1_000)
    assert repo.get_file_hash("mem/a.md") == "abc"


def test_list_paths_sorted(repo):
    repo.replace_chunks(_file(path="mem/b.md"), [])
    repo.replace_chunks(_file(path="mem/a.md"), [])
    assert repo.list_paths() == ["mem/a.md", "mem/b.md"]


# ------------------------------------------------------------------
# Chunks
# ------------------------------------------------------------------

def test_replace_chunks_inserts_rows(repo):
    chunks = [_chunk(start=1, end=3, text="alpha"), _chunk(start=3, end=5, text="beta")]
    repo.replace_chunks(_file(), chunks)
    stored = repo.list_chunks_by_path("mem/a.md")
    assert [c.text for c in stored] == ["alpha", "beta"]
    assert stored[0].updated_at is not None
    assert repo.count_chunks() == 2
    assert repo.count_chunks("mem/a.md") == 2


def test_replace_chunks_removes_old_rows(repo):
    repo.replace_chunks(_file(hash="v1"), [_chunk(start=1, text="old text"), _chunk(start=5, text="older")])
    repo.replace_chunks(_file(hash="v2"), [_chunk(start=1, text="new text")])

    stored = repo.list_chunks_by_path("mem/a.md")
    assert [c.text for c in stored] == ["new text"]
    assert repo.search_fts('"older"') == []
    assert repo.get_file_hash("mem/a.md") == "v2"


def test_replace_chunks_keeps_other_paths(repo):
    repo.replace_chunks(_file(path="mem/a.md"), [_chunk(path="mem/a.md", text="apple")])
    repo.replace_chunks(_file(path="mem/b.md"), [_chunk(path="mem/b.md", text="banana")])
    repo.replace_chunks(_file(path="mem/a.md", hash="h2"), [])
    assert repo.count_chunks("mem/b.md") == 1
    assert len(repo.search_fts('"banana"')) == 1


def test_replace_chunks_is_atomic_on_failure(repo):
    repo.replace_chunks(_file(hash="v1"), [_chunk(text="survivor")])

    bad = _chunk(text="dup")
    bad.text = None  # violates NOT NULL
    with pytest.raises(sqlite3.IntegrityError):
        repo.replace_chunks(_file(hash="v2"), [bad])

    assert [c.text for c in repo.list_chunks_by_path("mem/a.md")] == ["survivor"]
    assert repo.get_file_hash("mem/a.md") == "v1"


def test_get_chunk_and_get_chunks(repo):
    c1, c2 = _chunk(start=1, text="one"), _chunk(start=10, text="two")
    repo.replace_chunks(_file(), [c1, c2])
    assert repo.get_chunk(c1.id).text == "one"
    assert repo.get_chunk("nope") is None
    found = repo.get_chunks([c1.id, c2.id, "nope"])
    assert set(found) == {c1.id, c2.id}
    assert repo.get_chunks([]) == {}


def test_delete_path(repo):
    repo.replace_chunks(_file(), [_chunk(text="gone soon")])
    repo.delete_path("mem/a.md")
    assert repo.get_file("mem/a.md") is None
    assert repo.count_chunks() == 0
    assert repo.search_fts('"gone"') == []


# ------------------------------------------------------------------
# FTS5
# ------------------------------------------------------------------

def test_search_fts_returns_best_first(repo):
    strong = _chunk(start=1, text="deploy deploy deploy pipeline")
    weak = _chunk(start=20, text="we talked about the deploy once, plus lunch and weather and more")
    repo.replace_chunks(_file(), [weak, strong])
    hits = repo.search_fts('"deploy"')
    assert [c.id for c, _ in hits] == [strong.id, weak.id]
    assert hits[0][1] <= hits[1][1]


def test_search_fts_respects_limit(repo):
    repo.replace_chunks(_file(), [_chunk(start=i * 10 + 1, text=f"note {i}") for i in range(5)])
    assert len(repo.search_fts('"note"', limit=2)) == 2


def test_search_fts_invalid_query_raises(repo):
    repo.replace_chunks(_file(), [_chunk(text="anything")])
    with pytest.raises(sqlite3.OperationalError):
        repo.search_fts('"unterminated')


# ------------------------------------------------------------------
# Embedding cache
# ------------------------------------------------------------------

def test_cache_miss(repo):
    assert repo.get_cached_embedding("nohash") is None


def test_cache_roundtrip_and_overwrite(repo):
    repo.put_cached_embedding("h", [0.5, 0.25, 1.0])
    assert repo.get_cached_embedding("h") == [0.5, 0.25, 1.0]
    repo.put_cached_embedding("h", [1.0, 2.0])
    assert repo.get_cached_embedding("h") == [1.0, 2.0]
    assert repo.count_cached_embeddings() == 1


def test_cache_corrupt_blob_is_a_miss(repo, tmp_db):
    tmp_db.execute(
        "INSERT INTO embedding_cache (hash, embedding, dims, updated_at) VALUES (?, ?, ?, ?)",
        ("bad", b"\x00\x01\x02", 4, 0),
    )
    tmp_db.commit()
    assert repo.get_cached_embedding("bad") is None


# ------------------------------------------------------------------
# Vec embeddings
# ------------------------------------------------------------------

def test_text_only_repo_ignores_vectors(repo):
    repo.add_embedding("c1", [1.0, 0.0, 0.0, 0.0])
    assert repo.count_embeddings() == 0
    assert repo.search_vec([1.0, 0.0, 0.0, 0.0]) == []


def test_add_and_search_vec(vec_repo):
    near = _chunk(start=1, text="near")
    far = _chunk(start=30, text="far")
    vec_repo.replace_chunks(_file(), [near, far])
    vec_repo.add_embedding(near.id, [1.0, 0.0, 0.0, 0.0])
    vec_repo.add_embedding(far.id, [0.0, 1.0, 0.0, 0.0])

    hits = vec_repo.search_vec([1.0, 0.0, 0.0, 0.0], limit=2)
    assert [c.id for c, _ in hits] == [near.id, far.id]
    assert hits[0][1] == pytest.approx(0.0, abs=1e-6)
    assert hits[1][1] == pytest.approx(1.0, abs=1e-6)


def test_add_embedding_overwrites(vec_repo):
    c = _chunk()
    vec_repo.replace_chunks(_file(), [c])
    vec_repo.add_embedding(c.id, [1.0, 0.0, 0.0, 0.0])
    vec_repo.add_embedding(c.id, [0.0, 1.0, 0.0, 0.0])
    assert vec_repo.count_embeddings() == 1


def test_replace_chunks_drops_vectors(vec_repo):
    c = _chunk()
    vec_repo.replace_chunks(_file(hash="v1"), [c])
    vec_repo.add_embedding(c.id, [1.0, 0.0, 0.0, 0.0])
    vec_repo.replace_chunks(_file(hash="v2"), [_chunk(text="changed")])
    assert vec_repo.count_embeddings() == 0


def test_delete_path_drops_vectors(vec_repo):
    c = _chunk()
    vec_repo.replace_chunks(_file(), [c])
    vec_repo.add_embedding(c.id, [1.0, 0.0, 0.0, 0.0])
    vec_repo.delete_path("mem/a.md")
    assert vec_repo.count_embeddings() == 0


# ------------------------------------------------------------------
# Concurrency
# ------------------------------------------------------------------

def test_readers_never_see_partial_replacement(repo):
    """A reader sees either the old chunk set or the new one, never a mix."""
    old = [_chunk(start=i * 10 + 1, text=f"old marker {i}") for i in range(5)]
    new = [_chunk(start=i * 10 + 1, text=f"new marker {i}") for i in range(5)]
    repo.replace_chunks(_file(hash="old"), old)

    mixed: list[set[str]] = []
    stop = threading.Event()

    def reader():
        while not stop.is_set():
            texts = {c.text.split()[0] for c in repo.list_chunks_by_path("mem/a.md")}
            if len(texts) > 1:
                mixed.append(texts)

    t = threading.Thread(target=reader)
    t.start()
    for i in range(50):
        repo.replace_chunks(_file(hash=str(i)), new if i % 2 == 0 else old)
    stop.set()
    t.join()

    assert mixed == []
