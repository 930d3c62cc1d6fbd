"""Repository pattern for all memory index operations.

Single interface for: file manifest, chunks, FTS5 search, vec embeddings and
the embedding cache. The Indexer is the only writer; Hybrid Search reads.
Vec tables are model-managed (ensure_vec_table); repository handles read + write.
"""

from __future__ import annotations

import sqlite3
import struct
import threading
import time

import sqlite_vec

from memoria.db.models import Chunk, FileRecord

_CHUNK_COLUMNS = "id, path, start_line, end_line, hash, text, updated_at"


class Repository:
    """Data access layer for all memory index entities.

    Wraps an open sqlite3.Connection and provides typed methods for the file
    manifest, chunks, FTS5 search, vec embeddings and the embedding cache.
    The connection is owned by the caller and must be closed after use.

    Every method takes the same re-entrant lock, so a search running in
    another thread observes either the old or the new chunk set of a path
    being replaced, never a mix of both.
    """

    def __init__(self, conn: sqlite3.Connection, vec_table: str | None = None) -> None:
        """Initialise with an open database connection.

        Args:
            conn: An open sqlite3.Connection with the schema initialised
                (see memoria.db.schema.initialize).
            vec_table: Name of the vec table rows are mirrored into, or None
                when vector search is unavailable.
        """
        self._conn = conn
        self._lock = threading.RLock()
        self.vec_table = vec_table

    # ------------------------------------------------------------------
    # File manifest
    # ------------------------------------------------------------------

    def get_file(self, path: str) -> FileRecord | None:
        """Return the manifest record for *path*, or None if not indexed."""
        with self._lock:
            row = self._conn.execute(
                "SELECT path, hash, mtime FROM files WHERE path = ?", (path,)
            ).fetchone()
        return _row_to_file(row) if row else None

    def get_file_hash(self, path: str) -> str | None:
        """Return the stored content hash for *path*, or None if not indexed."""
        record = self.get_file(path)
        return record.hash if record else None

    def list_files(self) -> list[FileRecord]:
        """Return every manifest record ordered by path."""
        with self._lock:
            rows = self._conn.execute(
                "SELECT path, hash, mtime FROM files ORDER BY path"
            ).fetchall()
        return [_row_to_file(r) for r in rows]

    def list_paths(self) -> list[str]:
        """Return every indexed file path."""
        return [f.path for f in self.list_files()]

    # ------------------------------------------------------------------
    # Chunks
    # ------------------------------------------------------------------

    def replace_chunks(self, file: FileRecord, chunks: list[Chunk]) -> None:
        """Atomically replace all rows for ``file.path``.

        Deletes the old vec, FTS and chunk rows for the path, upserts the
        manifest record and inserts *chunks* in one transaction. Vector rows
        are not written here; the Indexer adds them once embeddings resolve.
        """
        now = int(time.time() * 1000)
        with self._lock:
            with self._conn:
                self._delete_rows(file.path)
                self._conn.execute(
                    "INSERT OR REPLACE INTO files (path, hash, mtime) VALUES (?, ?, ?)",
                    (file.path, file.hash, file.mtime),
                )
                for chunk in chunks:
                    self._conn.execute(
                        f"INSERT OR REPLACE INTO chunks ({_CHUNK_COLUMNS}) "
                        "VALUES (?, ?, ?, ?, ?, ?, ?)",
                        (
                            chunk.id,
                            chunk.path,
                            chunk.start_line,
                            chunk.end_line,
                            chunk.text_hash,
                            chunk.text,
                            now,
                        ),
                    )
                    self._conn.execute(
                        "INSERT INTO chunks_fts (text, id, path) VALUES (?, ?, ?)",
                        (chunk.text, chunk.id, chunk.path),
                    )

    def delete_path(self, path: str) -> None:
        """Delete every chunk, FTS, vec row and the manifest record for *path*."""
        with self._lock:
            with self._conn:
                self._delete_rows(path)
                self._conn.execute("DELETE FROM files WHERE path = ?", (path,))

    def get_chunk(self, chunk_id: str) -> Chunk | None:
        """Return a chunk by id, or None if not found."""
        with self._lock:
            row = self._conn.execute(
                f"SELECT {_CHUNK_COLUMNS} FROM chunks WHERE id = ?", (chunk_id,)
            ).fetchone()
        return _row_to_chunk(row) if row else None

    def get_chunks(self, chunk_ids: list[str]) -> dict[str, Chunk]:
        """Return {id: Chunk} for the ids that still exist."""
        if not chunk_ids:
            return {}
        placeholders = ",".join("?" * len(chunk_ids))
        with self._lock:
            rows = self._conn.execute(
                f"SELECT {_CHUNK_COLUMNS} FROM chunks WHERE id IN ({placeholders})",
                chunk_ids,
            ).fetchall()
        return {r["id"]: _row_to_chunk(r) for r in rows}

    def list_chunks_by_path(self, path: str) -> list[Chunk]:
        """Return the chunks of *path* ordered by start line."""
        with self._lock:
            rows = self._conn.execute(
                f"SELECT {_CHUNK_COLUMNS} FROM chunks WHERE path = ? ORDER BY start_line",
                (path,),
            ).fetchall()
        return [_row_to_chunk(r) for r in rows]

    def count_chunks(self, path: str | None = None) -> int:
        """Return the number of chunks, optionally restricted to *path*."""
        with self._lock:
            if path is None:
                return self._conn.execute("SELECT COUNT(*) FROM chunks").fetchone()[0]
            return self._conn.execute(
                "SELECT COUNT(*) FROM chunks WHERE path = ?", (path,)
            ).fetchone()[0]

    # ------------------------------------------------------------------
    # Embedding cache
    # ------------------------------------------------------------------

    def get_cached_embedding(self, text_hash: str) -> list[float] | None:
        """Return the cached vector for *text_hash*.

        A blob whose length does not match its stored dimensions is treated
        as a miss; the caller recomputes and overwrites it.
        """
        with self._lock:
            row = self._conn.execute(
                "SELECT embedding, dims FROM embedding_cache WHERE hash = ?", (text_hash,)
            ).fetchone()
        if row is None:
            return None
        blob, dims = row["embedding"], row["dims"]
        if not isinstance(blob, bytes) or dims < 1 or len(blob) != dims * 4:
            return None
        return list(struct.unpack(f"{dims}f", blob))

    def put_cached_embedding(self, text_hash: str, embedding: list[float]) -> None:
        """Upsert the cached vector for *text_hash*."""
        with self._lock:
            with self._conn:
                self._conn.execute(
                    """
                    INSERT INTO embedding_cache (hash, embedding, dims, updated_at)
                    VALUES (?, ?, ?, ?)
                    ON CONFLICT(hash) DO UPDATE SET
                        embedding = excluded.embedding,
                        dims = excluded.dims,
                        updated_at = excluded.updated_at
                    """,
                    (
                        text_hash,
                        sqlite_vec.serialize_float32(embedding),
                        len(embedding),
                        int(time.time() * 1000),
                    ),
                )

    def count_cached_embeddings(self) -> int:
        with self._lock:
            return self._conn.execute("SELECT COUNT(*) FROM embedding_cache").fetchone()[0]

    # ------------------------------------------------------------------
    # Vec embeddings
    # ------------------------------------------------------------------

    def add_embedding(self, chunk_id: str, embedding: list[float]) -> None:
        """Insert (or overwrite) the vector row for *chunk_id*."""
        if self.vec_table is None:
            return
        with self._lock:
            with self._conn:
                self._conn.execute(
                    f"DELETE FROM {self.vec_table} WHERE chunk_id = ?", (chunk_id,)
                )
                self._conn.execute(
                    f"INSERT INTO {self.vec_table}(chunk_id, embedding) VALUES (?, ?)",
                    (chunk_id, sqlite_vec.serialize_float32(embedding)),
                )

    def count_embeddings(self) -> int:
        if self.vec_table is None:
            return 0
        with self._lock:
            return self._conn.execute(
                f"SELECT COUNT(*) FROM {self.vec_table}"
            ).fetchone()[0]

    def search_vec(self, embedding: list[float], limit: int = 10) -> list[tuple[Chunk, float]]:
        """Nearest-neighbour search. Returns (chunk, distance) sorted by distance."""
        if self.vec_table is None:
            return []
        with self._lock:
            vec_rows = self._conn.execute(
                f"SELECT chunk_id, distance FROM {self.vec_table} "
                "WHERE embedding MATCH ? AND k = ? ORDER BY distance",
                (sqlite_vec.serialize_float32(embedding), limit),
            ).fetchall()
            chunks = self.get_chunks([r["chunk_id"] for r in vec_rows])

        return [
            (chunks[r["chunk_id"]], r["distance"])
            for r in vec_rows
            if r["chunk_id"] in chunks
        ]

    # ------------------------------------------------------------------
    # FTS5 / BM25 search
    # ------------------------------------------------------------------

    def search_fts(self, match: str, limit: int = 10) -> list[tuple[Chunk, float]]:
        """BM25 full-text search. Returns (chunk, rank) sorted best-first.

        *match* is a ready FTS5 query expression. FTS5 ``rank`` is negative;
        lower (more negative) = better match.

        Raises:
            sqlite3.OperationalError: If *match* is not a valid FTS5 query.
        """
        with self._lock:
            fts_rows = self._conn.execute(
                "SELECT id, rank FROM chunks_fts WHERE chunks_fts MATCH ? ORDER BY rank LIMIT ?",
                (match, limit),
            ).fetchall()
            chunks = self.get_chunks([r["id"] for r in fts_rows])

        return [(chunks[r["id"]], r["rank"]) for r in fts_rows if r["id"] in chunks]

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _delete_rows(self, path: str) -> None:
        """Delete vec, FTS and chunk rows for *path* (caller owns the transaction)."""
        if self.vec_table is not None:
            ids = [
                r[0]
                for r in self._conn.execute(
                    "SELECT id FROM chunks WHERE path = ?", (path,)
                ).fetchall()
            ]
            for chunk_id in ids:
                self._conn.execute(
                    f"DELETE FROM {self.vec_table} WHERE chunk_id = ?", (chunk_id,)
                )
        self._conn.execute("DELETE FROM chunks_fts WHERE path = ?", (path,))
        self._conn.execute("DELETE FROM chunks WHERE path = ?", (path,))


# ------------------------------------------------------------------
# Row → model helpers
# ------------------------------------------------------------------

def _row_to_file(row: sqlite3.Row) -> FileRecord:
    return FileRecord(path=row["path"], hash=row["hash"], mtime=row["mtime"])


def _row_to_chunk(row: sqlite3.Row) -> Chunk:
    return Chunk(
        id=row["id"],
        path=row["path"],
        start_line=row["start_line"],
        end_line=row["end_line"],
        text_hash=row["hash"],
        text=row["text"],
        updated_at=row["updated_at"],
    )
