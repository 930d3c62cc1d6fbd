"""Incremental indexer. Keeps the index consistent with the memory files on disk.

A file is re-chunked only when its content hash changes. Chunk, FTS and
manifest rows for a path are replaced atomically; vectors are resolved
afterwards, one chunk at a time, through the embedding cache.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from dataclasses import dataclass
from pathlib import Path

from memoria.db.models import Chunk, FileRecord
from memoria.db.repository import Repository
from memoria.ingest.base import BaseChunker, text_hash
from memoria.ingest.embeddings import EmbeddingProvider

logger = logging.getLogger("memoria.ingest.indexer")


@dataclass
class IndexResult:
    """Outcome of one indexing pass."""

    indexed: int = 0
    skipped: int = 0
    failed: int = 0


class Indexer:
    """Sole writer of the memory index.

    Args:
        repo:    Open Repository (its ``vec_table`` decides whether vectors are written).
        chunker: Chunker used for changed files.
        backend: Shared embedding backend.
    """

    def __init__(
        self,
        repo: Repository,
        chunker: BaseChunker,
        backend: EmbeddingProvider,
    ) -> None:
        self._repo = repo
        self._chunker = chunker
        self._backend = backend
        self._lock = threading.Lock()

    def reindex(self, paths: list[str]) -> IndexResult:
        """Drop index entries for vanished files, then index *paths*."""
        with self._lock:
            self._cleanup(set(paths))
            return self._index(paths)

    def index_files(self, paths: list[str]) -> IndexResult:
        """Index every path in *paths* whose content changed since the last pass."""
        with self._lock:
            return self._index(paths)

    def cleanup_stale(self, known_paths: list[str] | None = None) -> int:
        """Delete index entries for recorded files that no longer exist.

        Args:
            known_paths: Ground-truth file list. When given, recorded paths
                missing from it are removed as well.

        Returns:
            Number of file records removed.
        """
        with self._lock:
            return self._cleanup(set(known_paths) if known_paths is not None else None)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _index(self, paths: list[str]) -> IndexResult:
        result = IndexResult()
        for path in paths:
            try:
                changed = self._index_file(path)
            except (OSError, UnicodeDecodeError, sqlite3.Error) as exc:
                logger.warning("Failed to index %s: %s", path, exc)
                result.failed += 1
                continue
            if changed is None:
                continue
            if changed:
                result.indexed += 1
            else:
                result.skipped += 1
        return result

    def _index_file(self, path: str) -> bool | None:
        """Index one file. Returns None if missing, False if unchanged, True if re-indexed."""
        file_path = Path(path)
        if not file_path.exists():
            return None

        content = file_path.read_text(encoding="utf-8")
        current_hash = text_hash(content)
        if self._repo.get_file_hash(path) == current_hash:
            return False

        mtime = int(file_path.stat().st_mtime * 1000)
        chunks = self._chunker.chunk(path, content)
        self._repo.replace_chunks(FileRecord(path=path, hash=current_hash, mtime=mtime), chunks)

        if self._repo.vec_table is not None:
            embedded = sum(1 for chunk in chunks if self._embed_chunk(chunk))
            logger.info("Indexed: %s (%d chunks, %d embedded)", path, len(chunks), embedded)
        else:
            logger.info("Indexed: %s (%d chunks)", path, len(chunks))
        return True

    def _embed_chunk(self, chunk: Chunk) -> bool:
        """Resolve and store the vector for *chunk*. Returns False if none was available."""
        embedding = self._repo.get_cached_embedding(chunk.text_hash)
        if embedding is None:
            embedding = self._backend.embed(chunk.text)
            if embedding is None:
                return False
            self._repo.put_cached_embedding(chunk.text_hash, embedding)
        try:
            self._repo.add_embedding(chunk.id, embedding)
        except sqlite3.Error as exc:
            logger.warning("Vector write failed for chunk %s of %s: %s", chunk.id, chunk.path, exc)
            return False
        return True

    def _cleanup(self, known: set[str] | None) -> int:
        cleaned = 0
        for path in self._repo.list_paths():
            vanished = not Path(path).exists()
            if vanished or (known is not None and path not in known):
                self._repo.delete_path(path)
                cleaned += 1
        if cleaned:
            logger.info("Cleaned up %d stale file indexes", cleaned)
        return cleaned
