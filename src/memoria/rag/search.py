"""Hybrid search: BM25 (FTS5) + dense (sqlite-vec), fused by weighted sum.

    combined = vector_weight * vector_score + text_weight * text_score

text_score   = 0.5 + 0.5 * rank / best_rank  (BM25 rank relative to the top hit,
               so every lexical hit scores in [0.5, 1.0] and order is kept)
vector_score = max(0, 1 - cosine distance)

Graceful degradation:
  - no vectors (backend unavailable, no vec table, no embedding) → BM25 only,
    text_weight = 1.0
  - FTS5 failure → vector only
"""

from __future__ import annotations

import logging
import os
import re
import sqlite3
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import tzinfo
from pathlib import Path

from memoria.db.repository import Repository
from memoria.ingest.embeddings import EmbeddingProvider
from memoria.rag.decay import age_in_days, apply_temporal_decay, is_evergreen_path

logger = logging.getLogger("memoria.rag.search")

_TOKEN_RE = re.compile(r"\w+", re.UNICODE)
_SNIPPET_MARKER = "..."


@dataclass
class SearchConfig:
    """Configuration for hybrid search.

    Attributes:
        vector_weight: Weight of the vector score when vectors are present.
        text_weight: Weight of the BM25 score when vectors are present.
        max_results: Default number of results.
        min_score: Candidates whose fused score is below this are dropped.
        candidate_multiplier: Candidate pool per channel = max_results * this.
        snippet_max_chars: Snippets longer than this are cut and marked with '...'.
        decay_enabled: Apply temporal decay to non-evergreen paths.
        half_life_days: Temporal decay half-life.
    """

    vector_weight: float = 0.7
    text_weight: float = 0.3
    max_results: int = 6
    min_score: float = 0.35
    candidate_multiplier: int = 4
    snippet_max_chars: int = 700
    decay_enabled: bool = True
    half_life_days: float = 30.0


@dataclass
class SearchResult:
    path: str
    start_line: int
    end_line: int
    snippet: str
    score: float


class HybridSearcher:
    """Run lexical and vector retrieval concurrently and fuse the scores.

    Args:
        repo:    Open Repository.
        backend: Shared embedding backend (may be unavailable).
        config:  Search configuration.
        tz:      Timezone used to age dated daily logs.
    """

    def __init__(
        self,
        repo: Repository,
        backend: EmbeddingProvider,
        config: SearchConfig | None = None,
        tz: tzinfo | None = None,
    ) -> None:
        self._repo = repo
        self._backend = backend
        self.config = config or SearchConfig()
        self._tz = tz

    def search(
        self,
        query: str,
        max_results: int | None = None,
        min_score: float | None = None,
        scope: str | Path | None = None,
    ) -> list[SearchResult]:
        """Return up to *max_results* chunks relevant to *query*, best-first.

        Args:
            query: Free-text query.
            max_results: Override ``config.max_results``.
            min_score: Override ``config.min_score``.
            scope: Path prefix (a tenant's memory directory); chunks outside it
                are dropped.
        """
        cfg = self.config
        max_results = cfg.max_results if max_results is None else max_results
        min_score = cfg.min_score if min_score is None else min_score
        limit = max_results * cfg.candidate_multiplier
        if limit <= 0:
            return []

        with ThreadPoolExecutor(max_workers=2) as pool:
            text_future = pool.submit(self._search_text, query, limit)
            vector_future = pool.submit(self._search_vector, query, limit)
            text_hits = text_future.result()
            vector_hits = vector_future.result()

        return self._fuse(text_hits, vector_hits, max_results, min_score, scope)

    # ------------------------------------------------------------------
    # Channels
    # ------------------------------------------------------------------

    def _search_text(self, query: str, limit: int) -> dict[str, float]:
        """BM25 channel: {chunk_id: bm25_score(rank, best_rank)}."""
        match = build_fts_query(query)
        if match is None:
            return {}
        try:
            rows = self._repo.search_fts(match, limit=limit)
        except sqlite3.Error as exc:
            logger.warning("BM25 search failed: %s", exc)
            return {}
        if not rows:
            return {}
        best = rows[0][1]
        return {chunk.id: bm25_score(rank, best) for chunk, rank in rows}

    def _search_vector(self, query: str, limit: int) -> dict[str, float]:
        """Dense channel: {chunk_id: max(0, 1 - distance)}."""
        if self._repo.vec_table is None:
            return {}
        embedding = self._backend.embed(query)
        if embedding is None:
            return {}
        try:
            rows = self._repo.search_vec(embedding, limit=limit)
        except sqlite3.Error as exc:
            logger.warning("Vector search failed: %s", exc)
            return {}
        return {chunk.id: max(0.0, 1.0 - distance) for chunk, distance in rows}

    # ------------------------------------------------------------------
    # Fusion
    # ------------------------------------------------------------------

    def _fuse(
        self,
        text_hits: dict[str, float],
        vector_hits: dict[str, float],
        max_results: int,
        min_score: float,
        scope: str | Path | None,
    ) -> list[SearchResult]:
        cfg = self.config
        if vector_hits:
            vector_weight, text_weight = cfg.vector_weight, cfg.text_weight
        else:
            vector_weight, text_weight = 0.0, 1.0

        combined: dict[str, float] = {}
        for chunk_id in vector_hits.keys() | text_hits.keys():
            score = (
                vector_weight * vector_hits.get(chunk_id, 0.0)
                + text_weight * text_hits.get(chunk_id, 0.0)
            )
            if score >= min_score:
                combined[chunk_id] = score

        chunks = self._repo.get_chunks(list(combined))
        prefix = _scope_prefix(scope)

        results: list[SearchResult] = []
        for chunk_id, score in combined.items():
            chunk = chunks.get(chunk_id)
            if chunk is None:
                continue
            if prefix is not None and not chunk.path.startswith(prefix):
                continue

            if cfg.decay_enabled and not is_evergreen_path(chunk.path):
                age = age_in_days(chunk.path, tz=self._tz)
                if age is not None:
                    score = apply_temporal_decay(score, age, cfg.half_life_days)

            results.append(
                SearchResult(
                    path=chunk.path,
                    start_line=chunk.start_line,
                    end_line=chunk.end_line,
                    snippet=truncate_snippet(chunk.text, cfg.snippet_max_chars),
                    score=score,
                )
            )

        results.sort(key=lambda r: r.score, reverse=True)
        return results[:max_results]


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------


def build_fts_query(query: str) -> str | None:
    """Quote every word token of *query* and AND them together.

    Returns None when the query has no word characters.
    """
    tokens = _TOKEN_RE.findall(query)
    if not tokens:
        return None
    return " AND ".join(f'"{t}"' for t in tokens)


def bm25_score(rank: float, best_rank: float) -> float:
    """Map an FTS5 rank into [0.5, 1.0] relative to the best rank of the query.

    FTS5 ranks are negative, more negative is better. The best hit scores
    1.0; weaker hits approach 0.5 but never reach below it.
    """
    if best_rank >= 0:
        return 1.0
    if rank >= 0:
        return 0.5
    return 0.5 + 0.5 * min(1.0, rank / best_rank)


def truncate_snippet(text: str, max_chars: int = 700) -> str:
    """Cut *text* to *max_chars* and append '...' when it was longer."""
    if len(text) <= max_chars:
        return text
    return text[:max_chars] + _SNIPPET_MARKER


def _scope_prefix(scope: str | Path | None) -> str | None:
    if scope is None:
        return None
    prefix = str(scope)
    if not prefix.endswith(os.sep):
        prefix += os.sep
    return prefix
