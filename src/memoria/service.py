"""Memory service: the single entry point the chat application calls.

Wires storage, index, embedding backend, search, context builder and
compaction from a ``MemoriaConfig``. Every public method degrades instead
of raising: a broken index yields an empty context, a failed save is logged.
Compaction runs on one background worker so a slow summarizer never holds
up the reply path.
"""

from __future__ import annotations

import logging
import sqlite3
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path

from memoria.compaction import CompactionConfig, Compactor, LiteLLMSummarizer, Summarizer
from memoria.config import MemoriaConfig
from memoria.db.connection import Database
from memoria.db.repository import Repository
from memoria.db.schema import initialize
from memoria.db.vectors import ensure_vec_table, model_to_slug
from memoria.ingest.embeddings import EmbeddingBackend
from memoria.ingest.indexer import Indexer, IndexResult
from memoria.ingest.lines import LineChunker
from memoria.rag.context import ContextBuilder, ContextConfig
from memoria.rag.search import HybridSearcher, SearchConfig, SearchResult
from memoria.store import ConversationMessage, MemoryStore

logger = logging.getLogger("memoria.service")


class MemoryService:
    """Facade over the memory engine for one deployment (all tenants).

    Build with ``MemoryService.open(config)``; tests may pass their own
    embedding backend and summarizer.
    """

    def __init__(
        self,
        config: MemoriaConfig,
        conn: sqlite3.Connection,
        repo: Repository,
        store: MemoryStore,
        backend: EmbeddingBackend,
        summarizer: Summarizer,
    ) -> None:
        self.config = config
        self._conn = conn
        self.repo = repo
        self.store = store
        self.backend = backend
        self.indexer = Indexer(
            repo, LineChunker.from_tokens(config.chunking.tokens, config.chunking.overlap), backend
        )
        self.searcher = HybridSearcher(
            repo,
            backend,
            SearchConfig(
                vector_weight=config.search.vector_weight,
                text_weight=config.search.text_weight,
                max_results=config.search.max_results,
                min_score=config.search.min_score,
                candidate_multiplier=config.search.candidate_multiplier,
                snippet_max_chars=config.search.snippet_max_chars,
                decay_enabled=config.temporal_decay.enabled,
                half_life_days=config.temporal_decay.half_life_days,
            ),
            tz=store.tz,
        )
        self.context_builder = ContextBuilder(
            store,
            self.searcher,
            ContextConfig(
                budget_tokens=config.context.budget_tokens,
                recent_messages=config.context.recent_messages,
                message_max_chars=config.context.message_max_chars,
                search_min_tokens=config.context.search_min_tokens,
                search_results=config.context.search_results,
            ),
        )
        self.compactor = Compactor(
            store,
            summarizer,
            CompactionConfig(
                threshold=config.compaction.threshold,
                keep_recent=config.compaction.keep_recent,
            ),
        )
        self._compaction_pool = ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="memoria-compaction"
        )
        self._initialized = False

    @classmethod
    def open(
        cls,
        config: MemoriaConfig,
        backend: EmbeddingBackend | None = None,
        summarizer: Summarizer | None = None,
    ) -> MemoryService:
        """Open (creating if needed) the index database and wire all components."""
        db = Database(config.memory.db_path)
        conn = db.connect()
        initialize(conn)

        if backend is None:
            backend = EmbeddingBackend(
                model=config.embedding.model,
                dimensions=config.embedding.dimensions,
                enabled=config.embedding.enabled,
            )

        vec_table = None
        if db.vec_available and config.embedding.enabled:
            vec_table = ensure_vec_table(conn, model_to_slug(backend.model), backend.dimensions)

        if summarizer is None:
            summarizer = LiteLLMSummarizer(
                model=config.compaction.model, timeout=config.compaction.timeout
            )

        store = MemoryStore(Path(config.memory.data_dir), tz=config.memory.tz)
        logger.info("Memory database opened at %s", config.memory.db_path)
        return cls(config, conn, Repository(conn, vec_table=vec_table), store, backend, summarizer)

    @property
    def enabled(self) -> bool:
        return self.config.memory.enabled

    def initialize(self) -> IndexResult:
        """Index every memory file once at startup (idempotent)."""
        if not self.enabled or self._initialized:
            return IndexResult()
        logger.info("Initializing memory system...")
        result = self.reindex()
        self._initialized = True
        logger.info(
            "Initial indexing complete: %d indexed, %d skipped", result.indexed, result.skipped
        )
        return result

    def reindex(self) -> IndexResult:
        """Drop vanished files from the index and re-index changed ones."""
        if not self.enabled:
            return IndexResult()
        return self.indexer.reindex(self.store.list_all_memory_files())

    def get_context(self, tenant: str, channel: str, query: str) -> str:
        """Memory block for the agent's instructions; '' on any failure."""
        if not self.enabled:
            return ""
        try:
            return self.context_builder.build(tenant, channel, query)
        except (sqlite3.Error, OSError, ValueError) as exc:
            logger.error("Failed to build memory context: %s", exc)
            return ""

    def save_conversation(
        self, tenant: str, channel: str, messages: list[ConversationMessage]
    ) -> Future[bool] | None:
        """Append *messages* to the channel log, then compact in the background.

        Returns the compaction future (True once the log was rewritten), or
        None when nothing was saved.
        """
        if not self.enabled:
            return None
        try:
            for message in messages:
                self.store.append_message(tenant, channel, message)
        except (OSError, ValueError) as exc:
            logger.error("Failed to save conversation: %s", exc)
            return None
        return self._compaction_pool.submit(self.compactor.compact_if_needed, tenant, channel)

    def search(
        self,
        query: str,
        tenant: str | None = None,
        max_results: int | None = None,
        min_score: float | None = None,
    ) -> list[SearchResult]:
        if not self.enabled:
            return []
        scope = self.store.memory_dir(tenant) if tenant else None
        return self.searcher.search(query, max_results=max_results, min_score=min_score, scope=scope)

    def close(self) -> None:
        self._compaction_pool.shutdown(wait=True)
        self._conn.close()
        self._initialized = False
        logger.info("Memory system shut down")
