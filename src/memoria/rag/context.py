"""Memory context builder: priority-ordered sections under a token budget.

Sections, in strict priority order:
  1. Permanent notes (MEMORY.md)
  2. Yesterday's + today's daily logs
  3. Recent conversation (last N messages, each pre-truncated)
  4. Related memories from hybrid search (only if enough budget remains)

Each section is all-or-nothing: a section that would push the rendered
context over the budget is left out and the next one is tried.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass

from memoria.ingest.base import estimate_tokens
from memoria.rag.search import HybridSearcher
from memoria.store import MemoryStore

logger = logging.getLogger("memoria.rag.context")

_HEADER = (
    "# Memory context\n"
    "The following is your memory. Use it to keep continuity in the conversation."
)


@dataclass
class ContextConfig:
    budget_tokens: int = 2_000
    recent_messages: int = 10
    message_max_chars: int = 200
    search_min_tokens: int = 200  # search only runs if more than this remains
    search_results: int = 3
    min_query_chars: int = 3


class ContextBuilder:
    """Assemble the memory block injected into an agent's instructions.

    Args:
        store:    Raw log storage.
        searcher: Hybrid searcher, or None to never add related memories.
        config:   Budget and section sizes.
    """

    def __init__(
        self,
        store: MemoryStore,
        searcher: HybridSearcher | None,
        config: ContextConfig | None = None,
    ) -> None:
        self._store = store
        self._searcher = searcher
        self.config = config or ContextConfig()

    def build(self, tenant: str, channel: str, query: str) -> str:
        """Return the memory context for *tenant*/*channel*, or '' if nothing fits."""
        cfg = self.config
        sections: list[str] = []

        def try_add(section: str) -> None:
            if estimate_tokens(render(sections + [section])) <= cfg.budget_tokens:
                sections.append(section)

        notes = self._store.read_notes(tenant)
        if notes:
            try_add(f"## Permanent notes\n{notes}")

        daily = self._store.read_recent_daily_logs(tenant)
        if daily:
            try_add(f"## Recent notes\n{daily}")

        messages = self._store.read_recent(tenant, channel, cfg.recent_messages)
        if messages:
            lines = "\n".join(
                f"{m.speaker()}: {m.content[: cfg.message_max_chars]}" for m in messages
            )
            try_add(f"## Recent conversation\n{lines}")

        remaining = cfg.budget_tokens - (estimate_tokens(render(sections)) if sections else 0)
        if (
            self._searcher is not None
            and remaining > cfg.search_min_tokens
            and len(query.strip()) >= cfg.min_query_chars
        ):
            related = self._related_memories(tenant, query)
            if related:
                try_add(related)

        if not sections:
            return ""

        context = render(sections)
        logger.info(
            "Built memory context: %d tokens, %d sections", estimate_tokens(context), len(sections)
        )
        return context

    def _related_memories(self, tenant: str, query: str) -> str:
        try:
            results = self._searcher.search(
                query,
                max_results=self.config.search_results,
                scope=self._store.memory_dir(tenant),
            )
        except (sqlite3.Error, OSError) as exc:
            logger.warning("Memory search failed during context building: %s", exc)
            return ""
        if not results:
            return ""
        snippets = "\n".join(f"- {r.snippet}" for r in results)
        return f"## Related memories\n{snippets}"


def render(sections: list[str]) -> str:
    """Join *sections* under the memory context header."""
    return _HEADER + "\n\n" + "\n\n".join(sections)
