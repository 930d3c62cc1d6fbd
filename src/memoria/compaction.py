"""Conversation compaction: summarize old history, keep the recent tail.

When a channel log grows past ``threshold`` messages:
  1. everything but the last ``keep_recent`` messages is summarized;
  2. a notable summary is appended to the tenant's daily log, where the
     indexer picks it up as long-term memory;
  3. the log is rewritten as ``[summary message] + last keep_recent``.

Any failure before step 3 leaves the log untouched, so the next trigger
simply retries.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol

from memoria.rag import llm_client
from memoria.store import ConversationMessage, MemoryStore

logger = logging.getLogger("memoria.compaction")

NOTHING_NOTABLE = "Nothing notable"
SUMMARY_PREFIX = "[summary] "

_COMPACTION_PROMPT = f"""\
Summarize the following conversation history concisely as bullet points.
Keep the important information: decisions made, the user's preferences, and
the key points of technical discussions. Leave out everything else.
If the conversation contains nothing worth keeping, reply exactly: {NOTHING_NOTABLE}

Conversation history:
"""


class SummarizationError(RuntimeError):
    """Raised when the summarizer fails or returns nothing usable."""


class Summarizer(Protocol):
    def summarize(self, text: str) -> str: ...


class LiteLLMSummarizer:
    """Summarize conversation text with a LiteLLM chat model.

    Args:
        model:   LiteLLM model string (provider/model format).
        timeout: Request timeout in seconds.
    """

    def __init__(self, model: str = "anthropic/claude-3-5-haiku-20241022", timeout: float = 60.0) -> None:
        self.model = model
        self.timeout = timeout

    def summarize(self, text: str) -> str:
        try:
            return llm_client.complete(
                model=self.model,
                messages=[{"role": "user", "content": _COMPACTION_PROMPT + text}],
                max_tokens=1024,
                timeout=self.timeout,
            )
        except Exception as exc:
            raise SummarizationError(f"summarizer call failed: {exc}") from exc


@dataclass
class CompactionConfig:
    threshold: int = 100
    keep_recent: int = 20


@dataclass
class CompactionResult:
    summarized: int
    kept: int
    summary: str
    saved_to_daily_log: bool


class Compactor:
    """Per-channel compaction state machine (Active → Compacting → Active)."""

    def __init__(
        self,
        store: MemoryStore,
        summarizer: Summarizer,
        config: CompactionConfig | None = None,
    ) -> None:
        self._store = store
        self._summarizer = summarizer
        self.config = config or CompactionConfig()

    def needs_compaction(self, tenant: str, channel: str) -> bool:
        return self._store.count(tenant, channel) > self.config.threshold

    def compact_if_needed(self, tenant: str, channel: str) -> bool:
        """Compact when over threshold. Returns True if the log was rewritten."""
        count = self._store.count(tenant, channel)
        if count <= self.config.threshold:
            return False

        logger.info(
            "Compaction triggered for %s/%s (%d messages, threshold=%d)",
            tenant,
            channel,
            count,
            self.config.threshold,
        )
        try:
            return self.compact(tenant, channel) is not None
        except (SummarizationError, OSError) as exc:
            logger.error("Compaction failed for %s/%s: %s", tenant, channel, exc)
            return False

    def compact(self, tenant: str, channel: str) -> CompactionResult | None:
        """Summarize all but the last ``keep_recent`` messages and rewrite the log.

        Holds the channel lock for the whole cycle so no append is lost.

        Returns:
            None when there is nothing to summarize.

        Raises:
            SummarizationError: If the summarizer fails or replies with nothing.
        """
        keep = self.config.keep_recent
        with self._store.channel_lock(tenant, channel):
            messages = self._store.read_all(tenant, channel)
            split = max(0, len(messages) - keep)
            to_summarize, to_keep = messages[:split], messages[split:]
            if not to_summarize:
                return None

            text = "\n".join(f"{m.username or m.role}: {m.content}" for m in to_summarize)
            try:
                summary = self._summarizer.summarize(text).strip()
            except SummarizationError:
                raise
            except Exception as exc:
                raise SummarizationError(f"summarizer failed: {exc}") from exc
            if not summary:
                raise SummarizationError("summarizer returned an empty summary")

            notable = summary.rstrip(".").lower() != NOTHING_NOTABLE.lower()
            if notable:
                self._store.append_daily_log(
                    tenant, f"## Conversation summary ({channel})\n\n{summary}"
                )
                logger.info("Saved compaction summary to daily log for %s", tenant)

            summary_message = ConversationMessage.now("assistant", SUMMARY_PREFIX + summary)
            self._store.replace_all(tenant, channel, [summary_message, *to_keep])

        logger.info(
            "Compacted %d messages -> 1 summary + %d recent messages",
            len(to_summarize),
            len(to_keep),
        )
        return CompactionResult(
            summarized=len(to_summarize),
            kept=len(to_keep),
            summary=summary,
            saved_to_daily_log=notable,
        )
