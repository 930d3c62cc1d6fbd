"""Embedding backend: lazily initialised, permanently degraded after a load failure.

One ``EmbeddingBackend`` is constructed per process and shared by the
Indexer and Hybrid Search. Callers only see ``embed(text)``, which returns a
vector or None; None means "no vector for this text" and is never an error.
"""

from __future__ import annotations

import enum
import logging
import threading
from typing import Callable, Protocol

from memoria.rag import llm_client

logger = logging.getLogger("memoria.ingest.embeddings")

EmbedFn = Callable[[str], list[float]]


class EmbeddingProvider(Protocol):
    """Contract consumed by the Indexer and Hybrid Search."""

    @property
    def available(self) -> bool: ...

    def embed(self, text: str) -> list[float] | None: ...


class BackendState(enum.Enum):
    NOT_LOADED = "not_loaded"
    READY = "ready"
    UNAVAILABLE = "unavailable"


class EmbeddingBackend:
    """Text → vector via LiteLLM (or an injected function).

    State machine: ``NOT_LOADED`` → ``READY`` on the first successful load,
    or ``NOT_LOADED`` → ``UNAVAILABLE`` forever if loading fails. A failing
    individual call returns None and leaves the state untouched.

    Args:
        model: LiteLLM embedding model string (provider/model format).
        dimensions: Expected vector length; vectors of another length are dropped.
        embed_fn: Replacement for the LiteLLM call (tests, local models).
            When given, no API key validation is performed on load.
        enabled: False starts the backend in ``UNAVAILABLE``.
    """

    def __init__(
        self,
        model: str = "openai/text-embedding-3-small",
        dimensions: int = 1536,
        embed_fn: EmbedFn | None = None,
        enabled: bool = True,
    ) -> None:
        self.model = model
        self.dimensions = dimensions
        self._embed_fn = embed_fn
        self._state = BackendState.NOT_LOADED if enabled else BackendState.UNAVAILABLE
        self._lock = threading.Lock()

    @classmethod
    def unavailable(cls, model: str = "none", dimensions: int = 1) -> EmbeddingBackend:
        """A backend that never produces vectors (text-only retrieval)."""
        return cls(model=model, dimensions=dimensions, enabled=False)

    @property
    def state(self) -> BackendState:
        return self._state

    @property
    def available(self) -> bool:
        """True unless loading has failed or the backend is disabled."""
        return self.load()

    def load(self) -> bool:
        """Initialise on first use. Returns True if the backend is READY."""
        with self._lock:
            if self._state is BackendState.NOT_LOADED:
                try:
                    if self._embed_fn is None:
                        llm_client.validate_api_key(self.model)
                        self._embed_fn = self._litellm_embed
                except EnvironmentError as exc:
                    logger.warning(
                        "Embedding model %s unavailable, falling back to text-only search: %s",
                        self.model,
                        exc,
                    )
                    self._state = BackendState.UNAVAILABLE
                else:
                    self._state = BackendState.READY
                    logger.info("Embedding backend ready (%s, %d dims)", self.model, self.dimensions)
            return self._state is BackendState.READY

    def embed(self, text: str) -> list[float] | None:
        """Return the embedding of *text*, or None if unavailable or the call fails."""
        if not self.load():
            return None
        try:
            vector = [float(v) for v in self._embed_fn(text)]
        except Exception as exc:
            logger.warning("Embedding generation failed: %s", exc)
            return None
        if len(vector) != self.dimensions:
            logger.warning(
                "Embedding has %d dims, expected %d; ignored", len(vector), self.dimensions
            )
            return None
        return vector

    def _litellm_embed(self, text: str) -> list[float]:
        return llm_client.embed(self.model, text)
