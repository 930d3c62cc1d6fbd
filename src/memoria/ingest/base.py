"""Base chunker interface and content hashing helpers."""

from __future__ import annotations

import hashlib
import math
from abc import ABC, abstractmethod

from memoria.db.models import Chunk

CHARS_PER_TOKEN = 4


def text_hash(text: str) -> str:
    """SHA-256 hex digest of *text* (embedding cache key, file hash)."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def chunk_id(path: str, start_line: int) -> str:
    """Stable chunk id derived from the owning path and 0-based start line."""
    return hashlib.sha256(f"{path}:{start_line}".encode("utf-8")).hexdigest()[:16]


def estimate_tokens(text: str) -> int:
    """Approximate token count: 4 characters ≈ 1 token, rounded up."""
    return math.ceil(len(text) / CHARS_PER_TOKEN)


class BaseChunker(ABC):
    """Abstract base for all chunkers.

    Subclasses implement ``chunk()`` and must return chunks whose ids are a
    pure function of ``(path, start line)`` so re-indexing an unchanged
    region reproduces the same ids.
    """

    @abstractmethod
    def chunk(self, path: str, content: str) -> list[Chunk]:
        """Split *content* of the file at *path* into ordered Chunk objects."""
