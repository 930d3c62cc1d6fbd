"""Memoria ingest pipeline — chunking, embeddings, incremental indexer."""

from memoria.ingest.base import BaseChunker
from memoria.ingest.embeddings import BackendState, EmbeddingBackend
from memoria.ingest.indexer import Indexer, IndexResult
from memoria.ingest.lines import LineChunker

__all__ = [
    "BackendState",
    "BaseChunker",
    "EmbeddingBackend",
    "Indexer",
    "IndexResult",
    "LineChunker",
]
