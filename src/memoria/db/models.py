"""Domain models for the memory index."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class FileRecord:
    path: str
    hash: str
    mtime: int  # milliseconds since epoch


@dataclass
class Chunk:
    id: str
    path: str
    start_line: int  # 1-based, inclusive
    end_line: int  # 1-based, inclusive
    text_hash: str
    text: str
    updated_at: int | None = None
