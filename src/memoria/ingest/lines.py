"""Line-addressed chunker — character-targeted windows with line overlap.

Defaults: ~400 tokens (1,600 chars) per chunk, ~80 tokens (320 chars) overlap.
"""

from __future__ import annotations

from memoria.db.models import Chunk
from memoria.ingest.base import CHARS_PER_TOKEN, BaseChunker, chunk_id, text_hash


class LineChunker(BaseChunker):
    """Split text on line boundaries into overlapping chunks.

    Strategy:
    - Accumulate whole lines (``len(line) + 1`` chars each) until the target
      size is reached, then emit the accumulated line range.
    - Back up whole lines until at least ``overlap_chars`` are re-covered,
      always advancing at least one line past the previous start.
    - Stop once a chunk reaches the last line.
    - Whitespace-only ranges are not emitted.
    """

    def __init__(self, target_chars: int = 1_600, overlap_chars: int = 320) -> None:
        if target_chars < 1:
            raise ValueError("target_chars must be >= 1")
        if not 0 <= overlap_chars < target_chars:
            raise ValueError("overlap_chars must be in [0, target_chars)")
        self.target_chars = target_chars
        self.overlap_chars = overlap_chars

    @classmethod
    def from_tokens(cls, tokens: int = 400, overlap: int = 80) -> LineChunker:
        """Build a chunker from token-denominated settings (4 chars per token)."""
        return cls(target_chars=tokens * CHARS_PER_TOKEN, overlap_chars=overlap * CHARS_PER_TOKEN)

    def chunk(self, path: str, content: str) -> list[Chunk]:
        if not content:
            return []

        lines = content.split("\n")
        chunks: list[Chunk] = []
        start = 0

        while start < len(lines):
            end = start
            size = 0
            while end < len(lines) and size < self.target_chars:
                size += len(lines[end]) + 1
                end += 1

            text = "\n".join(lines[start:end]).strip()
            if text:
                chunks.append(
                    Chunk(
                        id=chunk_id(path, start),
                        path=path,
                        start_line=start + 1,
                        end_line=end,
                        text_hash=text_hash(text),
                        text=text,
                    )
                )

            if end >= len(lines):
                break
            start = self._next_start(lines, start, end)

        return chunks

    def _next_start(self, lines: list[str], start: int, end: int) -> int:
        """Return the start of the next window: *end* backed up by the overlap."""
        covered = 0
        next_start = end
        while next_start > start + 1 and covered < self.overlap_chars:
            next_start -= 1
            covered += len(lines[next_start]) + 1
        return next_start
