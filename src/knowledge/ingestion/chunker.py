"""Deterministic character-window chunking with overlap.

Text is cut into windows of ``chunk_size`` characters. Consecutive windows
overlap by ``overlap`` characters, so windows start at 0, stride, 2*stride,
... with ``stride = chunk_size - overlap``. Chunking stops at the first window
that reaches the end of the text, so a text of length L longer than one window
yields ``ceil((L - overlap) / stride)`` chunks. Text no longer than one window
(including empty text) yields exactly one chunk.
"""

from __future__ import annotations

import math

from src.knowledge.config import KnowledgeBaseConfig


class KnowledgeChunker:
    """Split raw item content into ordered, overlapping text windows.

    Args:
        chunk_size: Window length in characters.
        overlap: Characters shared by consecutive windows. Must be smaller
            than chunk_size.
    """

    def __init__(self, chunk_size: int = 500, overlap: int = 50) -> None:
        if chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {chunk_size}")
        if not 0 <= overlap < chunk_size:
            raise ValueError(f"overlap must be in [0, {chunk_size}), got {overlap}")
        self.chunk_size = chunk_size
        self.overlap = overlap

    @classmethod
    def from_config(cls, config: KnowledgeBaseConfig) -> KnowledgeChunker:
        return cls(chunk_size=config.chunk_size, overlap=config.chunk_overlap)

    @property
    def stride(self) -> int:
        return self.chunk_size - self.overlap

    def expected_count(self, length: int) -> int:
        """Number of chunks ``split`` produces for text of ``length`` characters."""
        if length <= self.chunk_size:
            return 1
        return math.ceil((length - self.overlap) / self.stride)

    def split(self, text: str) -> list[str]:
        """Split text into windows, in document order.

        Args:
            text: Raw content. May be empty.

        Returns:
            Non-empty list of chunk texts; position i is the i-th window.
        """
        if len(text) <= self.chunk_size:
            return [text]

        chunks: list[str] = []
        start = 0
        while True:
            end = start + self.chunk_size
            chunks.append(text[start:end])
            if end >= len(text):
                break
            start += self.stride
        return chunks
