"""Chunk unit contract and the default line-budget chunker."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol


@dataclass(frozen=True, slots=True)
class ChunkUnit:
    """One opaque piece of a response with its 1-based position."""

    index: int
    text: str

    def to_payload(self) -> dict[str, object]:
        return {"index": self.index, "text": self.text}


class ResponseChunker(Protocol):
    """Protocol implemented by response splitters."""

    def split(self, text: str) -> list[ChunkUnit]:
        """Split ``text`` into a contiguous, non-empty chunk sequence."""


def validate_chunks(chunks: Sequence[ChunkUnit]) -> None:
    """Raise ``ValueError`` unless chunks are non-empty and numbered 1..n."""

    if not chunks:
        raise ValueError("Chunk sequence must not be empty.")
    for expected, chunk in enumerate(chunks, start=1):
        if chunk.index != expected:
            raise ValueError(
                f"Chunk ordinals must be contiguous from 1: expected {expected}, got {chunk.index}",
            )
        if not chunk.text:
            raise ValueError(f"Chunk {chunk.index} is empty.")


class LineBudgetChunker:
    """Pack whole lines into chunks of at most ``max_chars`` characters.

    A single line longer than the budget is hard-split so that no chunk
    exceeds it.
    """

    def __init__(self, max_chars: int) -> None:
        if max_chars <= 0:
            raise ValueError("max_chars must be > 0.")
        self.max_chars = max_chars

    def split(self, text: str) -> list[ChunkUnit]:
        pieces: list[str] = []
        current = ""
        for line in text.splitlines(keepends=True):
            while len(line) > self.max_chars:
                if current:
                    pieces.append(current)
                    current = ""
                pieces.append(line[: self.max_chars])
                line = line[self.max_chars :]
            if current and len(current) + len(line) > self.max_chars:
                pieces.append(current)
                current = ""
            current += line
        if current:
            pieces.append(current)
        return [ChunkUnit(index=number, text=piece) for number, piece in enumerate(pieces, start=1)]
