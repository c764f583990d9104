"""Decide inline vs chunked delivery and serve chunk continuations."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from cli_relay.chunks.cache import ChunkCache
from cli_relay.chunks.chunker import ResponseChunker

logger = logging.getLogger(__name__)

FETCH_HINT = (
    "Response continues in chunk {next_index} of {total}. "
    "Fetch it with: fetch-chunk --cache-key {cache_key} --chunk-index {next_index}"
)
CHUNK_HEADER = "[chunk {index} of {total}, cache key {cache_key}]"

_WIDEST_ORDINAL = 999_999
# Header, fetch hint and the two newlines joining them to the chunk text.
ENVELOPE_RESERVE = (
    len(CHUNK_HEADER.format(index=_WIDEST_ORDINAL, total=_WIDEST_ORDINAL, cache_key="f" * 12))
    + len(
        FETCH_HINT.format(next_index=_WIDEST_ORDINAL, total=_WIDEST_ORDINAL, cache_key="f" * 12),
    )
    + 2
)


def chunk_text_budget(max_response_chars: int) -> int:
    """Chunk text size that keeps a rendered chunk within ``max_response_chars``."""

    return max_response_chars - ENVELOPE_RESERVE


class InvalidChunkIndexError(ValueError):
    """Requested chunk index is outside ``1..total``."""


@dataclass(frozen=True, slots=True)
class ChunkedResponse:
    """A whole response, or one chunk of a cached response."""

    text: str
    cache_key: str | None = None
    chunk_index: int = 1
    total_chunks: int = 1

    @property
    def has_more(self) -> bool:
        return self.chunk_index < self.total_chunks

    def render(self) -> str:
        """Text for the caller, with a continuation hint when chunks remain."""

        if self.cache_key is None:
            return self.text
        parts = [
            CHUNK_HEADER.format(
                index=self.chunk_index,
                total=self.total_chunks,
                cache_key=self.cache_key,
            ),
            self.text.rstrip("\n"),
        ]
        if self.has_more:
            parts.append(
                FETCH_HINT.format(
                    next_index=self.chunk_index + 1,
                    total=self.total_chunks,
                    cache_key=self.cache_key,
                ),
            )
        return "\n".join(parts)


class ChunkDelivery:
    """Split oversized responses into cached chunks and serve them by index."""

    def __init__(
        self,
        *,
        cache: ChunkCache,
        chunker: ResponseChunker,
        max_response_chars: int,
    ) -> None:
        self.cache = cache
        self.chunker = chunker
        self.max_response_chars = max_response_chars

    def deliver(self, material: str, text: str) -> ChunkedResponse:
        """Return ``text`` whole when it fits, else cache it and return chunk 1."""

        if len(text) <= self.max_response_chars:
            return ChunkedResponse(text=text)

        chunks = self.chunker.split(text)
        if len(chunks) <= 1:
            return ChunkedResponse(text=text)

        cache_key = self.cache.write(material, chunks)
        logger.info(
            "Response of %d chars split into %d chunks (cache key %s)",
            len(text),
            len(chunks),
            cache_key,
        )
        return ChunkedResponse(
            text=chunks[0].text,
            cache_key=cache_key,
            chunk_index=1,
            total_chunks=len(chunks),
        )

    def fetch(self, cache_key: str, chunk_index: int) -> ChunkedResponse | None:
        """Return one cached chunk, or None when the entry is gone or expired.

        Raises :class:`InvalidChunkIndexError` for indices outside the stored
        sequence; those are caller errors, not cache misses.
        """

        if chunk_index < 1:
            raise InvalidChunkIndexError(f"Chunk index must be >= 1, got {chunk_index}.")

        key = normalize_cache_key(cache_key)
        chunks = self.cache.read(key)
        if chunks is None:
            logger.warning("Chunk cache miss for %s", key)
            return None
        if chunk_index > len(chunks):
            raise InvalidChunkIndexError(
                f"Chunk index {chunk_index} is out of range; {key} has {len(chunks)} chunks.",
            )
        return ChunkedResponse(
            text=chunks[chunk_index - 1].text,
            cache_key=key,
            chunk_index=chunk_index,
            total_chunks=len(chunks),
        )


def normalize_cache_key(value: str) -> str:
    """Strip whitespace and surrounding quotes callers tend to copy along."""

    return value.strip().strip("'\"").strip().lower()
