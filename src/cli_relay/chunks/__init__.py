"""Chunked delivery of oversized engine responses."""

from cli_relay.chunks.cache import CacheEntry, CacheStats, ChunkCache
from cli_relay.chunks.chunker import ChunkUnit, LineBudgetChunker, ResponseChunker, validate_chunks
from cli_relay.chunks.delivery import (
    ENVELOPE_RESERVE,
    ChunkDelivery,
    ChunkedResponse,
    InvalidChunkIndexError,
    chunk_text_budget,
)

__all__ = [
    "ENVELOPE_RESERVE",
    "CacheEntry",
    "CacheStats",
    "ChunkCache",
    "ChunkDelivery",
    "ChunkUnit",
    "ChunkedResponse",
    "InvalidChunkIndexError",
    "LineBudgetChunker",
    "ResponseChunker",
    "chunk_text_budget",
    "validate_chunks",
]
