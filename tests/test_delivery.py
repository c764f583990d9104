from __future__ import annotations

from pathlib import Path

import allure
import pytest

from cli_relay.chunks.cache import ChunkCache
from cli_relay.chunks.chunker import LineBudgetChunker
from cli_relay.chunks.delivery import (
    ENVELOPE_RESERVE,
    ChunkDelivery,
    ChunkedResponse,
    InvalidChunkIndexError,
    chunk_text_budget,
    normalize_cache_key,
)

pytestmark = [
    allure.epic("Chunk Delivery"),
    allure.feature("Chunk Retrieval"),
]

_LARGE = "".join(f"row {number:03d}\n" for number in range(30))


@pytest.fixture()
def delivery(tmp_path: Path, clock) -> ChunkDelivery:
    return ChunkDelivery(
        cache=ChunkCache(tmp_path / "chunks", clock=clock),
        chunker=LineBudgetChunker(max_chars=40),
        max_response_chars=40,
    )


def test_small_response_is_returned_inline(delivery: ChunkDelivery) -> None:
    response = delivery.deliver("prompt", "short answer")

    assert response == ChunkedResponse(text="short answer")
    assert response.render() == "short answer"
    assert delivery.cache.stats().count == 0


def test_large_response_returns_first_chunk_and_cache_key(delivery: ChunkDelivery) -> None:
    response = delivery.deliver("prompt", _LARGE)

    assert response.cache_key is not None
    assert response.chunk_index == 1
    assert response.total_chunks > 1
    assert response.text == "row 000\nrow 001\nrow 002\nrow 003\nrow 004\n"
    rendered = response.render()
    assert f"--cache-key {response.cache_key} --chunk-index 2" in rendered


def test_fetch_returns_each_chunk_in_order(delivery: ChunkDelivery) -> None:
    first = delivery.deliver("prompt", _LARGE)
    assert first.cache_key is not None

    texts = [first.text]
    for index in range(2, first.total_chunks + 1):
        chunk = delivery.fetch(first.cache_key, index)
        assert chunk is not None
        assert chunk.chunk_index == index
        texts.append(chunk.text)

    assert "".join(texts) == _LARGE
    last = delivery.fetch(first.cache_key, first.total_chunks)
    assert last is not None
    assert not last.has_more
    assert "fetch-chunk" not in last.render()


def test_fetch_rejects_out_of_range_indices(delivery: ChunkDelivery) -> None:
    first = delivery.deliver("prompt", _LARGE)
    assert first.cache_key is not None

    with pytest.raises(InvalidChunkIndexError, match=">= 1"):
        delivery.fetch(first.cache_key, 0)
    with pytest.raises(InvalidChunkIndexError, match="out of range"):
        delivery.fetch(first.cache_key, first.total_chunks + 1)


def test_fetch_miss_and_expiry_return_none(delivery: ChunkDelivery, clock) -> None:
    first = delivery.deliver("prompt", _LARGE)
    assert first.cache_key is not None

    assert delivery.fetch("0123456789ab", 1) is None
    clock.advance(601)
    assert delivery.fetch(first.cache_key, 2) is None


def test_fetch_accepts_quoted_keys(delivery: ChunkDelivery) -> None:
    first = delivery.deliver("prompt", _LARGE)
    assert first.cache_key is not None

    chunk = delivery.fetch(f"  '{first.cache_key}' ", 2)

    assert chunk is not None
    assert chunk.cache_key == first.cache_key


def test_normalize_cache_key() -> None:
    assert normalize_cache_key(' "ABCDEF012345" ') == "abcdef012345"


def test_rendered_chunks_stay_within_response_budget(tmp_path: Path, clock) -> None:
    budget = 500
    delivery = ChunkDelivery(
        cache=ChunkCache(tmp_path / "chunks", clock=clock),
        chunker=LineBudgetChunker(max_chars=chunk_text_budget(budget)),
        max_response_chars=budget,
    )
    text = "".join(f"row {number:03d}\n" for number in range(200))

    first = delivery.deliver("prompt", text)
    assert first.cache_key is not None
    rendered = [first.render()]
    for index in range(2, first.total_chunks + 1):
        chunk = delivery.fetch(first.cache_key, index)
        assert chunk is not None
        rendered.append(chunk.render())

    assert all(len(item) <= budget for item in rendered)
    assert chunk_text_budget(budget) == budget - ENVELOPE_RESERVE
