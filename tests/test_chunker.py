from __future__ import annotations

import allure
import pytest

from cli_relay.chunks.chunker import ChunkUnit, LineBudgetChunker, validate_chunks

pytestmark = [
    allure.epic("Chunk Delivery"),
    allure.feature("Chunk Contract"),
]


def test_line_budget_chunker_packs_whole_lines() -> None:
    text = "aaaa\nbbbb\ncccc\ndddd\n"

    chunks = LineBudgetChunker(max_chars=10).split(text)

    assert [chunk.text for chunk in chunks] == ["aaaa\nbbbb\n", "cccc\ndddd\n"]
    assert [chunk.index for chunk in chunks] == [1, 2]


def test_line_budget_chunker_hard_splits_overlong_line() -> None:
    chunks = LineBudgetChunker(max_chars=4).split("ab\n0123456789\nz")

    assert "".join(chunk.text for chunk in chunks) == "ab\n0123456789\nz"
    assert all(0 < len(chunk.text) <= 4 for chunk in chunks)
    validate_chunks(chunks)


def test_line_budget_chunker_preserves_content_and_order() -> None:
    text = "".join(f"line {number}\n" for number in range(200))

    chunks = LineBudgetChunker(max_chars=97).split(text)

    assert "".join(chunk.text for chunk in chunks) == text
    validate_chunks(chunks)


def test_line_budget_chunker_rejects_non_positive_budget() -> None:
    with pytest.raises(ValueError, match="max_chars"):
        LineBudgetChunker(max_chars=0)


def test_validate_chunks_rejects_gaps_and_empty_units() -> None:
    with pytest.raises(ValueError, match="must not be empty"):
        validate_chunks([])
    with pytest.raises(ValueError, match="expected 2, got 3"):
        validate_chunks([ChunkUnit(index=1, text="a"), ChunkUnit(index=3, text="c")])
    with pytest.raises(ValueError, match="Chunk 1 is empty"):
        validate_chunks([ChunkUnit(index=1, text="")])
