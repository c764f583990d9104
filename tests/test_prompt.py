from __future__ import annotations

from pathlib import Path

import allure

from cli_relay.prompt import preprocess_at_symbols

pytestmark = [
    allure.epic("Engine Execution"),
    allure.feature("Prompt Preprocessing"),
]


def test_existing_file_reference_is_kept(tmp_path: Path) -> None:
    (tmp_path / "main.py").write_text("print('x')\n", "utf-8")

    assert preprocess_at_symbols("review @main.py please", tmp_path) == "review @main.py please"


def test_absolute_file_reference_is_kept(tmp_path: Path) -> None:
    target = tmp_path / "notes.md"
    target.write_text("notes", "utf-8")
    prompt = f"summarize @{target}"

    assert preprocess_at_symbols(prompt, Path("/")) == prompt


def test_missing_file_reference_is_escaped(tmp_path: Path) -> None:
    assert preprocess_at_symbols("ping @missing.txt now", tmp_path) == "ping \\@missing.txt now"


def test_already_escaped_reference_is_untouched(tmp_path: Path) -> None:
    assert preprocess_at_symbols("keep \\@literal", tmp_path) == "keep \\@literal"


def test_prompt_without_references_is_unchanged(tmp_path: Path) -> None:
    assert preprocess_at_symbols("plain question?", tmp_path) == "plain question?"
