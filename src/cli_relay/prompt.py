"""Prompt preprocessing before handing it to the engine."""

from __future__ import annotations

import logging
import re
from pathlib import Path

logger = logging.getLogger(__name__)

_FILE_REFERENCE = re.compile(r"(?<!\\)@([a-zA-Z0-9/._\-]+)")


def preprocess_at_symbols(prompt: str, working_dir: Path | None = None) -> str:
    """Escape ``@path`` references whose file does not exist.

    The engine expands ``@path`` into file contents and fails on paths it
    cannot read, so unknown references become a literal ``\\@path``.
    Relative paths resolve against ``working_dir`` (default: cwd).
    """

    base_dir = working_dir or Path.cwd()

    def _replace(match: re.Match[str]) -> str:
        reference = match.group(1)
        candidate = Path(reference)
        if not candidate.is_absolute():
            candidate = base_dir / candidate
        try:
            exists = candidate.exists()
        except OSError as error:
            logger.debug("Cannot resolve @%s: %s", reference, error)
            exists = False
        if exists:
            return match.group(0)
        logger.debug("Escaping @%s, file not found", reference)
        return "\\" + match.group(0)

    return _FILE_REFERENCE.sub(_replace, prompt)
