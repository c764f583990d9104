"""File-backed, expiring, size-bounded cache of response chunks.

One JSON file per entry, named by a short content hash of the material that
produced it.  Keys are derived from content, so two writers computing the
same key write equivalent payloads and the last whole-file replace wins.
Sweeps run without locking; deleting an entry another process already
removed is a no-op.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import re
import tempfile
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from cli_relay.chunks.chunker import ChunkUnit, validate_chunks

logger = logging.getLogger(__name__)

CACHE_KEY_LENGTH = 12
DEFAULT_TTL_SECONDS = 600
DEFAULT_MAX_ENTRIES = 50

_ENTRY_SUFFIX = ".json"
_KEY_PATTERN = re.compile(rf"^[0-9a-f]{{{CACHE_KEY_LENGTH}}}$")


class CorruptEntryError(ValueError):
    """Stored cache record could not be parsed."""


@dataclass(frozen=True, slots=True)
class CacheEntry:
    """One persisted chunk sequence with its metadata."""

    key: str
    chunks: list[ChunkUnit]
    created_at: int
    source_hash: str

    def to_payload(self) -> dict[str, Any]:
        return {
            "chunks": [chunk.to_payload() for chunk in self.chunks],
            "timestamp": self.created_at,
            "sourceHash": self.source_hash,
        }


@dataclass(frozen=True, slots=True)
class CacheStats:
    """Read-only cache introspection."""

    count: int
    ttl_seconds: int
    max_entries: int
    location: Path


def source_hash_for(material: str) -> str:
    return hashlib.sha256(material.encode("utf-8")).hexdigest()


def cache_key_for(material: str) -> str:
    """Deterministic short key for ``material``."""

    return source_hash_for(material)[:CACHE_KEY_LENGTH]


class ChunkCache:
    """Chunk sequences persisted under ``cache_dir``, one file per key."""

    def __init__(
        self,
        cache_dir: Path,
        *,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.cache_dir = cache_dir
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock

    def write(self, material: str, chunks: Sequence[ChunkUnit]) -> str:
        """Persist ``chunks`` under the key derived from ``material``."""

        validate_chunks(chunks)
        self.sweep_expired()

        source_hash = source_hash_for(material)
        key = source_hash[:CACHE_KEY_LENGTH]
        entry = CacheEntry(
            key=key,
            chunks=list(chunks),
            created_at=self._now_ms(),
            source_hash=source_hash,
        )
        try:
            self.cache_dir.mkdir(parents=True, exist_ok=True)
            _replace_file(self._path(key), json.dumps(entry.to_payload(), ensure_ascii=False))
            logger.debug("Cached %d chunks as %s", len(entry.chunks), key)
        except OSError as error:
            logger.error("Failed to cache chunks as %s: %s", key, error)

        self.enforce_capacity()
        return key

    def read(self, key: str) -> list[ChunkUnit] | None:
        """Return cached chunks, or None when missing, expired or corrupt."""

        entry = self.read_entry(key)
        return entry.chunks if entry is not None else None

    def read_entry(self, key: str) -> CacheEntry | None:
        """Return the full cache entry, or None when missing, expired or corrupt."""

        if not _KEY_PATTERN.match(key):
            logger.debug("Rejected malformed cache key %r", key)
            return None
        path = self._path(key)
        try:
            entry = _load_entry(path)
        except FileNotFoundError:
            return None
        except (OSError, CorruptEntryError) as error:
            logger.warning("Dropping unreadable cache entry %s: %s", key, error)
            _delete(path)
            return None

        if self._is_expired(entry):
            logger.debug("Cache entry %s expired, deleted", key)
            _delete(path)
            return None

        logger.debug("Cache hit for %s, %d chunks", key, len(entry.chunks))
        return entry

    def stats(self) -> CacheStats:
        """Report entry count and limits without touching the cache."""

        return CacheStats(
            count=len(self._entry_paths()),
            ttl_seconds=self.ttl_seconds,
            max_entries=self.max_entries,
            location=self.cache_dir,
        )

    def clear(self) -> int:
        """Delete every entry; return how many were removed."""

        removed = 0
        for path in self._entry_paths():
            if _delete(path):
                removed += 1
        logger.debug("Cache emptied, %d entries removed", removed)
        return removed

    def sweep_expired(self) -> int:
        """Delete entries older than the TTL or unreadable."""

        removed = 0
        for path in self._entry_paths():
            try:
                entry = _load_entry(path)
            except FileNotFoundError:
                continue
            except (OSError, CorruptEntryError) as error:
                logger.debug("Removing unreadable cache file %s: %s", path.name, error)
                removed += int(_delete(path))
                continue
            if self._is_expired(entry):
                removed += int(_delete(path))
        if removed:
            logger.debug("Cleaned %d expired or invalid cache files", removed)
        return removed

    def enforce_capacity(self) -> int:
        """Delete the oldest entries until at most ``max_entries`` remain.

        Equal timestamps are ordered by key so eviction is deterministic.
        """

        dated: list[tuple[int, str, Path]] = []
        for path in self._entry_paths():
            try:
                entry = _load_entry(path)
            except FileNotFoundError:
                continue
            except (OSError, CorruptEntryError) as error:
                logger.debug("Removing unreadable cache file %s: %s", path.name, error)
                _delete(path)
                continue
            dated.append((entry.created_at, entry.key, path))

        excess = len(dated) - self.max_entries
        if excess <= 0:
            return 0
        dated.sort()
        removed = 0
        for _created_at, _key, path in dated[:excess]:
            removed += int(_delete(path))
        logger.debug("Removed %d old cache files to enforce limit", removed)
        return removed

    def _is_expired(self, entry: CacheEntry) -> bool:
        return self._now_ms() - entry.created_at > self.ttl_seconds * 1000

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def _path(self, key: str) -> Path:
        return self.cache_dir / f"{key}{_ENTRY_SUFFIX}"

    def _entry_paths(self) -> list[Path]:
        if not self.cache_dir.is_dir():
            return []
        return sorted(
            path
            for path in self.cache_dir.iterdir()
            if path.suffix == _ENTRY_SUFFIX and _KEY_PATTERN.match(path.stem)
        )


def _load_entry(path: Path) -> CacheEntry:
    raw = path.read_bytes()
    try:
        payload = json.loads(raw.decode("utf-8"))
    except UnicodeDecodeError as error:
        raise CorruptEntryError(f"not UTF-8: {error}") from error
    except json.JSONDecodeError as error:
        raise CorruptEntryError(f"invalid JSON: {error}") from error
    return _parse_entry(path.stem, payload)


def _parse_entry(key: str, payload: object) -> CacheEntry:
    if not isinstance(payload, dict):
        raise CorruptEntryError("expected a JSON object")
    timestamp = payload.get("timestamp")
    source_hash = payload.get("sourceHash")
    raw_chunks = payload.get("chunks")
    if not isinstance(timestamp, int) or isinstance(timestamp, bool):
        raise CorruptEntryError("missing or invalid timestamp")
    if not isinstance(source_hash, str):
        raise CorruptEntryError("missing or invalid sourceHash")
    if not isinstance(raw_chunks, list):
        raise CorruptEntryError("missing or invalid chunks")

    chunks: list[ChunkUnit] = []
    for item in raw_chunks:
        if not isinstance(item, dict):
            raise CorruptEntryError("chunk must be an object")
        index = item.get("index")
        text = item.get("text")
        if not isinstance(index, int) or not isinstance(text, str):
            raise CorruptEntryError("chunk requires integer index and string text")
        chunks.append(ChunkUnit(index=index, text=text))
    try:
        validate_chunks(chunks)
    except ValueError as error:
        raise CorruptEntryError(str(error)) from error
    return CacheEntry(key=key, chunks=chunks, created_at=timestamp, source_hash=source_hash)


def _replace_file(path: Path, content: str) -> None:
    fd, temp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.stem}-", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(content)
        os.replace(temp_name, path)
    except OSError:
        Path(temp_name).unlink(missing_ok=True)
        raise


def _delete(path: Path) -> bool:
    try:
        path.unlink()
    except FileNotFoundError:
        logger.debug("Cache file %s already removed", path.name)
        return False
    except OSError as error:
        logger.warning("Failed to delete cache file %s: %s", path.name, error)
        return False
    return True
