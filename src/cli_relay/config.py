"""Runtime configuration for engine execution and chunk delivery."""

from __future__ import annotations

import os
import shlex
import tempfile
from dataclasses import dataclass, field
from pathlib import Path

from cli_relay.chunks.delivery import ENVELOPE_RESERVE

DEFAULT_CACHE_DIR_NAME = "cli-relay-chunks"


def default_cache_dir() -> Path:
    return Path(tempfile.gettempdir()) / DEFAULT_CACHE_DIR_NAME


@dataclass(slots=True)
class EngineSettings:
    """External engine invocation settings."""

    command: str = "gemini"
    base_args: tuple[str, ...] = ()
    primary_model: str = "gemini-2.5-pro"
    fallback_model: str = "gemini-2.5-flash"
    timeout_seconds: float = 900.0
    heartbeat_seconds: float = 25.0
    fail_fast_on_quota: bool = True
    prompt_via_stdin: bool = False


@dataclass(slots=True)
class CacheSettings:
    """Chunk cache settings."""

    cache_dir: Path = field(default_factory=default_cache_dir)
    ttl_seconds: int = 600
    max_entries: int = 50


@dataclass(slots=True)
class DeliverySettings:
    """Response size budget settings."""

    max_response_chars: int = 20_000


@dataclass(slots=True)
class Settings:
    """Application settings grouped by concern."""

    engine: EngineSettings = field(default_factory=EngineSettings)
    cache: CacheSettings = field(default_factory=CacheSettings)
    delivery: DeliverySettings = field(default_factory=DeliverySettings)

    @classmethod
    def from_env(cls) -> Settings:
        """Load settings from environment with defaults suited to the gemini CLI."""

        cache_dir_raw = os.getenv("CLI_RELAY_CACHE_DIR", "").strip()
        return cls(
            engine=EngineSettings(
                command=os.getenv("CLI_RELAY_COMMAND", "gemini").strip(),
                base_args=tuple(shlex.split(os.getenv("CLI_RELAY_COMMAND_ARGS", ""))),
                primary_model=os.getenv("CLI_RELAY_PRIMARY_MODEL", "gemini-2.5-pro").strip(),
                fallback_model=os.getenv("CLI_RELAY_FALLBACK_MODEL", "gemini-2.5-flash").strip(),
                timeout_seconds=float(os.getenv("CLI_RELAY_TIMEOUT_SECONDS", "900")),
                heartbeat_seconds=float(os.getenv("CLI_RELAY_HEARTBEAT_SECONDS", "25")),
                fail_fast_on_quota=_env_bool("CLI_RELAY_FAIL_FAST_ON_QUOTA", default=True),
                prompt_via_stdin=_env_bool("CLI_RELAY_PROMPT_VIA_STDIN", default=False),
            ),
            cache=CacheSettings(
                cache_dir=Path(cache_dir_raw) if cache_dir_raw else default_cache_dir(),
                ttl_seconds=int(os.getenv("CLI_RELAY_CACHE_TTL_SECONDS", "600")),
                max_entries=int(os.getenv("CLI_RELAY_CACHE_MAX_ENTRIES", "50")),
            ),
            delivery=DeliverySettings(
                max_response_chars=int(os.getenv("CLI_RELAY_MAX_RESPONSE_CHARS", "20000")),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error for unusable values."""

        if not self.engine.command:
            raise ValueError("CLI_RELAY_COMMAND must not be empty.")
        if self.engine.timeout_seconds < 0:
            raise ValueError("CLI_RELAY_TIMEOUT_SECONDS must be >= 0 (0 disables the timeout).")
        if self.engine.heartbeat_seconds < 0:
            raise ValueError("CLI_RELAY_HEARTBEAT_SECONDS must be >= 0.")
        if self.cache.ttl_seconds <= 0:
            raise ValueError("CLI_RELAY_CACHE_TTL_SECONDS must be > 0.")
        if self.cache.max_entries <= 0:
            raise ValueError("CLI_RELAY_CACHE_MAX_ENTRIES must be > 0.")
        if self.delivery.max_response_chars <= ENVELOPE_RESERVE:
            raise ValueError(
                f"CLI_RELAY_MAX_RESPONSE_CHARS must be > {ENVELOPE_RESERVE} "
                "to leave room for the chunk header and fetch hint.",
            )


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value!r}")
