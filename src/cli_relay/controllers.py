"""Controllers for relay CLI commands."""

from __future__ import annotations

import logging
import queue
import threading
from collections.abc import Iterator
from dataclasses import dataclass, replace
from pathlib import Path

from cli_relay.chunks import ChunkCache, ChunkDelivery, LineBudgetChunker, chunk_text_budget
from cli_relay.config import Settings
from cli_relay.execution import ExecutionCoordinator
from cli_relay.prompt import preprocess_at_symbols

logger = logging.getLogger(__name__)

_SENTINEL = object()
_THREAD_JOIN_SECONDS = 10

CHUNK_UNAVAILABLE = (
    "Chunk unavailable: cache key {cache_key} was not found or has expired. "
    "Re-run the original request to regenerate it."
)


@dataclass(slots=True)
class AskCommand:
    """CLI input for one engine request."""

    prompt: str
    model: str | None = None
    fallback_model: str | None = None
    sandbox: bool = False
    timeout_seconds: float | None = None
    working_dir: Path | None = None
    cache_dir: Path | None = None


@dataclass(slots=True)
class FetchChunkCommand:
    """CLI input for chunk continuation."""

    cache_key: str
    chunk_index: int
    cache_dir: Path | None = None


@dataclass(slots=True)
class CacheCommand:
    """CLI input for cache maintenance."""

    cache_dir: Path | None = None


@dataclass(slots=True)
class FetchChunkResult:
    """Chunk lookup outcome."""

    success: bool
    lines: list[str]


def request_material(*, prompt: str, model: str, sandbox: bool) -> str:
    """Key material identifying one originating request."""

    return f"model={model}\nsandbox={int(sandbox)}\n{prompt}"


class RelayCliController:
    """CLI controller for engine requests and chunk cache operations."""

    def ask(self, command: AskCommand) -> Iterator[str]:
        """Run the engine, yielding live status lines and then the response.

        Once the status stream is drained, re-raises whatever stopped the
        worker, normally :class:`ExecutionError` when the engine failed for good.
        """

        settings = _load_settings(command.cache_dir)
        engine = settings.engine
        if command.prompt.strip() == "":
            raise ValueError("Please provide a prompt for analysis.")
        model = command.model or engine.primary_model
        fallback_model = command.fallback_model or engine.fallback_model
        prompt = preprocess_at_symbols(command.prompt, command.working_dir)

        coordinator = ExecutionCoordinator(
            command=engine.command,
            base_args=engine.base_args,
            timeout_seconds=(
                command.timeout_seconds
                if command.timeout_seconds is not None
                else engine.timeout_seconds
            ),
            heartbeat_seconds=engine.heartbeat_seconds,
            fail_fast_on_quota=engine.fail_fast_on_quota,
            prompt_via_stdin=engine.prompt_via_stdin,
        )

        progress_q: queue.Queue[str | object] = queue.Queue()
        received = [0]

        def _on_output(segment: str) -> None:
            received[0] += len(segment)
            logger.debug("Received %d chars (%d total)", len(segment), received[0])

        result_holder: list[str] = []
        error_holder: list[Exception] = []

        def _run() -> None:
            try:
                result_holder.append(
                    coordinator.execute(
                        prompt,
                        model,
                        fallback_model,
                        command.sandbox,
                        on_progress=_on_output,
                        on_status=progress_q.put,
                    ),
                )
            except Exception as exc:  # noqa: BLE001
                error_holder.append(exc)
            finally:
                progress_q.put(_SENTINEL)

        worker_thread = threading.Thread(target=_run, daemon=True, name="relay-ask")
        worker_thread.start()
        try:
            while True:
                item = progress_q.get()
                if item is _SENTINEL:
                    break
                yield str(item)
        finally:
            coordinator.cancel()
            worker_thread.join(timeout=_THREAD_JOIN_SECONDS)

        if error_holder:
            raise error_holder[0]

        delivery = _build_delivery(settings)
        response = delivery.deliver(
            request_material(prompt=prompt, model=model, sandbox=command.sandbox),
            result_holder[0],
        )
        yield response.render()

    def fetch_chunk(self, command: FetchChunkCommand) -> FetchChunkResult:
        """Return one chunk of a cached response."""

        delivery = _build_delivery(_load_settings(command.cache_dir))
        response = delivery.fetch(command.cache_key, command.chunk_index)
        if response is None:
            return FetchChunkResult(
                success=False,
                lines=[CHUNK_UNAVAILABLE.format(cache_key=command.cache_key.strip())],
            )
        return FetchChunkResult(success=True, lines=[response.render()])

    def cache_stats(self, command: CacheCommand) -> list[str]:
        """Describe chunk cache occupancy and limits."""

        stats = _build_cache(_load_settings(command.cache_dir)).stats()
        return [
            f"location: {stats.location}",
            f"entries: {stats.count}/{stats.max_entries}",
            f"ttl_seconds: {stats.ttl_seconds}",
        ]

    def cache_clear(self, command: CacheCommand) -> list[str]:
        """Delete every cached chunk sequence."""

        removed = _build_cache(_load_settings(command.cache_dir)).clear()
        return [f"Removed {removed} cache entries."]


def _load_settings(cache_dir: Path | None) -> Settings:
    settings = Settings.from_env()
    if cache_dir is not None:
        settings = replace(settings, cache=replace(settings.cache, cache_dir=cache_dir))
    settings.validate()
    return settings


def _build_cache(settings: Settings) -> ChunkCache:
    return ChunkCache(
        settings.cache.cache_dir,
        ttl_seconds=settings.cache.ttl_seconds,
        max_entries=settings.cache.max_entries,
    )


def _build_delivery(settings: Settings) -> ChunkDelivery:
    return ChunkDelivery(
        cache=_build_cache(settings),
        chunker=LineBudgetChunker(chunk_text_budget(settings.delivery.max_response_chars)),
        max_response_chars=settings.delivery.max_response_chars,
    )

