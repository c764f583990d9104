"""Shared test fixtures."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

from cli_relay.execution.models import ExecutionRequest

ECHO_ENGINE_ARGS = ("-m", "cli_relay.execution.echo_engine")


def _python_request(script: str, *, input_payload: str | None = None) -> ExecutionRequest:
    return ExecutionRequest(
        command=sys.executable,
        arguments=("-c", script),
        input_payload=input_payload,
    )


class FakeClock:
    """Manually advanced wall clock in seconds."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture()
def python_request():
    """Build requests that run an inline script with the current interpreter."""
    return _python_request


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def echo_engine(monkeypatch, tmp_path: Path) -> Path:
    """Point the relay at the local echo engine and an isolated cache dir."""

    cache_dir = tmp_path / "chunk-cache"
    monkeypatch.setenv("CLI_RELAY_COMMAND", sys.executable)
    monkeypatch.setenv("CLI_RELAY_COMMAND_ARGS", " ".join(ECHO_ENGINE_ARGS))
    monkeypatch.setenv("CLI_RELAY_PRIMARY_MODEL", "pro-test")
    monkeypatch.setenv("CLI_RELAY_FALLBACK_MODEL", "flash-test")
    monkeypatch.setenv("CLI_RELAY_TIMEOUT_SECONDS", "60")
    monkeypatch.setenv("CLI_RELAY_CACHE_DIR", str(cache_dir))
    return cache_dir
