"""Execution of the external analysis engine.

The engine is an opaque CLI process: we feed it arguments (and optionally
stdin), stream its stdout back to the caller, and watch stderr for the one
failure we know how to recover from, quota exhaustion.  Recovery is a single
re-run with a fallback model, driven by :class:`ExecutionCoordinator`.
"""

from cli_relay.execution.coordinator import ExecutionCoordinator, ExecutionError
from cli_relay.execution.models import (
    ErrorKind,
    ExecutionFailure,
    ExecutionRequest,
    ExecutionResult,
    ExecutionSuccess,
    QuotaDetail,
)
from cli_relay.execution.process import ProcessExecutor

__all__ = [
    "ErrorKind",
    "ExecutionCoordinator",
    "ExecutionError",
    "ExecutionFailure",
    "ExecutionRequest",
    "ExecutionResult",
    "ExecutionSuccess",
    "ProcessExecutor",
    "QuotaDetail",
]
