"""Domain models for engine execution."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class ErrorKind(str, Enum):
    """Normalized failure kinds for one engine execution."""

    SPAWN_ERROR = "spawn_error"
    NON_ZERO_EXIT = "non_zero_exit"
    QUOTA_EXCEEDED = "quota_exceeded"
    FALLBACK_FAILED = "fallback_failed"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"
    ABORTED = "aborted"


@dataclass(frozen=True, slots=True)
class ExecutionRequest:
    """One external command invocation."""

    command: str
    arguments: tuple[str, ...] = ()
    input_payload: str | None = None

    @property
    def argv(self) -> list[str]:
        return [self.command, *self.arguments]


@dataclass(frozen=True, slots=True)
class ExecutionSuccess:
    """Process exited with code 0."""

    output: str

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True, slots=True)
class ExecutionFailure:
    """Process could not start, failed, or was stopped."""

    kind: ErrorKind
    message: str
    raw: str = ""
    exit_code: int | None = None

    @property
    def ok(self) -> bool:
        return False


ExecutionResult = ExecutionSuccess | ExecutionFailure


@dataclass(frozen=True, slots=True)
class QuotaDetail:
    """Structured fields extracted from a quota exhaustion signature."""

    resource_name: str
    status_code: int
    reason_code: str

    def to_error_payload(self) -> dict[str, object]:
        """Serialize as the structured diagnostic logged on quota failures."""

        return {
            "error": {
                "code": self.status_code,
                "message": f"Quota exceeded for {self.resource_name}",
                "details": {
                    "model": self.resource_name,
                    "reason": self.reason_code,
                },
            },
        }
