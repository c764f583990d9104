"""Primary/fallback execution policy for the analysis engine."""

from __future__ import annotations

import json
import logging
import threading
from collections.abc import Callable, Sequence

from cli_relay.execution.failure_classifier import classify_quota_failure, is_quota_failure
from cli_relay.execution.models import (
    ErrorKind,
    ExecutionFailure,
    ExecutionRequest,
    ExecutionSuccess,
    QuotaDetail,
)
from cli_relay.execution.process import ProcessExecutor

logger = logging.getLogger(__name__)

MODEL_FLAG = "-m"
SANDBOX_FLAG = "-s"
PROMPT_FLAG = "-p"

PROCESSING_START = "Starting analysis (may take several minutes for large inputs)"
PROCESSING_CONTINUE = "Still processing... ({elapsed:.0f}s elapsed)"
PROCESSING_COMPLETE = "Analysis completed successfully"
QUOTA_SWITCHING = "Quota exceeded for {model}, switching to fallback model {fallback}..."
FALLBACK_RETRY = "Retrying with {fallback}..."
FALLBACK_SUCCESS = "Fallback model {fallback} completed successfully"

_QUOTA_CANDIDATE_KINDS = (ErrorKind.NON_ZERO_EXIT, ErrorKind.ABORTED)


class ExecutionError(RuntimeError):
    """Engine execution failed for good."""

    def __init__(
        self,
        message: str,
        *,
        kind: ErrorKind,
        quota: QuotaDetail | None = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.quota = quota


def build_engine_args(
    *,
    prompt: str | None,
    model: str,
    sandbox: bool,
    base_args: Sequence[str] = (),
) -> tuple[str, ...]:
    """Render the engine argument vector; ``prompt=None`` means it goes to stdin."""

    args = list(base_args)
    if model:
        args.extend((MODEL_FLAG, model))
    if sandbox:
        args.append(SANDBOX_FLAG)
    if prompt is not None:
        args.extend((PROMPT_FLAG, prompt))
    return tuple(args)


class ExecutionCoordinator:
    """Drive one logical request: primary run, then at most one quota fallback."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        command: str,
        executor: ProcessExecutor | None = None,
        base_args: Sequence[str] = (),
        timeout_seconds: float | None = None,
        heartbeat_seconds: float | None = None,
        fail_fast_on_quota: bool = True,
        prompt_via_stdin: bool = False,
    ) -> None:
        self.command = command
        self.executor = executor or ProcessExecutor()
        self.base_args = tuple(base_args)
        self.timeout_seconds = timeout_seconds
        self.heartbeat_seconds = heartbeat_seconds
        self.fail_fast_on_quota = fail_fast_on_quota
        self.prompt_via_stdin = prompt_via_stdin
        self._cancel_event: threading.Event | None = None

    def cancel(self) -> None:
        """Terminate the engine process of the call in flight, if any."""

        if self._cancel_event is not None:
            self._cancel_event.set()

    def execute(  # noqa: PLR0913
        self,
        prompt: str,
        primary_model: str,
        fallback_model: str,
        sandbox: bool = False,
        *,
        on_progress: Callable[[str], None] | None = None,
        on_status: Callable[[str], None] | None = None,
    ) -> str:
        """Run the engine and return its trimmed stdout.

        Raises :class:`ExecutionError` when the primary run fails for a
        non-quota reason, when no distinct fallback model exists, or when the
        fallback run fails too.
        """

        notify = on_status or (lambda _msg: None)
        cancel_event = threading.Event()
        self._cancel_event = cancel_event
        try:
            notify(PROCESSING_START)
            primary = self._run(
                prompt=prompt,
                model=primary_model,
                sandbox=sandbox,
                cancel_event=cancel_event,
                on_progress=on_progress,
                notify=notify,
            )
            if isinstance(primary, ExecutionSuccess):
                notify(PROCESSING_COMPLETE)
                return primary.output

            quota = _quota_detail(primary)
            if quota is None:
                raise _error_from_failure(primary)

            logger.error(
                "Quota error: %s",
                json.dumps(quota.to_error_payload(), ensure_ascii=False),
            )
            if not fallback_model or fallback_model == primary_model:
                raise ExecutionError(
                    f"Quota exceeded for {quota.resource_name}: {primary.message}",
                    kind=ErrorKind.QUOTA_EXCEEDED,
                    quota=quota,
                )

            notify(QUOTA_SWITCHING.format(model=primary_model, fallback=fallback_model))
            logger.warning(
                "%s quota exceeded, falling back to %s",
                primary_model,
                fallback_model,
            )
            notify(FALLBACK_RETRY.format(fallback=fallback_model))
            fallback = self._run(
                prompt=prompt,
                model=fallback_model,
                sandbox=sandbox,
                cancel_event=cancel_event,
                on_progress=on_progress,
                notify=notify,
            )
            if isinstance(fallback, ExecutionSuccess):
                logger.info("Fallback model %s succeeded", fallback_model)
                notify(FALLBACK_SUCCESS.format(fallback=fallback_model))
                return fallback.output

            raise ExecutionError(
                f"{primary_model} quota exceeded ({quota.resource_name}), "
                f"fallback {fallback_model} also failed: {fallback.message}",
                kind=ErrorKind.FALLBACK_FAILED,
                quota=quota,
            )
        finally:
            self._cancel_event = None

    def _run(  # noqa: PLR0913
        self,
        *,
        prompt: str,
        model: str,
        sandbox: bool,
        cancel_event: threading.Event,
        on_progress: Callable[[str], None] | None,
        notify: Callable[[str], None],
    ) -> ExecutionSuccess | ExecutionFailure:
        request = ExecutionRequest(
            command=self.command,
            arguments=build_engine_args(
                prompt=None if self.prompt_via_stdin else prompt,
                model=model,
                sandbox=sandbox,
                base_args=self.base_args,
            ),
            input_payload=prompt if self.prompt_via_stdin else None,
        )
        return self.executor.run(
            request,
            on_progress=on_progress,
            abort_when=is_quota_failure if self.fail_fast_on_quota else None,
            timeout_seconds=self.timeout_seconds,
            cancel_event=cancel_event,
            heartbeat_seconds=self.heartbeat_seconds,
            on_heartbeat=lambda elapsed: notify(PROCESSING_CONTINUE.format(elapsed=elapsed)),
        )


def _quota_detail(failure: ExecutionFailure) -> QuotaDetail | None:
    if failure.kind not in _QUOTA_CANDIDATE_KINDS:
        return None
    return classify_quota_failure(failure.raw)


def _error_from_failure(failure: ExecutionFailure) -> ExecutionError:
    if failure.kind is ErrorKind.SPAWN_ERROR:
        message = f"Failed to spawn command: {failure.message}"
    elif failure.kind is ErrorKind.NON_ZERO_EXIT:
        message = f"Command failed with exit code {failure.exit_code}: {failure.message}"
    else:
        message = failure.message
    return ExecutionError(message, kind=failure.kind)
