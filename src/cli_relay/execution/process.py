"""Subprocess runner for the external engine with streamed output."""

from __future__ import annotations

import codecs
import logging
import os
import queue
import subprocess
import threading
import time
from collections.abc import Callable
from typing import IO

from cli_relay.execution.models import (
    ErrorKind,
    ExecutionFailure,
    ExecutionRequest,
    ExecutionResult,
    ExecutionSuccess,
)

logger = logging.getLogger(__name__)

_READ_SIZE = 65_536
_POLL_INTERVAL_SECONDS = 0.1
_READER_JOIN_SECONDS = 2.0
_STDOUT = "stdout"
_STDERR = "stderr"


class ProcessExecutor:
    """Run one external command, stream stdout, and resolve exactly once."""

    def run(  # noqa: PLR0913
        self,
        request: ExecutionRequest,
        *,
        on_progress: Callable[[str], None] | None = None,
        abort_when: Callable[[str], bool] | None = None,
        timeout_seconds: float | None = None,
        cancel_event: threading.Event | None = None,
        heartbeat_seconds: float | None = None,
        on_heartbeat: Callable[[float], None] | None = None,
    ) -> ExecutionResult:
        """Execute ``request`` and return its outcome.

        ``on_progress`` receives each newly decoded stdout segment, once per
        read event and in arrival order.  ``abort_when`` is evaluated against
        the accumulated stderr after every stderr read; when it returns True
        the child is terminated and the result is ``ErrorKind.ABORTED``.
        Timeout and cancellation also terminate the child.
        """

        started = time.monotonic()
        logger.info("Starting: %s", _describe(request))
        try:
            process = _spawn(request)
        except (OSError, ValueError) as error:
            logger.error("Failed to spawn %s: %s", request.command, error)
            return ExecutionFailure(kind=ErrorKind.SPAWN_ERROR, message=str(error))

        events: queue.Queue[tuple[str, bytes | None]] = queue.Queue()
        threads = [
            _start_reader(process.stdout, _STDOUT, events),
            _start_reader(process.stderr, _STDERR, events),
        ]
        if request.input_payload is not None:
            threads.append(_start_writer(process.stdin, request.input_payload))

        watch = _Watchdog(
            started=started,
            timeout_seconds=timeout_seconds,
            cancel_event=cancel_event,
            heartbeat_seconds=heartbeat_seconds,
            on_heartbeat=on_heartbeat,
        )
        stdout = _StreamBuffer()
        stderr = _StreamBuffer()
        try:
            open_streams = 2
            while open_streams:
                stopped = watch.check()
                if stopped is not None:
                    _terminate_process(process)
                    return _stopped_failure(stopped, stderr=stderr.text, watch=watch)
                try:
                    source, data = events.get(timeout=_POLL_INTERVAL_SECONDS)
                except queue.Empty:
                    continue
                if data is None:
                    open_streams -= 1
                    continue
                if source == _STDOUT:
                    segment = stdout.feed(data)
                    if segment and on_progress is not None:
                        on_progress(segment)
                    continue
                stderr.feed(data)
                if abort_when is not None and abort_when(stderr.text):
                    logger.warning("Aborting %s on stderr signature", request.command)
                    _terminate_process(process)
                    _drain_stderr(events, stderr, open_streams=open_streams)
                    return ExecutionFailure(
                        kind=ErrorKind.ABORTED,
                        message=stderr.text.strip() or "Aborted",
                        raw=stderr.text,
                    )

            tail = stdout.feed(b"", final=True)
            if tail and on_progress is not None:
                on_progress(tail)
            stderr.feed(b"", final=True)

            while True:
                try:
                    returncode = process.wait(timeout=_POLL_INTERVAL_SECONDS)
                    break
                except subprocess.TimeoutExpired:
                    stopped = watch.check()
                    if stopped is not None:
                        _terminate_process(process)
                        return _stopped_failure(stopped, stderr=stderr.text, watch=watch)
        finally:
            for thread in threads:
                thread.join(timeout=_READER_JOIN_SECONDS)

        elapsed = time.monotonic() - started
        if returncode == 0:
            logger.info(
                "Completed in %.1fs: exit=0 output=%d chars",
                elapsed,
                len(stdout.text),
            )
            return ExecutionSuccess(output=stdout.text.strip())

        logger.error("Failed in %.1fs with exit code %s", elapsed, returncode)
        return ExecutionFailure(
            kind=ErrorKind.NON_ZERO_EXIT,
            message=stderr.text.strip() or "Unknown error",
            raw=stderr.text,
            exit_code=returncode,
        )


class _StreamBuffer:
    """Accumulates decoded text; split multibyte sequences wait for the rest."""

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self.text = ""

    def feed(self, data: bytes, *, final: bool = False) -> str:
        segment = self._decoder.decode(data, final)
        self.text += segment
        return segment


class _Watchdog:
    """Deadline, cancellation and heartbeat bookkeeping for one run."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        started: float,
        timeout_seconds: float | None,
        cancel_event: threading.Event | None,
        heartbeat_seconds: float | None,
        on_heartbeat: Callable[[float], None] | None,
    ) -> None:
        self.started = started
        self.timeout_seconds = timeout_seconds if timeout_seconds and timeout_seconds > 0 else None
        self.cancel_event = cancel_event
        self.heartbeat_seconds = heartbeat_seconds if on_heartbeat is not None else None
        self.on_heartbeat = on_heartbeat
        self._next_heartbeat = (
            started + heartbeat_seconds
            if self.heartbeat_seconds is not None and heartbeat_seconds > 0
            else None
        )

    def check(self) -> ErrorKind | None:
        now = time.monotonic()
        if self.cancel_event is not None and self.cancel_event.is_set():
            return ErrorKind.CANCELLED
        if self.timeout_seconds is not None and now - self.started >= self.timeout_seconds:
            return ErrorKind.TIMEOUT
        if self._next_heartbeat is not None and now >= self._next_heartbeat:
            self._next_heartbeat += self.heartbeat_seconds
            self.on_heartbeat(now - self.started)
        return None


def _stopped_failure(kind: ErrorKind, *, stderr: str, watch: _Watchdog) -> ExecutionFailure:
    if kind is ErrorKind.TIMEOUT:
        message = f"Command timed out after {watch.timeout_seconds:g}s"
    else:
        message = "Command cancelled"
    logger.warning(message)
    return ExecutionFailure(kind=kind, message=message, raw=stderr)


def _drain_stderr(
    events: queue.Queue[tuple[str, bytes | None]],
    stderr: _StreamBuffer,
    *,
    open_streams: int,
) -> None:
    """Collect stderr the child wrote before it was stopped."""

    deadline = time.monotonic() + _READER_JOIN_SECONDS
    while open_streams:
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            break
        try:
            source, data = events.get(timeout=remaining)
        except queue.Empty:
            break
        if data is None:
            open_streams -= 1
        elif source == _STDERR:
            stderr.feed(data)
    stderr.feed(b"", final=True)


def _spawn(request: ExecutionRequest) -> subprocess.Popen[bytes]:
    # Windows resolves .cmd shims only through the shell.
    use_shell = os.name == "nt"
    return subprocess.Popen(  # noqa: S603
        request.argv,
        env=os.environ.copy(),
        shell=use_shell,
        stdin=subprocess.PIPE if request.input_payload is not None else subprocess.DEVNULL,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        creationflags=getattr(subprocess, "CREATE_NO_WINDOW", 0) if use_shell else 0,
    )


def _start_reader(
    stream: IO[bytes] | None,
    source: str,
    events: queue.Queue[tuple[str, bytes | None]],
) -> threading.Thread:
    thread = threading.Thread(
        target=_pump,
        args=(stream, source, events),
        daemon=True,
        name=f"engine-{source}",
    )
    thread.start()
    return thread


def _pump(
    stream: IO[bytes] | None,
    source: str,
    events: queue.Queue[tuple[str, bytes | None]],
) -> None:
    try:
        if stream is None:
            return
        while True:
            data = stream.read1(_READ_SIZE)  # type: ignore[attr-defined]
            if not data:
                return
            events.put((source, data))
    except (OSError, ValueError) as error:
        logger.debug("Stopped reading %s: %s", source, error)
    finally:
        events.put((source, None))
        if stream is not None:
            stream.close()


def _start_writer(stream: IO[bytes] | None, payload: str) -> threading.Thread:
    thread = threading.Thread(
        target=_feed_stdin,
        args=(stream, payload),
        daemon=True,
        name="engine-stdin",
    )
    thread.start()
    return thread


def _feed_stdin(stream: IO[bytes] | None, payload: str) -> None:
    if stream is None:
        return
    try:
        stream.write(payload.encode("utf-8"))
    except OSError as error:
        logger.debug("Engine closed stdin early: %s", error)
    finally:
        try:
            stream.close()
        except OSError as error:
            logger.debug("Failed to close stdin: %s", error)


def _terminate_process(process: subprocess.Popen[bytes]) -> None:
    try:
        process.terminate()
    except OSError:
        return
    try:
        process.wait(timeout=2)
    except subprocess.TimeoutExpired:
        try:
            process.kill()
        except OSError:
            return
        process.wait(timeout=2)


def _describe(request: ExecutionRequest) -> str:
    rendered = " ".join(f'"{arg}"' if " " in arg else arg for arg in request.argv)
    if len(rendered) > 240:
        rendered = rendered[:240] + "..."
    if request.input_payload is not None:
        rendered += f" <stdin {len(request.input_payload)} chars>"
    return rendered
