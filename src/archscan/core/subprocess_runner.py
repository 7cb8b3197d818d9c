"""Cancellable subprocess execution with live output streaming.

External tools (skopeo, trivy) can run for minutes. They are started with
Popen and polled, so a run-wide cancel event can terminate them instead of
leaving orphaned processes behind.
"""

from __future__ import annotations

import subprocess
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import IO, List, Optional, Sequence

from archscan.core.logging import get_logger
from archscan.core.streaming import (
    NullStreamHandler,
    StreamEvent,
    StreamHandler,
    StreamType,
)

LOGGER = get_logger(__name__)

# Seconds between cancellation checks while a process is running
POLL_INTERVAL = 0.1

# Seconds to wait after SIGTERM before sending SIGKILL
TERMINATE_GRACE_PERIOD = 5.0

# Options whose value is a credential and must never reach the logs
SECRET_OPTIONS = frozenset({"--creds", "--src-password", "--password"})
MASK = "****"


def redact_command(cmd: Sequence[str]) -> List[str]:
    """Return a copy of cmd with credential option values masked."""
    redacted: List[str] = []
    hide_next = False
    for part in cmd:
        if hide_next:
            redacted.append(MASK)
            hide_next = False
            continue
        option, sep, _ = part.partition("=")
        if option in SECRET_OPTIONS:
            if sep:
                redacted.append(f"{option}={MASK}")
            else:
                redacted.append(part)
                hide_next = True
            continue
        redacted.append(part)
    return redacted


class ProcessCancelledError(Exception):
    """The process was terminated because the run was cancelled."""

    def __init__(self, cmd: Sequence[str]) -> None:
        super().__init__(f"Cancelled: {cmd[0] if cmd else '<empty>'}")
        self.cmd = redact_command(cmd)


@dataclass
class ProcessResult:
    """Exit status and captured output of a finished process.

    When the process ran with combined output, everything is in ``stdout``
    and ``stderr`` is empty.
    """

    cmd: List[str]
    returncode: int
    stdout: str
    stderr: str = ""

    @property
    def output(self) -> str:
        """Captured stdout and stderr joined together."""
        if self.stderr:
            return f"{self.stdout}\n{self.stderr}" if self.stdout else self.stderr
        return self.stdout


def _pump(
    pipe: IO[str],
    lines: List[str],
    source: str,
    stream_type: StreamType,
    handler: StreamHandler,
) -> None:
    for raw in pipe:
        line = raw.rstrip("\n")
        lines.append(line)
        handler.emit(StreamEvent(source, stream_type, line))
    pipe.close()


def terminate_process(
    process: subprocess.Popen,
    grace_period: float = TERMINATE_GRACE_PERIOD,
) -> None:
    """Terminate a process, escalating to kill if it ignores SIGTERM."""
    if process.poll() is not None:
        return
    process.terminate()
    try:
        process.wait(timeout=grace_period)
    except subprocess.TimeoutExpired:
        LOGGER.warning(f"Process {process.pid} ignored SIGTERM, killing it")
        process.kill()
        process.wait()


def run_with_streaming(
    cmd: Sequence[str],
    *,
    source: str,
    stream_handler: Optional[StreamHandler] = None,
    cancel_event: Optional[threading.Event] = None,
    timeout: Optional[float] = None,
    combine_output: bool = False,
    cwd: Optional[Path] = None,
    grace_period: float = TERMINATE_GRACE_PERIOD,
) -> ProcessResult:
    """Run a command to completion, streaming its output line by line.

    Args:
        cmd: Command and arguments.
        source: Label attached to every stream event (e.g. "skopeo[arm64]").
        stream_handler: Receiver for output lines; defaults to a no-op handler.
        cancel_event: When set, the process is terminated and
            ProcessCancelledError is raised.
        timeout: Optional wall-clock limit in seconds.
        combine_output: Merge stderr into stdout.
        cwd: Working directory for the process.
        grace_period: Seconds between SIGTERM and SIGKILL on cancellation.

    Returns:
        ProcessResult with the exit code and captured output. A non-zero
        exit code is not an error at this level.

    Raises:
        FileNotFoundError: If the executable does not exist.
        ProcessCancelledError: If cancel_event was set.
        subprocess.TimeoutExpired: If the timeout elapsed.
    """
    handler = stream_handler or NullStreamHandler()
    cmd = [str(part) for part in cmd]

    if cancel_event is not None and cancel_event.is_set():
        raise ProcessCancelledError(cmd)

    LOGGER.debug(f"Running: {' '.join(redact_command(cmd))}")

    process = subprocess.Popen(
        cmd,
        cwd=cwd,
        stdout=subprocess.PIPE,
        stderr=subprocess.STDOUT if combine_output else subprocess.PIPE,
        stdin=subprocess.DEVNULL,
        text=True,
        errors="replace",
        bufsize=1,
    )

    stdout_lines: List[str] = []
    stderr_lines: List[str] = []
    readers = [
        threading.Thread(
            target=_pump,
            args=(process.stdout, stdout_lines, source, StreamType.STDOUT, handler),
            daemon=True,
        )
    ]
    if not combine_output:
        readers.append(
            threading.Thread(
                target=_pump,
                args=(process.stderr, stderr_lines, source, StreamType.STDERR, handler),
                daemon=True,
            )
        )
    for reader in readers:
        reader.start()

    deadline = time.monotonic() + timeout if timeout is not None else None
    try:
        while True:
            try:
                process.wait(timeout=POLL_INTERVAL)
                break
            except subprocess.TimeoutExpired:
                pass

            if cancel_event is not None and cancel_event.is_set():
                LOGGER.info(f"Terminating {source} (pid {process.pid}): run cancelled")
                terminate_process(process, grace_period)
                raise ProcessCancelledError(cmd)

            if deadline is not None and time.monotonic() >= deadline:
                LOGGER.warning(f"{source} timed out after {timeout} seconds")
                terminate_process(process, grace_period)
                raise subprocess.TimeoutExpired(redact_command(cmd), timeout)
    finally:
        for reader in readers:
            reader.join(timeout=grace_period)

    return ProcessResult(
        cmd=cmd,
        returncode=process.returncode,
        stdout="\n".join(stdout_lines),
        stderr="\n".join(stderr_lines),
    )
