"""Forwarding of external tool output while the pipeline runs.

Fetch and scan tasks run concurrently, so every handler has to accept
events from several worker threads at once:
- CLIStreamHandler: writes to the console through rich
- CallbackStreamHandler: hands events to callables (tests, embedding)
- NullStreamHandler: drops everything
"""

from __future__ import annotations

import sys
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, TextIO

from rich.console import Console
from rich.markup import escape


class StreamType(str, Enum):
    """Origin of a stream event."""

    STDOUT = "stdout"
    STDERR = "stderr"
    STATUS = "status"


@dataclass(frozen=True)
class StreamEvent:
    """One line of output (or a status change) from a running task."""

    source: str
    stream_type: StreamType
    line: str


class StreamHandler(ABC):
    """Receiver for task output; implementations must be thread-safe."""

    @abstractmethod
    def emit(self, event: StreamEvent) -> None:
        """Handle a single output line or status event."""

    @abstractmethod
    def start_task(self, source: str) -> None:
        """Signal that a task started."""

    @abstractmethod
    def end_task(self, source: str, success: bool) -> None:
        """Signal that a task finished."""


class NullStreamHandler(StreamHandler):
    """Discards all events."""

    def emit(self, event: StreamEvent) -> None:
        pass

    def start_task(self, source: str) -> None:
        pass

    def end_task(self, source: str, success: bool) -> None:
        pass


class CLIStreamHandler(StreamHandler):
    """Prints task output to the console, prefixed with its source."""

    def __init__(
        self,
        output: TextIO = sys.stderr,
        show_output: bool = True,
    ) -> None:
        """Initialize CLIStreamHandler.

        Args:
            output: Stream to write to (default: stderr).
            show_output: Whether raw tool lines are shown; status lines are
                always shown.
        """
        self._show_output = show_output
        self._lock = threading.Lock()
        self._console = Console(file=output, highlight=False, soft_wrap=True)

    def emit(self, event: StreamEvent) -> None:
        if event.stream_type == StreamType.STATUS:
            self._print(f"[bold cyan]\\[{escape(event.source)}] {escape(event.line)}[/bold cyan]")
            return
        if not self._show_output:
            return
        style = "red" if event.stream_type == StreamType.STDERR else "dim"
        self._print(f"[{style}]  {escape(event.source)}:[/{style}] {escape(event.line)}")

    def start_task(self, source: str) -> None:
        self.emit(StreamEvent(source, StreamType.STATUS, "started"))

    def end_task(self, source: str, success: bool) -> None:
        self.emit(StreamEvent(source, StreamType.STATUS, "done" if success else "failed"))

    def _print(self, markup: str) -> None:
        with self._lock:
            self._console.print(markup)


class CallbackStreamHandler(StreamHandler):
    """Forwards events to user-supplied callables."""

    def __init__(
        self,
        on_event: Optional[Callable[[StreamEvent], None]] = None,
        on_start: Optional[Callable[[str], None]] = None,
        on_end: Optional[Callable[[str, bool], None]] = None,
    ) -> None:
        self._on_event = on_event
        self._on_start = on_start
        self._on_end = on_end
        self._lock = threading.Lock()

    def emit(self, event: StreamEvent) -> None:
        if self._on_event:
            with self._lock:
                self._on_event(event)

    def start_task(self, source: str) -> None:
        if self._on_start:
            with self._lock:
                self._on_start(source)

    def end_task(self, source: str, success: bool) -> None:
        if self._on_end:
            with self._lock:
                self._on_end(source, success)
