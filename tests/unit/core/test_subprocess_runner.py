"""Tests for archscan.core.subprocess_runner."""

from __future__ import annotations

import subprocess
import threading
import time
from pathlib import Path
from typing import List

import pytest

from archscan.core.streaming import CallbackStreamHandler, StreamEvent, StreamType
from archscan.core.subprocess_runner import (
    ProcessCancelledError,
    ProcessResult,
    redact_command,
    run_with_streaming,
)
from tests.conftest import write_executable


class TestRunWithStreaming:
    """Tests for run_with_streaming."""

    def test_captures_stdout_and_stderr_separately(self, tmp_path: Path) -> None:
        script = write_executable(
            tmp_path / "tool", "#!/bin/sh\necho out-line\necho err-line >&2\nexit 3\n"
        )

        result = run_with_streaming([script], source="tool")

        assert result.returncode == 3
        assert result.stdout == "out-line"
        assert result.stderr == "err-line"

    def test_combined_output(self, tmp_path: Path) -> None:
        script = write_executable(
            tmp_path / "tool", "#!/bin/sh\necho one\necho two >&2\n"
        )

        result = run_with_streaming([script], source="tool", combine_output=True)

        assert result.returncode == 0
        assert "one" in result.stdout
        assert "two" in result.stdout
        assert result.stderr == ""

    def test_emits_stream_events(self, tmp_path: Path) -> None:
        script = write_executable(
            tmp_path / "tool", "#!/bin/sh\necho hello\necho warn >&2\n"
        )
        events: List[StreamEvent] = []
        handler = CallbackStreamHandler(on_event=events.append)

        run_with_streaming([script], source="tool[amd64]", stream_handler=handler)

        assert StreamEvent("tool[amd64]", StreamType.STDOUT, "hello") in events
        assert StreamEvent("tool[amd64]", StreamType.STDERR, "warn") in events

    def test_missing_executable_raises(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            run_with_streaming([tmp_path / "does-not-exist"], source="missing")

    def test_already_cancelled_does_not_start(self, tmp_path: Path) -> None:
        marker = tmp_path / "started"
        script = write_executable(tmp_path / "tool", f"#!/bin/sh\ntouch {marker}\n")
        cancel = threading.Event()
        cancel.set()

        with pytest.raises(ProcessCancelledError):
            run_with_streaming([script], source="tool", cancel_event=cancel)

        assert not marker.exists()

    def test_cancel_terminates_running_process(self, tmp_path: Path) -> None:
        script = write_executable(tmp_path / "tool", "#!/bin/sh\nexec sleep 30\n")
        cancel = threading.Event()
        errors: List[BaseException] = []

        def _run() -> None:
            try:
                run_with_streaming([script], source="sleeper", cancel_event=cancel, grace_period=2)
            except BaseException as e:  # noqa: BLE001 - collected for assertion
                errors.append(e)

        worker = threading.Thread(target=_run)
        started = time.monotonic()
        worker.start()
        time.sleep(0.3)
        cancel.set()
        worker.join(timeout=10)

        assert not worker.is_alive()
        assert time.monotonic() - started < 10
        assert len(errors) == 1
        assert isinstance(errors[0], ProcessCancelledError)

    def test_timeout(self, tmp_path: Path) -> None:
        script = write_executable(tmp_path / "tool", "#!/bin/sh\nexec sleep 30\n")

        with pytest.raises(subprocess.TimeoutExpired):
            run_with_streaming([script], source="sleeper", timeout=0.3, grace_period=2)


class TestProcessResult:
    """Tests for ProcessResult.output."""

    def test_output_joins_streams(self) -> None:
        result = ProcessResult(cmd=["x"], returncode=1, stdout="a", stderr="b")
        assert result.output == "a\nb"

    def test_output_only_stderr(self) -> None:
        result = ProcessResult(cmd=["x"], returncode=1, stdout="", stderr="b")
        assert result.output == "b"

    def test_output_only_stdout(self) -> None:
        result = ProcessResult(cmd=["x"], returncode=0, stdout="a")
        assert result.output == "a"


class TestRedactCommand:
    """Tests for redact_command."""

    def test_masks_option_values(self) -> None:
        cmd = ["skopeo", "copy", "--src-username", "u", "--src-password", "pw", "src", "dst"]
        assert redact_command(cmd) == [
            "skopeo", "copy", "--src-username", "u", "--src-password", "****", "src", "dst",
        ]

    def test_masks_inline_values(self) -> None:
        assert redact_command(["skopeo", "inspect", "--creds=u:pw"]) == [
            "skopeo", "inspect", "--creds=****",
        ]

    def test_leaves_other_commands_alone(self) -> None:
        cmd = ["trivy", "image", "--format", "json"]
        assert redact_command(cmd) == cmd
