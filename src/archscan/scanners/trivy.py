"""Trivy vulnerability scanning of downloaded image archives."""

from __future__ import annotations

import subprocess
import threading
from pathlib import Path
from typing import List, Optional

from archscan.core.errors import ScanExecutionError, ScanResultMissing
from archscan.core.logging import get_logger
from archscan.core.models import FetchedArtifact, ScanReport
from archscan.core.streaming import StreamHandler
from archscan.core.subprocess_runner import ProcessCancelledError, run_with_streaming
from archscan.registry.fetcher import sanitize_image_name

LOGGER = get_logger(__name__)

RESULT_FILE_TEMPLATE = "trivy_report_{architecture}.json"


class TrivyScanner:
    """Runs `trivy image` against docker archives.

    Every architecture writes to its own result file, so scans of
    different architectures can run in parallel within one workspace.
    """

    def __init__(
        self,
        trivy: str = "trivy",
        slow: bool = False,
        stream_handler: Optional[StreamHandler] = None,
        timeout: Optional[float] = None,
    ) -> None:
        self._trivy = trivy
        self._slow = slow
        self._stream_handler = stream_handler
        self._timeout = timeout

    def result_path(self, workspace: Path, architecture: str) -> Path:
        return workspace / RESULT_FILE_TEMPLATE.format(
            architecture=sanitize_image_name(architecture)
        )

    def build_command(self, result_file: Path, target: Path) -> List[str]:
        cmd = [self._trivy, "image"]
        if self._slow:
            cmd.append("--slow")
        cmd.extend([
            "--format", "json",
            "--output", str(result_file),
            "--input", str(target),
        ])
        return cmd

    def scan(
        self,
        artifact: FetchedArtifact,
        workspace: Path,
        cancel_event: Optional[threading.Event] = None,
    ) -> ScanReport:
        """Scan one artifact and return trivy's JSON report.

        Args:
            artifact: Downloaded image archive.
            workspace: Directory receiving the result file.
            cancel_event: Terminates the scan when set.

        Returns:
            ScanReport holding the result file contents.

        Raises:
            ScanExecutionError: If trivy could not run, exited non-zero,
                or was cancelled.
            ScanResultMissing: If trivy succeeded without writing a report.
        """
        architecture = artifact.architecture
        result_file = self.result_path(workspace, architecture)
        # A stale file would hide a silent scanner failure
        result_file.unlink(missing_ok=True)

        cmd = self.build_command(result_file, artifact.path)
        LOGGER.info(f"Scanning {architecture} artifact {artifact.path}")

        try:
            result = run_with_streaming(
                cmd,
                source=f"trivy[{architecture}]",
                stream_handler=self._stream_handler,
                cancel_event=cancel_event,
                timeout=self._timeout,
                combine_output=True,
            )
        except FileNotFoundError as e:
            raise ScanExecutionError(
                f"Scanner not found: {self._trivy}", architecture=architecture
            ) from e
        except ProcessCancelledError as e:
            raise ScanExecutionError("Scan cancelled", architecture=architecture) from e
        except subprocess.TimeoutExpired as e:
            raise ScanExecutionError(
                f"Scan timed out after {self._timeout}s", architecture=architecture
            ) from e

        if result.returncode != 0:
            raise ScanExecutionError(
                f"trivy exited with code {result.returncode}",
                architecture=architecture,
                output=result.output,
            )

        if not result_file.is_file():
            raise ScanResultMissing(
                f"trivy report file not found: {result_file}",
                architecture=architecture,
                detail=result.output,
            )

        payload = result_file.read_text(encoding="utf-8")
        LOGGER.debug(f"{architecture}: read {len(payload)} bytes of scan report")
        return ScanReport(architecture=architecture, payload=payload)
