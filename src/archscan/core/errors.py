"""Error types raised by archscan pipeline components.

Only DiscoveryError is fatal to a run. Every other error isolates a single
architecture (or a single catalog submission) and is logged by the
pipeline coordinator.
"""

from __future__ import annotations

from typing import Optional


class ArchscanError(Exception):
    """Base class for archscan errors.

    Carries the architecture the failure belongs to (if any) and an
    optional free-form detail string, e.g. captured tool output.
    """

    def __init__(
        self,
        message: str,
        *,
        architecture: Optional[str] = None,
        detail: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.architecture = architecture
        self.detail = detail

    def __str__(self) -> str:
        message = super().__str__()
        if self.architecture:
            message = f"[{self.architecture}] {message}"
        return message


class DiscoveryError(ArchscanError):
    """The manifest list could not be retrieved or parsed."""


class FetchError(ArchscanError):
    """An architecture-specific image could not be downloaded."""


class ProbeError(ArchscanError):
    """The size of a downloaded artifact could not be determined."""


class ScanExecutionError(ArchscanError):
    """The vulnerability scanner exited with a non-zero status."""

    def __init__(
        self,
        message: str,
        *,
        architecture: Optional[str] = None,
        output: str = "",
    ) -> None:
        super().__init__(message, architecture=architecture, detail=output)
        self.output = output


class ScanResultMissing(ArchscanError):
    """The scanner reported success but wrote no result file."""


class SerializationError(ArchscanError):
    """A result mapping could not be encoded as JSON."""


class SubmissionError(ArchscanError):
    """A catalog submission failed to send or was rejected."""

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        detail: Optional[str] = None,
    ) -> None:
        super().__init__(message, detail=detail)
        self.status_code = status_code
