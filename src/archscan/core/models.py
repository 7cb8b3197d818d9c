from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional


class PipelineState(str, Enum):
    """Lifecycle states of a pipeline run."""

    PENDING = "pending"
    DISCOVERING = "discovering"
    FETCHING = "fetching"
    PROCESSING = "processing"
    AGGREGATING = "aggregating"
    REPORTING = "reporting"
    DONE = "done"
    FAILED = "failed"


class ScanScope(str, Enum):
    """Which fetched architectures are handed to the scanner."""

    ALL = "all"
    DEFAULT = "default"


@dataclass(frozen=True)
class FetchedArtifact:
    """An architecture-specific image archive downloaded into the workspace."""

    architecture: str
    path: Path


@dataclass(frozen=True)
class SizeMeasurement:
    """Size in bytes of one fetched artifact."""

    architecture: str
    size: int


@dataclass(frozen=True)
class ScanReport:
    """Raw scanner output for one fetched artifact.

    The payload is the scanner's JSON document as text; the pipeline never
    parses it.
    """

    architecture: str
    payload: str


@dataclass
class SubmissionOutcome:
    """Result of one catalog submission."""

    name: str
    url: str
    entries: int = 0
    success: bool = False
    error: Optional[str] = None


@dataclass
class PipelineResult:
    """Summary of a finished pipeline run."""

    image: str
    architectures: List[str] = field(default_factory=list)
    fetched: List[str] = field(default_factory=list)
    sizes: Dict[str, int] = field(default_factory=dict)
    reports: Dict[str, str] = field(default_factory=dict)
    submissions: Dict[str, SubmissionOutcome] = field(default_factory=dict)
    state: PipelineState = PipelineState.PENDING

    @property
    def failed_architectures(self) -> List[str]:
        """Architectures that were discovered but could not be fetched."""
        return [arch for arch in self.architectures if arch not in self.fetched]

    @property
    def all_submitted(self) -> bool:
        """True when every catalog submission succeeded."""
        return bool(self.submissions) and all(
            outcome.success for outcome in self.submissions.values()
        )
