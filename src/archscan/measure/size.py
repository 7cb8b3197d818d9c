"""Artifact size measurement."""

from __future__ import annotations

import os
from pathlib import Path

from archscan.core.errors import ProbeError
from archscan.core.models import FetchedArtifact, SizeMeasurement


def probe_size(path: Path) -> int:
    """Return the size of a file in bytes.

    Raises:
        ProbeError: If the path does not exist or cannot be stat'ed.
    """
    try:
        return os.stat(path).st_size
    except FileNotFoundError as e:
        raise ProbeError(f"Artifact not found: {path}") from e
    except OSError as e:
        raise ProbeError(f"Cannot stat {path}: {e}") from e


def measure_artifact(artifact: FetchedArtifact) -> SizeMeasurement:
    """Measure a fetched artifact, tagging errors with its architecture."""
    try:
        size = probe_size(artifact.path)
    except ProbeError as e:
        e.architecture = artifact.architecture
        raise
    return SizeMeasurement(architecture=artifact.architecture, size=size)
