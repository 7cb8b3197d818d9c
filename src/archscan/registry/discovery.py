"""Architecture discovery from a registry manifest list.

Uses `skopeo inspect --raw` to fetch the manifest list of an image and
collects `manifests[].platform.architecture`.
"""

from __future__ import annotations

import json
import subprocess
from typing import Any, List, Optional

from archscan.config.models import DEFAULT_ARCHITECTURE, RegistryCredentials
from archscan.core.errors import DiscoveryError
from archscan.core.logging import get_logger
from archscan.core.subprocess_runner import redact_command

LOGGER = get_logger(__name__)

# Architecture reported for attestation manifests (buildx provenance/SBOM)
UNKNOWN_ARCHITECTURE = "unknown"

INSPECT_TIMEOUT = 300


def build_inspect_command(
    image: str,
    skopeo: str = "skopeo",
    credentials: Optional[RegistryCredentials] = None,
) -> List[str]:
    """Build the skopeo command that prints the raw manifest of an image."""
    cmd = [skopeo, "inspect", "--raw"]
    if credentials is not None:
        cmd.extend(["--creds", f"{credentials.username}:{credentials.password}"])
    cmd.append(f"docker://{image}")
    return cmd


def parse_manifest_architectures(raw: str) -> List[str]:
    """Extract architectures from a raw manifest document.

    Entries without an architecture and attestation entries are skipped.
    Duplicates collapse to their first occurrence; order otherwise follows
    the manifest list.

    Args:
        raw: Manifest JSON as printed by `skopeo inspect --raw`.

    Returns:
        Architectures found; empty for single-platform manifests.

    Raises:
        DiscoveryError: If the document is not a JSON object.
    """
    try:
        document = json.loads(raw)
    except json.JSONDecodeError as e:
        raise DiscoveryError(f"Manifest is not valid JSON: {e}") from e

    if not isinstance(document, dict):
        raise DiscoveryError(
            f"Manifest must be a JSON object, got {type(document).__name__}"
        )

    manifests = document.get("manifests")
    if manifests is None:
        manifests = []
    elif not isinstance(manifests, list):
        raise DiscoveryError("Manifest field 'manifests' must be a list")

    architectures: List[str] = []
    for entry in manifests:
        architecture = _entry_architecture(entry)
        if not architecture or architecture == UNKNOWN_ARCHITECTURE:
            continue
        if architecture not in architectures:
            architectures.append(architecture)
    return architectures


def _entry_architecture(entry: Any) -> Optional[str]:
    if not isinstance(entry, dict):
        return None
    platform = entry.get("platform")
    if not isinstance(platform, dict):
        return None
    architecture = platform.get("architecture")
    return architecture if isinstance(architecture, str) else None


def get_supported_architectures(
    image: str,
    skopeo: str = "skopeo",
    credentials: Optional[RegistryCredentials] = None,
    default_architecture: str = DEFAULT_ARCHITECTURE,
    timeout: Optional[float] = INSPECT_TIMEOUT,
) -> List[str]:
    """Return the architectures an image is published for.

    Falls back to ``[default_architecture]`` when the manifest lists none,
    so the pipeline always has at least one unit of work.

    Raises:
        DiscoveryError: If skopeo cannot be run, fails, or prints something
            that is not a manifest document.
    """
    cmd = build_inspect_command(image, skopeo, credentials)
    LOGGER.info(f"Inspecting manifest of {image}")
    LOGGER.debug(f"Running: {' '.join(redact_command(cmd))}")

    try:
        result = subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            timeout=timeout,
            check=False,
        )
    except FileNotFoundError as e:
        raise DiscoveryError(f"Registry tool not found: {skopeo}") from e
    except subprocess.TimeoutExpired as e:
        raise DiscoveryError(f"Manifest inspection of {image} timed out") from e
    except OSError as e:
        raise DiscoveryError(f"Could not run {skopeo}: {e}") from e

    if result.returncode != 0:
        raise DiscoveryError(
            f"Manifest inspection of {image} failed with exit code {result.returncode}",
            detail=result.stderr.strip(),
        )

    architectures = parse_manifest_architectures(result.stdout)
    if not architectures:
        LOGGER.info(
            f"No architectures listed for {image}, using {default_architecture}"
        )
        return [default_architecture]

    LOGGER.info(f"{image} supports: {', '.join(architectures)}")
    return architectures
