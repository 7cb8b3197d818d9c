"""Configuration data models for archscan.

The configuration is built once at startup by the loader and passed down
explicitly; pipeline components never read the process environment.
"""

from __future__ import annotations

import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from archscan.core.models import ScanScope

DEFAULT_IMAGE = "registry.suse.com/bci/bci-busybox:latest"
DEFAULT_ARCHITECTURE = "amd64"
DEFAULT_SIZE_REPORT_URL = "http://localhost:8080/foo/bar"
DEFAULT_SCAN_REPORT_URL = "http://localhost:8080/bar/foo"
DEFAULT_MAX_WORKERS = 4


@dataclass(frozen=True)
class RegistryCredentials:
    """Source registry credentials passed to skopeo."""

    username: str
    password: str = field(repr=False)


@dataclass
class ToolsConfig:
    """Executables for the external collaborators."""

    skopeo: str = "skopeo"
    trivy: str = "trivy"


@dataclass
class ScannerConfig:
    """Vulnerability scanner options."""

    slow: bool = False  # trivy --slow: less memory, longer runtime
    timeout: Optional[float] = None  # seconds per scan, None = unlimited


@dataclass
class CatalogConfig:
    """Catalog endpoints and HTTP behaviour."""

    size_report_url: str = DEFAULT_SIZE_REPORT_URL
    scan_report_url: str = DEFAULT_SCAN_REPORT_URL
    timeout: float = 30.0
    retries: int = 2  # extra attempts after the first one
    backoff: float = 1.0  # base delay in seconds, doubled per attempt


@dataclass
class ArchscanConfig:
    """Complete archscan configuration.

    Example archscan.yml:
        image: registry.suse.com/bci/bci-busybox:latest
        max_workers: 4
        scan_scope: all
        tools:
          skopeo: /usr/bin/skopeo
        catalog:
          size_report_url: http://catalog.local/sizes
          scan_report_url: http://catalog.local/reports
        registry:
          username: ${REGISTRY_USERNAME}
          password: ${REGISTRY_PASSWORD}
    """

    image: str = DEFAULT_IMAGE
    base_dir: Path = field(default_factory=lambda: Path(tempfile.gettempdir()))
    default_architecture: str = DEFAULT_ARCHITECTURE
    max_workers: int = DEFAULT_MAX_WORKERS
    fetch_retries: int = 0
    scan_scope: ScanScope = ScanScope.ALL

    tools: ToolsConfig = field(default_factory=ToolsConfig)
    scanner: ScannerConfig = field(default_factory=ScannerConfig)
    catalog: CatalogConfig = field(default_factory=CatalogConfig)
    credentials: Optional[RegistryCredentials] = None

    # Metadata (not from YAML, set by loader)
    _config_sources: List[str] = field(default_factory=list, repr=False)

    def should_scan(self, architecture: str) -> bool:
        """Whether the scanner runs for the given fetched architecture."""
        if self.scan_scope == ScanScope.DEFAULT:
            return architecture == self.default_architecture
        return True
