"""Shared fixtures: fake skopeo/trivy executables and a recording HTTP session."""

from __future__ import annotations

import json
import logging
import stat
import threading
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple
from unittest.mock import MagicMock

import pytest

from archscan.config.models import ArchscanConfig, CatalogConfig, ToolsConfig
from archscan.core.logging import ROOT_LOGGER_NAME

SIZE_URL = "http://catalog.test/sizes"
REPORT_URL = "http://catalog.test/reports"
TEST_IMAGE = "registry.example.com/org/app:1.0"

FAKE_SKOPEO = """#!/bin/sh
echo "$@" >> "{calls}"
cmd="$1"
shift
case "$cmd" in
  inspect)
    if [ "{inspect_exit}" != "0" ]; then
      echo "manifest unknown" >&2
      exit {inspect_exit}
    fi
    cat "{manifest}"
    ;;
  copy)
    arch=""
    dest=""
    while [ $# -gt 0 ]; do
      case "$1" in
        --override-arch) arch="$2"; shift ;;
        docker-archive://*) dest="${{1#docker-archive://}}" ;;
      esac
      shift
    done
    for bad in {fail}; do
      if [ "$bad" = "$arch" ]; then
        echo "copy failed for $arch" >&2
        exit 1
      fi
    done
    echo "Copying blob for $arch"
    printf '%s' "archive-$arch" > "$dest"
    ;;
esac
"""

FAKE_TRIVY = """#!/bin/sh
echo "$@" >> "{calls}"
out=""
input=""
while [ $# -gt 0 ]; do
  case "$1" in
    --output) out="$2"; shift ;;
    --input) input="$2"; shift ;;
  esac
  shift
done
for bad in {fail}; do
  case "$input" in
    *_"$bad".tar) echo "FATAL scan error for $bad"; exit 1 ;;
  esac
done
for bad in {missing}; do
  case "$input" in
    *_"$bad".tar) echo "scan finished"; exit 0 ;;
  esac
done
echo "scan finished"
printf '{{"ArtifactName": "%s"}}' "$(basename "$input")" > "$out"
"""


@pytest.fixture(autouse=True)
def reset_archscan_logger():
    """Undo configure_logging() so records propagate to caplog again."""
    yield
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    logger.setLevel(logging.NOTSET)
    logger.propagate = True


def write_executable(path: Path, content: str) -> Path:
    path.write_text(content)
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


def manifest_list(*architectures: str) -> Dict[str, Any]:
    return {
        "schemaVersion": 2,
        "mediaType": "application/vnd.oci.image.index.v1+json",
        "manifests": [
            {
                "digest": f"sha256:{index:064x}",
                "platform": {"architecture": arch, "os": "linux"},
            }
            for index, arch in enumerate(architectures)
        ],
    }


def archive_size(architecture: str) -> int:
    """Size of the archive the fake skopeo writes for an architecture."""
    return len(f"archive-{architecture}")


@pytest.fixture
def fake_skopeo(tmp_path: Path) -> Callable[..., Path]:
    """Factory writing a fake skopeo; calls are appended to skopeo.calls."""

    def _make(
        manifest: Any = None,
        fail: Iterable[str] = (),
        inspect_exit: int = 0,
    ) -> Path:
        manifest_file = tmp_path / "manifest.json"
        if isinstance(manifest, str):
            manifest_file.write_text(manifest)
        else:
            manifest_file.write_text(json.dumps(manifest if manifest is not None else {}))
        return write_executable(
            tmp_path / "skopeo",
            FAKE_SKOPEO.format(
                calls=tmp_path / "skopeo.calls",
                manifest=manifest_file,
                inspect_exit=inspect_exit,
                fail=" ".join(fail) or "none",
            ),
        )

    return _make


@pytest.fixture
def fake_trivy(tmp_path: Path) -> Callable[..., Path]:
    """Factory writing a fake trivy; calls are appended to trivy.calls."""

    def _make(fail: Iterable[str] = (), missing: Iterable[str] = ()) -> Path:
        return write_executable(
            tmp_path / "trivy",
            FAKE_TRIVY.format(
                calls=tmp_path / "trivy.calls",
                fail=" ".join(fail) or "none",
                missing=" ".join(missing) or "none",
            ),
        )

    return _make


def read_calls(path: Path) -> List[str]:
    if not path.exists():
        return []
    return [line for line in path.read_text().splitlines() if line]


class RecordingSession:
    """Stand-in for requests.Session that records POSTed JSON bodies."""

    def __init__(self, status_codes: Optional[Dict[str, List[int]]] = None) -> None:
        self.calls: List[Tuple[str, Any, Dict[str, str]]] = []
        self._status_codes = {url: list(codes) for url, codes in (status_codes or {}).items()}
        self._lock = threading.Lock()

    def post(self, url: str, data: bytes = b"", headers: Optional[Dict[str, str]] = None,
             timeout: Optional[float] = None) -> MagicMock:
        with self._lock:
            self.calls.append((url, json.loads(data), dict(headers or {})))
            codes = self._status_codes.get(url)
            status = codes.pop(0) if codes else 200
        response = MagicMock()
        response.status_code = status
        response.text = "" if status == 200 else "error"
        return response

    def bodies(self, url: str) -> List[Any]:
        return [body for called, body, _ in self.calls if called == url]


@pytest.fixture
def session() -> RecordingSession:
    return RecordingSession()


@pytest.fixture
def make_config(tmp_path: Path) -> Callable[..., ArchscanConfig]:
    """Factory for a config pointing at fake tools and test endpoints."""

    def _make(skopeo: Path, trivy: Optional[Path] = None, **overrides: Any) -> ArchscanConfig:
        config = ArchscanConfig(
            image=TEST_IMAGE,
            base_dir=tmp_path / "work",
            tools=ToolsConfig(skopeo=str(skopeo), trivy=str(trivy or tmp_path / "trivy")),
            catalog=CatalogConfig(
                size_report_url=SIZE_URL,
                scan_report_url=REPORT_URL,
                retries=0,
                backoff=0.0,
            ),
        )
        for key, value in overrides.items():
            setattr(config, key, value)
        return config

    return _make
