"""Per-architecture image download via `skopeo copy`."""

from __future__ import annotations

import subprocess
import threading
from pathlib import Path
from typing import List, Optional

from archscan.config.models import RegistryCredentials
from archscan.core.errors import FetchError
from archscan.core.logging import get_logger
from archscan.core.models import FetchedArtifact
from archscan.core.streaming import StreamHandler
from archscan.core.subprocess_runner import ProcessCancelledError, run_with_streaming

LOGGER = get_logger(__name__)

UNSAFE_PATH_CHARS = {"/": "_", ":": "_"}


def sanitize_image_name(name: str) -> str:
    """Replace path separators and colons so the name is a single path component."""
    for char, replacement in UNSAFE_PATH_CHARS.items():
        name = name.replace(char, replacement)
    return name


class ImageFetcher:
    """Downloads architecture-specific variants of one image as docker archives."""

    def __init__(
        self,
        image: str,
        skopeo: str = "skopeo",
        credentials: Optional[RegistryCredentials] = None,
        stream_handler: Optional[StreamHandler] = None,
        retries: int = 0,
        retry_delay: float = 2.0,
        timeout: Optional[float] = None,
    ) -> None:
        """Initialize ImageFetcher.

        Args:
            image: Image reference, e.g. "registry.suse.com/bci/bci-busybox:latest".
            skopeo: skopeo executable.
            credentials: Source registry credentials; None for anonymous pulls.
            stream_handler: Receives skopeo's stdout/stderr lines.
            retries: Extra attempts after a failed copy.
            retry_delay: Seconds before the first retry, growing linearly.
            timeout: Per-attempt limit in seconds.
        """
        self.image = image
        self._skopeo = skopeo
        self._credentials = credentials
        self._stream_handler = stream_handler
        self._retries = retries
        self._retry_delay = retry_delay
        self._timeout = timeout

    def artifact_path(self, download_dir: Path, architecture: str) -> Path:
        """Deterministic archive location for one architecture."""
        return download_dir / sanitize_image_name(f"{self.image}_{architecture}.tar")

    def build_copy_command(self, architecture: str, destination: Path) -> List[str]:
        cmd = [
            self._skopeo,
            "copy",
            "--remove-signatures",
            "--override-arch",
            architecture,
            f"docker://{self.image}",
            f"docker-archive://{destination}",
        ]
        if self._credentials is not None:
            cmd.extend([
                "--src-username",
                self._credentials.username,
                "--src-password",
                self._credentials.password,
            ])
        return cmd

    def fetch(
        self,
        architecture: str,
        download_dir: Path,
        cancel_event: Optional[threading.Event] = None,
    ) -> FetchedArtifact:
        """Download one architecture into download_dir.

        Raises:
            FetchError: If every attempt failed or the run was cancelled.
        """
        destination = self.artifact_path(download_dir, architecture)
        LOGGER.info(f"Downloading image for architecture {architecture} to {destination}")

        attempts = self._retries + 1
        last_error: Optional[FetchError] = None
        for attempt in range(1, attempts + 1):
            if attempt > 1:
                delay = self._retry_delay * (attempt - 1)
                LOGGER.warning(
                    f"Retrying download for {architecture} in {delay:.1f}s "
                    f"(attempt {attempt}/{attempts})"
                )
                if cancel_event is not None and cancel_event.wait(delay):
                    break
                # skopeo refuses to overwrite a partial archive
                destination.unlink(missing_ok=True)

            try:
                self._copy(architecture, destination, cancel_event)
                return FetchedArtifact(architecture=architecture, path=destination)
            except FetchError as e:
                last_error = e
                if cancel_event is not None and cancel_event.is_set():
                    break

        raise last_error or FetchError("Download cancelled", architecture=architecture)

    def _copy(
        self,
        architecture: str,
        destination: Path,
        cancel_event: Optional[threading.Event],
    ) -> None:
        source = f"skopeo[{architecture}]"
        cmd = self.build_copy_command(architecture, destination)
        try:
            result = run_with_streaming(
                cmd,
                source=source,
                stream_handler=self._stream_handler,
                cancel_event=cancel_event,
                timeout=self._timeout,
            )
        except FileNotFoundError as e:
            raise FetchError(
                f"Registry tool not found: {self._skopeo}", architecture=architecture
            ) from e
        except ProcessCancelledError as e:
            raise FetchError("Download cancelled", architecture=architecture) from e
        except subprocess.TimeoutExpired as e:
            raise FetchError(
                f"Download timed out after {self._timeout}s", architecture=architecture
            ) from e

        if result.returncode != 0:
            raise FetchError(
                f"skopeo copy exited with code {result.returncode}",
                architecture=architecture,
                detail=result.stderr,
            )
