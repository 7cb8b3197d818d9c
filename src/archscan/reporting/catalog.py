"""Submission of aggregated results to the catalog service."""

from __future__ import annotations

import json
import time
from typing import Any, Mapping, Optional

import requests

from archscan import __version__
from archscan.core.errors import SerializationError, SubmissionError
from archscan.core.logging import get_logger

LOGGER = get_logger(__name__)

JSON_CONTENT_TYPE = "application/json"


def serialize(mapping: Mapping[str, Any]) -> str:
    """Encode an architecture mapping as a JSON object.

    Raises:
        SerializationError: If the mapping holds values JSON cannot encode.
    """
    try:
        return json.dumps(dict(mapping))
    except (TypeError, ValueError) as e:
        raise SerializationError(f"Cannot encode result mapping: {e}") from e


class CatalogReporter:
    """POSTs JSON result mappings to catalog endpoints.

    Transport errors and 5xx responses are retried with exponential
    backoff; any other non-200 status fails immediately.
    """

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        timeout: float = 30.0,
        retries: int = 2,
        backoff: float = 1.0,
    ) -> None:
        """Initialize CatalogReporter.

        Args:
            session: HTTP session; a new one is created when omitted.
            timeout: Request timeout in seconds.
            retries: Extra attempts after the first one.
            backoff: Delay before the first retry, doubled per attempt.
        """
        if session is None:
            session = requests.Session()
            session.headers.update({"User-Agent": f"archscan/{__version__}"})
        self.session = session
        self.timeout = timeout
        self.retries = retries
        self.backoff = backoff

    def submit(self, url: str, mapping: Mapping[str, Any]) -> None:
        """Serialize a mapping and POST it to url.

        Raises:
            SerializationError: If the mapping cannot be encoded.
            SubmissionError: If the request fails or the response is not 200.
        """
        body = serialize(mapping)
        attempts = self.retries + 1

        for attempt in range(1, attempts + 1):
            try:
                self._post(url, body)
                LOGGER.info(f"Submitted {len(mapping)} entries to {url}")
                return
            except SubmissionError as e:
                retryable = e.status_code is None or e.status_code >= 500
                if not retryable or attempt == attempts:
                    raise
                delay = self.backoff * (2 ** (attempt - 1))
                LOGGER.warning(
                    f"Submission to {url} failed ({e}), retrying in {delay:.1f}s "
                    f"(attempt {attempt + 1}/{attempts})"
                )
                time.sleep(delay)

    def _post(self, url: str, body: str) -> None:
        try:
            response = self.session.post(
                url,
                data=body.encode("utf-8"),
                headers={"Content-Type": JSON_CONTENT_TYPE},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise SubmissionError(f"Request to {url} failed: {e}") from e

        try:
            if response.status_code != 200:
                raise SubmissionError(
                    f"Received non-200 response code: {response.status_code}",
                    status_code=response.status_code,
                    detail=response.text[:500],
                )
        finally:
            response.close()
