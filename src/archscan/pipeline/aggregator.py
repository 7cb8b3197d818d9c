"""Fan-in of per-architecture results into a single mapping."""

from __future__ import annotations

from typing import Callable, Dict, Generic, Iterable, TypeVar

from archscan.core.logging import get_logger
from archscan.core.models import ScanReport, SizeMeasurement

LOGGER = get_logger(__name__)

R = TypeVar("R")
V = TypeVar("V")


class ResultAggregator(Generic[R, V]):
    """Sole owner of an architecture -> value mapping.

    consume() runs a single loop over a completion stream, so inserts are
    serialized by construction and the mapping needs no lock.
    """

    def __init__(
        self,
        name: str,
        key: Callable[[R], str],
        value: Callable[[R], V],
    ) -> None:
        self.name = name
        self._key = key
        self._value = value
        self._results: Dict[str, V] = {}

    def consume(self, stream: Iterable[R]) -> Dict[str, V]:
        """Insert every result until the stream closes, then return the mapping."""
        for result in stream:
            architecture = self._key(result)
            if architecture in self._results:
                LOGGER.warning(
                    f"{self.name}: duplicate result for {architecture}, keeping the latest"
                )
            self._results[architecture] = self._value(result)
            LOGGER.debug(f"{self.name}: collected {architecture}")
        LOGGER.info(f"{self.name}: collected {len(self._results)} results")
        return dict(self._results)


def size_aggregator() -> ResultAggregator[SizeMeasurement, int]:
    return ResultAggregator("sizes", lambda m: m.architecture, lambda m: m.size)


def report_aggregator() -> ResultAggregator[ScanReport, str]:
    return ResultAggregator("reports", lambda r: r.architecture, lambda r: r.payload)
