"""Pipeline executor for the multi-architecture inspection run."""

from __future__ import annotations

import shutil
import tempfile
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from pathlib import Path
from typing import Dict, List, Optional, Tuple, TypeVar

from archscan.config.models import ArchscanConfig
from archscan.core.errors import (
    ArchscanError,
    DiscoveryError,
    FetchError,
    ProbeError,
    ScanExecutionError,
    ScanResultMissing,
    SerializationError,
    SubmissionError,
)
from archscan.core.logging import get_logger
from archscan.core.models import (
    FetchedArtifact,
    PipelineResult,
    PipelineState,
    ScanReport,
    SizeMeasurement,
    SubmissionOutcome,
)
from archscan.core.streaming import NullStreamHandler, StreamHandler
from archscan.measure.size import measure_artifact
from archscan.pipeline.aggregator import (
    ResultAggregator,
    report_aggregator,
    size_aggregator,
)
from archscan.pipeline.streams import BroadcastStream, Subscription
from archscan.registry.discovery import get_supported_architectures
from archscan.registry.fetcher import ImageFetcher
from archscan.reporting.catalog import CatalogReporter
from archscan.scanners.trivy import TrivyScanner

LOGGER = get_logger(__name__)

WORKSPACE_PREFIX = "skopeo_downloads-"

# Number of long-running top-level stages
STAGE_COUNT = 5

_STATE_ORDER = [
    PipelineState.PENDING,
    PipelineState.DISCOVERING,
    PipelineState.FETCHING,
    PipelineState.PROCESSING,
    PipelineState.AGGREGATING,
    PipelineState.REPORTING,
    PipelineState.DONE,
]

# States entered by two parallel branches; the state only moves once both
# branches got there (sizing+scanning, then both aggregators)
_PARALLEL_BRANCHES = {
    PipelineState.AGGREGATING: 2,
    PipelineState.REPORTING: 2,
}

V = TypeVar("V")


class PipelineExecutor:
    """Orchestrates discovery, download, measurement, scanning and reporting.

    Pipeline stages:
    1. Discovery (synchronous; failure aborts the run)
    2. Fetch fan-out: one download per architecture on a bounded pool,
       each success published once to the ``fetched`` broadcast stream
    3. Sizing and scanning, each subscribed to ``fetched`` and fanning out
       per artifact on its own bounded pool
    4. Two aggregators draining the ``sizes`` and ``reports`` streams
    5. Two independent catalog submissions

    Stages 2-5 run concurrently on a five-thread stage pool. Every stage
    closes its output stream only after all of its producers finished,
    which is what lets the next stage terminate. Failures other than
    discovery only drop the affected architecture or submission.
    """

    def __init__(
        self,
        config: ArchscanConfig,
        fetcher: Optional[ImageFetcher] = None,
        scanner: Optional[TrivyScanner] = None,
        reporter: Optional[CatalogReporter] = None,
        stream_handler: Optional[StreamHandler] = None,
    ) -> None:
        """Initialize the pipeline executor.

        Args:
            config: Run configuration.
            fetcher: Image fetcher; built from config when omitted.
            scanner: Vulnerability scanner; built from config when omitted.
            reporter: Catalog reporter; built from config when omitted.
            stream_handler: Receives external tool output and task status.
        """
        self._config = config
        self._stream_handler = stream_handler or NullStreamHandler()
        self._fetcher = fetcher or ImageFetcher(
            config.image,
            skopeo=config.tools.skopeo,
            credentials=config.credentials,
            stream_handler=self._stream_handler,
            retries=config.fetch_retries,
        )
        self._scanner = scanner or TrivyScanner(
            trivy=config.tools.trivy,
            slow=config.scanner.slow,
            stream_handler=self._stream_handler,
            timeout=config.scanner.timeout,
        )
        self._reporter = reporter or CatalogReporter(
            timeout=config.catalog.timeout,
            retries=config.catalog.retries,
            backoff=config.catalog.backoff,
        )
        self._cancel_event = threading.Event()
        self._state = PipelineState.PENDING
        self._state_lock = threading.Lock()
        self._fetched: List[str] = []
        self._fetched_lock = threading.Lock()
        self._pending_branches = dict(_PARALLEL_BRANCHES)

    @property
    def state(self) -> PipelineState:
        """Current stage; a join stage is entered once both of its branches arrive."""
        with self._state_lock:
            return self._state

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def cancel(self) -> None:
        """Terminate in-flight downloads and scans.

        The run still drains its streams, submits what it collected and
        removes the workspace.
        """
        if not self._cancel_event.is_set():
            LOGGER.warning("Cancelling pipeline run")
        self._cancel_event.set()

    def execute(self) -> PipelineResult:
        """Run the whole pipeline.

        Returns:
            PipelineResult with the collected mappings and submission outcomes.

        Raises:
            DiscoveryError: If the image's architectures cannot be determined.
                Nothing is downloaded or submitted in that case.
        """
        config = self._config
        result = PipelineResult(image=config.image)

        self._advance(PipelineState.DISCOVERING)
        try:
            architectures = get_supported_architectures(
                config.image,
                skopeo=config.tools.skopeo,
                credentials=config.credentials,
                default_architecture=config.default_architecture,
            )
        except DiscoveryError:
            self._set_state(PipelineState.FAILED)
            raise
        result.architectures = list(architectures)

        config.base_dir.mkdir(parents=True, exist_ok=True)
        workspace = Path(tempfile.mkdtemp(prefix=WORKSPACE_PREFIX, dir=config.base_dir))
        LOGGER.debug(f"Created workspace {workspace}")
        try:
            self._run_stages(architectures, workspace, result)
        finally:
            shutil.rmtree(workspace, ignore_errors=True)
            LOGGER.debug(f"Removed workspace {workspace}")

        with self._fetched_lock:
            result.fetched = list(self._fetched)
        result.state = self._advance(PipelineState.DONE)
        return result

    def _run_stages(
        self,
        architectures: List[str],
        workspace: Path,
        result: PipelineResult,
    ) -> None:
        config = self._config

        fetched: BroadcastStream[FetchedArtifact] = BroadcastStream("fetched")
        sizing_input: Subscription[FetchedArtifact] = fetched.subscribe("sizing")
        scanning_input: Subscription[FetchedArtifact] = fetched.subscribe("scanning")

        sizes: BroadcastStream[SizeMeasurement] = BroadcastStream("sizes")
        size_results: Subscription[SizeMeasurement] = sizes.subscribe("size-aggregator")

        reports: BroadcastStream[ScanReport] = BroadcastStream("reports")
        report_results: Subscription[ScanReport] = reports.subscribe("report-aggregator")

        self._advance(PipelineState.FETCHING)
        with ThreadPoolExecutor(max_workers=STAGE_COUNT, thread_name_prefix="stage") as stages:
            stage_futures: Dict[Future, str] = {
                stages.submit(self._fetch_stage, architectures, workspace, fetched): "fetch",
                stages.submit(self._size_stage, sizing_input, sizes): "sizing",
                stages.submit(self._scan_stage, scanning_input, workspace, reports): "scanning",
            }
            size_report = stages.submit(
                self._report_stage,
                "sizes",
                size_aggregator(),
                size_results,
                config.catalog.size_report_url,
            )
            scan_report = stages.submit(
                self._report_stage,
                "reports",
                report_aggregator(),
                report_results,
                config.catalog.scan_report_url,
            )
            wait([*stage_futures, size_report, scan_report])

        for future, stage in stage_futures.items():
            error = future.exception()
            if error is not None:
                LOGGER.error(f"Stage {stage} failed: {error}")

        result.sizes, size_outcome = self._collect_report(
            size_report, "sizes", config.catalog.size_report_url
        )
        result.reports, scan_outcome = self._collect_report(
            scan_report, "reports", config.catalog.scan_report_url
        )
        result.submissions = {"sizes": size_outcome, "reports": scan_outcome}

    def _fetch_stage(
        self,
        architectures: List[str],
        workspace: Path,
        out: BroadcastStream[FetchedArtifact],
    ) -> None:
        try:
            workers = min(self._config.max_workers, len(architectures)) or 1
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="fetch") as pool:
                for architecture in architectures:
                    pool.submit(self._fetch_one, architecture, workspace, out)
        finally:
            out.close()
            self._advance(PipelineState.PROCESSING)

    def _fetch_one(
        self,
        architecture: str,
        workspace: Path,
        out: BroadcastStream[FetchedArtifact],
    ) -> None:
        source = f"fetch[{architecture}]"
        self._stream_handler.start_task(source)
        try:
            artifact = self._fetcher.fetch(architecture, workspace, self._cancel_event)
        except FetchError as e:
            LOGGER.error(f"Error downloading image for architecture {architecture}: {e}")
            self._stream_handler.end_task(source, False)
            return
        except Exception as e:
            LOGGER.exception(f"Unexpected error downloading {architecture}: {e}")
            self._stream_handler.end_task(source, False)
            return

        with self._fetched_lock:
            self._fetched.append(architecture)
        out.publish(artifact)
        self._stream_handler.end_task(source, True)

    def _size_stage(
        self,
        artifacts: Subscription[FetchedArtifact],
        out: BroadcastStream[SizeMeasurement],
    ) -> None:
        try:
            with ThreadPoolExecutor(
                max_workers=self._config.max_workers, thread_name_prefix="size"
            ) as pool:
                for artifact in artifacts:
                    pool.submit(self._size_one, artifact, out)
        finally:
            out.close()
            self._branch_reached(PipelineState.AGGREGATING)

    def _size_one(
        self,
        artifact: FetchedArtifact,
        out: BroadcastStream[SizeMeasurement],
    ) -> None:
        try:
            measurement = measure_artifact(artifact)
        except ProbeError as e:
            LOGGER.error(f"Error getting file size for {artifact.architecture}: {e}")
            return
        except Exception as e:
            LOGGER.exception(f"Unexpected error measuring {artifact.architecture}: {e}")
            return
        LOGGER.info(f"{artifact.architecture}: {measurement.size} bytes")
        out.publish(measurement)

    def _scan_stage(
        self,
        artifacts: Subscription[FetchedArtifact],
        workspace: Path,
        out: BroadcastStream[ScanReport],
    ) -> None:
        try:
            with ThreadPoolExecutor(
                max_workers=self._config.max_workers, thread_name_prefix="scan"
            ) as pool:
                for artifact in artifacts:
                    if not self._config.should_scan(artifact.architecture):
                        LOGGER.debug(
                            f"Skipping scan of {artifact.architecture} "
                            f"(scan scope: {self._config.scan_scope.value})"
                        )
                        continue
                    pool.submit(self._scan_one, artifact, workspace, out)
        finally:
            out.close()
            self._branch_reached(PipelineState.AGGREGATING)

    def _scan_one(
        self,
        artifact: FetchedArtifact,
        workspace: Path,
        out: BroadcastStream[ScanReport],
    ) -> None:
        source = f"scan[{artifact.architecture}]"
        self._stream_handler.start_task(source)
        try:
            report = self._scanner.scan(artifact, workspace, self._cancel_event)
        except ScanExecutionError as e:
            LOGGER.error(f"Error generating Trivy report for {artifact.architecture}: {e}")
            if e.output:
                LOGGER.debug(f"trivy output for {artifact.architecture}:\n{e.output}")
            self._stream_handler.end_task(source, False)
            return
        except (ScanResultMissing, OSError) as e:
            LOGGER.error(f"Error generating Trivy report for {artifact.architecture}: {e}")
            self._stream_handler.end_task(source, False)
            return
        except Exception as e:
            LOGGER.exception(f"Unexpected error scanning {artifact.architecture}: {e}")
            self._stream_handler.end_task(source, False)
            return

        out.publish(report)
        self._stream_handler.end_task(source, True)

    def _report_stage(
        self,
        name: str,
        aggregator: ResultAggregator,
        results: Subscription,
        url: str,
    ) -> Tuple[Dict[str, V], SubmissionOutcome]:
        mapping = aggregator.consume(results)
        self._branch_reached(PipelineState.REPORTING)

        outcome = SubmissionOutcome(name=name, url=url, entries=len(mapping))
        try:
            self._reporter.submit(url, mapping)
            outcome.success = True
        except (SerializationError, SubmissionError) as e:
            LOGGER.error(f"Error posting {name}: {e}")
            outcome.error = str(e)
        return mapping, outcome

    def _collect_report(
        self,
        future: Future,
        name: str,
        url: str,
    ) -> Tuple[Dict[str, V], SubmissionOutcome]:
        error = future.exception()
        if error is None:
            return future.result()
        LOGGER.error(f"Stage {name}-report failed: {error}")
        message = str(error) if isinstance(error, ArchscanError) else repr(error)
        return {}, SubmissionOutcome(name=name, url=url, error=message)

    def _advance(self, state: PipelineState) -> PipelineState:
        """Move the state forward; concurrent stages may report out of order."""
        with self._state_lock:
            return self._advance_locked(state)

    def _branch_reached(self, state: PipelineState) -> PipelineState:
        """Record one parallel branch reaching state; advance after the last one."""
        with self._state_lock:
            self._pending_branches[state] -= 1
            if self._pending_branches[state] > 0:
                return self._state
            return self._advance_locked(state)

    def _advance_locked(self, state: PipelineState) -> PipelineState:
        if self._state != PipelineState.FAILED and (
            _STATE_ORDER.index(state) > _STATE_ORDER.index(self._state)
        ):
            self._state = state
        return self._state

    def _set_state(self, state: PipelineState) -> None:
        with self._state_lock:
            self._state = state
