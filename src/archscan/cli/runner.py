"""CLI runner that wires configuration, logging and the pipeline together."""

from __future__ import annotations

import signal
import threading
from contextlib import contextmanager
from importlib.metadata import PackageNotFoundError, version
from typing import Iterable, Iterator, Optional

from archscan.cli.arguments import build_parser, cli_args_to_config_overrides
from archscan.cli.exit_codes import (
    EXIT_DISCOVERY_FAILURE,
    EXIT_INTERRUPTED,
    EXIT_INVALID_USAGE,
    EXIT_SUCCESS,
)
from archscan.config import ConfigError, load_config
from archscan.core.errors import DiscoveryError
from archscan.core.logging import configure_logging, get_logger
from archscan.core.models import PipelineResult
from archscan.core.streaming import CLIStreamHandler, NullStreamHandler, StreamHandler
from archscan.pipeline import PipelineExecutor

LOGGER = get_logger(__name__)


def get_version() -> str:
    try:
        return version("archscan")
    except PackageNotFoundError:
        # Fallback for editable installs that have not yet built metadata.
        from archscan import __version__

        return __version__


@contextmanager
def _cancel_on_signals(executor: PipelineExecutor) -> Iterator[None]:
    """Route SIGINT/SIGTERM to executor.cancel() while the pipeline runs."""
    if threading.current_thread() is not threading.main_thread():
        yield
        return

    def _handler(signum: int, frame: object) -> None:
        LOGGER.warning(f"Received signal {signum}, stopping external tools")
        executor.cancel()

    previous = {
        signum: signal.signal(signum, _handler)
        for signum in (signal.SIGINT, signal.SIGTERM)
    }
    try:
        yield
    finally:
        for signum, handler in previous.items():
            signal.signal(signum, handler)


class CLIRunner:
    """Parses arguments, loads configuration and runs one pipeline."""

    def run(self, argv: Optional[Iterable[str]] = None) -> int:
        parser = build_parser()
        argv_list = list(argv) if argv is not None else None

        try:
            args = parser.parse_args(argv_list)
        except SystemExit as e:
            # --help exits 0, usage errors exit 2
            return EXIT_SUCCESS if e.code == 0 else EXIT_INVALID_USAGE

        # Configure logging as early as possible.
        configure_logging(debug=args.debug, verbose=args.verbose, quiet=args.quiet)

        if args.version:
            print(get_version())
            return EXIT_SUCCESS

        try:
            config = load_config(
                config_path=args.config,
                cli_overrides=cli_args_to_config_overrides(args),
            )
        except ConfigError as e:
            LOGGER.error(str(e))
            return EXIT_INVALID_USAGE

        stream_handler: StreamHandler
        if args.quiet:
            stream_handler = NullStreamHandler()
        else:
            stream_handler = CLIStreamHandler(show_output=not args.no_stream)

        executor = PipelineExecutor(config, stream_handler=stream_handler)

        with _cancel_on_signals(executor):
            try:
                result = executor.execute()
            except DiscoveryError as e:
                LOGGER.error(f"Error getting architectures: {e}")
                if e.detail:
                    LOGGER.error(e.detail)
                return EXIT_DISCOVERY_FAILURE

        self._log_summary(result)

        if executor.cancelled:
            return EXIT_INTERRUPTED
        return EXIT_SUCCESS

    def _log_summary(self, result: PipelineResult) -> None:
        LOGGER.info(
            f"{result.image}: {len(result.fetched)}/{len(result.architectures)} "
            f"architectures downloaded, {len(result.sizes)} sizes, "
            f"{len(result.reports)} reports"
        )
        if result.failed_architectures:
            LOGGER.warning(
                f"Failed downloads: {', '.join(result.failed_architectures)}"
            )
        for outcome in result.submissions.values():
            if outcome.success:
                LOGGER.info(f"Submitted {outcome.entries} {outcome.name} to {outcome.url}")
            else:
                LOGGER.warning(f"{outcome.name} were not submitted: {outcome.error}")
