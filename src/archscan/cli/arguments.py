"""Argument parsing for the archscan CLI."""

from __future__ import annotations

import argparse
from pathlib import Path
from typing import Any, Dict

from archscan.core.models import ScanScope


def _positive_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"expected an integer, got {value!r}") from e
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be at least 1, got {number}")
    return number


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="archscan",
        description=(
            "Download every architecture of a container image, measure and "
            "scan each variant, and report the results to the catalog."
        ),
    )

    parser.add_argument(
        "image",
        nargs="?",
        default=None,
        help="Image reference (default: from config or ARCHSCAN_IMAGE).",
    )

    # Global options
    parser.add_argument(
        "--version",
        action="store_true",
        help="Show archscan version and exit.",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging.",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable verbose (info-level) logging.",
    )
    parser.add_argument(
        "--quiet",
        action="store_true",
        help="Reduce logging output to errors only and hide tool output.",
    )
    parser.add_argument(
        "--no-stream",
        action="store_true",
        help="Do not forward skopeo/trivy output to the console.",
    )

    # Configuration
    parser.add_argument(
        "--config",
        metavar="PATH",
        type=Path,
        help="Path to config file (default: archscan.yml in the current directory).",
    )
    parser.add_argument(
        "--max-workers",
        type=_positive_int,
        default=None,
        metavar="N",
        help="Concurrent downloads/scans per stage (default: 4).",
    )
    parser.add_argument(
        "--scan-scope",
        choices=[scope.value for scope in ScanScope],
        default=None,
        help="Scan every fetched architecture, or only the default one.",
    )
    parser.add_argument(
        "--slow",
        action="store_true",
        help="Run trivy with --slow (less memory, longer runtime).",
    )
    parser.add_argument(
        "--size-report-url",
        metavar="URL",
        help="Catalog endpoint receiving image sizes.",
    )
    parser.add_argument(
        "--scan-report-url",
        metavar="URL",
        help="Catalog endpoint receiving scan reports.",
    )

    return parser


def cli_args_to_config_overrides(args: argparse.Namespace) -> Dict[str, Any]:
    """Convert CLI arguments to a config override dict.

    Only options given explicitly on the command line are included, so
    file and environment values survive otherwise.
    """
    overrides: Dict[str, Any] = {}

    if args.image:
        overrides["image"] = args.image
    if args.max_workers is not None:
        overrides["max_workers"] = args.max_workers
    if args.scan_scope:
        overrides["scan_scope"] = args.scan_scope
    if args.slow:
        overrides["scanner"] = {"slow": True}

    catalog: Dict[str, Any] = {}
    if args.size_report_url:
        catalog["size_report_url"] = args.size_report_url
    if args.scan_report_url:
        catalog["scan_report_url"] = args.scan_report_url
    if catalog:
        overrides["catalog"] = catalog

    return overrides
