"""archscan CLI package."""

from __future__ import annotations

from typing import Iterable, Optional

from archscan.cli.runner import CLIRunner, get_version
from archscan.cli.arguments import build_parser
from archscan.cli.exit_codes import (
    EXIT_SUCCESS,
    EXIT_DISCOVERY_FAILURE,
    EXIT_INVALID_USAGE,
    EXIT_INTERRUPTED,
)


def main(argv: Optional[Iterable[str]] = None) -> int:
    """CLI entrypoint.

    Args:
        argv: Command-line arguments (defaults to sys.argv).

    Returns:
        Exit code.
    """
    runner = CLIRunner()
    return runner.run(argv)


__all__ = [
    "main",
    "build_parser",
    "get_version",
    "CLIRunner",
    "EXIT_SUCCESS",
    "EXIT_DISCOVERY_FAILURE",
    "EXIT_INVALID_USAGE",
    "EXIT_INTERRUPTED",
]


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
