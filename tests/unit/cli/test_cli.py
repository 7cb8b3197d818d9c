"""Tests for CLI argument handling and the CLI runner."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

import archscan.cli as cli
from archscan.cli.arguments import build_parser, cli_args_to_config_overrides
from archscan.core.errors import DiscoveryError
from archscan.core.models import PipelineResult, SubmissionOutcome

ENV_VARS = [
    "ARCHSCAN_IMAGE",
    "ARCHSCAN_MAX_WORKERS",
    "ARCHSCAN_SIZE_REPORT_URL",
    "ARCHSCAN_SCAN_REPORT_URL",
    "REGISTRY_USERNAME",
    "REGISTRY_PASSWORD",
    "SLOW_RUN",
]


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)


@pytest.fixture
def mock_executor_cls():
    with patch("archscan.cli.runner.PipelineExecutor") as executor_cls:
        executor = executor_cls.return_value
        executor.cancelled = False
        executor.execute.return_value = PipelineResult(
            image="img",
            architectures=["amd64"],
            fetched=["amd64"],
            sizes={"amd64": 1},
            reports={"amd64": "{}"},
            submissions={
                "sizes": SubmissionOutcome("sizes", "http://s", entries=1, success=True),
                "reports": SubmissionOutcome("reports", "http://r", entries=1, success=True),
            },
        )
        yield executor_cls


class TestBuildParser:
    """Tests for the argument parser."""

    def test_includes_core_flags(self) -> None:
        parser = build_parser()
        for flag in [
            "--version", "--debug", "--verbose", "--quiet", "--no-stream",
            "--config", "--max-workers", "--scan-scope", "--slow",
            "--size-report-url", "--scan-report-url",
        ]:
            assert any(a.option_strings and flag in a.option_strings for a in parser._actions)

    def test_no_overrides_by_default(self) -> None:
        args = build_parser().parse_args([])
        assert cli_args_to_config_overrides(args) == {}

    def test_overrides(self) -> None:
        args = build_parser().parse_args([
            "quay.io/org/app:1",
            "--max-workers", "8",
            "--scan-scope", "default",
            "--slow",
            "--size-report-url", "http://s",
            "--scan-report-url", "http://r",
        ])

        assert cli_args_to_config_overrides(args) == {
            "image": "quay.io/org/app:1",
            "max_workers": 8,
            "scan_scope": "default",
            "scanner": {"slow": True},
            "catalog": {"size_report_url": "http://s", "scan_report_url": "http://r"},
        }

    def test_rejects_zero_workers(self) -> None:
        with pytest.raises(SystemExit):
            build_parser().parse_args(["--max-workers", "0"])


class TestCLIRunner:
    """Tests for CLIRunner.run exit codes."""

    def test_help(self, capsys) -> None:
        exit_code = cli.main(["--help"])
        assert exit_code == cli.EXIT_SUCCESS
        assert "usage:" in capsys.readouterr().out.lower()

    def test_version(self, capsys) -> None:
        exit_code = cli.main(["--version"])
        assert exit_code == cli.EXIT_SUCCESS
        assert capsys.readouterr().out.strip()

    def test_invalid_arguments(self) -> None:
        assert cli.main(["--scan-scope", "some"]) == cli.EXIT_INVALID_USAGE

    def test_missing_config_file(self, tmp_path: Path) -> None:
        assert cli.main(["--config", str(tmp_path / "nope.yml")]) == cli.EXIT_INVALID_USAGE

    def test_invalid_config_file(self, tmp_path: Path) -> None:
        path = tmp_path / "archscan.yml"
        path.write_text("max_workers: -1\n")
        assert cli.main(["--quiet"]) == cli.EXIT_INVALID_USAGE

    def test_successful_run(self, mock_executor_cls: MagicMock) -> None:
        exit_code = cli.main(["quay.io/org/app:1", "--quiet", "--max-workers", "2"])

        assert exit_code == cli.EXIT_SUCCESS
        config = mock_executor_cls.call_args.args[0]
        assert config.image == "quay.io/org/app:1"
        assert config.max_workers == 2

    def test_environment_reaches_config(
        self, monkeypatch: pytest.MonkeyPatch, mock_executor_cls: MagicMock
    ) -> None:
        monkeypatch.setenv("REGISTRY_USERNAME", "robot")
        monkeypatch.setenv("REGISTRY_PASSWORD", "s3cret")
        monkeypatch.setenv("SLOW_RUN", "1")

        assert cli.main(["--quiet"]) == cli.EXIT_SUCCESS

        config = mock_executor_cls.call_args.args[0]
        assert config.credentials.username == "robot"
        assert config.scanner.slow is True

    def test_discovery_failure(self, mock_executor_cls: MagicMock) -> None:
        mock_executor_cls.return_value.execute.side_effect = DiscoveryError(
            "Manifest inspection failed", detail="unauthorized"
        )

        assert cli.main(["--quiet"]) == cli.EXIT_DISCOVERY_FAILURE

    def test_submission_failure_still_succeeds(self, mock_executor_cls: MagicMock) -> None:
        result = mock_executor_cls.return_value.execute.return_value
        result.submissions["sizes"] = SubmissionOutcome(
            "sizes", "http://s", entries=1, success=False, error="HTTP 500"
        )

        assert cli.main(["--quiet"]) == cli.EXIT_SUCCESS

    def test_interrupted(self, mock_executor_cls: MagicMock) -> None:
        mock_executor_cls.return_value.cancelled = True

        assert cli.main(["--quiet"]) == cli.EXIT_INTERRUPTED

    def test_stream_handler_selection(self, mock_executor_cls: MagicMock) -> None:
        from archscan.core.streaming import CLIStreamHandler, NullStreamHandler

        cli.main(["--quiet"])
        assert isinstance(
            mock_executor_cls.call_args.kwargs["stream_handler"], NullStreamHandler
        )

        cli.main([])
        assert isinstance(
            mock_executor_cls.call_args.kwargs["stream_handler"], CLIStreamHandler
        )
