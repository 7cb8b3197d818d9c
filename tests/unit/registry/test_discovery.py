"""Tests for archscan.registry.discovery."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Callable

import pytest

from archscan.config.models import RegistryCredentials
from archscan.core.errors import DiscoveryError
from archscan.registry.discovery import (
    build_inspect_command,
    get_supported_architectures,
    parse_manifest_architectures,
)
from tests.conftest import TEST_IMAGE, manifest_list, read_calls


class TestParseManifestArchitectures:
    """Tests for parse_manifest_architectures."""

    def test_manifest_order(self) -> None:
        raw = json.dumps(manifest_list("amd64", "arm64", "s390x"))
        assert parse_manifest_architectures(raw) == ["amd64", "arm64", "s390x"]

    def test_single_platform_manifest(self) -> None:
        raw = json.dumps({"schemaVersion": 2, "config": {}, "layers": []})
        assert parse_manifest_architectures(raw) == []

    def test_skips_attestations_and_duplicates(self) -> None:
        raw = json.dumps(manifest_list("amd64", "unknown", "arm64", "amd64", "unknown"))
        assert parse_manifest_architectures(raw) == ["amd64", "arm64"]

    def test_skips_entries_without_platform(self) -> None:
        raw = json.dumps({
            "manifests": [
                {"digest": "sha256:1"},
                {"platform": {"os": "linux"}},
                {"platform": {"architecture": ""}},
                {"platform": {"architecture": "ppc64le"}},
            ]
        })
        assert parse_manifest_architectures(raw) == ["ppc64le"]

    def test_invalid_json(self) -> None:
        with pytest.raises(DiscoveryError, match="not valid JSON"):
            parse_manifest_architectures("{not json")

    def test_non_object(self) -> None:
        with pytest.raises(DiscoveryError, match="JSON object"):
            parse_manifest_architectures("[]")

    @pytest.mark.parametrize("manifests", ['{"a": 1}', "{}", '""', "0", "false"])
    def test_manifests_must_be_list(self, manifests: str) -> None:
        with pytest.raises(DiscoveryError, match="must be a list"):
            parse_manifest_architectures(f'{{"manifests": {manifests}}}')

    def test_null_manifests_is_single_platform(self) -> None:
        assert parse_manifest_architectures('{"manifests": null}') == []


class TestBuildInspectCommand:
    def test_anonymous(self) -> None:
        assert build_inspect_command(TEST_IMAGE) == [
            "skopeo", "inspect", "--raw", f"docker://{TEST_IMAGE}",
        ]

    def test_with_credentials(self) -> None:
        cmd = build_inspect_command(TEST_IMAGE, "skopeo", RegistryCredentials("u", "p"))
        assert cmd[cmd.index("--creds") + 1] == "u:p"
        assert cmd[-1] == f"docker://{TEST_IMAGE}"


class TestGetSupportedArchitectures:
    """Tests for get_supported_architectures against a fake skopeo."""

    def test_returns_manifest_architectures(
        self, tmp_path: Path, fake_skopeo: Callable[..., Path]
    ) -> None:
        skopeo = fake_skopeo(manifest=manifest_list("amd64", "arm64"))

        assert get_supported_architectures(TEST_IMAGE, skopeo=str(skopeo)) == [
            "amd64",
            "arm64",
        ]
        assert read_calls(tmp_path / "skopeo.calls") == [
            f"inspect --raw docker://{TEST_IMAGE}"
        ]

    def test_falls_back_to_default(self, fake_skopeo: Callable[..., Path]) -> None:
        skopeo = fake_skopeo(manifest={"schemaVersion": 2, "layers": []})

        result = get_supported_architectures(
            TEST_IMAGE, skopeo=str(skopeo), default_architecture="arm64"
        )

        assert result == ["arm64"]

    def test_nonzero_exit(self, fake_skopeo: Callable[..., Path]) -> None:
        skopeo = fake_skopeo(inspect_exit=1)

        with pytest.raises(DiscoveryError) as exc_info:
            get_supported_architectures(TEST_IMAGE, skopeo=str(skopeo))

        assert "exit code 1" in str(exc_info.value)
        assert exc_info.value.detail == "manifest unknown"

    def test_invalid_output(self, fake_skopeo: Callable[..., Path]) -> None:
        skopeo = fake_skopeo(manifest="garbage")

        with pytest.raises(DiscoveryError):
            get_supported_architectures(TEST_IMAGE, skopeo=str(skopeo))

    def test_missing_tool(self, tmp_path: Path) -> None:
        with pytest.raises(DiscoveryError, match="not found"):
            get_supported_architectures(TEST_IMAGE, skopeo=str(tmp_path / "nope"))

    def test_passes_credentials(
        self, tmp_path: Path, fake_skopeo: Callable[..., Path]
    ) -> None:
        skopeo = fake_skopeo(manifest=manifest_list("amd64"))

        get_supported_architectures(
            TEST_IMAGE,
            skopeo=str(skopeo),
            credentials=RegistryCredentials("robot", "s3cret"),
        )

        assert "--creds robot:s3cret" in read_calls(tmp_path / "skopeo.calls")[0]
