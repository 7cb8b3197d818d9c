"""Configuration loading and merging.

Builds the ArchscanConfig once at startup from:
- Built-in defaults
- An optional YAML file (archscan.yml, or the --config path)
- Environment variables (REGISTRY_USERNAME, SLOW_RUN, ...)
- CLI overrides
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml

from archscan.config.models import (
    ArchscanConfig,
    CatalogConfig,
    RegistryCredentials,
    ScannerConfig,
    ToolsConfig,
)
from archscan.config.validation import validate_config
from archscan.core.logging import get_logger
from archscan.core.models import ScanScope

LOGGER = get_logger(__name__)

CONFIG_FILE_NAMES = ["archscan.yml", "archscan.yaml", ".archscan.yml", ".archscan.yaml"]

# Environment variable pattern: ${VAR} or ${VAR:-default}
ENV_VAR_PATTERN = re.compile(r"\$\{([^}:]+)(?::-([^}]*))?\}")

REGISTRY_USERNAME_ENV = "REGISTRY_USERNAME"
REGISTRY_PASSWORD_ENV = "REGISTRY_PASSWORD"
SLOW_RUN_ENV = "SLOW_RUN"
IMAGE_ENV = "ARCHSCAN_IMAGE"
SIZE_REPORT_URL_ENV = "ARCHSCAN_SIZE_REPORT_URL"
SCAN_REPORT_URL_ENV = "ARCHSCAN_SCAN_REPORT_URL"
MAX_WORKERS_ENV = "ARCHSCAN_MAX_WORKERS"


class ConfigError(Exception):
    """Configuration loading or parsing error."""

    pass


def load_config(
    config_path: Optional[Path] = None,
    search_dir: Optional[Path] = None,
    environ: Optional[Mapping[str, str]] = None,
    cli_overrides: Optional[Dict[str, Any]] = None,
) -> ArchscanConfig:
    """Load configuration with proper precedence.

    Precedence (highest to lowest):
    1. CLI flags (cli_overrides)
    2. Environment variables
    3. Config file (config_path, or archscan.yml found in search_dir)
    4. Built-in defaults

    Args:
        config_path: Explicit config file (--config flag). Must exist.
        search_dir: Directory searched for a config file when config_path
            is not given. Defaults to the current directory.
        environ: Environment mapping; defaults to os.environ.
        cli_overrides: Dict of CLI flag overrides.

    Returns:
        Merged ArchscanConfig instance.

    Raises:
        ConfigError: If the config file is missing, unparseable or invalid.
    """
    environ = os.environ if environ is None else environ
    sources: List[str] = []
    merged: Dict[str, Any] = {}

    # Layer 1: config file
    if config_path is not None:
        if not config_path.exists():
            raise ConfigError(f"Config file not found: {config_path}")
        file_path: Optional[Path] = config_path
    else:
        file_path = find_config_file(search_dir or Path.cwd())

    if file_path is not None:
        try:
            file_dict = load_yaml_file(file_path, environ)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {file_path}: {e}") from e
        _check(file_dict, str(file_path))
        merged = merge_configs(merged, file_dict)
        sources.append(f"file:{file_path}")
        LOGGER.debug(f"Loaded config from {file_path}")

    # Layer 2: environment
    env_dict = env_to_config(environ)
    if env_dict:
        _check(env_dict, "environment")
        merged = merge_configs(merged, env_dict)
        sources.append("env")

    # Layer 3: CLI overrides
    if cli_overrides:
        _check(cli_overrides, "cli")
        merged = merge_configs(merged, cli_overrides)
        sources.append("cli")

    config = dict_to_config(merged)
    config._config_sources = sources

    LOGGER.debug(f"Config loaded from sources: {sources}")
    return config


def _check(data: Dict[str, Any], source: str) -> None:
    _, errors = validate_config(data, source=source)
    if errors:
        details = "; ".join(error.message for error in errors)
        raise ConfigError(f"Invalid configuration in {source}: {details}")


def find_config_file(directory: Path) -> Optional[Path]:
    """Find a config file in the given directory.

    Returns:
        Path to the first matching file name, or None.
    """
    for name in CONFIG_FILE_NAMES:
        candidate = directory / name
        if candidate.is_file():
            return candidate
    return None


def load_yaml_file(
    path: Path,
    environ: Optional[Mapping[str, str]] = None,
) -> Dict[str, Any]:
    """Load a YAML config file and expand ${VAR} references.

    Raises:
        yaml.YAMLError: If YAML parsing fails.
        ConfigError: If the document is not a mapping.
    """
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f)

    if data is None:
        return {}

    if not isinstance(data, dict):
        raise ConfigError(f"Config file must be a YAML mapping, got {type(data).__name__}")

    return expand_env_vars(data, environ)


def expand_env_vars(data: Any, environ: Optional[Mapping[str, str]] = None) -> Any:
    """Recursively expand ${VAR} and ${VAR:-default} in string values."""
    environ = os.environ if environ is None else environ

    if isinstance(data, dict):
        return {k: expand_env_vars(v, environ) for k, v in data.items()}
    elif isinstance(data, list):
        return [expand_env_vars(item, environ) for item in data]
    elif isinstance(data, str):
        return ENV_VAR_PATTERN.sub(lambda match: _env_var_replacer(match, environ), data)
    else:
        return data


def _env_var_replacer(match: re.Match[str], environ: Mapping[str, str]) -> str:
    var_name = match.group(1)
    default_value = match.group(2)

    value = environ.get(var_name)
    if value is not None:
        return value
    if default_value is not None:
        return default_value

    LOGGER.warning(f"Environment variable ${var_name} is not set and has no default")
    return ""


def env_to_config(environ: Mapping[str, str]) -> Dict[str, Any]:
    """Translate supported environment variables into a config dict.

    Raises:
        ConfigError: If a numeric variable does not parse.
    """
    data: Dict[str, Any] = {}

    if IMAGE_ENV in environ:
        data["image"] = environ[IMAGE_ENV]

    if MAX_WORKERS_ENV in environ:
        try:
            data["max_workers"] = int(environ[MAX_WORKERS_ENV])
        except ValueError as e:
            raise ConfigError(
                f"{MAX_WORKERS_ENV} must be an integer, got {environ[MAX_WORKERS_ENV]!r}"
            ) from e

    if SLOW_RUN_ENV in environ:
        data["scanner"] = {"slow": environ[SLOW_RUN_ENV] == "1"}

    catalog: Dict[str, Any] = {}
    if SIZE_REPORT_URL_ENV in environ:
        catalog["size_report_url"] = environ[SIZE_REPORT_URL_ENV]
    if SCAN_REPORT_URL_ENV in environ:
        catalog["scan_report_url"] = environ[SCAN_REPORT_URL_ENV]
    if catalog:
        data["catalog"] = catalog

    # Credentials only count when both halves are present
    if REGISTRY_USERNAME_ENV in environ and REGISTRY_PASSWORD_ENV in environ:
        data["registry"] = {
            "username": environ[REGISTRY_USERNAME_ENV],
            "password": environ[REGISTRY_PASSWORD_ENV],
        }

    return data


def merge_configs(base: Dict[str, Any], overlay: Dict[str, Any]) -> Dict[str, Any]:
    """Deep merge two config dicts, with overlay taking precedence."""
    result = base.copy()

    for key, overlay_value in overlay.items():
        if key in result and isinstance(result[key], dict) and isinstance(overlay_value, dict):
            result[key] = merge_configs(result[key], overlay_value)
        else:
            result[key] = overlay_value

    return result


def dict_to_config(data: Dict[str, Any]) -> ArchscanConfig:
    """Convert a validated dict to a typed ArchscanConfig."""
    defaults = ArchscanConfig()

    tools_data = data.get("tools") or {}
    tools = ToolsConfig(
        skopeo=tools_data.get("skopeo", defaults.tools.skopeo),
        trivy=tools_data.get("trivy", defaults.tools.trivy),
    )

    scanner_data = data.get("scanner") or {}
    scanner = ScannerConfig(
        slow=scanner_data.get("slow", defaults.scanner.slow),
        timeout=scanner_data.get("timeout", defaults.scanner.timeout),
    )

    catalog_data = data.get("catalog") or {}
    catalog = CatalogConfig(
        size_report_url=catalog_data.get("size_report_url", defaults.catalog.size_report_url),
        scan_report_url=catalog_data.get("scan_report_url", defaults.catalog.scan_report_url),
        timeout=float(catalog_data.get("timeout", defaults.catalog.timeout)),
        retries=catalog_data.get("retries", defaults.catalog.retries),
        backoff=float(catalog_data.get("backoff", defaults.catalog.backoff)),
    )

    registry_data = data.get("registry") or {}
    username = registry_data.get("username")
    password = registry_data.get("password")
    credentials = None
    if username and password:
        credentials = RegistryCredentials(username=username, password=password)
    elif username or password:
        LOGGER.warning("Registry credentials are incomplete, using anonymous access")

    base_dir = data.get("base_dir")

    return ArchscanConfig(
        image=data.get("image", defaults.image),
        base_dir=Path(base_dir) if base_dir else defaults.base_dir,
        default_architecture=data.get("default_architecture", defaults.default_architecture),
        max_workers=data.get("max_workers", defaults.max_workers),
        fetch_retries=data.get("fetch_retries", defaults.fetch_retries),
        scan_scope=ScanScope(data.get("scan_scope", defaults.scan_scope.value)),
        tools=tools,
        scanner=scanner,
        catalog=catalog,
        credentials=credentials,
    )
