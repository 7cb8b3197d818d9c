"""Configuration module for archscan.

Provides configuration loading, parsing, and validation with support for:
- An optional YAML file (archscan.yml)
- Environment variables (registry credentials, SLOW_RUN, endpoints)
- Environment variable expansion inside the YAML file
"""

from archscan.config.models import (
    ArchscanConfig,
    CatalogConfig,
    RegistryCredentials,
    ScannerConfig,
    ToolsConfig,
)
from archscan.config.loader import ConfigError, find_config_file, load_config
from archscan.config.validation import validate_config, ConfigValidationWarning

__all__ = [
    "ArchscanConfig",
    "CatalogConfig",
    "RegistryCredentials",
    "ScannerConfig",
    "ToolsConfig",
    "ConfigError",
    "find_config_file",
    "load_config",
    "validate_config",
    "ConfigValidationWarning",
]
