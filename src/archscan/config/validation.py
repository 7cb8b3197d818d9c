"""Configuration validation for archscan.

Unknown keys only produce warnings (with close-match suggestions), so a
typo never stops a run. Values that would make the pipeline misbehave,
such as a non-positive worker count, are returned as errors and turned
into ConfigError by the loader.
"""

from __future__ import annotations

from dataclasses import dataclass
from difflib import get_close_matches
from typing import Any, Dict, List, Optional, Set, Tuple

from archscan.core.logging import get_logger
from archscan.core.models import ScanScope

LOGGER = get_logger(__name__)

VALID_TOP_LEVEL_KEYS: Set[str] = {
    "image",
    "base_dir",
    "default_architecture",
    "max_workers",
    "fetch_retries",
    "scan_scope",
    "tools",
    "scanner",
    "catalog",
    "registry",
}

VALID_SECTION_KEYS: Dict[str, Set[str]] = {
    "tools": {"skopeo", "trivy"},
    "scanner": {"slow", "timeout"},
    "catalog": {"size_report_url", "scan_report_url", "timeout", "retries", "backoff"},
    "registry": {"username", "password"},
}

STRING_KEYS: Set[str] = {"image", "base_dir", "default_architecture"}

VALID_SCAN_SCOPES: Set[str] = {scope.value for scope in ScanScope}


@dataclass
class ConfigValidationWarning:
    """A validation finding for configuration data."""

    message: str
    source: str
    key: Optional[str] = None
    suggestion: Optional[str] = None


def validate_config(
    data: Dict[str, Any],
    source: str,
) -> Tuple[List[ConfigValidationWarning], List[ConfigValidationWarning]]:
    """Validate a configuration dictionary.

    Args:
        data: Config dictionary to validate.
        source: Where the data came from, for messages.

    Returns:
        Tuple of (warnings, errors).
    """
    warnings: List[ConfigValidationWarning] = []
    errors: List[ConfigValidationWarning] = []

    if not isinstance(data, dict):
        errors.append(ConfigValidationWarning(
            message=f"Config must be a mapping, got {type(data).__name__}",
            source=source,
        ))
        return warnings, errors

    for key, value in data.items():
        if key not in VALID_TOP_LEVEL_KEYS:
            warning = ConfigValidationWarning(
                message=f"Unknown top-level key '{key}'",
                source=source,
                key=key,
                suggestion=_suggest_key(key, VALID_TOP_LEVEL_KEYS),
            )
            warnings.append(warning)
            _log_warning(warning)
            continue

        if key in VALID_SECTION_KEYS:
            _validate_section(key, value, source, warnings, errors)

    for key in STRING_KEYS:
        value = data.get(key)
        if value is not None and (not isinstance(value, str) or not value.strip()):
            errors.append(ConfigValidationWarning(
                message=f"'{key}' must be a non-empty string",
                source=source,
                key=key,
            ))

    _check_int(data, "max_workers", 1, source, errors)
    _check_int(data, "fetch_retries", 0, source, errors)

    scan_scope = data.get("scan_scope")
    if scan_scope is not None and scan_scope not in VALID_SCAN_SCOPES:
        errors.append(ConfigValidationWarning(
            message=f"Invalid scan_scope '{scan_scope}'",
            source=source,
            key="scan_scope",
            suggestion=_suggest_key(str(scan_scope), VALID_SCAN_SCOPES),
        ))

    catalog = data.get("catalog")
    if isinstance(catalog, dict):
        _check_int(catalog, "retries", 0, source, errors, prefix="catalog.")
        _check_number(catalog, "timeout", source, errors, prefix="catalog.", positive=True)
        _check_number(catalog, "backoff", source, errors, prefix="catalog.")

    scanner = data.get("scanner")
    if isinstance(scanner, dict):
        slow = scanner.get("slow")
        if slow is not None and not isinstance(slow, bool):
            errors.append(ConfigValidationWarning(
                message="'scanner.slow' must be a boolean",
                source=source,
                key="scanner.slow",
            ))
        _check_number(scanner, "timeout", source, errors, prefix="scanner.", positive=True)

    return warnings, errors


def _validate_section(
    section: str,
    value: Any,
    source: str,
    warnings: List[ConfigValidationWarning],
    errors: List[ConfigValidationWarning],
) -> None:
    if value is None:
        return
    if not isinstance(value, dict):
        errors.append(ConfigValidationWarning(
            message=f"'{section}' must be a mapping, got {type(value).__name__}",
            source=source,
            key=section,
        ))
        return

    valid_keys = VALID_SECTION_KEYS[section]
    for key in value:
        if key not in valid_keys:
            warning = ConfigValidationWarning(
                message=f"Unknown key '{section}.{key}'",
                source=source,
                key=f"{section}.{key}",
                suggestion=_suggest_key(key, valid_keys),
            )
            warnings.append(warning)
            _log_warning(warning)


def _check_int(
    data: Dict[str, Any],
    key: str,
    minimum: int,
    source: str,
    errors: List[ConfigValidationWarning],
    prefix: str = "",
) -> None:
    value = data.get(key)
    if value is None:
        return
    # bool is a subclass of int
    if isinstance(value, bool) or not isinstance(value, int) or value < minimum:
        errors.append(ConfigValidationWarning(
            message=f"'{prefix}{key}' must be an integer >= {minimum}, got {value!r}",
            source=source,
            key=f"{prefix}{key}",
        ))


def _check_number(
    data: Dict[str, Any],
    key: str,
    source: str,
    errors: List[ConfigValidationWarning],
    prefix: str = "",
    positive: bool = False,
) -> None:
    value = data.get(key)
    if value is None:
        return
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        errors.append(ConfigValidationWarning(
            message=f"'{prefix}{key}' must be a number, got {value!r}",
            source=source,
            key=f"{prefix}{key}",
        ))
    elif value < 0 or (positive and value == 0):
        bound = "> 0" if positive else ">= 0"
        errors.append(ConfigValidationWarning(
            message=f"'{prefix}{key}' must be {bound}, got {value!r}",
            source=source,
            key=f"{prefix}{key}",
        ))


def _suggest_key(key: str, valid_keys: Set[str]) -> Optional[str]:
    """Suggest the closest valid key for a typo."""
    matches = get_close_matches(key, sorted(valid_keys), n=1, cutoff=0.6)
    return matches[0] if matches else None


def _log_warning(warning: ConfigValidationWarning) -> None:
    message = f"{warning.source}: {warning.message}"
    if warning.suggestion:
        message += f" (did you mean '{warning.suggestion}'?)"
    LOGGER.warning(message)
