"""
Configuration Loading with File/Env/CLI Precedence

Implements three-level config composition:
1. **File level** (YAML/JSON): base configuration
2. **Environment level**: JIRADC_* prefixed variables override file
3. **CLI level**: programmatic overrides win

Environment variables use double-underscore notation:
  JIRADC_HTTP__BASE_URL="https://jira.example.com"  →  http.base_url
  JIRADC_BREAKER__FAILURE_THRESHOLD=3               →  breaker.failure_threshold=3

The conventional flat variables (JIRA_DC_BASE_URL, JIRA_DC_PAT, ...) are read before
the prefixed ones, so the prefixed form wins when both are set.
"""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Tuple

import yaml

from .models import AdapterConfig

_LOGGER = logging.getLogger(__name__)

# Keys whose values must stay strings even when they look like JSON scalars.
_STRING_KEYS = frozenset(
    {
        "http.base_url",
        "http.context_path",
        "http.personal_access_token",
        "http.user_agent",
        "version.preferred",
        "logging.level",
    }
)


def _ms_to_s(value: str) -> float:
    return float(value) / 1000.0


def _as_bool(value: str) -> bool:
    return value.strip().lower() not in ("false", "0", "no", "off")


# name → (dotted key, converter)
_LEGACY_ENV: Dict[str, Tuple[str, Callable[[str], Any]]] = {
    "JIRA_DC_BASE_URL": ("http.base_url", str),
    "JIRA_DC_PAT": ("http.personal_access_token", str),
    "JIRA_DC_CONTEXT_PATH": ("http.context_path", str),
    "JIRA_DC_API_VERSION": ("version.preferred", str),
    "JIRA_DC_TIMEOUT": ("http.timeout_s", _ms_to_s),
    "JIRA_DC_VALIDATE_SSL": ("http.verify_tls", _as_bool),
    "JIRA_DC_MAX_RETRIES": ("retry.max_attempts", int),
}

# ============================================================================
# Helpers
# ============================================================================


def _read_file(path: str) -> dict[str, Any]:
    """
    Read YAML or JSON config file.

    Args:
        path: File path (suffix determines format: .yaml/.yml or .json)

    Returns:
        Parsed config dictionary

    Raises:
        ValueError: If file cannot be read or parsed
    """
    p = Path(path)
    if not p.exists():
        raise ValueError(f"Config file not found: {path}")

    try:
        text = p.read_text(encoding="utf-8")
    except OSError as e:
        raise ValueError(f"Cannot read config file {path}: {e}") from e

    suffix = p.suffix.lower()

    if suffix in (".yaml", ".yml"):
        try:
            loaded = yaml.safe_load(text) or {}
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in {path}: {e}") from e
    elif suffix == ".json":
        try:
            loaded = json.loads(text)
        except ValueError as e:
            raise ValueError(f"Invalid JSON in {path}: {e}") from e
    else:
        raise ValueError(f"Unsupported file format: {suffix}. Use .yaml or .json")

    if not isinstance(loaded, dict):
        raise ValueError(f"Config file {path} must contain a mapping at the top level")
    return loaded


def _assign_nested(data: dict[str, Any], dotted_key: str, value: Any) -> None:
    """
    Assign value to nested dict using dot notation.

    Example:
        _assign_nested(data, "http.base_url", "https://jira")
        → data["http"]["base_url"] = "https://jira"
    """
    keys = dotted_key.split(".")
    current = data

    for key in keys[:-1]:
        if not isinstance(current.get(key), dict):
            current[key] = {}
        current = current[key]

    current[keys[-1]] = value


def _coerce_env_value(value: str) -> Any:
    """
    Attempt to coerce environment variable string to appropriate type.

    Tries JSON parsing first (handles lists, dicts, bools, numbers).
    Falls back to string if JSON fails.
    """
    try:
        return json.loads(value)
    except ValueError:
        pass

    if value.lower() in ("true", "false"):
        return value.lower() == "true"

    return value


def _merge_legacy_env(data: dict[str, Any], environ: Mapping[str, str]) -> dict[str, Any]:
    for env_key, (dotted_key, convert) in _LEGACY_ENV.items():
        raw = environ.get(env_key)
        if raw is None or raw == "":
            continue
        try:
            value = convert(raw)
        except ValueError as e:
            raise ValueError(f"Invalid value for {env_key}: {raw!r}") from e
        _assign_nested(data, dotted_key, value)
        _LOGGER.debug("Environment override: %s → %s", env_key, dotted_key)
    return data


def _merge_env_overrides(
    data: dict[str, Any],
    env_prefix: str = "JIRADC_",
    environ: Optional[Mapping[str, str]] = None,
) -> dict[str, Any]:
    """
    Overlay environment variables onto config dict.

    Args:
        data: Base config dict (modified in place)
        env_prefix: Environment variable prefix (default: JIRADC_)
        environ: Environment mapping (default: ``os.environ``)

    Returns:
        Modified data dict
    """
    environ = os.environ if environ is None else environ
    data = _merge_legacy_env(data, environ)

    for env_key, env_value in environ.items():
        if not env_key.startswith(env_prefix):
            continue

        relative_key = env_key[len(env_prefix) :].lower()
        dotted_key = relative_key.replace("__", ".")

        value = env_value if dotted_key in _STRING_KEYS else _coerce_env_value(env_value)
        _assign_nested(data, dotted_key, value)
        # Values may carry credentials; only the key is logged.
        _LOGGER.debug("Environment override: %s → %s", env_key, dotted_key)

    return data


def _merge_cli_overrides(
    data: dict[str, Any], cli_overrides: Mapping[str, Any] | None
) -> dict[str, Any]:
    """
    Recursively merge CLI overrides into base config dict.

    Later values win (standard dict.update() semantics).
    """
    if not cli_overrides:
        return data

    for key, value in cli_overrides.items():
        if isinstance(value, Mapping) and isinstance(data.get(key), dict):
            data[key] = _merge_cli_overrides(data[key], value)
        else:
            data[key] = dict(value) if isinstance(value, Mapping) else value
        _LOGGER.debug("CLI override: %s", key)

    return data


# ============================================================================
# Public API
# ============================================================================


def load_config(
    path: str | None = None,
    env_prefix: str = "JIRADC_",
    cli_overrides: Mapping[str, Any] | None = None,
    environ: Optional[Mapping[str, str]] = None,
) -> AdapterConfig:
    """
    Load AdapterConfig from file, environment, and CLI with proper precedence.

    **Precedence:** file < environment < CLI

    Args:
        path: Path to YAML/JSON config file (optional)
        env_prefix: Environment variable prefix (default: JIRADC_)
        cli_overrides: CLI overrides dict (optional)
        environ: Environment mapping, ``os.environ`` when omitted

    Returns:
        Validated AdapterConfig instance

    Raises:
        ValueError: If file cannot be read or parsed
        pydantic.ValidationError: If the merged configuration is invalid
    """
    data: dict[str, Any] = {}

    if path:
        try:
            data = _read_file(path)
            _LOGGER.info("Loaded config from %s", path)
        except ValueError as e:
            _LOGGER.error("Failed to load config: %s", e)
            raise

    data = _merge_env_overrides(data, env_prefix, environ)
    data = _merge_cli_overrides(data, cli_overrides)

    config = AdapterConfig.model_validate(data)
    _LOGGER.info("Configuration validated. Config hash: %s...", config.config_hash()[:8])
    for warning in config.warnings():
        _LOGGER.warning("Configuration warning: %s", warning)
    return config


def validate_config_file(path: str) -> bool:
    """
    Validate a config file together with the current environment.

    Returns:
        True if valid

    Raises:
        ValueError: If invalid
    """
    load_config(path=path)
    return True


def export_config_schema() -> dict[str, Any]:
    """Export JSON Schema for AdapterConfig (Pydantic v2 format)."""
    return AdapterConfig.model_json_schema()
