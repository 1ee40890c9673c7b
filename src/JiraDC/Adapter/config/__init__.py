"""
Adapter Configuration Package

Public API for loading, validating, and introspecting adapter configuration.

Example:
    from JiraDC.Adapter.config import load_config

    config = load_config(
        path="adapter.yaml",
        cli_overrides={"breaker": {"failure_threshold": 3}},
    )
    config_id = config.config_hash()
"""

from .loader import (
    export_config_schema,
    load_config,
    validate_config_file,
)
from .models import (
    SUPPORTED_VERSIONS,
    AdapterConfig,
    BreakerSettings,
    CacheSettings,
    HttpSettings,
    LoggingSettings,
    RetrySettings,
    VersionSettings,
)

__all__ = [
    # Models
    "AdapterConfig",
    "HttpSettings",
    "VersionSettings",
    "RetrySettings",
    "BreakerSettings",
    "CacheSettings",
    "LoggingSettings",
    "SUPPORTED_VERSIONS",
    # Loading/validation
    "load_config",
    "validate_config_file",
    "export_config_schema",
]
