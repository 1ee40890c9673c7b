"""
Pydantic v2 Configuration Models for the Adapter

Provides strict, typed configuration for every adapter subsystem:
- HTTP transport (base URL, context path, bearer token, TLS, timeout)
- API version negotiation (preference, candidates, cache TTL)
- Retry/backoff policy
- Circuit breaker thresholds
- Cache TTLs and bounds
- Logging

All models use ``extra="forbid"`` so typos in YAML files surface as errors.
"""

from __future__ import annotations

import hashlib
import json
import re
from typing import ClassVar, List, Literal

from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator, model_validator

__all__ = [
    "HttpSettings",
    "VersionSettings",
    "RetrySettings",
    "BreakerSettings",
    "CacheSettings",
    "LoggingSettings",
    "AdapterConfig",
    "SUPPORTED_VERSIONS",
]

SUPPORTED_VERSIONS = ("latest", "2")

_CONTEXT_PATH_RE = re.compile(r"^(/[A-Za-z0-9._~-]+)+$")

# ============================================================================
# Subsystem Models
# ============================================================================


class HttpSettings(BaseModel):
    """Connection to the Data Center instance."""

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid")

    base_url: str = Field(description="Instance URL, e.g. https://jira.example.com")
    context_path: str = Field(default="", description="Optional path prefix, e.g. /jira")
    personal_access_token: SecretStr = Field(description="Bearer personal access token")
    timeout_s: float = Field(default=30.0, description="Per-request timeout in seconds")
    verify_tls: bool = Field(default=True, description="Verify TLS certificates")
    user_agent: str = Field(default="jira-dc-adapter/1.0.0-DC", description="User-Agent header")

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        v = v.strip()
        if not v.startswith(("http://", "https://")):
            raise ValueError("base_url must start with http:// or https://")
        return v.rstrip("/")

    @field_validator("context_path")
    @classmethod
    def validate_context_path(cls, v: str) -> str:
        v = v.strip().rstrip("/")
        if v and not _CONTEXT_PATH_RE.match(v):
            raise ValueError("context_path must look like /segment or /segment/segment")
        return v

    @field_validator("personal_access_token")
    @classmethod
    def validate_token(cls, v: SecretStr) -> SecretStr:
        token = v.get_secret_value()
        if len(token) < 20:
            raise ValueError("personal_access_token looks too short (expected >= 20 characters)")
        if any(ch.isspace() for ch in token):
            raise ValueError("personal_access_token must not contain whitespace")
        return v

    @field_validator("timeout_s")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("timeout_s must be > 0")
        return v

    @property
    def root_url(self) -> str:
        return f"{self.base_url}{self.context_path}"


class VersionSettings(BaseModel):
    """API version negotiation."""

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid")

    preferred: Literal["latest", "2"] = Field(
        default="latest", description="Version used when every probe fails"
    )
    candidates: List[str] = Field(
        default_factory=lambda: list(SUPPORTED_VERSIONS),
        description="Probe order, most capable first",
    )
    cache_ttl_s: float = Field(default=3600.0, description="Negotiated version cache TTL")
    probe_timeout_s: float = Field(default=5.0, description="Timeout for each version probe")

    @field_validator("candidates")
    @classmethod
    def validate_candidates(cls, v: List[str]) -> List[str]:
        if not v:
            raise ValueError("candidates must not be empty")
        unknown = [c for c in v if c not in SUPPORTED_VERSIONS]
        if unknown:
            raise ValueError(f"Unknown API versions: {unknown}. Supported: {list(SUPPORTED_VERSIONS)}")
        return v

    @field_validator("cache_ttl_s", "probe_timeout_s")
    @classmethod
    def validate_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("must be > 0")
        return v


class RetrySettings(BaseModel):
    """Retry with exponential backoff for retryable failures."""

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid")

    max_attempts: int = Field(default=3, description="Total attempts including the first")
    base_delay_s: float = Field(default=1.0, description="Delay before the second attempt")
    max_delay_s: float = Field(default=30.0, description="Cap for any single delay")
    retry_after_cap_s: float = Field(default=60.0, description="Cap for honoring Retry-After")

    @field_validator("max_attempts")
    @classmethod
    def validate_max_attempts(cls, v: int) -> int:
        if v < 1:
            raise ValueError("max_attempts must be >= 1")
        return v

    @field_validator("base_delay_s", "max_delay_s", "retry_after_cap_s")
    @classmethod
    def validate_delays(cls, v: float) -> float:
        if v < 0:
            raise ValueError("delays must be >= 0")
        return v

    @model_validator(mode="after")
    def validate_cap(self) -> "RetrySettings":
        if self.max_delay_s < self.base_delay_s:
            raise ValueError("max_delay_s must be >= base_delay_s")
        return self


class BreakerSettings(BaseModel):
    """Per-endpoint circuit breaker."""

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid")

    failure_threshold: int = Field(default=5, description="Consecutive failures before opening")
    cooldown_s: float = Field(default=60.0, description="Open duration before a trial call")
    max_endpoints: int = Field(default=256, description="Most circuit states kept")

    @field_validator("failure_threshold", "max_endpoints")
    @classmethod
    def validate_threshold(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be >= 1")
        return v

    @field_validator("cooldown_s")
    @classmethod
    def validate_cooldown(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("cooldown_s must be > 0")
        return v


class CacheSettings(BaseModel):
    """TTLs and bounds for the user and read caches."""

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid")

    user_ttl_s: float = Field(default=300.0, description="Resolved user cache TTL")
    user_max_entries: int = Field(default=1000, description="Resolved user cache bound")
    read_ttl_s: float = Field(default=30.0, description="Opt-in GET response cache TTL")
    read_max_entries: int = Field(default=500, description="Opt-in GET response cache bound")

    @field_validator("user_ttl_s", "read_ttl_s")
    @classmethod
    def validate_ttl(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("TTL must be > 0")
        return v

    @field_validator("user_max_entries", "read_max_entries")
    @classmethod
    def validate_bound(cls, v: int) -> int:
        if v < 1:
            raise ValueError("cache bound must be >= 1")
        return v


class LoggingSettings(BaseModel):
    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid", populate_by_name=True)

    level: str = Field(default="INFO", description="Log level")
    json_format: bool = Field(default=False, alias="json", description="Emit JSON log lines")

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        v = v.upper()
        if v not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return v


# ============================================================================
# Top-level Model
# ============================================================================


class AdapterConfig(BaseModel):
    """Complete adapter configuration."""

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid", populate_by_name=True)

    http: HttpSettings
    version: VersionSettings = Field(default_factory=VersionSettings)
    retry: RetrySettings = Field(default_factory=RetrySettings)
    breaker: BreakerSettings = Field(default_factory=BreakerSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    def config_hash(self) -> str:
        """
        Compute deterministic SHA256 hash of config for reproducibility.

        The token is excluded so hashes can be logged.
        """
        dumped = self.model_dump(mode="json")
        dumped["http"].pop("personal_access_token", None)
        normalized = json.dumps(dumped, sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(normalized.encode()).hexdigest()

    def warnings(self) -> List[str]:
        """Advisory findings that do not make the configuration invalid."""

        found: List[str] = []
        if self.http.base_url.startswith("http://"):
            found.append("Using HTTP instead of HTTPS - consider enabling SSL for security")
        if not self.http.verify_tls:
            found.append("TLS certificate verification is disabled")
        if self.http.timeout_s < 5:
            found.append("Timeout is very low (< 5s) - requests may fail on slow networks")
        if self.http.timeout_s > 120:
            found.append("Timeout is very high (> 120s) - failures will be slow to surface")
        if self.retry.max_attempts > 5:
            found.append("High retry count may cause long delays on failures")
        return found
