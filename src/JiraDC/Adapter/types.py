"""
Canonical Types for the Adapter Pipeline

Frozen dataclasses used as contracts between the endpoint mapper, the version
negotiator, the content converter, the user resolver and the unified client.

Data Flow:
  RequestDescriptor → AdapterClient.request()
    VersionNegotiator.negotiate_best_version() → version id
    EndpointMapper.map() → MappingResult
    ContentConverter.to_markup() → ConversionResult
    UserResolver.resolve() → ResolutionResult
  → ResponseEnvelope

Design Principles:
  - Frozen dataclasses prevent accidental mutation
  - Literal types keep vocabularies closed
  - Warnings are plain strings accumulated along the pipeline
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, FrozenSet, Literal, Mapping, Optional, Tuple

HttpMethod = Literal["GET", "POST", "PUT", "DELETE", "PATCH"]

Confidence = Literal["high", "medium", "low"]

ContentFormat = Literal["adf", "wikimarkup", "html", "plaintext"]

IdentifierType = Literal["account_id", "username", "email", "display_name"]


class ResolutionStrategy(str, Enum):
    """Ordering of lookup strategies used by the user resolver."""

    ACCOUNT_ID_FIRST = "account_id_first"
    USERNAME_FIRST = "username_first"
    EMAIL_LOOKUP = "email_lookup"
    DISPLAY_NAME = "display_name"
    AUTO_DETECT = "auto_detect"


# ──────────────────────────────────────────────────────────────────────────────
# Endpoint mapping
# ──────────────────────────────────────────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class MappingRule:
    """One translation from a caller-facing path to a backend path."""

    source_pattern: str
    """Caller-facing path, optionally with ``{name}`` placeholders."""

    target_template: str
    """Backend path; ``{version}`` is filled with the negotiated version."""

    param_transform: Mapping[str, str] = field(default_factory=dict)
    """Query parameter renames applied when this rule matches."""

    deprecated: bool = False
    unsupported: bool = False
    note: Optional[str] = None


@dataclass(frozen=True, slots=True)
class MappingResult:
    """Outcome of mapping one caller-facing path."""

    supported: bool
    source_path: str
    target_path: Optional[str] = None
    transformed_params: Mapping[str, Any] = field(default_factory=dict)
    deprecated: bool = False
    warnings: Tuple[str, ...] = ()
    rule: Optional[MappingRule] = None
    generic: bool = False
    family: Optional[str] = None
    """Identifier-free form of ``source_path`` for generic mappings."""

    @property
    def endpoint_key(self) -> str:
        """Logical endpoint identity used for per-endpoint breaker state."""
        if self.rule is not None and not self.generic:
            return self.rule.source_pattern
        return self.family or self.source_path

    @property
    def mapping_used(self) -> bool:
        return self.target_path is not None and self.target_path != self.source_path


# ──────────────────────────────────────────────────────────────────────────────
# Version negotiation
# ──────────────────────────────────────────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class VersionCapability:
    """What a backend API version can do."""

    version_id: str
    supported_features: FrozenSet[str]
    endpoint_patterns: Tuple[str, ...]
    limitations: Tuple[str, ...] = ()
    deprecated_endpoints: Tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class ProbeResult:
    """Result of probing one candidate version."""

    version_id: str
    endpoint: str
    success: bool
    elapsed_ms: float
    status: Optional[int] = None
    error: Optional[str] = None
    hint: Optional[str] = None
    """Operator guidance for a failed probe."""


@dataclass(frozen=True, slots=True)
class DetectionResult:
    """Outcome of :meth:`VersionNegotiator.detect`."""

    version_id: str
    confidence: Confidence
    probes: Tuple[ProbeResult, ...]
    warnings: Tuple[str, ...] = ()


# ──────────────────────────────────────────────────────────────────────────────
# Content conversion
# ──────────────────────────────────────────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class ConversionOptions:
    max_depth: int = 10
    include_unsupported_as_comment: bool = False


@dataclass(frozen=True, slots=True)
class ConversionResult:
    """Output of a conversion; degradation is visible through ``fallback_used``."""

    content: str
    format: ContentFormat
    fallback_used: bool = False
    warnings: Tuple[str, ...] = ()
    unsupported_elements: Tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class FormatDetection:
    format: ContentFormat
    confidence: Confidence
    indicators: Tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class ValidationResult:
    valid: bool
    errors: Tuple[str, ...] = ()


# ──────────────────────────────────────────────────────────────────────────────
# Users
# ──────────────────────────────────────────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class UserRecord:
    """Canonical user identity regardless of the alias used to find it."""

    primary_id: str
    display_name: str
    username: Optional[str] = None
    email: Optional[str] = None
    active: bool = True


@dataclass(frozen=True, slots=True)
class ResolutionResult:
    """Outcome of :meth:`UserResolver.resolve`. Never raised, always returned."""

    success: bool
    identifier: str
    identifier_type: IdentifierType
    strategy: Optional[str] = None
    record: Optional[UserRecord] = None
    cached: bool = False
    error: Optional[str] = None


# ──────────────────────────────────────────────────────────────────────────────
# Pipeline
# ──────────────────────────────────────────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class RequestDescriptor:
    """
    One caller request expressed against the caller-facing contract.

    ``path`` may contain ``{name}`` placeholders filled from ``path_params``.
    """

    path: str
    method: HttpMethod = "GET"
    path_params: Mapping[str, str] = field(default_factory=dict)
    query: Mapping[str, Any] = field(default_factory=dict)
    body: Any = None
    headers: Mapping[str, str] = field(default_factory=dict)
    timeout_s: Optional[float] = None
    convert_content: bool = True
    resolve_users: bool = False
    use_cache: bool = False

    def __post_init__(self) -> None:
        if not self.path or not self.path.startswith("/"):
            raise ValueError(f"RequestDescriptor.path must be absolute, got {self.path!r}")
        if self.timeout_s is not None and self.timeout_s <= 0:
            raise ValueError("RequestDescriptor.timeout_s must be positive")


@dataclass(frozen=True, slots=True)
class ResponseEnvelope:
    """Backend response plus the diagnostics each pipeline stage contributed."""

    data: Any
    status: int
    endpoint: str
    target_path: str
    api_version: str
    response_time_ms: float
    mapping_used: bool = False
    conversion_applied: bool = False
    user_resolution_applied: bool = False
    cached: bool = False
    deprecated: bool = False
    headers: Mapping[str, str] = field(default_factory=dict)
    warnings: Tuple[str, ...] = ()
