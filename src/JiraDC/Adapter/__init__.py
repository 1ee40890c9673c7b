"""Public API for the Jira Data Center adapter.

Callers written against the hosted REST contract use :class:`AdapterClient` to reach a
Data Center instance. The building blocks (endpoint mapping, version negotiation,
content conversion, user resolution, circuit breakers) are exported for direct use and
testing.
"""

from __future__ import annotations

from .breakers import BreakerPolicy, CircuitBreakerRegistry
from .caching import CacheStats, SingleFlight, TTLCache
from .client import AdapterClient, ErrorMetrics
from .config import AdapterConfig, load_config
from .content_converter import ContentConverter
from .endpoint_mapper import EndpointMapper
from .errors import (
    AdapterError,
    AuthenticationError,
    AuthorizationError,
    CircuitOpenError,
    EndpointUnsupportedError,
    HTTPError,
    NetworkError,
    NotFoundError,
    RateLimitError,
    RequestTimeoutError,
    ServerError,
    UnsupportedVersionError,
    UserResolutionFailed,
)
from .logging_utils import setup_logging
from .retries import RetryPolicy
from .transport import Transport, TransportResponse
from .types import (
    ConversionOptions,
    ConversionResult,
    DetectionResult,
    MappingResult,
    RequestDescriptor,
    ResolutionResult,
    ResolutionStrategy,
    ResponseEnvelope,
    UserRecord,
)
from .user_resolver import UserResolver
from .version_negotiator import VersionNegotiator

__all__ = [
    "AdapterClient",
    "AdapterConfig",
    "load_config",
    "setup_logging",
    # Components
    "EndpointMapper",
    "VersionNegotiator",
    "ContentConverter",
    "UserResolver",
    "CircuitBreakerRegistry",
    "BreakerPolicy",
    "RetryPolicy",
    "Transport",
    "TransportResponse",
    "TTLCache",
    "SingleFlight",
    "CacheStats",
    "ErrorMetrics",
    # Types
    "RequestDescriptor",
    "ResponseEnvelope",
    "MappingResult",
    "DetectionResult",
    "ConversionOptions",
    "ConversionResult",
    "ResolutionResult",
    "ResolutionStrategy",
    "UserRecord",
    # Errors
    "AdapterError",
    "EndpointUnsupportedError",
    "UnsupportedVersionError",
    "NetworkError",
    "RequestTimeoutError",
    "HTTPError",
    "AuthenticationError",
    "AuthorizationError",
    "NotFoundError",
    "RateLimitError",
    "ServerError",
    "CircuitOpenError",
    "UserResolutionFailed",
]
