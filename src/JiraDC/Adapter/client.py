# === NAVMAP v1 ===
# {
#   "module": "JiraDC.Adapter.client",
#   "purpose": "Unified adapter client orchestrating mapping, conversion, users and resilience",
#   "sections": [
#     {"id": "errormetrics", "name": "ErrorMetrics", "anchor": "class-errormetrics", "kind": "class"},
#     {"id": "adapterclient", "name": "AdapterClient", "anchor": "class-adapterclient", "kind": "class"}
#   ]
# }
# === /NAVMAP ===

"""Unified adapter client.

Callers speak the hosted REST contract (``/rest/api/3/...`` paths, rich-document bodies,
account-id user references). :class:`AdapterClient` turns each call into a Data Center
request and back:

1. negotiate the backend version (cached)
2. map the endpoint; unsupported paths fail fast with
   :class:`~JiraDC.Adapter.errors.EndpointUnsupportedError`
3. convert rich content and resolve user references in the outgoing body
4. serve opted-in GETs from the read cache
5. send under the endpoint's circuit breaker with retry/backoff
6. convert rich content in the response
7. return a :class:`~JiraDC.Adapter.types.ResponseEnvelope` carrying every stage's warnings

Recoverable degradation (version fallback, conversion fallback, unresolved users) ends
up in ``envelope.warnings``; everything else propagates as a typed
:class:`~JiraDC.Adapter.errors.AdapterError`.

Example:
  ```python
  with AdapterClient.from_config("adapter.yaml") as client:
      envelope = client.get("/rest/api/3/issue/{issueIdOrKey}", path_params={"issueIdOrKey": "PRJ-1"})
      print(envelope.data["fields"]["summary"], envelope.warnings)
  ```
"""

from __future__ import annotations

import copy
import logging
import re
import threading
import time
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple, Union

import httpx
from tenacity import RetryCallState

from .breakers import BreakerPolicy, CircuitBreakerRegistry
from .caching import CacheStore, TTLCache
from .config import AdapterConfig, load_config
from .content_converter import ContentConverter
from .endpoint_mapper import EndpointMapper
from .errors import AdapterError, EndpointUnsupportedError, UserResolutionFailed
from .logging_utils import setup_logging
from .retries import RetryPolicy, build_retrying, log_retry_sleep
from .transport import RequestExecutor, Transport, TransportResponse
from .types import (
    ConversionResult,
    FormatDetection,
    HttpMethod,
    MappingResult,
    RequestDescriptor,
    ResolutionResult,
    ResolutionStrategy,
    ResponseEnvelope,
)
from .user_resolver import UserResolver, mask_identifier
from .version_negotiator import VersionNegotiator

__all__ = ["AdapterClient", "ErrorMetrics"]

LOGGER = logging.getLogger(__name__)

_UNFILLED_RE = re.compile(r"\{[^{}/]+\}")

# Issue fields that hold a user reference in create/update bodies.
_USER_FIELDS = ("assignee", "reporter")
_USER_KEYS = ("accountId", "name", "username", "emailAddress", "key")

ReadCacheKey = Tuple[str, str, Tuple[Tuple[str, str], ...]]


# ────────────────────────────────────────────────────────────────────────────────
# Metrics
# ────────────────────────────────────────────────────────────────────────────────


@dataclass
class ErrorMetrics:
    """Thread-safe request and error counters for one client."""

    total_requests: int = 0
    failed_requests: int = 0
    retries: int = 0
    errors_by_type: Counter = field(default_factory=Counter)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def record_request(self) -> None:
        with self._lock:
            self.total_requests += 1

    def record_retry(self) -> None:
        with self._lock:
            self.retries += 1

    def record_failure(self, error: BaseException) -> None:
        name = error.error_type if isinstance(error, AdapterError) else type(error).__name__
        with self._lock:
            self.failed_requests += 1
            self.errors_by_type[name] += 1

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "total_requests": self.total_requests,
                "failed_requests": self.failed_requests,
                "retries": self.retries,
                "error_rate": (
                    self.failed_requests / self.total_requests if self.total_requests else 0.0
                ),
                "errors_by_type": dict(self.errors_by_type),
            }

    def reset(self) -> None:
        with self._lock:
            self.total_requests = 0
            self.failed_requests = 0
            self.retries = 0
            self.errors_by_type.clear()


# ────────────────────────────────────────────────────────────────────────────────
# Client
# ────────────────────────────────────────────────────────────────────────────────


class AdapterClient:
    """
    Hosted-contract facade over a Data Center instance.

    Args:
        config: Validated adapter configuration.
        executor: Request sender; a :class:`Transport` built from ``config.http`` by default.
        http_transport: ``httpx`` transport for the default :class:`Transport` (tests).
        mapper: Endpoint mapper; the default rule table when omitted.
        converter: Rich content converter.
        negotiator: Version negotiator; probes through ``executor`` when omitted.
        resolver: User resolver; looks users up through ``executor`` when omitted.
        breakers: Per-endpoint circuit breaker registry.
        read_cache: Cache for opted-in GET responses.
        now: Monotonic clock shared by caches, breakers and timing.
        sleep: Sleep used between retry attempts.
    """

    def __init__(
        self,
        config: AdapterConfig,
        *,
        executor: Optional[RequestExecutor] = None,
        http_transport: Optional[httpx.BaseTransport] = None,
        mapper: Optional[EndpointMapper] = None,
        converter: Optional[ContentConverter] = None,
        negotiator: Optional[VersionNegotiator] = None,
        resolver: Optional[UserResolver] = None,
        breakers: Optional[CircuitBreakerRegistry] = None,
        read_cache: Optional[CacheStore] = None,
        now: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config = config
        self._now = now
        self._sleep = sleep
        self._owned_transport: Optional[Transport] = None
        if executor is None:
            self._owned_transport = Transport(config.http, transport=http_transport)
            executor = self._owned_transport
        self._executor = executor

        self.mapper = mapper or EndpointMapper(version=config.version.preferred)
        self.converter = converter or ContentConverter()
        self.negotiator = negotiator or VersionNegotiator(
            executor,
            candidates=config.version.candidates,
            fallback_version=config.version.preferred,
            probe_timeout_s=config.version.probe_timeout_s,
            cache=TTLCache(config.version.cache_ttl_s, name="version", now=now),
            mapper=self.mapper,
            now=now,
        )
        self.resolver = resolver or UserResolver(
            executor,
            version_provider=self.negotiator.current_version,
            cache=TTLCache(
                config.cache.user_ttl_s,
                max_entries=config.cache.user_max_entries,
                name="user",
                now=now,
            ),
            now=now,
        )
        self.breakers = breakers or CircuitBreakerRegistry(
            policy=BreakerPolicy(
                failure_threshold=config.breaker.failure_threshold,
                cooldown_s=config.breaker.cooldown_s,
            ),
            now=now,
            max_endpoints=config.breaker.max_endpoints,
        )
        self._read_cache: CacheStore = (
            read_cache
            if read_cache is not None
            else TTLCache(
                config.cache.read_ttl_s,
                max_entries=config.cache.read_max_entries,
                name="read",
                now=now,
            )
        )
        self.retry_policy = RetryPolicy(
            max_attempts=config.retry.max_attempts,
            base_delay_s=config.retry.base_delay_s,
            max_delay_s=config.retry.max_delay_s,
            retry_after_cap_s=config.retry.retry_after_cap_s,
        )
        self.metrics = ErrorMetrics()

    @classmethod
    def from_config(
        cls,
        path: Optional[Union[str, Path]] = None,
        *,
        cli_overrides: Optional[Mapping[str, Any]] = None,
        configure_logging: bool = True,
        **kwargs: Any,
    ) -> "AdapterClient":
        """Load configuration (file < env < overrides) and build a client from it.

        The ``logging`` section is applied to the ``JiraDC`` logger unless
        ``configure_logging`` is false.
        """
        config = load_config(str(path) if path is not None else None, cli_overrides=cli_overrides)
        if configure_logging:
            setup_logging(level=config.logging.level, json_format=config.logging.json_format)
        return cls(config, **kwargs)

    # ──────────────────────────────────────────────────────────────────────────
    # Pipeline
    # ──────────────────────────────────────────────────────────────────────────

    def request(self, descriptor: RequestDescriptor) -> ResponseEnvelope:
        """
        Run ``descriptor`` through the adaptation pipeline.

        Raises:
            EndpointUnsupportedError: No Data Center equivalent exists.
            ValueError: The mapped path still has unfilled ``{name}`` placeholders.
            CircuitOpenError: The endpoint's circuit is open.
            AdapterError: Transport or HTTP failure after retries.
        """

        started = self._now()
        warnings: List[str] = []

        detection = self.negotiator.negotiate()
        version = detection.version_id
        warnings.extend(detection.warnings)

        mapping = self.mapper.map(
            descriptor.path, descriptor.path_params, descriptor.query, version=version
        )
        warnings.extend(mapping.warnings)
        if not mapping.supported:
            raise EndpointUnsupportedError(mapping.source_path, mapping.warnings)
        target = mapping.target_path or mapping.source_path
        if _UNFILLED_RE.search(target):
            raise ValueError(f"Missing path parameters for {target}")

        body = descriptor.body
        conversion_applied = False
        user_resolution_applied = False
        if body is not None:
            if descriptor.convert_content:
                body, converted, conversion_warnings = self.converter.convert_rich_fields(body)
                conversion_applied = converted
                warnings.extend(conversion_warnings)
            if descriptor.resolve_users:
                body, user_resolution_applied, user_warnings = self._resolve_user_fields(body)
                warnings.extend(user_warnings)

        cache_key: Optional[ReadCacheKey] = None
        if descriptor.use_cache and descriptor.method == "GET":
            cache_key = _read_cache_key(descriptor.method, target, mapping.transformed_params)
            hit = self._read_cache.get(cache_key)
            if hit is not None:
                status, data, headers, response_converted = hit
                data = copy.deepcopy(data)
                return self._envelope(
                    descriptor,
                    mapping,
                    target,
                    version,
                    started,
                    data=data,
                    status=status,
                    headers=headers,
                    warnings=warnings,
                    conversion_applied=response_converted,
                    user_resolution_applied=False,
                    cached=True,
                )

        response = self._execute(
            mapping.endpoint_key,
            descriptor.method,
            target,
            params=mapping.transformed_params,
            json=body,
            headers=descriptor.headers,
            timeout_s=descriptor.timeout_s,
        )

        data = response.data
        if descriptor.convert_content and data is not None:
            data, converted, conversion_warnings = self.converter.convert_rich_fields(data)
            conversion_applied = conversion_applied or converted
            warnings.extend(conversion_warnings)

        if cache_key is not None:
            self._read_cache.set(
                cache_key,
                (response.status, copy.deepcopy(data), dict(response.headers), conversion_applied),
            )

        return self._envelope(
            descriptor,
            mapping,
            target,
            version,
            started,
            data=data,
            status=response.status,
            headers=response.headers,
            warnings=warnings,
            conversion_applied=conversion_applied,
            user_resolution_applied=user_resolution_applied,
            cached=False,
        )

    def _execute(
        self,
        endpoint: str,
        method: str,
        path: str,
        *,
        params: Mapping[str, Any],
        json: Any,
        headers: Mapping[str, str],
        timeout_s: Optional[float],
    ) -> TransportResponse:
        """Send once under ``endpoint``'s breaker; all retry attempts count as one outcome."""

        self.metrics.record_request()
        retrying = build_retrying(
            self.retry_policy, sleep=self._sleep, before_sleep_hook=self._before_sleep
        )
        try:
            return self.breakers.execute(
                endpoint,
                lambda: retrying(
                    self._executor.send,
                    method,
                    path,
                    params=params or None,
                    json=json,
                    headers=headers or None,
                    timeout_s=timeout_s,
                ),
            )
        except Exception as exc:
            self.metrics.record_failure(exc)
            raise

    def _before_sleep(self, retry_state: RetryCallState) -> None:
        self.metrics.record_retry()
        log_retry_sleep(retry_state)

    def _envelope(
        self,
        descriptor: RequestDescriptor,
        mapping: MappingResult,
        target: str,
        version: str,
        started: float,
        *,
        data: Any,
        status: int,
        headers: Mapping[str, str],
        warnings: Iterable[str],
        conversion_applied: bool,
        user_resolution_applied: bool,
        cached: bool,
    ) -> ResponseEnvelope:
        return ResponseEnvelope(
            data=data,
            status=status,
            endpoint=mapping.source_path,
            target_path=target,
            api_version=version,
            response_time_ms=(self._now() - started) * 1000.0,
            mapping_used=mapping.mapping_used,
            conversion_applied=conversion_applied,
            user_resolution_applied=user_resolution_applied,
            cached=cached,
            deprecated=mapping.deprecated,
            headers=dict(headers),
            warnings=tuple(warnings),
        )

    # ──────────────────────────────────────────────────────────────────────────
    # User references in request bodies
    # ──────────────────────────────────────────────────────────────────────────

    def _resolve_user_fields(self, body: Any) -> Tuple[Any, bool, List[str]]:
        """Rewrite user references in ``body`` to ``{"name": <username>}``.

        Looks at ``fields.assignee``/``fields.reporter`` and at bodies that are themselves
        a bare user reference (the assignee endpoint). Unresolvable references are left
        unchanged with a warning.
        """

        if not isinstance(body, Mapping):
            return body, False, []

        warnings: List[str] = []
        applied = False
        result: Dict[str, Any] = dict(body)

        if _user_identifier(result) is not None and set(result) <= set(_USER_KEYS):
            replacement = self._resolve_reference(result, warnings)
            if replacement is not None:
                return replacement, True, warnings
            return result, False, warnings

        fields = result.get("fields")
        if isinstance(fields, Mapping):
            fields = dict(fields)
            for name in _USER_FIELDS:
                if name not in fields or fields[name] is None:
                    continue
                replacement = self._resolve_reference(fields[name], warnings)
                if replacement is not None:
                    fields[name] = replacement
                    applied = True
            result["fields"] = fields
        return result, applied, warnings

    def _resolve_reference(self, value: Any, warnings: List[str]) -> Optional[Dict[str, str]]:
        identifier = _user_identifier(value)
        if identifier is None:
            return None
        resolution = self.resolver.resolve(identifier)
        if not resolution.success or resolution.record is None:
            warnings.append(
                f"Could not resolve user {mask_identifier(identifier)}: {resolution.error}; "
                "left unresolved"
            )
            return None
        return {"name": self.resolver.get_assignable_identifier(resolution.record)}

    # ──────────────────────────────────────────────────────────────────────────
    # Convenience wrappers
    # ──────────────────────────────────────────────────────────────────────────

    def _call(self, method: HttpMethod, path: str, **kwargs: Any) -> ResponseEnvelope:
        return self.request(RequestDescriptor(path=path, method=method, **kwargs))

    def get(self, path: str, **kwargs: Any) -> ResponseEnvelope:
        return self._call("GET", path, **kwargs)

    def post(self, path: str, body: Any = None, **kwargs: Any) -> ResponseEnvelope:
        return self._call("POST", path, body=body, **kwargs)

    def put(self, path: str, body: Any = None, **kwargs: Any) -> ResponseEnvelope:
        return self._call("PUT", path, body=body, **kwargs)

    def delete(self, path: str, **kwargs: Any) -> ResponseEnvelope:
        return self._call("DELETE", path, **kwargs)

    # ──────────────────────────────────────────────────────────────────────────
    # Domain helpers
    # ──────────────────────────────────────────────────────────────────────────

    def get_current_user(self) -> ResponseEnvelope:
        return self.get("/rest/api/3/myself")

    def search_issues(
        self,
        jql: str,
        *,
        start_at: int = 0,
        max_results: int = 50,
        fields: Optional[Iterable[str]] = None,
    ) -> ResponseEnvelope:
        query: Dict[str, Any] = {"jql": jql, "startAt": start_at, "maxResults": max_results}
        if fields:
            query["fields"] = ",".join(fields)
        return self.get("/rest/api/3/search", query=query)

    def get_issue(
        self, issue_key: str, *, fields: Optional[Iterable[str]] = None, use_cache: bool = False
    ) -> ResponseEnvelope:
        query = {"fields": ",".join(fields)} if fields else {}
        return self.get(
            "/rest/api/3/issue/{issueIdOrKey}",
            path_params={"issueIdOrKey": issue_key},
            query=query,
            use_cache=use_cache,
        )

    def create_issue(self, fields: Mapping[str, Any]) -> ResponseEnvelope:
        return self.post("/rest/api/3/issue", {"fields": dict(fields)}, resolve_users=True)

    def update_issue(self, issue_key: str, fields: Mapping[str, Any]) -> ResponseEnvelope:
        return self.put(
            "/rest/api/3/issue/{issueIdOrKey}",
            {"fields": dict(fields)},
            path_params={"issueIdOrKey": issue_key},
            resolve_users=True,
        )

    def add_comment(self, issue_key: str, body: Any) -> ResponseEnvelope:
        return self.post(
            "/rest/api/3/issue/{issueIdOrKey}/comment",
            {"body": body},
            path_params={"issueIdOrKey": issue_key},
        )

    def assign_issue(self, issue_key: str, user: Optional[str]) -> ResponseEnvelope:
        """Assign ``issue_key`` to ``user`` (any alias); ``None`` unassigns.

        Raises:
            UserResolutionFailed: ``user`` could not be resolved.
        """

        body: Dict[str, Any] = {"name": None}
        if user is not None:
            resolution = self.resolver.resolve(user)
            if not resolution.success or resolution.record is None:
                raise UserResolutionFailed(user, resolution.error)
            body = {"name": self.resolver.get_assignable_identifier(resolution.record)}
        return self.put(
            "/rest/api/3/issue/{issueIdOrKey}/assignee",
            body,
            path_params={"issueIdOrKey": issue_key},
        )

    def get_issue_transitions(self, issue_key: str) -> ResponseEnvelope:
        return self.get(
            "/rest/api/3/issue/{issueIdOrKey}/transitions",
            path_params={"issueIdOrKey": issue_key},
        )

    def transition_issue(
        self,
        issue_key: str,
        transition_id: str,
        *,
        fields: Optional[Mapping[str, Any]] = None,
        comment: Any = None,
    ) -> ResponseEnvelope:
        body: Dict[str, Any] = {"transition": {"id": str(transition_id)}}
        if fields:
            body["fields"] = dict(fields)
        if comment is not None:
            body["update"] = {"comment": [{"add": {"body": comment}}]}
        return self.post(
            "/rest/api/3/issue/{issueIdOrKey}/transitions",
            body,
            path_params={"issueIdOrKey": issue_key},
            resolve_users=True,
        )

    def get_projects(self, *, use_cache: bool = True) -> ResponseEnvelope:
        return self.get("/rest/api/3/project", use_cache=use_cache)

    def get_project(self, project_key: str, *, use_cache: bool = True) -> ResponseEnvelope:
        return self.get(
            "/rest/api/3/project/{projectIdOrKey}",
            path_params={"projectIdOrKey": project_key},
            use_cache=use_cache,
        )

    def resolve_user(
        self,
        identifier: str,
        *,
        strategy: Optional[ResolutionStrategy] = None,
        use_cache: bool = True,
    ) -> ResolutionResult:
        return self.resolver.resolve(identifier, strategy=strategy, use_cache=use_cache)

    def detect_content_format(self, content: Any) -> FormatDetection:
        return self.converter.detect_format(content)

    def convert_content(self, document: Any) -> ConversionResult:
        return self.converter.to_markup(document)

    def get_version_info(self) -> Dict[str, Any]:
        return self.negotiator.get_detection_summary()

    def validate_endpoint(self, path: str) -> Dict[str, Any]:
        return self.mapper.validate_endpoint_support(path)

    # ──────────────────────────────────────────────────────────────────────────
    # Diagnostics
    # ──────────────────────────────────────────────────────────────────────────

    def get_error_metrics(self) -> Dict[str, Any]:
        metrics = self.metrics.snapshot()
        metrics["circuit_short_circuits"] = self.breakers.total_short_circuits()
        metrics["circuit_trips"] = self.breakers.total_trips()
        return metrics

    def get_circuit_breaker_status(self) -> Dict[str, Dict[str, Any]]:
        return self.breakers.status()

    def reset_circuit_breaker(self, endpoint: Optional[str] = None) -> None:
        self.breakers.reset(endpoint)
        LOGGER.info("Circuit breaker reset: %s", endpoint or "all endpoints")

    def get_client_stats(self) -> Dict[str, Any]:
        return {
            "base_url": self.config.http.root_url,
            "api_version": self.negotiator.current_version(),
            "config_hash": self.config.config_hash(),
            "user_cache": self.resolver.get_cache_stats(),
            "read_cache": self._read_cache.stats().as_dict(),
            "errors": self.get_error_metrics(),
            "circuits": self.get_circuit_breaker_status(),
        }

    def clear_caches(self) -> None:
        """Forget the negotiated version, resolved users and cached reads."""
        self.negotiator.clear_cache()
        self.resolver.clear_cache()
        self._read_cache.clear()
        LOGGER.info("Adapter caches cleared")

    # ──────────────────────────────────────────────────────────────────────────
    # Lifecycle
    # ──────────────────────────────────────────────────────────────────────────

    def close(self) -> None:
        if self._owned_transport is not None:
            self._owned_transport.close()

    def __enter__(self) -> "AdapterClient":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()


def _user_identifier(value: Any) -> Optional[str]:
    if isinstance(value, str):
        return value.strip() or None
    if isinstance(value, Mapping):
        for key in _USER_KEYS:
            candidate = value.get(key)
            if isinstance(candidate, str) and candidate.strip():
                return candidate.strip()
    return None


def _read_cache_key(method: str, path: str, params: Mapping[str, Any]) -> ReadCacheKey:
    return (
        method,
        path,
        tuple(sorted((str(k), str(v)) for k, v in params.items() if v is not None)),
    )
