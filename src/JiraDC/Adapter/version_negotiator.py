"""API version negotiation against a Data Center instance.

Data Center serves its REST API under ``/rest/api/latest`` and ``/rest/api/2``; older
installations may answer only one of them. :class:`VersionNegotiator` probes each
candidate's side-effect-free ``myself`` endpoint in preference order and keeps the
first that answers. When every probe fails it falls back to the configured version
with ``confidence="low"`` instead of raising, so a flaky network never blocks callers.

The negotiated result lives in an injectable :class:`~JiraDC.Adapter.caching.TTLCache`;
concurrent first callers share one probe run.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from .caching import CacheStore, SingleFlight, TTLCache
from .endpoint_mapper import EndpointMapper
from .errors import AdapterError, UnsupportedVersionError, get_actionable_error_message
from .transport import RequestExecutor
from .types import DetectionResult, ProbeResult, VersionCapability

__all__ = ["VERSION_CAPABILITIES", "VersionNegotiator"]

LOGGER = logging.getLogger(__name__)

_ALL_FEATURES = frozenset(
    {
        "core_api",
        "agile_api",
        "search_api",
        "user_management",
        "project_management",
        "issue_management",
        "filter_management",
        "comment_management",
        "transition_management",
        "assignment_management",
    }
)

VERSION_CAPABILITIES: Dict[str, VersionCapability] = {
    "latest": VersionCapability(
        version_id="latest",
        supported_features=_ALL_FEATURES | {"multi_project_assignable_search"},
        endpoint_patterns=("/rest/api/latest/*", "/rest/agile/1.0/*"),
    ),
    "2": VersionCapability(
        version_id="2",
        supported_features=_ALL_FEATURES,
        endpoint_patterns=("/rest/api/2/*", "/rest/agile/1.0/*"),
        limitations=(
            "Some newer features may not be available",
            "Deprecated endpoints may be removed in future versions",
        ),
        deprecated_endpoints=("/rest/api/2/user/search", "/rest/api/2/project/{key}/versions"),
    ),
}

_CACHE_KEY = "negotiated"

# Low-confidence fallbacks are re-probed sooner than confirmed versions.
_DEGRADED_TTL_S = 60.0


class VersionNegotiator:
    """
    Pick and cache the backend API version.

    Args:
        executor: Sends probe requests (usually the adapter's :class:`Transport`).
        candidates: Versions to probe, most capable first.
        fallback_version: Version used when every probe fails.
        probe_timeout_s: Timeout for each probe.
        cache: Holds the negotiated :class:`DetectionResult`.
        mapper: Used by :meth:`get_endpoint_recommendations`.
        now: Monotonic clock for probe timing and detection age.
    """

    def __init__(
        self,
        executor: RequestExecutor,
        *,
        candidates: Sequence[str] = ("latest", "2"),
        fallback_version: str = "latest",
        probe_timeout_s: float = 5.0,
        cache: Optional[CacheStore] = None,
        mapper: Optional[EndpointMapper] = None,
        now: Callable[[], float] = time.monotonic,
    ) -> None:
        for version in (*candidates, fallback_version):
            self.get_capabilities(version)
        self._executor = executor
        self.candidates = tuple(candidates)
        self.fallback_version = fallback_version
        self.probe_timeout_s = probe_timeout_s
        self._cache = cache if cache is not None else TTLCache(3600.0, name="version", now=now)
        self._mapper = mapper or EndpointMapper()
        self._now = now
        self._inflight: SingleFlight[str, DetectionResult] = SingleFlight()
        self._detected_at: Optional[float] = None

    # ──────────────────────────────────────────────────────────────────────────
    # Detection
    # ──────────────────────────────────────────────────────────────────────────

    def detect(self) -> DetectionResult:
        """Probe candidates in order; the first success wins. Never raises for probe failures."""

        probes: List[ProbeResult] = []
        for version in self.candidates:
            probe = self._probe(version)
            probes.append(probe)
            if probe.success:
                LOGGER.info(
                    "API version detected: %s",
                    version,
                    extra={"extra_fields": {"event": "version.detected", "version": version}},
                )
                return DetectionResult(version_id=version, confidence="high", probes=tuple(probes))

        warning = (
            "Version negotiation degraded: all probes failed, "
            f"using configured version {self.fallback_version}"
        )
        LOGGER.warning(
            warning,
            extra={
                "extra_fields": {
                    "event": "version.detected",
                    "version": self.fallback_version,
                    "confidence": "low",
                    "errors": [p.error for p in probes],
                }
            },
        )
        return DetectionResult(
            version_id=self.fallback_version,
            confidence="low",
            probes=tuple(probes),
            warnings=(warning,),
        )

    def _probe(self, version: str) -> ProbeResult:
        endpoint = f"/rest/api/{version}/myself"
        started = self._now()
        try:
            response = self._executor.send("GET", endpoint, timeout_s=self.probe_timeout_s)
        except AdapterError as exc:
            LOGGER.debug("Version probe %s failed: %s", endpoint, exc)
            return ProbeResult(
                version_id=version,
                endpoint=endpoint,
                success=False,
                elapsed_ms=(self._now() - started) * 1000.0,
                status=getattr(exc, "status", None),
                error=str(exc),
                hint=get_actionable_error_message(exc),
            )
        return ProbeResult(
            version_id=version,
            endpoint=endpoint,
            success=True,
            elapsed_ms=(self._now() - started) * 1000.0,
            status=response.status,
        )

    def negotiate(self) -> DetectionResult:
        """Cached detection; concurrent callers on a cold cache share one probe run."""

        cached = self._cache.get(_CACHE_KEY)
        if cached is not None:
            return cached
        result, _shared = self._inflight.do(_CACHE_KEY, self._detect_and_store)
        return result

    def negotiate_best_version(self) -> str:
        return self.negotiate().version_id

    def _detect_and_store(self) -> DetectionResult:
        cached = self._cache.get(_CACHE_KEY)
        if cached is not None:
            return cached
        result = self.detect()
        ttl = None if result.confidence == "high" else _DEGRADED_TTL_S
        self._cache.set(_CACHE_KEY, result, ttl)
        self._detected_at = self._now()
        return result

    def current_version(self) -> str:
        """Negotiated version if one is cached, else the configured fallback. Never probes."""
        cached = self._cache.get(_CACHE_KEY)
        return cached.version_id if cached is not None else self.fallback_version

    def update_version(self, version: str) -> None:
        """Pin ``version`` as the negotiated version until the cache expires or is cleared."""

        self.get_capabilities(version)
        self._cache.set(
            _CACHE_KEY,
            DetectionResult(version_id=version, confidence="high", probes=(), warnings=()),
        )
        self._detected_at = self._now()
        LOGGER.info("API version updated: %s", version)

    def clear_cache(self) -> None:
        self._cache.clear()
        self._detected_at = None
        LOGGER.debug("Version detection cache cleared")

    # ──────────────────────────────────────────────────────────────────────────
    # Capabilities
    # ──────────────────────────────────────────────────────────────────────────

    @staticmethod
    def get_capabilities(version_id: str) -> VersionCapability:
        try:
            return VERSION_CAPABILITIES[version_id]
        except KeyError:
            raise UnsupportedVersionError(version_id) from None

    def validate_version_compatibility(
        self, required_features: Iterable[str], version_id: Optional[str] = None
    ) -> Dict[str, Any]:
        capability = self.get_capabilities(version_id or self.current_version())
        missing = sorted(set(required_features) - capability.supported_features)
        recommendations: List[str] = []
        if missing:
            recommendations = [
                "Consider upgrading to a newer Data Center version",
                "Check alternative endpoints or approaches",
            ]
        return {
            "compatible": not missing,
            "version": capability.version_id,
            "missing_features": missing,
            "recommendations": recommendations,
        }

    def get_endpoint_recommendations(self, source_path: str) -> Dict[str, Any]:
        """Map ``source_path`` for the current version and collect version-level warnings."""

        version = self.current_version()
        capability = self.get_capabilities(version)
        mapping = self._mapper.map(source_path, version=version)
        warnings = list(mapping.warnings)
        if capability.limitations:
            warnings.append(f"Using API v{version} - some newer features may not be available")
        target = mapping.target_path or ""
        deprecated = mapping.deprecated or any(
            _matches_template(target, pattern) for pattern in capability.deprecated_endpoints
        )
        if deprecated and mapping.target_path:
            warnings.append("This endpoint is deprecated in the current API version")
        return {
            "version": version,
            "supported": mapping.supported,
            "recommended": mapping.target_path,
            "deprecated": deprecated,
            "warnings": warnings,
        }

    def get_detection_summary(self) -> Dict[str, Any]:
        cached = self._cache.get(_CACHE_KEY)
        version = cached.version_id if cached is not None else self.fallback_version
        capability = self.get_capabilities(version)
        return {
            "current_version": version,
            "confidence": cached.confidence if cached is not None else None,
            "cache_valid": cached is not None,
            "detection_age_s": (
                self._now() - self._detected_at
                if cached is not None and self._detected_at is not None
                else None
            ),
            "capabilities": {
                "supported_features": sorted(capability.supported_features),
                "endpoint_patterns": list(capability.endpoint_patterns),
                "limitations": list(capability.limitations),
                "deprecated_endpoints": list(capability.deprecated_endpoints),
            },
            "probes": [
                {"version": p.version_id, "success": p.success, "error": p.error}
                for p in (cached.probes if cached is not None else ())
            ],
        }


def _matches_template(path: str, template: str) -> bool:
    path_parts = path.split("/")
    template_parts = template.split("/")
    if len(path_parts) != len(template_parts):
        return False
    return all(
        t.startswith("{") and t.endswith("}") or t == p for p, t in zip(path_parts, template_parts)
    )
