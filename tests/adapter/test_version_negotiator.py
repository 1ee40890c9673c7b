"""Tests for API version negotiation and capabilities."""

from __future__ import annotations

import pytest

from JiraDC.Adapter.caching import TTLCache
from JiraDC.Adapter.errors import NetworkError, UnsupportedVersionError
from JiraDC.Adapter.version_negotiator import VersionNegotiator

LATEST = "/rest/api/latest/myself"
V2 = "/rest/api/2/myself"


@pytest.fixture
def negotiator(executor, clock):
    return VersionNegotiator(
        executor,
        cache=TTLCache(3600.0, name="version", now=clock),
        now=clock,
    )


class TestDetect:
    def test_first_success_wins(self, negotiator, executor):
        executor.add("GET", LATEST, {"name": "svc"})
        result = negotiator.detect()
        assert result.version_id == "latest"
        assert result.confidence == "high"
        assert [p.version_id for p in result.probes] == ["latest"]
        assert executor.calls[0].timeout_s == 5.0

    def test_falls_through_to_next_candidate(self, negotiator, executor):
        executor.add("GET", LATEST, NetworkError("refused"))
        executor.add("GET", V2, {"name": "svc"})
        result = negotiator.detect()
        assert result.version_id == "2"
        assert result.confidence == "high"
        assert [p.success for p in result.probes] == [False, True]
        assert result.probes[0].hint == (
            "Could not reach the server; check base_url, context_path and network access."
        )
        assert result.probes[1].hint is None

    def test_all_probes_fail_degrades_to_configured(self, executor, clock):
        executor.add("GET", LATEST, NetworkError("refused"))
        executor.add("GET", V2, NetworkError("refused"))
        negotiator = VersionNegotiator(executor, fallback_version="2", now=clock)
        result = negotiator.detect()
        assert result.version_id == "2"
        assert result.confidence == "low"
        assert result.warnings == (
            "Version negotiation degraded: all probes failed, using configured version 2",
        )

    def test_unknown_candidate_rejected_at_construction(self, executor):
        with pytest.raises(UnsupportedVersionError):
            VersionNegotiator(executor, candidates=("3",))


class TestNegotiateCache:
    def test_result_cached(self, negotiator, executor):
        executor.add("GET", LATEST, {"name": "svc"})
        assert negotiator.negotiate_best_version() == "latest"
        assert negotiator.negotiate_best_version() == "latest"
        assert len(executor.calls) == 1

    def test_clear_cache_forces_reprobe(self, negotiator, executor):
        executor.add("GET", LATEST, {"name": "svc"})
        negotiator.negotiate()
        negotiator.clear_cache()
        negotiator.negotiate()
        assert len(executor.calls) == 2

    def test_ttl_expiry_forces_reprobe(self, negotiator, executor, clock):
        executor.add("GET", LATEST, {"name": "svc"})
        negotiator.negotiate()
        clock.advance(3601)
        negotiator.negotiate()
        assert len(executor.calls) == 2

    def test_degraded_result_reprobed_sooner(self, negotiator, executor, clock):
        executor.add("GET", LATEST, NetworkError("down"), {"name": "svc"})
        executor.add("GET", V2, NetworkError("down"))
        assert negotiator.negotiate().confidence == "low"
        clock.advance(61)
        assert negotiator.negotiate().confidence == "high"

    def test_current_version_never_probes(self, negotiator, executor):
        assert negotiator.current_version() == "latest"
        assert executor.calls == []

    def test_update_version_pins(self, negotiator, executor):
        negotiator.update_version("2")
        assert negotiator.negotiate_best_version() == "2"
        assert executor.calls == []
        with pytest.raises(UnsupportedVersionError):
            negotiator.update_version("9")


class TestCapabilities:
    def test_get_capabilities(self):
        caps = VersionNegotiator.get_capabilities("2")
        assert "/rest/api/2/user/search" in caps.deprecated_endpoints
        assert caps.limitations

    def test_unknown_version(self):
        with pytest.raises(UnsupportedVersionError) as excinfo:
            VersionNegotiator.get_capabilities("3")
        assert excinfo.value.version_id == "3"

    def test_version_compatibility(self, negotiator):
        report = negotiator.validate_version_compatibility(
            ["core_api", "multi_project_assignable_search"], version_id="2"
        )
        assert report["compatible"] is False
        assert report["missing_features"] == ["multi_project_assignable_search"]
        assert negotiator.validate_version_compatibility(["core_api"])["compatible"] is True

    def test_endpoint_recommendations_on_v2(self, negotiator):
        negotiator.update_version("2")
        report = negotiator.get_endpoint_recommendations("/rest/api/3/user/search")
        assert report["recommended"] == "/rest/api/2/user/search"
        assert report["deprecated"] is True
        assert "Using API v2 - some newer features may not be available" in report["warnings"]
        assert "This endpoint is deprecated in the current API version" in report["warnings"]

    def test_detection_summary(self, negotiator, executor, clock):
        executor.add("GET", LATEST, {"name": "svc"})
        negotiator.negotiate()
        clock.advance(10)
        summary = negotiator.get_detection_summary()
        assert summary["current_version"] == "latest"
        assert summary["cache_valid"] is True
        assert summary["detection_age_s"] == pytest.approx(10)
        assert summary["probes"] == [{"version": "latest", "success": True, "error": None}]
