# === NAVMAP v1 ===
# {
#   "module": "tests.adapter.test_breakers",
#   "purpose": "Unit tests for per-endpoint circuit breakers",
#   "sections": [
#     {"id": "test-allow", "name": "TestAllow", "kind": "class"},
#     {"id": "test-half-open", "name": "TestHalfOpen", "kind": "class"},
#     {"id": "test-classification", "name": "TestClassification", "kind": "class"}
#   ]
# }
# === /NAVMAP ===

"""Unit tests for the circuit breaker registry.

Tests cover:
- Closed → Open after consecutive failures
- Fail-fast while open, with time until the next trial
- Half-open admits exactly one trial
- Trial success closes, trial failure re-opens with a fresh cooldown
- Failure classification and status reporting
"""

from __future__ import annotations

import pytest

from JiraDC.Adapter.breakers import BreakerPolicy, CircuitBreakerRegistry, is_failure_for_breaker
from JiraDC.Adapter.errors import (
    CircuitOpenError,
    HTTPError,
    NetworkError,
    NotFoundError,
    ServerError,
)

ENDPOINT = "/rest/api/3/issue/{issueIdOrKey}"


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def transitions():
    return []


@pytest.fixture
def registry(clock, transitions):
    return CircuitBreakerRegistry(
        policy=BreakerPolicy(failure_threshold=5, cooldown_s=60.0),
        now=clock,
        on_transition=lambda endpoint, old, new: transitions.append((endpoint, old, new)),
    )


def _fail(registry, endpoint=ENDPOINT, times=1):
    for _ in range(times):
        with pytest.raises(NetworkError):
            registry.execute(endpoint, _raise(NetworkError("refused")))


def _raise(error):
    def call():
        raise error

    return call


# ============================================================================
# Closed / Open
# ============================================================================


class TestAllow:
    def test_closed_passes(self, registry):
        assert registry.execute(ENDPOINT, lambda: "ok") == "ok"
        assert registry.current_state(ENDPOINT) == "closed"

    def test_threshold_opens_and_next_call_short_circuits(self, registry, transitions):
        calls = []

        def network_call():
            calls.append(1)
            raise NetworkError("refused")

        for _ in range(5):
            with pytest.raises(NetworkError):
                registry.execute(ENDPOINT, network_call)
        assert registry.current_state(ENDPOINT) == "open"

        with pytest.raises(CircuitOpenError) as excinfo:
            registry.execute(ENDPOINT, network_call)
        assert len(calls) == 5
        assert excinfo.value.endpoint == ENDPOINT
        assert excinfo.value.retry_in_s == pytest.approx(60.0)
        assert transitions == [(ENDPOINT, "closed", "open")]

    def test_retry_in_counts_down(self, registry, clock):
        _fail(registry, times=5)
        clock.advance(45)
        with pytest.raises(CircuitOpenError) as excinfo:
            registry.allow(ENDPOINT)
        assert excinfo.value.retry_in_s == pytest.approx(15.0)

    def test_success_resets_consecutive_count(self, registry):
        _fail(registry, times=4)
        registry.execute(ENDPOINT, lambda: None)
        _fail(registry, times=4)
        assert registry.current_state(ENDPOINT) == "closed"

    def test_endpoints_are_independent(self, registry):
        _fail(registry, times=5)
        assert registry.execute("/rest/api/3/myself", lambda: "ok") == "ok"

    def test_client_errors_do_not_count(self, registry):
        for _ in range(10):
            with pytest.raises(NotFoundError):
                registry.execute(ENDPOINT, _raise(NotFoundError(404, "gone")))
        assert registry.current_state(ENDPOINT) == "closed"


# ============================================================================
# Half-open
# ============================================================================


class TestHalfOpen:
    def test_single_trial_after_cooldown(self, registry, clock):
        _fail(registry, times=5)
        clock.advance(60)

        registry.allow(ENDPOINT)
        assert registry.current_state(ENDPOINT) == "half_open"
        for _ in range(3):
            with pytest.raises(CircuitOpenError):
                registry.allow(ENDPOINT)

    def test_trial_success_closes(self, registry, clock, transitions):
        _fail(registry, times=5)
        clock.advance(61)
        assert registry.execute(ENDPOINT, lambda: "ok") == "ok"
        assert registry.current_state(ENDPOINT) == "closed"
        assert [t[2] for t in transitions] == ["open", "half_open", "closed"]

    def test_trial_failure_reopens_with_fresh_cooldown(self, registry, clock):
        _fail(registry, times=5)
        clock.advance(60)
        _fail(registry)
        assert registry.current_state(ENDPOINT) == "open"

        clock.advance(30)
        with pytest.raises(CircuitOpenError) as excinfo:
            registry.allow(ENDPOINT)
        assert excinfo.value.retry_in_s == pytest.approx(30.0)

    def test_interrupted_trial_releases_slot(self, registry, clock):
        _fail(registry, times=5)
        clock.advance(60)
        with pytest.raises(KeyboardInterrupt):
            registry.execute(ENDPOINT, _raise(KeyboardInterrupt()))
        registry.allow(ENDPOINT)


# ============================================================================
# Classification and reporting
# ============================================================================


class TestClassification:
    @pytest.mark.parametrize(
        "error, counts",
        [
            (NetworkError("x"), True),
            (ServerError(503, "down"), True),
            (HTTPError(400, "bad"), False),
            (NotFoundError(404, "missing"), False),
            (CircuitOpenError(ENDPOINT, 1.0), False),
            (RuntimeError("boom"), True),
            (None, False),
        ],
    )
    def test_is_failure_for_breaker(self, error, counts):
        assert is_failure_for_breaker(error) is counts

    def test_status_and_reset(self, registry, clock):
        _fail(registry, times=5)
        with pytest.raises(CircuitOpenError):
            registry.allow(ENDPOINT)

        status = registry.status()[ENDPOINT]
        assert status["state"] == "open"
        assert status["consecutive_failures"] == 5
        assert status["trips"] == 1
        assert status["short_circuits"] == 1
        assert status["last_error"] == "NetworkError: refused"
        assert registry.total_short_circuits() == 1

        registry.reset(ENDPOINT)
        assert registry.current_state(ENDPOINT) == "closed"
        registry.reset()
        assert registry.status() == {}

    def test_policy_validation(self):
        with pytest.raises(ValueError):
            BreakerPolicy(failure_threshold=0)
        with pytest.raises(ValueError):
            BreakerPolicy(cooldown_s=0)

    def test_registry_evicts_idle_circuits_first(self, clock):
        registry = CircuitBreakerRegistry(now=clock, max_endpoints=3)
        _fail(registry, endpoint="/failing")
        for i in range(10):
            registry.execute(f"/ok/{i}", lambda: None)

        status = registry.status()
        assert list(status) == ["/failing", "/ok/8", "/ok/9"]
        assert status["/failing"]["consecutive_failures"] == 1

    def test_registry_bound_validation(self):
        with pytest.raises(ValueError):
            CircuitBreakerRegistry(max_endpoints=0)
