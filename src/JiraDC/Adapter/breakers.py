# === NAVMAP v1 ===
# {
#   "module": "JiraDC.Adapter.breakers",
#   "purpose": "Per-endpoint circuit breakers using pybreaker",
#   "sections": [
#     {"id": "breakerpolicy", "name": "BreakerPolicy", "anchor": "class-breakerpolicy", "kind": "class"},
#     {"id": "transitionloglistener", "name": "TransitionLogListener", "anchor": "class-transitionloglistener", "kind": "class"},
#     {"id": "circuitbreakerregistry", "name": "CircuitBreakerRegistry", "anchor": "class-circuitbreakerregistry", "kind": "class"},
#     {"id": "is-failure-for-breaker", "name": "is_failure_for_breaker", "anchor": "function-is-failure-for-breaker", "kind": "function"}
#   ]
# }
# === /NAVMAP ===

"""Circuit breaker pattern implementation using pybreaker library.

Each logical endpoint (a mapping rule's source pattern) gets its own breaker, so one
failing resource does not take the whole backend offline. The state machine is the
classic one:

- **Closed**: calls pass; consecutive failures are counted
- **Open**: after ``failure_threshold`` consecutive failures, calls fail fast with
  :class:`~JiraDC.Adapter.errors.CircuitOpenError` without touching the network
- **Half-open**: once ``cooldown_s`` has elapsed exactly one trial call is let through;
  success closes the circuit, failure re-opens it with a fresh cooldown

pybreaker holds the state and notifies listeners of transitions; the registry owns the
counters and the clock so transitions are driven by explicit outcomes and tests can
inject a fake monotonic clock. All bookkeeping for one registry happens under one lock,
so outcome updates are never applied to a torn read.

Only retryable failure classes (network, timeout, 429, 5xx) count toward opening. Other
responses prove the endpoint is reachable and count as success.

Example:
  ```python
  registry = CircuitBreakerRegistry(BreakerPolicy(failure_threshold=5, cooldown_s=60))
  envelope = registry.execute("/rest/api/3/issue/{issueIdOrKey}", lambda: send())
  ```
"""

from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, TypeVar

import pybreaker

from .errors import AdapterError, CircuitOpenError

__all__ = [
    "BreakerPolicy",
    "TransitionLogListener",
    "CircuitBreakerRegistry",
    "is_failure_for_breaker",
]

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class BreakerPolicy:
    """Thresholds shared by every endpoint breaker."""

    failure_threshold: int = 5
    cooldown_s: float = 60.0

    def __post_init__(self) -> None:
        if self.failure_threshold < 1:
            raise ValueError(f"failure_threshold must be >= 1, got {self.failure_threshold}")
        if self.cooldown_s <= 0:
            raise ValueError(f"cooldown_s must be > 0, got {self.cooldown_s}")


# ────────────────────────────────────────────────────────────────────────────────
# Listener (emits transitions)
# ────────────────────────────────────────────────────────────────────────────────


class TransitionLogListener(pybreaker.CircuitBreakerListener):
    """Log ``breaker.transition`` events and invoke an optional callback."""

    def __init__(
        self, endpoint: str, on_transition: Optional[Callable[[str, str, str], None]] = None
    ) -> None:
        self.endpoint = endpoint
        self._on_transition = on_transition

    def state_change(self, cb, old_state, new_state):
        old = _state_label(getattr(old_state, "name", None))
        new = _state_label(getattr(new_state, "name", None))
        level = logging.WARNING if new == "open" else logging.INFO
        LOGGER.log(
            level,
            "Circuit for %s: %s -> %s",
            self.endpoint,
            old,
            new,
            extra={
                "extra_fields": {
                    "event": "breaker.transition",
                    "endpoint": self.endpoint,
                    "old": old,
                    "new": new,
                }
            },
        )
        if self._on_transition is not None:
            self._on_transition(self.endpoint, old, new)


def _state_label(name: Optional[str]) -> str:
    if name == pybreaker.STATE_OPEN:
        return "open"
    if name == pybreaker.STATE_HALF_OPEN:
        return "half_open"
    if name == pybreaker.STATE_CLOSED:
        return "closed"
    return "none"


# ────────────────────────────────────────────────────────────────────────────────
# Registry
# ────────────────────────────────────────────────────────────────────────────────


@dataclass
class _EndpointCircuit:
    breaker: pybreaker.CircuitBreaker
    consecutive_failures: int = 0
    opened_at: Optional[float] = None
    trial_in_flight: bool = False
    trips: int = 0
    short_circuits: int = 0
    last_error: Optional[str] = None


@dataclass
class CircuitBreakerRegistry:
    """
    Central registry of per-endpoint breakers.

    Typical usage (pipeline):
        registry.allow(endpoint)
        try:
            response = send()
        except Exception as exc:
            registry.record(endpoint, exc)
            raise
        registry.on_success(endpoint)

    or simply ``registry.execute(endpoint, send)``.
    """

    policy: BreakerPolicy = field(default_factory=BreakerPolicy)
    now: Callable[[], float] = time.monotonic
    on_transition: Optional[Callable[[str, str, str], None]] = None
    max_endpoints: int = 256
    _circuits: "OrderedDict[str, _EndpointCircuit]" = field(
        default_factory=OrderedDict, init=False
    )
    _lock: threading.RLock = field(default_factory=threading.RLock, init=False)

    def __post_init__(self) -> None:
        if self.max_endpoints < 1:
            raise ValueError(f"max_endpoints must be >= 1, got {self.max_endpoints}")

    # ── Pre-flight ────────────────────────────────────────────────────────────

    def allow(self, endpoint: str) -> None:
        """
        Admit a call to ``endpoint`` or raise :class:`CircuitOpenError`.

        An open circuit whose cooldown has elapsed moves to half-open and admits the
        caller as its single trial; every other caller is rejected until the trial
        reports back.
        """

        with self._lock:
            circuit = self._circuit(endpoint)
            state = circuit.breaker.current_state
            if state == pybreaker.STATE_CLOSED:
                return

            now = self.now()
            if state == pybreaker.STATE_OPEN:
                elapsed = now - (circuit.opened_at if circuit.opened_at is not None else now)
                if elapsed >= self.policy.cooldown_s:
                    circuit.breaker.half_open()
                    circuit.trial_in_flight = True
                    return
                circuit.short_circuits += 1
                raise CircuitOpenError(endpoint, self.policy.cooldown_s - elapsed)

            # Half-open
            if not circuit.trial_in_flight:
                circuit.trial_in_flight = True
                return
            circuit.short_circuits += 1
            raise CircuitOpenError(endpoint, 0.0)

    # ── Post-response ─────────────────────────────────────────────────────────

    def on_success(self, endpoint: str) -> None:
        with self._lock:
            circuit = self._circuit(endpoint)
            circuit.consecutive_failures = 0
            circuit.trial_in_flight = False
            circuit.opened_at = None
            if circuit.breaker.current_state != pybreaker.STATE_CLOSED:
                circuit.breaker.close()

    def on_failure(self, endpoint: str, exception: Optional[BaseException] = None) -> None:
        with self._lock:
            circuit = self._circuit(endpoint)
            circuit.consecutive_failures += 1
            if exception is not None:
                circuit.last_error = f"{type(exception).__name__}: {exception}"
            state = circuit.breaker.current_state

            if state == pybreaker.STATE_HALF_OPEN:
                self._trip(circuit)
            elif (
                state == pybreaker.STATE_CLOSED
                and circuit.consecutive_failures >= self.policy.failure_threshold
            ):
                self._trip(circuit)

    def record(self, endpoint: str, exception: BaseException) -> None:
        """Apply the outcome of a call that raised ``exception``."""

        if not isinstance(exception, Exception):
            self.release(endpoint)
        elif is_failure_for_breaker(exception):
            self.on_failure(endpoint, exception)
        else:
            self.on_success(endpoint)

    def release(self, endpoint: str) -> None:
        """Give back a half-open trial slot without recording an outcome."""
        with self._lock:
            self._circuit(endpoint).trial_in_flight = False

    def execute(self, endpoint: str, func: Callable[[], T]) -> T:
        """Run ``func`` under ``endpoint``'s breaker."""

        self.allow(endpoint)
        try:
            result = func()
        except BaseException as exc:
            self.record(endpoint, exc)
            raise
        self.on_success(endpoint)
        return result

    def _trip(self, circuit: _EndpointCircuit) -> None:
        circuit.opened_at = self.now()
        circuit.trial_in_flight = False
        circuit.trips += 1
        circuit.breaker.open()

    # ── Query helpers ─────────────────────────────────────────────────────────

    def current_state(self, endpoint: str) -> str:
        with self._lock:
            circuit = self._circuits.get(endpoint)
            if circuit is None:
                return "closed"
            return _state_label(circuit.breaker.current_state)

    def status(self) -> Dict[str, Dict[str, Any]]:
        with self._lock:
            now = self.now()
            report: Dict[str, Dict[str, Any]] = {}
            for endpoint, circuit in self._circuits.items():
                retry_in = None
                if circuit.breaker.current_state == pybreaker.STATE_OPEN and circuit.opened_at is not None:
                    retry_in = max(0.0, self.policy.cooldown_s - (now - circuit.opened_at))
                report[endpoint] = {
                    "state": _state_label(circuit.breaker.current_state),
                    "consecutive_failures": circuit.consecutive_failures,
                    "trips": circuit.trips,
                    "short_circuits": circuit.short_circuits,
                    "retry_in_s": retry_in,
                    "last_error": circuit.last_error,
                }
            return report

    def total_trips(self) -> int:
        with self._lock:
            return sum(c.trips for c in self._circuits.values())

    def total_short_circuits(self) -> int:
        with self._lock:
            return sum(c.short_circuits for c in self._circuits.values())

    def reset(self, endpoint: Optional[str] = None) -> None:
        """Close one endpoint's circuit, or forget every circuit."""

        with self._lock:
            if endpoint is None:
                self._circuits.clear()
                return
            circuit = self._circuits.get(endpoint)
            if circuit is None:
                return
            circuit.consecutive_failures = 0
            circuit.opened_at = None
            circuit.trial_in_flight = False
            if circuit.breaker.current_state != pybreaker.STATE_CLOSED:
                circuit.breaker.close()

    def _circuit(self, endpoint: str) -> _EndpointCircuit:
        circuit = self._circuits.get(endpoint)
        if circuit is not None:
            self._circuits.move_to_end(endpoint)
            return circuit
        breaker = pybreaker.CircuitBreaker(
            fail_max=self.policy.failure_threshold,
            reset_timeout=self.policy.cooldown_s,
            listeners=[TransitionLogListener(endpoint, self.on_transition)],
            name=endpoint,
        )
        circuit = _EndpointCircuit(breaker=breaker)
        self._circuits[endpoint] = circuit
        if len(self._circuits) > self.max_endpoints:
            self._evict(keep=endpoint)
        return circuit

    def _evict(self, keep: str) -> None:
        """Drop the least recently used idle circuit, else the least recently used one."""

        victim = next(iter(self._circuits))
        for name, candidate in self._circuits.items():
            if name == keep:
                continue
            if (
                candidate.breaker.current_state == pybreaker.STATE_CLOSED
                and candidate.consecutive_failures == 0
                and not candidate.trial_in_flight
            ):
                victim = name
                break
        del self._circuits[victim]
        LOGGER.debug("Evicted circuit state for %s", victim)


# ────────────────────────────────────────────────────────────────────────────────
# Classification
# ────────────────────────────────────────────────────────────────────────────────


def is_failure_for_breaker(exception: Optional[BaseException]) -> bool:
    """
    Return True if ``exception`` should count toward opening a circuit.

    Typed adapter errors count when retryable (network, timeout, 429, 5xx). Client
    errors such as 400/401/403/404 mean the endpoint answered and do not count.
    Unexpected exceptions count.
    """

    if exception is None:
        return False
    if isinstance(exception, CircuitOpenError):
        return False
    if isinstance(exception, AdapterError):
        return exception.retryable
    return True
