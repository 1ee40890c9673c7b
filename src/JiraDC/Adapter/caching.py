"""Injectable caches shared by the version negotiator, user resolver and client.

Three pieces of state outlive a single request: the negotiated version, resolved
users and (opt-in) GET responses. Each is an explicit :class:`TTLCache` instance owned
by the component that uses it, so tests build isolated caches with a fake clock.

:class:`SingleFlight` coalesces concurrent computations for the same key: the first
caller runs the loader, later callers block on its result instead of issuing their
own network calls.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Generic, Hashable, Optional, Protocol, Tuple, TypeVar

__all__ = ["CacheStats", "CacheStore", "TTLCache", "SingleFlight"]

LOGGER = logging.getLogger(__name__)

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")

_MISSING = object()


@dataclass(frozen=True, slots=True)
class CacheStats:
    name: str
    size: int
    max_entries: Optional[int]
    hits: int
    misses: int
    oldest_entry_age_s: Optional[float]

    def as_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "size": self.size,
            "max_entries": self.max_entries,
            "hits": self.hits,
            "misses": self.misses,
            "oldest_entry_age_s": self.oldest_entry_age_s,
        }


class CacheStore(Protocol[K, V]):
    """Minimal cache surface the pipeline depends on."""

    def get(self, key: K, default: Any = None) -> Any: ...
    def set(self, key: K, value: V, ttl_s: Optional[float] = None) -> None: ...
    def clear(self) -> None: ...
    def stats(self) -> CacheStats: ...


@dataclass
class _Entry(Generic[V]):
    value: V
    inserted_at: float
    ttl_s: float

    def expired(self, now: float) -> bool:
        return now - self.inserted_at >= self.ttl_s


class TTLCache(Generic[K, V]):
    """
    Thread-safe TTL cache with optional size bound.

    Entries expire individually after ``ttl_s`` seconds. When ``max_entries`` is set,
    inserting into a full cache evicts the oldest entry. Times come from ``now``
    (monotonic by default) so tests can advance a fake clock.

    Args:
        ttl_s: Default time-to-live for new entries.
        max_entries: Optional upper bound on entries.
        name: Label used in stats and log events.
        now: Monotonic clock.
    """

    def __init__(
        self,
        ttl_s: float,
        max_entries: Optional[int] = None,
        *,
        name: str = "cache",
        now: Callable[[], float] = time.monotonic,
    ) -> None:
        if ttl_s <= 0:
            raise ValueError("ttl_s must be positive")
        if max_entries is not None and max_entries < 1:
            raise ValueError("max_entries must be >= 1")
        self.ttl_s = ttl_s
        self.max_entries = max_entries
        self.name = name
        self._now = now
        self._entries: "OrderedDict[K, _Entry[V]]" = OrderedDict()
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    def get(self, key: K, default: Any = None) -> Any:
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and entry.expired(self._now()):
                del self._entries[key]
                entry = None
            if entry is None:
                self._misses += 1
                hit = False
                value: Any = default
            else:
                self._hits += 1
                hit = True
                value = entry.value
        LOGGER.debug(
            "%s cache %s",
            self.name,
            "hit" if hit else "miss",
            extra={"extra_fields": {"event": "cache.hit" if hit else "cache.miss", "cache": self.name}},
        )
        return value

    def __contains__(self, key: object) -> bool:
        with self._lock:
            entry = self._entries.get(key)  # type: ignore[arg-type]
            return entry is not None and not entry.expired(self._now())

    def set(self, key: K, value: V, ttl_s: Optional[float] = None) -> None:
        with self._lock:
            self._entries.pop(key, None)
            if self.max_entries is not None:
                while len(self._entries) >= self.max_entries:
                    self._entries.popitem(last=False)
            self._entries[key] = _Entry(value, self._now(), ttl_s or self.ttl_s)

    def delete(self, key: K) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            self._purge_expired()
            return len(self._entries)

    def stats(self) -> CacheStats:
        with self._lock:
            self._purge_expired()
            now = self._now()
            oldest = min((e.inserted_at for e in self._entries.values()), default=None)
            return CacheStats(
                name=self.name,
                size=len(self._entries),
                max_entries=self.max_entries,
                hits=self._hits,
                misses=self._misses,
                oldest_entry_age_s=None if oldest is None else now - oldest,
            )

    def _purge_expired(self) -> None:
        now = self._now()
        for key in [k for k, e in self._entries.items() if e.expired(now)]:
            del self._entries[key]


# ────────────────────────────────────────────────────────────────────────────────
# In-flight coalescing
# ────────────────────────────────────────────────────────────────────────────────


@dataclass
class _Call:
    done: threading.Event = field(default_factory=threading.Event)
    result: Any = None
    error: Optional[BaseException] = None


class SingleFlight(Generic[K, V]):
    """Run at most one loader per key at a time; concurrent callers share its outcome."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._calls: Dict[K, _Call] = {}

    def do(self, key: K, loader: Callable[[], V]) -> Tuple[V, bool]:
        """
        Return ``(value, shared)`` where ``shared`` is True when another caller's
        in-flight load supplied the value. Exceptions from the loader propagate to
        every waiting caller.
        """

        with self._lock:
            call = self._calls.get(key)
            leader = call is None
            if call is None:
                call = _Call()
                self._calls[key] = call

        if not leader:
            call.done.wait()
            if call.error is not None:
                raise call.error
            return call.result, True

        try:
            call.result = loader()
        except BaseException as exc:
            call.error = exc
            raise
        finally:
            with self._lock:
                self._calls.pop(key, None)
            call.done.set()
        return call.result, False

    def in_flight(self) -> int:
        with self._lock:
            return len(self._calls)
