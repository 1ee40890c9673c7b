"""Shared fixtures for adapter tests.

Provides:
- ``clock``: fake monotonic clock whose ``sleep`` advances time and records delays
- ``executor``: in-memory RequestExecutor routing (method, path) to canned outcomes
- ``jira``: httpx MockTransport router emulating a Data Center instance
- ``config``: minimal valid AdapterConfig
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Union

import httpx
import pytest

from JiraDC.Adapter.config import AdapterConfig
from JiraDC.Adapter.errors import HTTPError
from JiraDC.Adapter.transport import TransportResponse

TOKEN = "dc-pat-0123456789abcdefghij"


class FakeClock:
    """Monotonic clock double; ``sleep`` advances it."""

    def __init__(self, start: float = 1000.0) -> None:
        self.t = start
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.t

    def advance(self, seconds: float) -> None:
        self.t += seconds

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.t += seconds


@dataclass
class SentRequest:
    method: str
    path: str
    params: Dict[str, Any]
    json: Any
    timeout_s: Optional[float]


Outcome = Union[Any, BaseException, Callable[[SentRequest], Any]]


class FakeExecutor:
    """
    RequestExecutor double.

    ``add(method, path, *outcomes)`` queues outcomes for a route; the last one repeats.
    An outcome may be response data, an exception to raise, or a callable taking the
    :class:`SentRequest`. Unrouted requests raise a 404.
    """

    def __init__(self) -> None:
        self.routes: Dict[Tuple[str, str], List[Outcome]] = {}
        self.calls: List[SentRequest] = []

    def add(self, method: str, path: str, *outcomes: Outcome) -> "FakeExecutor":
        self.routes[(method, path)] = list(outcomes)
        return self

    def calls_to(self, path: str) -> List[SentRequest]:
        return [c for c in self.calls if c.path == path]

    def send(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Mapping[str, Any]] = None,
        json: Any = None,
        headers: Optional[Mapping[str, str]] = None,
        timeout_s: Optional[float] = None,
    ) -> TransportResponse:
        request = SentRequest(method, path, dict(params or {}), json, timeout_s)
        self.calls.append(request)
        outcomes = self.routes.get((method, path))
        if not outcomes:
            raise HTTPError.from_response(404, None, url=path)
        outcome = outcomes.pop(0) if len(outcomes) > 1 else outcomes[0]
        if isinstance(outcome, BaseException):
            raise outcome
        if callable(outcome):
            outcome = outcome(request)
            if isinstance(outcome, BaseException):
                raise outcome
        return TransportResponse(status=200, data=outcome, url=path, elapsed_ms=1.0)


class JiraRouter:
    """httpx handler emulating a Data Center instance at ``/jira``."""

    def __init__(self) -> None:
        self.routes: Dict[Tuple[str, str], List[Callable[[httpx.Request], httpx.Response]]] = {}
        self.requests: List[httpx.Request] = []

    def add(
        self,
        method: str,
        path: str,
        *responses: Union[httpx.Response, Callable[[httpx.Request], httpx.Response]],
    ) -> "JiraRouter":
        handlers = [r if callable(r) else (lambda _req, r=r: r) for r in responses]
        self.routes[(method, path)] = handlers
        return self

    def json(self, method: str, path: str, payload: Any, status: int = 200) -> "JiraRouter":
        return self.add(method, path, lambda _req: httpx.Response(status, json=payload))

    def hits(self, path: str) -> List[httpx.Request]:
        return [r for r in self.requests if r.url.path == path]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        handlers = self.routes.get((request.method, request.url.path))
        if not handlers:
            return httpx.Response(404, json={"errorMessages": ["No route"]})
        handler = handlers.pop(0) if len(handlers) > 1 else handlers[0]
        return handler(request)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def executor() -> FakeExecutor:
    return FakeExecutor()


@pytest.fixture
def jira() -> JiraRouter:
    router = JiraRouter()
    router.json("GET", "/jira/rest/api/latest/myself", {"name": "svc", "displayName": "Service"})
    return router


@pytest.fixture
def config() -> AdapterConfig:
    return AdapterConfig.model_validate(
        {
            "http": {
                "base_url": "https://jira.example.com",
                "context_path": "/jira",
                "personal_access_token": TOKEN,
            },
            "retry": {"max_attempts": 3, "base_delay_s": 0.5, "max_delay_s": 8.0},
            "breaker": {"failure_threshold": 5, "cooldown_s": 60.0},
        }
    )
