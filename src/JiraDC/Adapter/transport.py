"""
HTTPX Transport for the Data Center REST API.

- One ``httpx.Client`` per adapter, rooted at ``base_url + context_path``
- Bearer personal access token and Jira headers on every request
- Per-request timeout override
- Event hooks emit ``net.request`` debug events with timing
- Transport exceptions and non-2xx statuses become typed adapter errors

Architecture:
  Transport.send(method, path, ...) → TransportResponse
  httpx.TimeoutException → RequestTimeoutError
  httpx.TransportError   → NetworkError
  status >= 400          → HTTPError.from_response(...)
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Protocol

import httpx

from .config.models import HttpSettings
from .errors import HTTPError, NetworkError, RequestTimeoutError, ResponseDecodeError

__all__ = ["TransportResponse", "RequestExecutor", "Transport", "build_http_client"]

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class TransportResponse:
    status: int
    data: Any
    url: str
    elapsed_ms: float
    headers: Mapping[str, str] = field(default_factory=dict)


class RequestExecutor(Protocol):
    """Anything that can send one request to the backend and decode its JSON body."""

    def send(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Mapping[str, Any]] = None,
        json: Any = None,
        headers: Optional[Mapping[str, str]] = None,
        timeout_s: Optional[float] = None,
    ) -> TransportResponse: ...


def build_http_client(
    settings: HttpSettings,
    *,
    transport: Optional[httpx.BaseTransport] = None,
) -> httpx.Client:
    """Build the HTTPX client for ``settings``; ``transport`` is injectable for tests."""

    client = httpx.Client(
        base_url=settings.root_url,
        transport=transport,
        timeout=httpx.Timeout(settings.timeout_s),
        verify=settings.verify_tls,
        headers={
            "Authorization": f"Bearer {settings.personal_access_token.get_secret_value()}",
            "Accept": "application/json",
            "User-Agent": settings.user_agent,
            "X-Atlassian-Token": "no-check",
        },
        follow_redirects=False,
    )
    client.event_hooks["request"] = [_on_request]
    client.event_hooks["response"] = [_on_response]
    logger.debug("HTTPX client created for %s", settings.root_url)
    return client


def _on_request(request: httpx.Request) -> None:
    """Hook: capture request start time."""
    request.extensions["t0_perf"] = time.perf_counter()


def _on_response(response: httpx.Response) -> None:
    """Hook: emit net.request debug event."""
    req = response.request
    t0 = req.extensions.get("t0_perf", time.perf_counter())
    elapsed_ms = (time.perf_counter() - t0) * 1000.0
    logger.debug(
        "%s %s -> %s",
        req.method,
        req.url.path,
        response.status_code,
        extra={
            "extra_fields": {
                "event": "net.request",
                "method": req.method,
                "path": req.url.path,
                "status": response.status_code,
                "elapsed_ms": round(elapsed_ms, 2),
            }
        },
    )


class Transport:
    """
    Sends requests to the backend and maps failures onto the adapter error taxonomy.

    Args:
        settings: HTTP settings (base URL, token, timeout, TLS).
        client: Pre-built ``httpx.Client``; built from ``settings`` when omitted.
        transport: ``httpx`` transport used when building the client (e.g. MockTransport).
    """

    def __init__(
        self,
        settings: HttpSettings,
        *,
        client: Optional[httpx.Client] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.settings = settings
        self._client = client or build_http_client(settings, transport=transport)
        self._owns_client = client is None

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
        """
        Send one request.

        Raises:
            RequestTimeoutError: The timeout elapsed.
            NetworkError: Connection-level failure.
            ResponseDecodeError: A 2xx body was not JSON.
            HTTPError: Status >= 400 (subclass chosen by status).
        """

        request_headers = dict(headers or {})
        if json is not None:
            request_headers.setdefault("Content-Type", "application/json")
        timeout = httpx.Timeout(timeout_s) if timeout_s is not None else httpx.USE_CLIENT_DEFAULT

        started = time.perf_counter()
        try:
            response = self._client.request(
                method,
                path,
                params=_clean_params(params),
                json=json,
                headers=request_headers,
                timeout=timeout,
            )
        except httpx.TimeoutException as exc:
            raise RequestTimeoutError(f"Request to {path} timed out: {exc}", url=path) from exc
        except httpx.TransportError as exc:
            raise NetworkError(f"Network error calling {path}: {exc}", url=path) from exc
        elapsed_ms = (time.perf_counter() - started) * 1000.0

        url = str(response.request.url)
        data = _decode(response, url)
        if response.status_code >= 400:
            raise HTTPError.from_response(
                response.status_code,
                data,
                url=url,
                headers={k.lower(): v for k, v in response.headers.items()},
            )
        return TransportResponse(
            status=response.status_code,
            data=data,
            url=url,
            elapsed_ms=elapsed_ms,
            headers=dict(response.headers),
        )

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> "Transport":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()


def _clean_params(params: Optional[Mapping[str, Any]]) -> Optional[dict]:
    if not params:
        return None
    cleaned = {}
    for key, value in params.items():
        if value is None:
            continue
        if isinstance(value, bool):
            value = "true" if value else "false"
        cleaned[key] = value
    return cleaned


def _decode(response: httpx.Response, url: str) -> Any:
    if response.status_code == 204 or not response.content:
        return None
    try:
        return response.json()
    except ValueError as exc:
        if response.status_code >= 400:
            return response.text
        raise ResponseDecodeError(f"Response from {url} is not valid JSON: {exc}", url=url) from exc
