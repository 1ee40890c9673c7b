"""Typed error taxonomy for the adapter pipeline.

Every exception raised out of :mod:`JiraDC.Adapter` derives from :class:`AdapterError`
and carries a ``retryable`` flag that the retry controller consults. Recoverable
conditions (version fallback, conversion fallback) are never raised; they surface as
warnings on the response envelope instead.

Key Classes:
  - AdapterError: base class with ``retryable`` and ``details``
  - EndpointUnsupportedError: no mapping exists for the caller-facing path
  - NetworkError / RequestTimeoutError: transport failures (retryable)
  - HTTPError and its status subclasses: non-2xx responses
  - CircuitOpenError: fail-fast while an endpoint's breaker is open
  - UserResolutionFailed: a helper needed a user and every strategy failed

Example:
  ```python
  try:
      envelope = client.get("/rest/api/3/issue/ABC-1")
  except CircuitOpenError as exc:
      LOGGER.warning("backend unhealthy, retry in %.1fs", exc.retry_in_s)
  except HTTPError as exc:
      LOGGER.error("request failed with %s: %s", exc.status, exc)
  ```
"""

from __future__ import annotations

import email.utils
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional

__all__ = [
    "AdapterError",
    "EndpointUnsupportedError",
    "UnsupportedVersionError",
    "NetworkError",
    "RequestTimeoutError",
    "HTTPError",
    "AuthenticationError",
    "AuthorizationError",
    "NotFoundError",
    "UnprocessableError",
    "RateLimitError",
    "ServerError",
    "ResponseDecodeError",
    "CircuitOpenError",
    "UserResolutionFailed",
    "get_actionable_error_message",
]


class AdapterError(Exception):
    """Base class for all adapter failures."""

    retryable: bool = False

    def __init__(self, message: str, *, details: Optional[Mapping[str, Any]] = None) -> None:
        super().__init__(message)
        self.details: Dict[str, Any] = dict(details or {})

    @property
    def error_type(self) -> str:
        return type(self).__name__


class EndpointUnsupportedError(AdapterError):
    """Raised when a caller-facing path has no backend counterpart."""

    def __init__(self, path: str, warnings: Iterable[str] = ()) -> None:
        self.path = path
        self.warnings: List[str] = list(warnings)
        reason = self.warnings[-1] if self.warnings else "no mapping available"
        super().__init__(f"Endpoint {path} is not supported: {reason}", details={"path": path})


class UnsupportedVersionError(AdapterError):
    """Raised when capabilities are requested for an unknown API version."""

    def __init__(self, version_id: str) -> None:
        self.version_id = version_id
        super().__init__(f"Unsupported API version: {version_id}", details={"version": version_id})


class NetworkError(AdapterError):
    """Connection-level failure before a response was received."""

    retryable = True

    def __init__(self, message: str, *, url: Optional[str] = None) -> None:
        super().__init__(message, details={"url": url} if url else None)
        self.url = url


class RequestTimeoutError(NetworkError):
    """The per-request timeout elapsed."""


class HTTPError(AdapterError):
    """Non-2xx response from the backend."""

    def __init__(
        self,
        status: int,
        message: str,
        *,
        body: Any = None,
        url: Optional[str] = None,
    ) -> None:
        super().__init__(f"HTTP {status}: {message}", details={"status": status, "url": url})
        self.status = status
        self.body = body
        self.url = url

    @staticmethod
    def from_response(
        status: int,
        body: Any = None,
        *,
        url: Optional[str] = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> "HTTPError":
        """Build the subclass matching ``status`` with Jira's error payload as the message."""

        message = _extract_jira_message(body) or _DEFAULT_MESSAGES.get(status, "Request failed")
        if status == 401:
            return AuthenticationError(status, message, body=body, url=url)
        if status == 403:
            return AuthorizationError(status, message, body=body, url=url)
        if status == 404:
            return NotFoundError(status, message, body=body, url=url)
        if status == 422:
            return UnprocessableError(status, message, body=body, url=url)
        if status == 429:
            retry_after = _parse_retry_after((headers or {}).get("retry-after"))
            return RateLimitError(status, message, body=body, url=url, retry_after_s=retry_after)
        if status >= 500:
            return ServerError(status, message, body=body, url=url)
        return HTTPError(status, message, body=body, url=url)


class AuthenticationError(HTTPError):
    """401: the bearer credential was rejected."""


class AuthorizationError(AuthenticationError):
    """403: authenticated but not permitted."""


class NotFoundError(HTTPError):
    """404 from the backend."""


class UnprocessableError(HTTPError):
    """422: the backend rejected the request payload."""


class RateLimitError(HTTPError):
    """429 from the backend; optionally carries the server's Retry-After."""

    retryable = True

    def __init__(
        self,
        status: int,
        message: str,
        *,
        body: Any = None,
        url: Optional[str] = None,
        retry_after_s: Optional[float] = None,
    ) -> None:
        super().__init__(status, message, body=body, url=url)
        self.retry_after_s = retry_after_s
        if retry_after_s is not None:
            self.details["retry_after_s"] = retry_after_s


class ServerError(HTTPError):
    """5xx from the backend."""

    retryable = True


class ResponseDecodeError(AdapterError):
    """The backend returned a body that is not valid JSON."""

    def __init__(self, message: str, *, url: Optional[str] = None) -> None:
        super().__init__(message, details={"url": url} if url else None)
        self.url = url


class CircuitOpenError(AdapterError):
    """Raised instead of touching the network while an endpoint's breaker is open."""

    def __init__(self, endpoint: str, retry_in_s: float) -> None:
        self.endpoint = endpoint
        self.retry_in_s = max(0.0, retry_in_s)
        super().__init__(
            f"Circuit open for {endpoint}; next trial in {self.retry_in_s:.1f}s",
            details={"endpoint": endpoint, "retry_in_s": self.retry_in_s},
        )


class UserResolutionFailed(AdapterError):
    """Raised by helpers that cannot proceed when a user identifier did not resolve."""

    def __init__(self, identifier: str, error: Optional[str] = None) -> None:
        self.identifier = identifier
        self.error = error
        super().__init__(
            f"Could not resolve user '{identifier}'" + (f": {error}" if error else ""),
            details={"error": error},
        )


_DEFAULT_MESSAGES = {
    400: "Bad request",
    401: "Authentication failed - check your personal access token",
    403: "Access forbidden - insufficient permissions",
    404: "Resource not found",
    409: "Conflict",
    422: "Unprocessable entity",
    429: "Rate limit exceeded",
    500: "Internal server error",
    502: "Bad gateway",
    503: "Service unavailable",
    504: "Gateway timeout",
}


def _extract_jira_message(body: Any) -> Optional[str]:
    """Flatten Jira's ``{"errorMessages": [...], "errors": {...}}`` payload."""

    if not isinstance(body, Mapping):
        return None
    parts: List[str] = []
    messages = body.get("errorMessages")
    if isinstance(messages, list):
        parts.extend(str(m) for m in messages if m)
    errors = body.get("errors")
    if isinstance(errors, Mapping):
        parts.extend(f"{field}: {msg}" for field, msg in errors.items())
    if not parts and isinstance(body.get("message"), str):
        parts.append(body["message"])
    return "; ".join(parts) or None


def _parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Parse ``Retry-After`` as delta-seconds or an HTTP-date."""

    if not value:
        return None
    try:
        seconds = float(value)
    except ValueError:
        try:
            dt = email.utils.parsedate_to_datetime(value)
        except (TypeError, ValueError):
            return None
        if dt is None:
            return None
        return max(0.0, (dt - datetime.now(dt.tzinfo)).total_seconds())
    return seconds if seconds >= 0 else None


def get_actionable_error_message(error: BaseException) -> str:
    """Return a short hint telling an operator what to do about ``error``."""

    if isinstance(error, AuthorizationError):
        return "The token is valid but lacks permission; check the user's project roles."
    if isinstance(error, AuthenticationError):
        return "Check that the personal access token is valid and has not expired."
    if isinstance(error, CircuitOpenError):
        return f"Backend endpoint is failing; requests resume in {error.retry_in_s:.0f}s."
    if isinstance(error, RateLimitError):
        return "The server is rate limiting requests; reduce request volume."
    if isinstance(error, RequestTimeoutError):
        return "The request timed out; consider raising http.timeout_s."
    if isinstance(error, NetworkError):
        return "Could not reach the server; check base_url, context_path and network access."
    if isinstance(error, EndpointUnsupportedError):
        return "This operation is not available on Jira Data Center."
    if isinstance(error, ServerError):
        return "The server reported an internal error; try again later."
    return str(error)
