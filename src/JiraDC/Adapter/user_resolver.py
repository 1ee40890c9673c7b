# === NAVMAP v1 ===
# {
#   "module": "JiraDC.Adapter.user_resolver",
#   "purpose": "Resolve user aliases (id, username, email, display name) to canonical records",
#   "sections": [
#     {"id": "detect-identifier-type", "name": "detect_identifier_type", "anchor": "function-detect-identifier-type", "kind": "function"},
#     {"id": "mask-identifier", "name": "mask_identifier", "anchor": "function-mask-identifier", "kind": "function"},
#     {"id": "userresolver", "name": "UserResolver", "anchor": "class-userresolver", "kind": "class"}
#   ]
# }
# === /NAVMAP ===

"""User identity resolution for Data Center.

Hosted Jira addresses people by opaque account ids; Data Center by username or user key.
Callers may hand the adapter any of id, username, email or display name. The resolver
classifies the identifier, tries an ordered list of lookup strategies (each one network
call with the same signature) and returns the first record found.

Resolution never raises: exhausted strategies yield ``success=False`` with the last
error, so callers can leave a field unresolved. Successful results are cached under the
raw identifier string, and concurrent lookups of one unseen identifier share a single
network resolution.

Example:
  ```python
  resolver = UserResolver(transport)
  result = resolver.resolve("jane@example.com")
  if result.success:
      assignee = resolver.get_assignable_identifier(result.record)
  ```
"""

from __future__ import annotations

import logging
import re
import time
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from .caching import CacheStore, SingleFlight, TTLCache
from .errors import AdapterError, NotFoundError
from .transport import RequestExecutor
from .types import IdentifierType, ResolutionResult, ResolutionStrategy, UserRecord

__all__ = ["UserResolver", "detect_identifier_type", "mask_identifier", "normalize_user"]

LOGGER = logging.getLogger(__name__)

_UUID_RE = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.I)
_HEX24_RE = re.compile(r"^[0-9a-f]{24}$", re.I)
_ATLASSIAN_ID_RE = re.compile(r"^\d+:[0-9a-f-]{36}$", re.I)


def detect_identifier_type(identifier: str) -> IdentifierType:
    """Classify ``identifier`` by shape."""

    value = identifier.strip()
    if (
        _UUID_RE.match(value)
        or _HEX24_RE.match(value)
        or _ATLASSIAN_ID_RE.match(value)
        or value.isdigit()
    ):
        return "account_id"
    if "@" in value:
        return "email"
    if any(ch.isspace() for ch in value):
        return "display_name"
    return "username"


def mask_identifier(identifier: str) -> str:
    """Obscure an identifier for logs (``jo***th``, ``ja***@example.com``)."""

    if len(identifier) <= 4:
        return "***"
    if "@" in identifier:
        local, _, domain = identifier.partition("@")
        return f"{local[:2]}***@{domain}"
    return f"{identifier[:2]}***{identifier[-2:]}"


def normalize_user(data: Mapping[str, Any]) -> UserRecord:
    """Build a canonical record from a Data Center (or hosted) user payload."""

    username = data.get("name") or data.get("username") or data.get("key")
    primary_id = data.get("accountId") or username or "unknown"
    return UserRecord(
        primary_id=str(primary_id),
        username=str(username) if username else None,
        display_name=str(data.get("displayName") or username or "Unknown User"),
        email=data.get("emailAddress") or data.get("email") or None,
        active=data.get("active") is not False,
    )


Strategy = Callable[[str], Optional[UserRecord]]


class UserResolver:
    """
    Multi-strategy resolver with a TTL cache keyed by the raw identifier.

    Args:
        executor: Sends lookup requests.
        version_provider: Returns the API version used in lookup paths.
        cache: Resolution cache; a 300s/1000-entry :class:`TTLCache` by default.
        default_strategy: Strategy used when ``resolve`` is not given one.
    """

    def __init__(
        self,
        executor: RequestExecutor,
        *,
        version_provider: Callable[[], str] = lambda: "latest",
        cache: Optional[CacheStore] = None,
        default_strategy: ResolutionStrategy = ResolutionStrategy.AUTO_DETECT,
        now: Callable[[], float] = time.monotonic,
    ) -> None:
        self._executor = executor
        self._version = version_provider
        self._cache = (
            cache if cache is not None else TTLCache(300.0, max_entries=1000, name="user", now=now)
        )
        self.default_strategy = default_strategy
        self._inflight: SingleFlight[Tuple[str, str], ResolutionResult] = SingleFlight()
        self._strategies: Dict[str, Strategy] = {
            "account_id": self.find_by_account_id,
            "username": self.find_by_username,
            "email": self.find_by_email,
            "display_name": self.find_by_display_name,
        }

    # ──────────────────────────────────────────────────────────────────────────
    # Resolution
    # ──────────────────────────────────────────────────────────────────────────

    def resolve(
        self,
        identifier: str,
        *,
        strategy: Optional[ResolutionStrategy] = None,
        use_cache: bool = True,
    ) -> ResolutionResult:
        """
        Resolve ``identifier`` to a canonical user record.

        Args:
            identifier: Account id, username, email or display name.
            strategy: Lookup ordering; defaults to :attr:`default_strategy`.
            use_cache: Read and populate the resolution cache.

        Returns:
            ResolutionResult; ``success=False`` carries the last strategy error.
        """

        identifier_type = detect_identifier_type(identifier) if identifier else "username"
        if not identifier or not identifier.strip():
            return ResolutionResult(
                success=False,
                identifier=identifier,
                identifier_type=identifier_type,
                error="Empty user identifier",
            )

        if use_cache:
            cached = self._cache.get(identifier)
            if cached is not None:
                LOGGER.debug("User resolved from cache: %s", mask_identifier(identifier))
                return ResolutionResult(
                    success=True,
                    identifier=identifier,
                    identifier_type=identifier_type,
                    strategy=cached[0],
                    record=cached[1],
                    cached=True,
                )

        chosen = strategy or self.default_strategy
        result, _shared = self._inflight.do(
            (identifier, chosen.value),
            lambda: self._execute(identifier, identifier_type, chosen, use_cache),
        )
        return result

    def _execute(
        self,
        identifier: str,
        identifier_type: IdentifierType,
        strategy: ResolutionStrategy,
        use_cache: bool,
    ) -> ResolutionResult:
        last_error: Optional[str] = None
        for name in self.strategy_order(strategy, identifier_type):
            try:
                record = self._strategies[name](identifier)
            except AdapterError as exc:
                last_error = f"{name} lookup failed: {exc}"
                LOGGER.debug("User lookup %s failed for %s: %s", name, mask_identifier(identifier), exc)
                continue
            if record is None:
                last_error = f"No user found by {name.replace('_', ' ')}"
                continue
            if use_cache:
                self._cache.set(identifier, (name, record))
            LOGGER.info(
                "User resolved",
                extra={
                    "extra_fields": {
                        "event": "user.resolved",
                        "identifier": mask_identifier(identifier),
                        "strategy": name,
                    }
                },
            )
            return ResolutionResult(
                success=True,
                identifier=identifier,
                identifier_type=identifier_type,
                strategy=name,
                record=record,
            )

        LOGGER.warning(
            "User resolution failed for %s: %s", mask_identifier(identifier), last_error
        )
        return ResolutionResult(
            success=False,
            identifier=identifier,
            identifier_type=identifier_type,
            strategy=strategy.value,
            error=last_error,
        )

    @staticmethod
    def strategy_order(
        strategy: ResolutionStrategy, identifier_type: IdentifierType
    ) -> Sequence[str]:
        """Lookup order for ``strategy``; AUTO_DETECT picks one from the identifier's shape."""

        if strategy is ResolutionStrategy.AUTO_DETECT:
            strategy = {
                "account_id": ResolutionStrategy.ACCOUNT_ID_FIRST,
                "email": ResolutionStrategy.EMAIL_LOOKUP,
                "display_name": ResolutionStrategy.DISPLAY_NAME,
                "username": ResolutionStrategy.USERNAME_FIRST,
            }[identifier_type]
        return {
            ResolutionStrategy.ACCOUNT_ID_FIRST: ("account_id", "username"),
            ResolutionStrategy.USERNAME_FIRST: ("username", "account_id"),
            ResolutionStrategy.EMAIL_LOOKUP: ("email",),
            ResolutionStrategy.DISPLAY_NAME: ("display_name",),
        }[strategy]

    # ──────────────────────────────────────────────────────────────────────────
    # Strategies
    # ──────────────────────────────────────────────────────────────────────────

    def find_by_account_id(self, account_id: str) -> Optional[UserRecord]:
        return self._lookup_one({"key": account_id})

    def find_by_username(self, username: str) -> Optional[UserRecord]:
        return self._lookup_one({"username": username})

    def find_by_email(self, email: str) -> Optional[UserRecord]:
        users = self._search(email, max_results=10)
        for user in users:
            if user.email and user.email.lower() == email.lower():
                return user
        return users[0] if users else None

    def find_by_display_name(self, display_name: str) -> Optional[UserRecord]:
        users = self.find_users_by_display_name(display_name, max_results=10)
        for user in users:
            if user.display_name.lower() == display_name.lower():
                return user
        return users[0] if users else None

    def find_users_by_display_name(self, display_name: str, max_results: int = 5) -> List[UserRecord]:
        return self._search(display_name, max_results=max_results)

    def _lookup_one(self, params: Mapping[str, Any]) -> Optional[UserRecord]:
        try:
            response = self._executor.send("GET", f"/rest/api/{self._version()}/user", params=params)
        except NotFoundError:
            return None
        if not isinstance(response.data, Mapping):
            return None
        return normalize_user(response.data)

    def _search(self, query: str, *, max_results: int) -> List[UserRecord]:
        response = self._executor.send(
            "GET",
            f"/rest/api/{self._version()}/user/search",
            params={"username": query, "maxResults": max_results},
        )
        if not isinstance(response.data, list):
            return []
        return [normalize_user(item) for item in response.data if isinstance(item, Mapping)]

    # ──────────────────────────────────────────────────────────────────────────
    # Assignment helpers
    # ──────────────────────────────────────────────────────────────────────────

    @staticmethod
    def get_assignable_identifier(record: UserRecord) -> str:
        """Identifier a write operation should use: the primary id unless it equals the username."""
        if record.primary_id and record.primary_id != record.username:
            return record.primary_id
        return record.username or record.primary_id

    def validate_user_for_assignment(self, user_id: str, issue_key: str) -> Dict[str, Any]:
        """Check that ``user_id`` may be assigned ``issue_key``."""

        try:
            response = self._executor.send(
                "GET",
                f"/rest/api/{self._version()}/user/assignable/search",
                params={"username": user_id, "issueKey": issue_key, "maxResults": 1},
            )
        except AdapterError as exc:
            return {"valid": False, "reason": str(exc)}
        if isinstance(response.data, list) and response.data:
            return {"valid": True, "reason": None}
        return {"valid": False, "reason": "User is not assignable to this issue"}

    # ──────────────────────────────────────────────────────────────────────────
    # Cache
    # ──────────────────────────────────────────────────────────────────────────

    def clear_cache(self) -> None:
        self._cache.clear()
        LOGGER.debug("User resolution cache cleared")

    def get_cache_stats(self) -> Dict[str, Any]:
        stats = self._cache.stats()
        return {
            "size": stats.size,
            "max_size": stats.max_entries,
            "oldest_entry_age_s": stats.oldest_entry_age_s,
            "hits": stats.hits,
            "misses": stats.misses,
        }
