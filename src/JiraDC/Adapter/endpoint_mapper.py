# === NAVMAP v1 ===
# {
#   "module": "JiraDC.Adapter.endpoint_mapper",
#   "purpose": "Translate hosted (v3) REST paths into Data Center paths for a negotiated version",
#   "sections": [
#     {"id": "default-rules", "name": "DEFAULT_RULES", "anchor": "constant-default-rules", "kind": "constant"},
#     {"id": "endpointmapper", "name": "EndpointMapper", "anchor": "class-endpointmapper", "kind": "class"}
#   ]
# }
# === /NAVMAP ===

"""Caller-facing → backend-facing path translation.

Callers address the hosted REST surface (``/rest/api/3/...``); Data Center serves
``/rest/api/{latest|2}/...`` with a few renamed resources and a handful of resources it
does not have at all. :class:`EndpointMapper` resolves a path in a fixed order:

1. exact lookup against the rule table
2. parameterized match (``{name}`` placeholders, values captured positionally)
3. deny-list prefix → ``supported=False``
4. generic fallback for versioned families (``/rest/api/<v>/`` rewritten to the
   negotiated version, ``/rest/agile/1.0/`` unchanged) with a warning
5. otherwise ``supported=False``

For a fixed version the mapping is a pure function of its inputs.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, Iterable, List, Mapping, Optional, Pattern, Tuple
from urllib.parse import quote

from .types import MappingResult, MappingRule

__all__ = ["DEFAULT_RULES", "DENY_PREFIXES", "EndpointMapper", "endpoint_family"]

LOGGER = logging.getLogger(__name__)

_PLACEHOLDER_RE = re.compile(r"\{([^{}/]+)\}")

_API = "/rest/api/{version}"
_AGILE = "/rest/agile/1.0"

# ────────────────────────────────────────────────────────────────────────────────
# Rule table
# ────────────────────────────────────────────────────────────────────────────────

DEFAULT_RULES: Tuple[MappingRule, ...] = (
    MappingRule("/rest/api/3/myself", f"{_API}/myself"),
    MappingRule(
        "/rest/api/3/users",
        f"{_API}/user/search",
        param_transform={"accountId": "username", "query": "username"},
        note="User listing is served by user search",
    ),
    MappingRule("/rest/api/3/user", f"{_API}/user"),
    MappingRule("/rest/api/3/user/search", f"{_API}/user/search", param_transform={"query": "username"}),
    MappingRule("/rest/api/3/project", f"{_API}/project"),
    MappingRule("/rest/api/3/project/{projectIdOrKey}", f"{_API}/project/{{projectIdOrKey}}"),
    MappingRule(
        "/rest/api/3/project/{projectIdOrKey}/versions",
        f"{_API}/project/{{projectIdOrKey}}/versions",
    ),
    MappingRule(
        "/rest/api/3/project/{projectIdOrKey}/version",
        f"{_API}/project/{{projectIdOrKey}}/versions",
        deprecated=True,
        note="Cloud endpoint /version mapped to DC /versions",
    ),
    MappingRule("/rest/api/3/issue", f"{_API}/issue"),
    MappingRule("/rest/api/3/issue/{issueIdOrKey}", f"{_API}/issue/{{issueIdOrKey}}"),
    MappingRule(
        "/rest/api/3/issue/{issueIdOrKey}/assignee", f"{_API}/issue/{{issueIdOrKey}}/assignee"
    ),
    MappingRule(
        "/rest/api/3/issue/{issueIdOrKey}/transitions",
        f"{_API}/issue/{{issueIdOrKey}}/transitions",
    ),
    MappingRule(
        "/rest/api/3/issue/{issueIdOrKey}/comment", f"{_API}/issue/{{issueIdOrKey}}/comment"
    ),
    MappingRule("/rest/api/3/search", f"{_API}/search"),
    MappingRule(
        "/rest/api/3/issue/{issueIdOrKey}/assignable/search",
        f"{_API}/user/assignable/multiProjectSearch",
        param_transform={"issueKey": "issueKey", "query": "username"},
    ),
    MappingRule("/rest/api/3/filter", f"{_API}/filter"),
    MappingRule("/rest/api/3/filter/{id}", f"{_API}/filter/{{id}}"),
    # Agile surface is identical on both deployments.
    MappingRule(f"{_AGILE}/board", f"{_AGILE}/board"),
    MappingRule(f"{_AGILE}/board/{{boardId}}", f"{_AGILE}/board/{{boardId}}"),
    MappingRule(f"{_AGILE}/board/{{boardId}}/sprint", f"{_AGILE}/board/{{boardId}}/sprint"),
    MappingRule(f"{_AGILE}/board/{{boardId}}/backlog", f"{_AGILE}/board/{{boardId}}/backlog"),
    MappingRule(
        f"{_AGILE}/board/{{boardId}}/configuration", f"{_AGILE}/board/{{boardId}}/configuration"
    ),
    MappingRule(f"{_AGILE}/sprint", f"{_AGILE}/sprint"),
    MappingRule(f"{_AGILE}/sprint/{{sprintId}}", f"{_AGILE}/sprint/{{sprintId}}"),
    MappingRule(f"{_AGILE}/sprint/{{sprintId}}/issue", f"{_AGILE}/sprint/{{sprintId}}/issue"),
    MappingRule(
        f"{_AGILE}/issue/{{issueIdOrKey}}/estimation", f"{_AGILE}/issue/{{issueIdOrKey}}/estimation"
    ),
    MappingRule(f"{_AGILE}/epic/{{epicIdOrKey}}", f"{_AGILE}/epic/{{epicIdOrKey}}"),
    MappingRule(f"{_AGILE}/epic/{{epicIdOrKey}}/issue", f"{_AGILE}/epic/{{epicIdOrKey}}/issue"),
)

# Hosted-only resources; matched as path-segment prefixes.
DENY_PREFIXES: Tuple[Tuple[str, str], ...] = (
    ("/rest/api/3/dashboard", "Dashboard management is not available in Data Center"),
    ("/rest/api/3/webhook", "Webhook management differs in Data Center"),
    ("/rest/api/3/app", "App management is Cloud-specific"),
    ("/rest/api/3/configuration", "The configuration API differs in Data Center"),
    ("/rest/api/3/announcement", "Announcement banners are not available in Data Center"),
    ("/rest/api/3/avatar", "The avatar API differs in Data Center"),
    ("/rest/api/3/jql/autocompletedata", "JQL autocomplete is implemented differently"),
)

_VERSIONED_API_RE = re.compile(r"^/rest/api/(?:3|2|latest)(/.*)$")


def _compile(pattern: str) -> Tuple[Pattern[str], List[str]]:
    names = _PLACEHOLDER_RE.findall(pattern)
    escaped = re.escape(pattern).replace(r"\{", "{").replace(r"\}", "}")
    regex = "^" + _PLACEHOLDER_RE.sub("([^/]+)", escaped) + "$"
    return re.compile(regex), names


def _substitute(template: str, values: Mapping[str, Any]) -> str:
    return _PLACEHOLDER_RE.sub(
        lambda m: str(values[m.group(1)]) if m.group(1) in values else m.group(0), template
    )


def _quote_params(params: Optional[Mapping[str, Any]]) -> Dict[str, str]:
    """Percent-encode caller values so each fills exactly one path segment."""
    return {k: quote(str(v), safe="") for k, v in (params or {}).items()}


# Placeholders, anything carrying a digit, and upper-case project keys.
_ID_SEGMENT_RE = re.compile(r"^(?:\{[^{}/]+\}|.*\d.*|[A-Z][A-Z0-9_]*)$")


def endpoint_family(path: str) -> str:
    """
    Collapse identifier-like segments of ``path`` into ``{}``.

    ``/rest/api/3/issue/PRJ-1/worklog`` and ``/rest/api/2/issue/PRJ-2/worklog`` both
    become ``/rest/api/{version}/issue/{}/worklog``.
    """

    match = _VERSIONED_API_RE.match(path)
    if match:
        prefix, rest = "/rest/api/{version}", match.group(1)
    elif path.startswith(_AGILE + "/"):
        prefix, rest = _AGILE, path[len(_AGILE) :]
    else:
        prefix, rest = "", path
    return prefix + "/".join("{}" if _ID_SEGMENT_RE.match(s) else s for s in rest.split("/"))


class EndpointMapper:
    """
    Rule-driven path translation for one backend deployment.

    Args:
        version: Default negotiated version substituted into ``{version}``.
        rules: Override the rule table (tests, custom deployments).
        deny_prefixes: Override the deny list as ``(prefix, reason)`` pairs.
    """

    def __init__(
        self,
        version: str = "latest",
        rules: Iterable[MappingRule] = DEFAULT_RULES,
        deny_prefixes: Iterable[Tuple[str, str]] = DENY_PREFIXES,
    ) -> None:
        self.version = version
        self._rules: Tuple[MappingRule, ...] = tuple(rules)
        self._exact: Dict[str, MappingRule] = {r.source_pattern: r for r in self._rules}
        self._patterns: List[Tuple[Pattern[str], List[str], MappingRule]] = [
            (*_compile(r.source_pattern), r) for r in self._rules if "{" in r.source_pattern
        ]
        self._deny: Tuple[Tuple[str, str], ...] = tuple(deny_prefixes)

    # ──────────────────────────────────────────────────────────────────────────
    # Mapping
    # ──────────────────────────────────────────────────────────────────────────

    def map(
        self,
        source_path: str,
        path_params: Optional[Mapping[str, Any]] = None,
        query_params: Optional[Mapping[str, Any]] = None,
        *,
        version: Optional[str] = None,
    ) -> MappingResult:
        """
        Translate ``source_path`` for ``version`` (defaults to :attr:`version`).

        ``{name}`` placeholders left unfilled in the target are the caller's concern;
        the mapper does not reject them.
        """

        version = version or self.version
        path = self._normalize(source_path)
        query = dict(query_params or {})

        rule = self._exact.get(path)
        captured: Dict[str, Any] = {}
        if rule is None:
            for regex, names, candidate in self._patterns:
                match = regex.match(path)
                if match:
                    rule = candidate
                    captured = dict(zip(names, match.groups()))
                    break

        if rule is not None and not rule.unsupported:
            params = {**captured, **_quote_params(path_params)}
            return self._apply(rule, path, params, query, version)

        if rule is not None:
            reason: Optional[str] = rule.note or "marked unsupported"
        else:
            reason = self._denied(path)
        if reason is not None:
            warning = f"Endpoint {path} is not supported in Data Center: {reason}"
            LOGGER.warning(
                warning,
                extra={"extra_fields": {"event": "mapping.unsupported", "source_path": path}},
            )
            return MappingResult(supported=False, source_path=path, warnings=(warning,), rule=rule)

        generic = self._generic(path, version)
        if generic is not None:
            warning = f"Generic mapping applied for {path}"
            LOGGER.info(
                warning,
                extra={
                    "extra_fields": {
                        "event": "mapping.applied",
                        "source_path": path,
                        "target_path": generic,
                        "generic": True,
                    }
                },
            )
            return MappingResult(
                supported=True,
                source_path=path,
                target_path=_substitute(generic, _quote_params(path_params)),
                transformed_params=query,
                warnings=(warning,),
                generic=True,
                family=endpoint_family(path),
            )

        warning = f"No mapping found for endpoint: {path}"
        LOGGER.warning(
            warning, extra={"extra_fields": {"event": "mapping.unsupported", "source_path": path}}
        )
        return MappingResult(supported=False, source_path=path, warnings=(warning,))

    def _apply(
        self,
        rule: MappingRule,
        path: str,
        params: Mapping[str, Any],
        query: Dict[str, Any],
        version: str,
    ) -> MappingResult:
        target = _substitute(rule.target_template.replace("{version}", version), params)
        warnings: List[str] = []
        if rule.deprecated:
            warnings.append(rule.note or f"Endpoint {rule.source_pattern} is deprecated")

        LOGGER.debug(
            "Mapping applied",
            extra={
                "extra_fields": {
                    "event": "mapping.applied",
                    "source_path": path,
                    "target_path": target,
                    "rule": rule.source_pattern,
                    "deprecated": rule.deprecated,
                }
            },
        )
        return MappingResult(
            supported=True,
            source_path=path,
            target_path=target,
            transformed_params=self._transform_query(rule, query),
            deprecated=rule.deprecated,
            warnings=tuple(warnings),
            rule=rule,
        )

    @staticmethod
    def _transform_query(rule: MappingRule, query: Mapping[str, Any]) -> Dict[str, Any]:
        if not rule.param_transform:
            return dict(query)
        transformed: Dict[str, Any] = {}
        for key, value in query.items():
            if value is None:
                continue
            target_key = rule.param_transform.get(key, key)
            # An explicitly named target parameter wins over a renamed one.
            if target_key in transformed and key != target_key:
                continue
            transformed[target_key] = value
        return transformed

    def _denied(self, path: str) -> Optional[str]:
        for prefix, reason in self._deny:
            if path == prefix or path.startswith(prefix + "/"):
                return reason
        return None

    @staticmethod
    def _generic(path: str, version: str) -> Optional[str]:
        match = _VERSIONED_API_RE.match(path)
        if match:
            return f"/rest/api/{version}{match.group(1)}"
        if path.startswith(_AGILE + "/"):
            return path
        return None

    @staticmethod
    def _normalize(path: str) -> str:
        path = path.split("?", 1)[0].strip()
        if len(path) > 1:
            path = path.rstrip("/")
        return path

    # ──────────────────────────────────────────────────────────────────────────
    # Introspection
    # ──────────────────────────────────────────────────────────────────────────

    def adapt_query_params(self, source_path: str, params: Mapping[str, Any]) -> Dict[str, Any]:
        """Return ``params`` renamed the way :meth:`map` would for ``source_path``."""
        return dict(self.map(source_path, query_params=params).transformed_params)

    def validate_endpoint_support(self, source_path: str) -> Dict[str, Any]:
        result = self.map(source_path)
        if result.supported:
            return {"supported": True, "reason": None}
        return {"supported": False, "reason": result.warnings[0] if result.warnings else None}

    def get_supported_endpoints(self) -> List[str]:
        return [r.source_pattern for r in self._rules if not r.unsupported]

    def get_api_capabilities(self, version: Optional[str] = None) -> Dict[str, Any]:
        return {
            "version": version or self.version,
            "supported_features": [
                "core_api",
                "agile_api",
                "search_api",
                "user_management",
                "project_management",
                "issue_management",
            ],
            "deprecated_endpoints": [r.source_pattern for r in self._rules if r.deprecated],
            "unsupported_endpoints": [prefix for prefix, _ in self._deny],
        }
