"""Tests for the HTTPX transport and status → error mapping."""

from __future__ import annotations

import email.utils
import json
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from JiraDC.Adapter.errors import (
    AuthenticationError,
    AuthorizationError,
    HTTPError,
    NetworkError,
    NotFoundError,
    RateLimitError,
    RequestTimeoutError,
    ResponseDecodeError,
    ServerError,
    UnprocessableError,
)
from JiraDC.Adapter.transport import Transport

TOKEN = "dc-pat-0123456789abcdefghij"


def _transport(config, handler):
    return Transport(config.http, transport=httpx.MockTransport(handler))


class TestRequests:
    def test_headers_and_context_path(self, config, jira):
        with Transport(config.http, transport=jira.transport) as transport:
            response = transport.send("GET", "/rest/api/latest/myself")

        assert response.status == 200
        assert response.data["name"] == "svc"
        assert response.url == "https://jira.example.com/jira/rest/api/latest/myself"
        request = jira.requests[0]
        assert request.headers["Authorization"] == f"Bearer {TOKEN}"
        assert request.headers["Accept"] == "application/json"
        assert request.headers["X-Atlassian-Token"] == "no-check"
        assert request.headers["User-Agent"] == "jira-dc-adapter/1.0.0-DC"

    def test_json_body_and_params(self, config, jira):
        jira.json("POST", "/jira/rest/api/latest/issue", {"key": "PRJ-1"}, status=201)
        transport = Transport(config.http, transport=jira.transport)
        response = transport.send(
            "POST",
            "/rest/api/latest/issue",
            json={"fields": {"summary": "x"}},
            params={"updateHistory": True, "skip": None},
        )

        assert response.status == 201
        request = jira.hits("/jira/rest/api/latest/issue")[0]
        assert json.loads(request.content) == {"fields": {"summary": "x"}}
        assert request.headers["Content-Type"] == "application/json"
        assert dict(request.url.params) == {"updateHistory": "true"}

    def test_no_content(self, config, jira):
        jira.add("PUT", "/jira/rest/api/latest/issue/PRJ-1", httpx.Response(204))
        response = Transport(config.http, transport=jira.transport).send(
            "PUT", "/rest/api/latest/issue/PRJ-1", json={"fields": {}}
        )
        assert response.status == 204
        assert response.data is None

    def test_per_request_timeout(self, config):
        seen = {}

        def handler(request):
            seen.update(request.extensions["timeout"])
            return httpx.Response(200, json={})

        _transport(config, handler).send("GET", "/rest/api/latest/myself", timeout_s=5.0)
        assert seen["read"] == 5.0


class TestErrors:
    @pytest.mark.parametrize(
        "status, error_type",
        [
            (400, HTTPError),
            (401, AuthenticationError),
            (403, AuthorizationError),
            (404, NotFoundError),
            (422, UnprocessableError),
            (500, ServerError),
            (503, ServerError),
        ],
    )
    def test_status_mapping(self, config, status, error_type):
        transport = _transport(config, lambda request: httpx.Response(status, json={}))
        with pytest.raises(error_type) as excinfo:
            transport.send("GET", "/rest/api/latest/issue/PRJ-1")
        assert type(excinfo.value) is error_type
        assert excinfo.value.status == status

    def test_jira_error_payload_becomes_message(self, config):
        body = {"errorMessages": ["Issue does not exist"], "errors": {"summary": "required"}}
        transport = _transport(config, lambda request: httpx.Response(400, json=body))
        with pytest.raises(HTTPError) as excinfo:
            transport.send("GET", "/rest/api/latest/issue/PRJ-1")
        assert str(excinfo.value) == "HTTP 400: Issue does not exist; summary: required"
        assert excinfo.value.body == body

    def test_rate_limit_carries_retry_after(self, config):
        transport = _transport(
            config, lambda request: httpx.Response(429, headers={"Retry-After": "12"}, text="")
        )
        with pytest.raises(RateLimitError) as excinfo:
            transport.send("GET", "/rest/api/latest/search")
        assert excinfo.value.retry_after_s == 12.0
        assert excinfo.value.retryable

    def test_rate_limit_retry_after_http_date(self, config):
        when = email.utils.format_datetime(
            datetime.now(timezone.utc) + timedelta(seconds=120), usegmt=True
        )
        transport = _transport(
            config, lambda request: httpx.Response(429, headers={"Retry-After": when}, text="")
        )
        with pytest.raises(RateLimitError) as excinfo:
            transport.send("GET", "/rest/api/latest/search")
        assert 100.0 < excinfo.value.retry_after_s <= 120.0

    @pytest.mark.parametrize(
        "value, expected",
        [("Wed, 21 Oct 2015 07:28:00 GMT", 0.0), ("soon", None)],
    )
    def test_rate_limit_retry_after_past_or_garbled(self, config, value, expected):
        transport = _transport(
            config, lambda request: httpx.Response(429, headers={"Retry-After": value}, text="")
        )
        with pytest.raises(RateLimitError) as excinfo:
            transport.send("GET", "/rest/api/latest/search")
        assert excinfo.value.retry_after_s == expected

    def test_non_json_error_body_kept_as_text(self, config):
        transport = _transport(config, lambda request: httpx.Response(502, text="<html>proxy</html>"))
        with pytest.raises(ServerError) as excinfo:
            transport.send("GET", "/rest/api/latest/search")
        assert excinfo.value.body == "<html>proxy</html>"

    def test_non_json_success_body(self, config):
        transport = _transport(config, lambda request: httpx.Response(200, text="<html>login</html>"))
        with pytest.raises(ResponseDecodeError):
            transport.send("GET", "/rest/api/latest/myself")

    def test_timeout(self, config):
        def handler(request):
            raise httpx.ConnectTimeout("timed out", request=request)

        with pytest.raises(RequestTimeoutError) as excinfo:
            _transport(config, handler).send("GET", "/rest/api/latest/myself")
        assert excinfo.value.retryable

    def test_connection_refused(self, config):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(NetworkError) as excinfo:
            _transport(config, handler).send("GET", "/rest/api/latest/myself")
        assert not isinstance(excinfo.value, RequestTimeoutError)
        assert "connection refused" in str(excinfo.value)
