"""Tests for configuration models and file/env/CLI loading."""

from __future__ import annotations

import json

import pytest
from pydantic import ValidationError

from JiraDC.Adapter.config import (
    AdapterConfig,
    export_config_schema,
    load_config,
    validate_config_file,
)

TOKEN = "dc-pat-0123456789abcdefghij"


def _minimal(**http):
    return {"http": {"base_url": "https://jira.example.com", "personal_access_token": TOKEN, **http}}


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "adapter.yaml"
    path.write_text(
        "http:\n"
        "  base_url: https://file.example.com/\n"
        f"  personal_access_token: {TOKEN}\n"
        "  timeout_s: 20\n"
        "breaker:\n"
        "  failure_threshold: 7\n",
        encoding="utf-8",
    )
    return path


class TestModels:
    def test_defaults(self):
        config = AdapterConfig.model_validate(_minimal())
        assert config.version.preferred == "latest"
        assert config.version.candidates == ["latest", "2"]
        assert config.retry.max_attempts == 3
        assert config.breaker.failure_threshold == 5
        assert config.breaker.cooldown_s == 60.0
        assert config.cache.user_ttl_s == 300.0
        assert config.http.root_url == "https://jira.example.com"

    def test_context_path_joined_into_root_url(self):
        config = AdapterConfig.model_validate(_minimal(context_path="/jira/"))
        assert config.http.root_url == "https://jira.example.com/jira"

    @pytest.mark.parametrize(
        "http",
        [
            {"base_url": "jira.example.com"},
            {"personal_access_token": "short"},
            {"personal_access_token": "has whitespace in the middle!"},
            {"context_path": "jira"},
            {"timeout_s": 0},
        ],
    )
    def test_invalid_http_settings(self, http):
        with pytest.raises(ValidationError):
            AdapterConfig.model_validate(_minimal(**http))

    def test_unknown_keys_rejected(self):
        data = _minimal()
        data["breaker"] = {"failure_threshhold": 3}
        with pytest.raises(ValidationError):
            AdapterConfig.model_validate(data)

    def test_unknown_candidate_version_rejected(self):
        data = _minimal()
        data["version"] = {"candidates": ["latest", "3"]}
        with pytest.raises(ValidationError):
            AdapterConfig.model_validate(data)

    def test_token_not_rendered(self):
        config = AdapterConfig.model_validate(_minimal())
        assert TOKEN not in repr(config)
        assert TOKEN not in config.model_dump_json()

    def test_config_hash_ignores_token(self):
        a = AdapterConfig.model_validate(_minimal())
        b = AdapterConfig.model_validate(_minimal(personal_access_token="x" * 32))
        c = AdapterConfig.model_validate(_minimal(timeout_s=10))
        assert a.config_hash() == b.config_hash()
        assert a.config_hash() != c.config_hash()

    def test_warnings(self):
        config = AdapterConfig.model_validate(
            {
                "http": {
                    "base_url": "http://jira.local",
                    "personal_access_token": TOKEN,
                    "verify_tls": False,
                    "timeout_s": 2,
                },
                "retry": {"max_attempts": 8},
            }
        )
        warnings = config.warnings()
        assert "Using HTTP instead of HTTPS - consider enabling SSL for security" in warnings
        assert "TLS certificate verification is disabled" in warnings
        assert "High retry count may cause long delays on failures" in warnings
        assert len(warnings) == 4


class TestLoadConfig:
    def test_file_only(self, config_file):
        config = load_config(path=str(config_file), environ={})
        assert config.http.base_url == "https://file.example.com"
        assert config.http.timeout_s == 20
        assert config.breaker.failure_threshold == 7

    def test_env_overrides_file(self, config_file):
        environ = {
            "JIRADC_BREAKER__FAILURE_THRESHOLD": "3",
            "JIRADC_HTTP__CONTEXT_PATH": "/jira",
        }
        config = load_config(path=str(config_file), environ=environ)
        assert config.breaker.failure_threshold == 3
        assert config.http.context_path == "/jira"

    def test_cli_overrides_env(self, config_file):
        config = load_config(
            path=str(config_file),
            environ={"JIRADC_BREAKER__FAILURE_THRESHOLD": "3"},
            cli_overrides={"breaker": {"failure_threshold": 9}},
        )
        assert config.breaker.failure_threshold == 9
        assert config.http.timeout_s == 20

    def test_conventional_variables(self):
        environ = {
            "JIRA_DC_BASE_URL": "https://env.example.com",
            "JIRA_DC_PAT": TOKEN,
            "JIRA_DC_CONTEXT_PATH": "/jira",
            "JIRA_DC_API_VERSION": "2",
            "JIRA_DC_TIMEOUT": "15000",
            "JIRA_DC_VALIDATE_SSL": "false",
            "JIRA_DC_MAX_RETRIES": "4",
        }
        config = load_config(environ=environ)
        assert config.http.root_url == "https://env.example.com/jira"
        assert config.version.preferred == "2"
        assert config.http.timeout_s == 15.0
        assert config.http.verify_tls is False
        assert config.retry.max_attempts == 4

    def test_prefixed_variable_beats_conventional(self):
        environ = {
            "JIRA_DC_BASE_URL": "https://old.example.com",
            "JIRA_DC_PAT": TOKEN,
            "JIRADC_HTTP__BASE_URL": "https://new.example.com",
        }
        assert load_config(environ=environ).http.base_url == "https://new.example.com"

    def test_numeric_looking_token_stays_string(self):
        numeric = "1" * 24
        config = load_config(
            environ={"JIRA_DC_BASE_URL": "https://jira.example.com", "JIRADC_HTTP__PERSONAL_ACCESS_TOKEN": numeric}
        )
        assert config.http.personal_access_token.get_secret_value() == numeric

    def test_invalid_conventional_value(self):
        with pytest.raises(ValueError, match="JIRA_DC_TIMEOUT"):
            load_config(environ={"JIRA_DC_TIMEOUT": "soon"})

    def test_json_file(self, tmp_path):
        path = tmp_path / "adapter.json"
        path.write_text(json.dumps(_minimal()), encoding="utf-8")
        assert load_config(path=str(path), environ={}).http.base_url == "https://jira.example.com"

    @pytest.mark.parametrize(
        "name, content, message",
        [
            ("adapter.toml", "x = 1", "Unsupported file format"),
            ("adapter.yaml", "http: [unclosed", "Invalid YAML"),
            ("adapter.yaml", "- just\n- a list\n", "mapping at the top level"),
        ],
    )
    def test_unreadable_files(self, tmp_path, name, content, message):
        path = tmp_path / name
        path.write_text(content, encoding="utf-8")
        with pytest.raises(ValueError, match=message):
            load_config(path=str(path), environ={})

    def test_missing_file(self, tmp_path):
        with pytest.raises(ValueError, match="not found"):
            load_config(path=str(tmp_path / "nope.yaml"), environ={})

    def test_missing_credentials_is_validation_error(self):
        with pytest.raises(ValidationError):
            load_config(environ={})

    def test_validate_config_file(self, config_file, monkeypatch):
        for name in ("JIRA_DC_BASE_URL", "JIRA_DC_PAT", "JIRADC_HTTP__BASE_URL"):
            monkeypatch.delenv(name, raising=False)
        assert validate_config_file(str(config_file)) is True


def test_export_schema():
    schema = export_config_schema()
    assert schema["title"] == "AdapterConfig"
    assert "http" in schema["properties"]
    assert "http" in schema["required"]
