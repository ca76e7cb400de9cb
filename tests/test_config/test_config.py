"""
Tests for the configuration layer.

Covers:
- defaults of AppConfig
- YAML < env < CLI precedence and deep merge
- validation errors (max_iterations, unknown keys)
- server entries and bearer token precedence
"""

from pathlib import Path

import pytest
from pydantic import ValidationError

from toolbridge.config.loader import (
    apply_cli_overrides,
    deep_merge,
    load_config,
    load_env_overrides,
    load_yaml_config,
)
from toolbridge.config.schema import AppConfig, MCPServerEntry, ToolServerConfig
from toolbridge.mcp.models import ServerConfig

ENV_VARS = (
    "TOOLBRIDGE_MODEL",
    "TOOLBRIDGE_API_BASE",
    "TOOLBRIDGE_LOG_LEVEL",
    "TOOLBRIDGE_MAX_ITERATIONS",
    "TOOLBRIDGE_MCP_URL",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def _write(tmp_path: Path, text: str) -> Path:
    path = tmp_path / "config.yaml"
    path.write_text(text, encoding="utf-8")
    return path


class TestDefaults:
    def test_app_defaults(self):
        config = AppConfig()
        assert config.orchestration.max_iterations == 5
        assert config.orchestration.parallel_tools is False
        assert config.mcp.protocol_version == "2024-11-05"
        assert config.mcp.servers == []
        assert config.server.path == "/mcp"
        assert config.server.response_format == "json"
        assert config.logging.level == "human"

    def test_load_without_file(self):
        assert load_config() == AppConfig()


class TestYaml:
    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_yaml_config(tmp_path / "nope.yaml")

    def test_empty_file(self, tmp_path):
        assert load_yaml_config(_write(tmp_path, "")) == {}

    def test_full_file(self, tmp_path):
        path = _write(
            tmp_path,
            """
llm:
  model: openai/gpt-4o-mini
orchestration:
  max_iterations: 3
mcp:
  timeout: 10
  servers:
    - name: weather
      url: http://localhost:8090/mcp
      token: secret
server:
  port: 9000
  response_format: sse
""",
        )
        config = load_config(path)
        assert config.llm.model == "openai/gpt-4o-mini"
        assert config.orchestration.max_iterations == 3
        assert config.mcp.timeout == 10
        assert config.mcp.servers[0].url == "http://localhost:8090/mcp"
        assert config.server.port == 9000
        assert config.server.response_format == "sse"
        # Untouched keys keep their defaults
        assert config.llm.temperature == 0.7


class TestPrecedence:
    def test_env_overrides_yaml(self, tmp_path, monkeypatch):
        path = _write(tmp_path, "llm:\n  model: from-yaml\n  temperature: 0.1\n")
        monkeypatch.setenv("TOOLBRIDGE_MODEL", "from-env")

        config = load_config(path)

        assert config.llm.model == "from-env"
        assert config.llm.temperature == 0.1

    def test_cli_overrides_env(self, tmp_path, monkeypatch):
        path = _write(tmp_path, "orchestration:\n  max_iterations: 2\n")
        monkeypatch.setenv("TOOLBRIDGE_MAX_ITERATIONS", "4")

        assert load_config(path).orchestration.max_iterations == 4
        assert load_config(path, {"max_iterations": 7}).orchestration.max_iterations == 7

    def test_env_mcp_url(self, monkeypatch):
        monkeypatch.setenv("TOOLBRIDGE_MCP_URL", "http://tools:8090/mcp")
        servers = load_env_overrides()["mcp"]["servers"]
        assert servers == [{"name": "default", "url": "http://tools:8090/mcp"}]

    def test_env_log_level_lowercased(self, monkeypatch):
        monkeypatch.setenv("TOOLBRIDGE_LOG_LEVEL", "DEBUG")
        assert load_config().logging.level == "debug"

    def test_cli_server_flags(self):
        merged = apply_cli_overrides({}, {"host": "0.0.0.0", "port": 8123, "sse": True})
        assert merged == {"server": {"host": "0.0.0.0", "port": 8123, "response_format": "sse"}}

    def test_cli_none_values_are_ignored(self):
        assert apply_cli_overrides({"llm": {"model": "m"}}, {"model": None, "verbose": None}) == {
            "llm": {"model": "m"}
        }


class TestDeepMerge:
    def test_nested(self):
        base = {"a": {"b": 1, "c": {"d": 2}}, "x": 1}
        override = {"a": {"c": {"e": 3}}}
        assert deep_merge(base, override) == {"a": {"b": 1, "c": {"d": 2, "e": 3}}, "x": 1}

    def test_lists_are_replaced(self):
        assert deep_merge({"s": [1, 2]}, {"s": [3]}) == {"s": [3]}

    def test_inputs_untouched(self):
        base = {"a": {"b": 1}}
        deep_merge(base, {"a": {"b": 2}})
        assert base == {"a": {"b": 1}}


class TestValidation:
    def test_zero_iterations_rejected(self, tmp_path):
        path = _write(tmp_path, "orchestration:\n  max_iterations: 0\n")
        with pytest.raises(ValidationError):
            load_config(path)

    def test_unknown_key_rejected(self, tmp_path):
        path = _write(tmp_path, "llm:\n  modle: typo\n")
        with pytest.raises(ValidationError):
            load_config(path)

    def test_bad_response_format(self):
        with pytest.raises(ValidationError):
            ToolServerConfig(response_format="xml")

    def test_path_gets_leading_slash(self):
        assert ToolServerConfig(path="rpc").path == "/rpc"


class TestServerEntries:
    def test_explicit_header_wins(self, monkeypatch):
        monkeypatch.setenv("TOKEN_VAR", "env-token")
        entry = MCPServerEntry(
            name="w",
            url="http://w/mcp",
            headers={"Authorization": "Basic xyz"},
            token="t",
            token_env="TOKEN_VAR",
        )
        assert ServerConfig.from_entry(entry).headers["Authorization"] == "Basic xyz"

    def test_token_before_env(self, monkeypatch):
        monkeypatch.setenv("TOKEN_VAR", "env-token")
        entry = MCPServerEntry(name="w", url="http://w/mcp", token="t", token_env="TOKEN_VAR")
        assert ServerConfig.from_entry(entry).headers["Authorization"] == "Bearer t"

    def test_missing_env_token_means_no_header(self, monkeypatch):
        monkeypatch.delenv("TOKEN_VAR", raising=False)
        entry = MCPServerEntry(name="w", url="http://w/mcp", token_env="TOKEN_VAR")
        assert "Authorization" not in ServerConfig.from_entry(entry).headers

    def test_entry_fields_carried(self):
        entry = MCPServerEntry(id="fixed", name="w", url="http://w/mcp", enabled=False)
        server = ServerConfig.from_entry(entry)
        assert (server.id, server.name, server.url, server.enabled) == (
            "fixed",
            "w",
            "http://w/mcp",
            False,
        )
        assert server.session_id is None
