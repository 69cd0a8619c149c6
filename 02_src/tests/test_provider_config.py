"""Tests for provider configuration loading."""

import json

import pydantic
import pytest

from agent_service.tools import (
    HttpProvider,
    ProviderConfig,
    StdioProvider,
    create_connection,
    load_provider_configs,
)


class TestProviderConfig:
    """Tests for ProviderConfig validation."""

    def test_stdio_requires_command(self):
        """Test that stdio entries need a command."""
        with pytest.raises(pydantic.ValidationError):
            ProviderConfig(name="fs", transport="stdio")

    def test_http_requires_url(self):
        """Test that http entries need an http(s) url."""
        with pytest.raises(pydantic.ValidationError):
            ProviderConfig(name="web", transport="http")
        with pytest.raises(pydantic.ValidationError):
            ProviderConfig(name="web", transport="http", url="ftp://example.com")

    def test_unknown_transport(self):
        """Test that only stdio and http are accepted."""
        with pytest.raises(pydantic.ValidationError):
            ProviderConfig(name="x", transport="websocket", url="http://x")

    def test_defaults(self):
        """Test default values."""
        config = ProviderConfig(name="fs", transport="stdio", command="npx")
        assert config.args == []
        assert config.env == {}
        assert config.timeout == 30.0


class TestLoadProviderConfigs:
    """Tests for load_provider_configs()."""

    def test_missing_file(self, tmp_path):
        """Test that a missing file means zero providers."""
        assert load_provider_configs(tmp_path / "absent.json") == []

    def test_loads_entries(self, tmp_path):
        """Test parsing a config file."""
        path = tmp_path / "mcp-servers.json"
        path.write_text(
            json.dumps(
                [
                    {"name": "fs", "transport": "stdio", "command": "npx", "args": ["-y", "server-fs"]},
                    {"name": "web", "transport": "http", "url": "http://localhost:9000/mcp", "timeout": 10},
                ]
            )
        )

        configs = load_provider_configs(path)

        assert [c.name for c in configs] == ["fs", "web"]
        assert configs[0].args == ["-y", "server-fs"]
        assert configs[1].timeout == 10

    def test_duplicate_names_keep_first(self, tmp_path):
        """Test that duplicate provider names are ignored."""
        path = tmp_path / "mcp-servers.json"
        path.write_text(
            json.dumps(
                [
                    {"name": "fs", "transport": "stdio", "command": "first"},
                    {"name": "fs", "transport": "stdio", "command": "second"},
                ]
            )
        )

        configs = load_provider_configs(path)

        assert len(configs) == 1
        assert configs[0].command == "first"

    def test_invalid_file(self, tmp_path):
        """Test that malformed entries are rejected."""
        path = tmp_path / "mcp-servers.json"
        path.write_text(json.dumps([{"name": "fs", "transport": "stdio"}]))

        with pytest.raises(pydantic.ValidationError):
            load_provider_configs(path)


class TestCreateConnection:
    """Tests for create_connection()."""

    def test_stdio(self):
        """Test that stdio configs build a StdioProvider."""
        connection = create_connection(ProviderConfig(name="fs", transport="stdio", command="npx"))
        assert isinstance(connection, StdioProvider)
        assert connection.name == "fs"
        assert not connection.is_connected

    def test_http(self):
        """Test that http configs build an HttpProvider."""
        connection = create_connection(
            ProviderConfig(name="web", transport="http", url="http://localhost/mcp")
        )
        assert isinstance(connection, HttpProvider)
        assert not connection.is_connected
