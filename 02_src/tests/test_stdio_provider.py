"""Tests for StdioProvider against a small scripted MCP server."""

import sys
import textwrap

import pytest
import pytest_asyncio

from agent_service.tools import (
    ProviderConnectionError,
    ProviderProtocolError,
    ProviderTimeoutError,
    StdioProvider,
)

SERVER_SCRIPT = textwrap.dedent(
    """
    import json
    import sys

    def send(message):
        sys.stdout.write(json.dumps(message) + "\\n")
        sys.stdout.flush()

    for line in sys.stdin:
        line = line.strip()
        if not line:
            continue
        message = json.loads(line)
        if "id" not in message:
            continue
        request_id = message["id"]
        method = message["method"]
        sys.stderr.write("handling " + method + "\\n")
        sys.stderr.flush()

        if method == "initialize":
            print("server starting up", flush=True)
            send({"jsonrpc": "2.0", "method": "notifications/message", "params": {}})
            send({
                "jsonrpc": "2.0",
                "id": request_id,
                "result": {
                    "protocolVersion": "2024-11-05",
                    "serverInfo": {"name": "fake-server", "version": "1.2.3"},
                    "capabilities": {"tools": {}},
                },
            })
        elif method == "tools/list":
            send({
                "jsonrpc": "2.0",
                "id": request_id,
                "result": {"tools": [
                    {
                        "name": "echo",
                        "description": "Echo arguments",
                        "inputSchema": {"type": "object", "properties": {"text": {"type": "string"}}},
                    },
                    {"name": "fail"},
                ]},
            })
        elif method == "tools/call":
            name = message["params"]["name"]
            arguments = message["params"]["arguments"]
            if name == "echo":
                send({
                    "jsonrpc": "2.0",
                    "id": request_id,
                    "result": {"content": [{"type": "text", "text": json.dumps(arguments)}]},
                })
            elif name == "fail":
                send({"jsonrpc": "2.0", "id": request_id, "error": {"code": -32000, "message": "tool exploded"}})
            elif name == "crash":
                sys.exit(3)
            # "hang": never answer
    """
)


@pytest.fixture
def server_command(tmp_path):
    script = tmp_path / "fake_mcp_server.py"
    script.write_text(SERVER_SCRIPT, encoding="utf-8")
    return [sys.executable, "-u", str(script)]


@pytest_asyncio.fixture
async def provider(server_command):
    stdio = StdioProvider(name="fake", command=server_command, timeout=5.0)
    await stdio.connect()
    yield stdio
    await stdio.disconnect()


class TestStdioConnect:
    """Tests for the handshake and lifecycle."""

    async def test_connect_reports_server_info(self, provider):
        """Test the initialize handshake, skipping noise on stdout."""
        assert provider.is_connected
        assert provider.server_info.name == "fake-server"
        assert provider.server_info.version == "1.2.3"

    async def test_disconnect_is_idempotent(self, server_command):
        """Test that disconnect can be called twice."""
        stdio = StdioProvider(name="fake", command=server_command)
        await stdio.connect()

        await stdio.disconnect()
        await stdio.disconnect()

        assert not stdio.is_connected

    async def test_context_manager(self, server_command):
        """Test async with connects and disconnects."""
        async with StdioProvider(name="fake", command=server_command) as stdio:
            assert stdio.is_connected
        assert not stdio.is_connected

    async def test_missing_command(self):
        """Test that an unknown executable is a connection error."""
        stdio = StdioProvider(name="ghost", command=["definitely-not-a-real-binary-xyz"])

        with pytest.raises(ProviderConnectionError):
            await stdio.connect()

    def test_empty_command_rejected(self):
        """Test constructor validation."""
        with pytest.raises(ValueError):
            StdioProvider(name="empty", command=[])


class TestStdioCalls:
    """Tests for tools/list and tools/call."""

    async def test_list_tools(self, provider):
        """Test that advertised tools are parsed."""
        tools = await provider.list_tools()

        assert [tool.name for tool in tools] == ["echo", "fail"]
        assert tools[0].description == "Echo arguments"
        assert tools[0].input_schema["type"] == "object"
        assert tools[1].input_schema == {}

    async def test_call_tool(self, provider):
        """Test a successful call."""
        result = await provider.call_tool("echo", {"text": "hi"})

        assert result.is_error is False
        assert result.text == '{"text": "hi"}'

    async def test_sequential_calls(self, provider):
        """Test that request ids stay matched across calls."""
        first = await provider.call_tool("echo", {"n": 1})
        second = await provider.call_tool("echo", {"n": 2})

        assert first.text == '{"n": 1}'
        assert second.text == '{"n": 2}'

    async def test_json_rpc_error(self, provider):
        """Test that an error response raises ProviderProtocolError."""
        with pytest.raises(ProviderProtocolError, match="tool exploded"):
            await provider.call_tool("fail", {})

    async def test_timeout(self, provider):
        """Test that an unanswered call times out."""
        with pytest.raises(ProviderTimeoutError):
            await provider.call_tool("hang", {}, timeout=0.2)

    async def test_process_exit(self, provider):
        """Test that a dying provider is a connection error."""
        with pytest.raises(ProviderConnectionError):
            await provider.call_tool("crash", {})
