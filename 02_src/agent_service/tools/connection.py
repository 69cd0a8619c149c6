"""Tool provider connection interface.

A ProviderConnection is the only place that knows which transport serves a
provider. The broker holds connections by provider name and talks to them
through this interface alone.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from ..models import ToolResult

# MCP protocol version we speak
PROTOCOL_VERSION = "2024-11-05"
CLIENT_INFO = {"name": "agent-service", "version": "0.1.0"}


class ProviderError(Exception):
    """Base exception for provider transport errors."""

    def __init__(self, message: str, cause: Exception | None = None):
        super().__init__(message)
        self.cause = cause


class ProviderConnectionError(ProviderError):
    """Error establishing or maintaining the connection."""


class ProviderProtocolError(ProviderError):
    """Invalid or error response from the provider."""


class ProviderTimeoutError(ProviderError):
    """Provider did not answer in time."""


@dataclass
class ServerInfo:
    """What a provider reported during the initialize handshake."""

    name: str
    version: str
    protocol_version: str = PROTOCOL_VERSION

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ServerInfo":
        server_info = data.get("serverInfo", {}) or {}
        return cls(
            name=server_info.get("name", "unknown"),
            version=server_info.get("version", "unknown"),
            protocol_version=data.get("protocolVersion", PROTOCOL_VERSION),
        )


@dataclass
class ToolDefinition:
    """A tool as advertised by ``tools/list``."""

    name: str
    description: str = ""
    input_schema: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ToolDefinition":
        return cls(
            name=data.get("name", ""),
            description=data.get("description") or "",
            input_schema=data.get("inputSchema") or {},
        )


def build_request(request_id: int, method: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
    """Build a JSON-RPC 2.0 request."""
    request: dict[str, Any] = {"jsonrpc": "2.0", "id": request_id, "method": method}
    if params is not None:
        request["params"] = params
    return request


def build_notification(method: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
    """Build a JSON-RPC 2.0 notification (no id, no response)."""
    notification: dict[str, Any] = {"jsonrpc": "2.0", "method": method}
    if params is not None:
        notification["params"] = params
    return notification


def unwrap_response(data: Any) -> dict[str, Any]:
    """Return the ``result`` of a JSON-RPC response or raise on ``error``."""
    if not isinstance(data, dict):
        raise ProviderProtocolError(f"Unexpected JSON-RPC payload: {str(data)[:100]}")
    error = data.get("error")
    if error:
        code = error.get("code", "unknown") if isinstance(error, dict) else "unknown"
        message = error.get("message", "Unknown error") if isinstance(error, dict) else str(error)
        raise ProviderProtocolError(f"Provider error ({code}): {message}")
    result = data.get("result")
    if result is None:
        return {}
    if not isinstance(result, dict):
        raise ProviderProtocolError(f"Unexpected JSON-RPC result: {str(result)[:100]}")
    return result


def parse_tool_list(result: dict[str, Any]) -> list[ToolDefinition]:
    """Read the definitions out of a ``tools/list`` result.

    Raises:
        ProviderProtocolError: If ``tools`` is not a list of objects
    """
    tools = result.get("tools")
    if tools is None:
        return []
    if not isinstance(tools, list):
        raise ProviderProtocolError(f"tools/list returned {type(tools).__name__}, expected a list")
    for tool in tools:
        if not isinstance(tool, dict) or not isinstance(tool.get("name", ""), str):
            raise ProviderProtocolError(f"Malformed tool entry: {str(tool)[:100]}")
    return [ToolDefinition.from_dict(tool) for tool in tools]


def initialize_params() -> dict[str, Any]:
    return {
        "protocolVersion": PROTOCOL_VERSION,
        "capabilities": {"tools": {}},
        "clientInfo": CLIENT_INFO,
    }


class ProviderConnection(ABC):
    """A live connection to one tool provider.

    Implementations:
        - StdioProvider: managed subprocess, newline-delimited JSON-RPC
        - HttpProvider: JSON-RPC over HTTP POST (plain JSON or SSE replies)
    """

    def __init__(self, name: str):
        self._name = name

    @property
    def name(self) -> str:
        return self._name

    @abstractmethod
    async def connect(self) -> ServerInfo:
        """Open the channel and perform the initialize handshake.

        Raises:
            ProviderConnectionError: If the channel cannot be opened
            ProviderProtocolError: If the handshake fails
            ProviderTimeoutError: If the provider does not answer
        """
        ...

    @abstractmethod
    async def disconnect(self) -> None:
        """Close the channel. Idempotent."""
        ...

    @abstractmethod
    async def list_tools(self) -> list[ToolDefinition]:
        """Return the tools the provider advertises."""
        ...

    @abstractmethod
    async def call_tool(
        self,
        tool_name: str,
        arguments: dict[str, Any],
        timeout: float | None = None,
    ) -> ToolResult:
        """Invoke a tool and return its normalized result."""
        ...

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        """Whether the connection is usable."""
        ...

    async def __aenter__(self) -> "ProviderConnection":
        await self.connect()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.disconnect()
