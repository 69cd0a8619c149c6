"""HttpProvider - tool provider reached over HTTP.

Implements the client side of MCP "streamable HTTP": every JSON-RPC message
is POSTed to the provider URL and the reply comes back either as plain JSON
or as a short Server-Sent Events body. A session id handed out during
``initialize`` is echoed on later requests.
"""

import json
from typing import Any

import httpx

from ..logging_config import get_logger
from ..models import ToolResult
from .connection import (
    ProviderConnection,
    ProviderConnectionError,
    ProviderProtocolError,
    ProviderTimeoutError,
    ServerInfo,
    ToolDefinition,
    build_notification,
    build_request,
    initialize_params,
    parse_tool_list,
    unwrap_response,
)

logger = get_logger(__name__)

SESSION_HEADER = "mcp-session-id"


class HttpProvider(ProviderConnection):
    """Tool provider behind an HTTP endpoint.

    Usage:
        provider = HttpProvider("search", url="http://search-mcp:3000/mcp")
        await provider.connect()
        tools = await provider.list_tools()
        result = await provider.call_tool("query", {"q": "status"})
        await provider.disconnect()
    """

    def __init__(
        self,
        name: str,
        url: str,
        timeout: float = 30.0,
        headers: dict[str, str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        super().__init__(name)
        self._url = url
        self._timeout = timeout
        self._headers = headers or {}
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._server_info: ServerInfo | None = None
        self._session_id: str | None = None
        self._is_connected = False
        self._request_id = 0

    async def connect(self) -> ServerInfo:
        """Create the HTTP client and perform the initialize handshake."""
        if self._is_connected and self._server_info is not None:
            return self._server_info

        logger.info("Connecting to HTTP tool provider %s at %s", self.name, self._url)
        self._client = httpx.AsyncClient(
            headers={
                "Content-Type": "application/json",
                "Accept": "application/json, text/event-stream",
                **self._headers,
            },
            timeout=self._timeout,
            transport=self._transport,
        )
        self._is_connected = True

        try:
            result = await self._send_request("initialize", initialize_params())
            self._server_info = ServerInfo.from_dict(result)
            await self._send_notification("notifications/initialized")
        except Exception:
            await self.disconnect()
            raise

        logger.info(
            "Tool provider %s connected (%s v%s)",
            self.name,
            self._server_info.name,
            self._server_info.version,
        )
        return self._server_info

    async def disconnect(self) -> None:
        """Close the session and HTTP client. Idempotent."""
        client = self._client
        session_id = self._session_id
        self._is_connected = False
        self._server_info = None
        self._session_id = None
        self._client = None

        if client is None:
            return
        if session_id:
            try:
                await client.delete(self._url, headers={SESSION_HEADER: session_id}, timeout=5.0)
            except httpx.HTTPError as e:
                logger.debug("Session close for %s failed: %s", self.name, e)
        await client.aclose()
        logger.debug("Tool provider %s disconnected", self.name)

    async def list_tools(self) -> list[ToolDefinition]:
        result = await self._send_request("tools/list", {})
        return parse_tool_list(result)

    async def call_tool(
        self,
        tool_name: str,
        arguments: dict[str, Any],
        timeout: float | None = None,
    ) -> ToolResult:
        result = await self._send_request(
            "tools/call",
            {"name": tool_name, "arguments": arguments},
            timeout=timeout,
        )
        return ToolResult.from_dict(result)

    @property
    def is_connected(self) -> bool:
        return self._is_connected and self._client is not None

    @property
    def server_info(self) -> ServerInfo | None:
        return self._server_info

    def _session_headers(self) -> dict[str, str]:
        return {SESSION_HEADER: self._session_id} if self._session_id else {}

    async def _send_request(
        self,
        method: str,
        params: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        if not self.is_connected:
            raise ProviderConnectionError(f"Provider {self.name} not connected")

        self._request_id += 1
        request_id = self._request_id
        effective_timeout = timeout or self._timeout
        logger.debug("Provider %s request: %s (id=%s)", self.name, method, request_id)

        try:
            response = await self._client.post(
                self._url,
                json=build_request(request_id, method, params),
                headers=self._session_headers(),
                timeout=effective_timeout,
            )
            response.raise_for_status()
        except httpx.TimeoutException as e:
            raise ProviderTimeoutError(
                f"Provider {self.name} did not respond within {effective_timeout}s", e
            ) from e
        except httpx.HTTPStatusError as e:
            raise ProviderProtocolError(
                f"Provider {self.name} returned HTTP {e.response.status_code}", e
            ) from e
        except httpx.RequestError as e:
            raise ProviderConnectionError(f"Provider {self.name} connection error: {e}", e) from e

        session_id = response.headers.get(SESSION_HEADER)
        if session_id:
            self._session_id = session_id

        return unwrap_response(self._parse_body(response, request_id))

    async def _send_notification(self, method: str, params: dict[str, Any] | None = None) -> None:
        try:
            response = await self._client.post(
                self._url,
                json=build_notification(method, params),
                headers=self._session_headers(),
                timeout=5.0,
            )
        except httpx.HTTPError as e:
            # Some servers reject notifications; the session still works
            logger.debug("Notification %s to %s failed: %s", method, self.name, e)
            return
        if response.status_code >= 400:
            logger.debug("Notification %s to %s returned %s", method, self.name, response.status_code)

    def _parse_body(self, response: httpx.Response, request_id: int) -> dict[str, Any]:
        content_type = response.headers.get("content-type", "")
        text = response.text

        if "text/event-stream" in content_type or text.startswith("event:"):
            return parse_sse_body(text, request_id)

        try:
            return response.json()
        except json.JSONDecodeError as e:
            raise ProviderProtocolError(f"Invalid JSON from {self.name}: {text[:100]}", e) from e

    def __repr__(self) -> str:
        status = "connected" if self.is_connected else "disconnected"
        return f"<HttpProvider {self.name} ({self._url}) [{status}]>"


def parse_sse_body(text: str, request_id: int) -> dict[str, Any]:
    """Pick the JSON-RPC response for ``request_id`` out of an SSE body."""
    fallback: dict[str, Any] | None = None
    for event in text.replace("\r\n", "\n").split("\n\n"):
        data_lines = [
            line[5:].lstrip() for line in event.split("\n") if line.startswith("data:")
        ]
        if not data_lines:
            continue
        try:
            message = json.loads("\n".join(data_lines))
        except json.JSONDecodeError as e:
            raise ProviderProtocolError(f"Failed to parse SSE JSON data: {e}", e) from e
        if not isinstance(message, dict):
            continue
        if message.get("id") == request_id:
            return message
        if fallback is None and ("result" in message or "error" in message):
            fallback = message

    if fallback is not None:
        return fallback
    raise ProviderProtocolError(f"No response found in SSE body: {text[:200]}")
