"""StdioProvider - tool provider spawned as a subprocess.

The provider speaks newline-delimited JSON-RPC 2.0 (MCP) over its
stdin/stdout. Lines that are not a response to the pending request
(notifications, log noise, late replies to timed-out requests) are skipped.
"""

import asyncio
import json
import os
from typing import Any

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

DEFAULT_TIMEOUT = 30.0  # seconds
DEFAULT_INIT_TIMEOUT = 10.0  # seconds for the initialize handshake
STREAM_LIMIT = 4 * 1024 * 1024  # large tool results arrive as one line


class StdioProvider(ProviderConnection):
    """Tool provider running as a managed child process.

    Requests and their responses are serialized with a lock, so concurrent
    tool calls against one provider queue up instead of interleaving on the
    pipe.
    """

    def __init__(
        self,
        name: str,
        command: list[str],
        environment: dict[str, str] | None = None,
        cwd: str | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        super().__init__(name)
        if not command:
            raise ValueError("Command cannot be empty")

        self._command = command
        self._environment = environment or {}
        self._cwd = cwd
        self._timeout = timeout

        self._process: asyncio.subprocess.Process | None = None
        self._request_id = 0
        self._lock = asyncio.Lock()
        self._server_info: ServerInfo | None = None
        self._stderr_task: asyncio.Task | None = None

    async def connect(self) -> ServerInfo:
        """Spawn the subprocess and perform the initialize handshake."""
        if self._process is not None:
            raise ProviderConnectionError(f"Provider {self.name} already connected")

        env = {**os.environ, **self._environment}

        try:
            logger.debug("Spawning tool provider %s: %s", self.name, " ".join(self._command))
            self._process = await asyncio.create_subprocess_exec(
                *self._command,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=env,
                cwd=self._cwd,
                limit=STREAM_LIMIT,
            )
        except FileNotFoundError as e:
            raise ProviderConnectionError(f"Provider command not found: {self._command[0]}", e) from e
        except OSError as e:
            raise ProviderConnectionError(f"Failed to spawn provider {self.name}: {e}", e) from e

        self._stderr_task = asyncio.create_task(self._read_stderr())

        try:
            result = await self._send_request(
                "initialize", initialize_params(), timeout=DEFAULT_INIT_TIMEOUT
            )
            self._server_info = ServerInfo.from_dict(result)
            await self._send_notification("notifications/initialized", {})
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
        """Terminate the subprocess. Idempotent."""
        if self._stderr_task:
            self._stderr_task.cancel()
            try:
                await self._stderr_task
            except asyncio.CancelledError:
                pass
            self._stderr_task = None

        if self._process:
            try:
                if self._process.stdin and not self._process.stdin.is_closing():
                    self._process.stdin.close()
                self._process.terminate()
                try:
                    await asyncio.wait_for(self._process.wait(), timeout=2.0)
                except asyncio.TimeoutError:
                    self._process.kill()
                    await self._process.wait()
            except ProcessLookupError:
                pass
            finally:
                self._process = None
                self._server_info = None
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
        return self._process is not None and self._process.returncode is None

    @property
    def server_info(self) -> ServerInfo | None:
        return self._server_info

    async def _send_request(
        self,
        method: str,
        params: dict[str, Any],
        timeout: float | None = None,
    ) -> dict[str, Any]:
        """Write a request line and wait for the matching response line."""
        if not self.is_connected or not self._process.stdin or not self._process.stdout:
            raise ProviderConnectionError(f"Provider {self.name} not connected")

        effective_timeout = timeout or self._timeout
        async with self._lock:
            self._request_id += 1
            request_id = self._request_id
            line = json.dumps(build_request(request_id, method, params)) + "\n"
            logger.debug("Provider %s request: %s (id=%s)", self.name, method, request_id)

            try:
                self._process.stdin.write(line.encode("utf-8"))
                await self._process.stdin.drain()
            except (BrokenPipeError, ConnectionResetError) as e:
                raise ProviderConnectionError(f"Provider {self.name} connection lost", e) from e

            try:
                response = await asyncio.wait_for(
                    self._read_response(request_id), timeout=effective_timeout
                )
            except asyncio.TimeoutError as e:
                raise ProviderTimeoutError(
                    f"Provider {self.name} did not respond within {effective_timeout}s", e
                ) from e

        return unwrap_response(response)

    async def _read_response(self, request_id: int) -> dict[str, Any]:
        while True:
            raw = await self._process.stdout.readline()
            if not raw:
                if self._process.returncode is not None:
                    raise ProviderConnectionError(
                        f"Provider {self.name} exited with code {self._process.returncode}"
                    )
                raise ProviderConnectionError(f"Provider {self.name} closed its output")

            try:
                message = json.loads(raw.decode("utf-8"))
            except (json.JSONDecodeError, UnicodeDecodeError):
                logger.debug("Provider %s wrote non-JSON line: %s", self.name, raw[:100])
                continue

            if not isinstance(message, dict):
                raise ProviderProtocolError(f"Invalid JSON-RPC message from {self.name}")
            if message.get("id") == request_id and "method" not in message:
                return message
            # notification, server-initiated request, or a stale reply
            logger.debug("Provider %s skipped message: %s", self.name, str(message)[:100])

    async def _send_notification(self, method: str, params: dict[str, Any]) -> None:
        if not self._process or not self._process.stdin:
            raise ProviderConnectionError(f"Provider {self.name} not connected")

        line = json.dumps(build_notification(method, params)) + "\n"
        try:
            self._process.stdin.write(line.encode("utf-8"))
            await self._process.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as e:
            raise ProviderConnectionError(f"Provider {self.name} connection lost", e) from e

    async def _read_stderr(self) -> None:
        """Forward the provider's stderr to our log."""
        if not self._process or not self._process.stderr:
            return
        try:
            while True:
                line = await self._process.stderr.readline()
                if not line:
                    break
                logger.warning(
                    "Provider %s stderr: %s",
                    self.name,
                    line.decode("utf-8", errors="replace").rstrip(),
                )
        except asyncio.CancelledError:
            pass

    def __repr__(self) -> str:
        status = "connected" if self.is_connected else "disconnected"
        return f"<StdioProvider {self.name} ({' '.join(self._command)}) [{status}]>"
