"""ToolBroker: discovers provider tools and routes calls back to them."""

import asyncio
import json
import re
from typing import Any, Callable, Iterable, Protocol

from ..errors import (
    InvalidArguments,
    ProviderUnavailable,
    ToolInvocationError,
    ToolRoutingError,
)
from ..logging_config import get_logger
from ..models import ToolDescriptor, ToolResult
from .connection import (
    ProviderConnection,
    ProviderConnectionError,
    ProviderError,
    ProviderTimeoutError,
    ToolDefinition,
)
from .naming import decode_function_name, encode_function_name, is_truncated
from .provider_config import ProviderConfig, create_connection

logger = get_logger(__name__)

ConnectionFactory = Callable[[ProviderConfig], ProviderConnection]

# Used when a provider does not advertise an object input schema
GENERIC_ARGS_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "args": {
            "type": "string",
            "description": 'JSON-encoded object of arguments for this tool. Example: {"foo":"bar"}',
        }
    },
    "required": ["args"],
}


def normalize_patterns(patterns: Iterable[str] | None) -> list[str]:
    """Split comma-joined patterns and drop blanks."""
    if not patterns:
        return []
    return [
        part.strip()
        for pattern in patterns
        for part in pattern.split(",")
        if part.strip()
    ]


def _compile_pattern(pattern: str) -> re.Pattern:
    return re.compile(
        "^" + ".*".join(re.escape(piece) for piece in pattern.lower().split("*")) + "$"
    )


def matches_any(candidates: Iterable[str], patterns: list[str]) -> bool:
    """Case-insensitive ``*`` glob match of any candidate against any pattern.

    An empty pattern list matches everything.
    """
    if not patterns:
        return True
    compiled = [_compile_pattern(p) for p in patterns]
    return any(
        regex.match(candidate.lower()) for candidate in candidates for regex in compiled
    )


class IToolBroker(Protocol):
    """Registry and router for provider tools."""

    async def discover(self, configs: list[ProviderConfig]) -> None:
        """Connect providers and index their tools."""
        ...

    def list_allowed_functions(self, patterns: list[str] | None) -> list[ToolDescriptor]:
        """Descriptors whose names match the allow-list."""
        ...

    def function_schemas(self, patterns: list[str] | None) -> list[dict[str, Any]]:
        """Model-facing function schemas for the allow-list."""
        ...

    async def invoke(self, name: str, arguments_json: str | None) -> ToolResult:
        """Execute a tool by its function name."""
        ...

    def list_names(self) -> list[str]:
        """All registered function names."""
        ...


class ToolBroker:
    """Owns provider connections and the tool index.

    The connection table is read-mostly: it is written during discovery and
    when a single provider is reconnected.
    """

    def __init__(
        self,
        connection_factory: ConnectionFactory = create_connection,
        tool_timeout: float = 30.0,
    ):
        self._connection_factory = connection_factory
        self._tool_timeout = tool_timeout
        self._configs: dict[str, ProviderConfig] = {}
        self._connections: dict[str, ProviderConnection] = {}
        self._tools: dict[str, ToolDescriptor] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    # Discovery

    async def discover(self, configs: list[ProviderConfig]) -> None:
        """Connect every configured provider and index its tools.

        A provider that fails is logged and skipped.
        """
        for config in configs:
            self._configs[config.name] = config

        await asyncio.gather(*(self._discover_one(config) for config in configs))
        logger.info(
            "Tool discovery finished",
            extra={
                "context": {
                    "providers": sorted(self._connections),
                    "tool_count": len(self._tools),
                }
            },
        )

    async def _discover_one(self, config: ProviderConfig) -> None:
        try:
            async with self._lock_for(config.name):
                await self._connect(config)
        except ProviderUnavailable as e:
            logger.error(
                "Failed to connect tool provider %s: %s",
                config.name,
                e,
                extra={"context": {"provider": config.name}},
            )

    async def reconnect(self, provider_name: str) -> None:
        """Re-establish one provider's connection, leaving others untouched.

        Raises:
            ProviderUnavailable: If the provider is unknown or cannot connect
        """
        config = self._configs.get(provider_name)
        if config is None:
            raise ProviderUnavailable(f"Unknown tool provider: {provider_name}")

        async with self._lock_for(provider_name):
            current = self._connections.get(provider_name)
            if current is not None and current.is_connected:
                return
            await self._drop_connection(provider_name)
            logger.info("Reconnecting tool provider %s", provider_name)
            await self._connect(config)

    async def _connect(self, config: ProviderConfig) -> None:
        try:
            connection = self._connection_factory(config)
        except ValueError as e:
            raise ProviderUnavailable(f"Tool provider {config.name} misconfigured: {e}", e) from e

        try:
            await connection.connect()
            definitions = await connection.list_tools()
        except ProviderError as e:
            await connection.disconnect()
            raise ProviderUnavailable(f"Tool provider {config.name} unavailable: {e}", e) from e
        except Exception as e:
            logger.exception(
                "Unexpected error connecting tool provider %s",
                config.name,
                extra={"context": {"provider": config.name}},
            )
            await connection.disconnect()
            raise ProviderUnavailable(f"Tool provider {config.name} unavailable: {e}", e) from e

        self._connections[config.name] = connection
        self._register(config.name, definitions)
        logger.info(
            "Tool provider connected",
            extra={"context": {"provider": config.name, "tool_count": len(definitions)}},
        )

    def _register(self, provider_name: str, definitions: list[ToolDefinition]) -> None:
        # Replace this provider's entries only
        for name in [n for n, d in self._tools.items() if d.provider_name == provider_name]:
            del self._tools[name]

        for definition in definitions:
            if not definition.name:
                continue
            function_name = encode_function_name(provider_name, definition.name)
            existing = self._tools.get(function_name)
            if existing is not None:
                logger.warning(
                    "Tool name collision, keeping first registration",
                    extra={
                        "context": {
                            "function_name": function_name,
                            "kept": existing.display_name,
                            "dropped": f"{provider_name}.{definition.name}",
                        }
                    },
                )
                continue
            if is_truncated(provider_name, definition.name):
                logger.warning(
                    "Tool function name truncated",
                    extra={"context": {"function_name": function_name}},
                )
            self._tools[function_name] = ToolDescriptor(
                provider_name=provider_name,
                tool_name=definition.name,
                fully_qualified_name=function_name,
                description=definition.description,
                input_schema=definition.input_schema or None,
            )

    async def _drop_connection(self, provider_name: str) -> None:
        connection = self._connections.pop(provider_name, None)
        if connection is not None:
            await connection.disconnect()

    def _lock_for(self, provider_name: str) -> asyncio.Lock:
        lock = self._locks.get(provider_name)
        if lock is None:
            lock = self._locks[provider_name] = asyncio.Lock()
        return lock

    # Introspection

    def list_names(self) -> list[str]:
        return sorted(self._tools)

    def get(self, name: str) -> ToolDescriptor | None:
        return self._tools.get(name)

    @property
    def providers(self) -> list[str]:
        """Names of providers with a live connection."""
        return sorted(n for n, c in self._connections.items() if c.is_connected)

    def list_allowed_functions(self, patterns: list[str] | None) -> list[ToolDescriptor]:
        """Descriptors matching the allow-list (empty list means all)."""
        normalized = normalize_patterns(patterns)
        return [
            descriptor
            for name, descriptor in sorted(self._tools.items())
            if matches_any((name, descriptor.display_name), normalized)
        ]

    def function_schemas(self, patterns: list[str] | None) -> list[dict[str, Any]]:
        """Function-calling schema for the allowed tools."""
        return [
            {
                "name": descriptor.fully_qualified_name,
                "description": descriptor.description or f"Tool {descriptor.display_name}",
                "input_schema": _input_schema(descriptor),
            }
            for descriptor in self.list_allowed_functions(patterns)
        ]

    # Invocation

    def resolve(self, name: str) -> tuple[str, str]:
        """Map a function name to ``(provider, tool)``."""
        descriptor = self._tools.get(name)
        if descriptor is not None:
            return descriptor.provider_name, descriptor.tool_name
        return decode_function_name(name)

    async def invoke(self, name: str, arguments_json: str | None) -> ToolResult:
        """Execute a tool by its function name.

        Raises:
            ToolRoutingError: Unknown or malformed function name
            ProviderUnavailable: Provider down and reconnect failed
            InvalidArguments: Arguments are not a JSON object
            ToolInvocationError: Call failed or timed out
        """
        provider_name, tool_name = self.resolve(name)
        if provider_name not in self._configs:
            raise ToolRoutingError(f"Unknown tool provider '{provider_name}' in {name}")

        connection = self._connections.get(provider_name)
        if connection is None or not connection.is_connected:
            await self.reconnect(provider_name)
            connection = self._connections[provider_name]

        descriptor = self._tools.get(name)
        if descriptor is None:
            descriptor = self._tools.get(encode_function_name(provider_name, tool_name))
        if descriptor is None or descriptor.tool_name != tool_name:
            raise ToolRoutingError(f"Unknown tool '{tool_name}' on provider '{provider_name}'")

        arguments = _parse_arguments(arguments_json, descriptor)

        try:
            return await asyncio.wait_for(
                connection.call_tool(tool_name, arguments, timeout=self._tool_timeout),
                timeout=self._tool_timeout,
            )
        except (asyncio.TimeoutError, ProviderTimeoutError) as e:
            raise ToolInvocationError(
                f"Tool {descriptor.display_name} timed out after {self._tool_timeout}s", e
            ) from e
        except ProviderConnectionError as e:
            await self._drop_connection(provider_name)
            raise ToolInvocationError(f"Tool {descriptor.display_name} failed: {e}", e) from e
        except ProviderError as e:
            raise ToolInvocationError(f"Tool {descriptor.display_name} failed: {e}", e) from e

    async def close(self) -> None:
        """Disconnect every provider."""
        for provider_name in list(self._connections):
            await self._drop_connection(provider_name)
        self._tools.clear()


def _input_schema(descriptor: ToolDescriptor) -> dict[str, Any]:
    schema = descriptor.input_schema
    if isinstance(schema, dict) and schema.get("type") == "object":
        return schema
    return GENERIC_ARGS_SCHEMA


def _parse_arguments(
    arguments_json: str | None,
    descriptor: ToolDescriptor,
    unwrap: bool = True,
) -> dict[str, Any]:
    if not arguments_json or not arguments_json.strip():
        return {}
    try:
        arguments = json.loads(arguments_json)
    except json.JSONDecodeError as e:
        raise InvalidArguments(f"Invalid JSON arguments for {descriptor.display_name}: {e}", e) from e
    if not isinstance(arguments, dict):
        raise InvalidArguments(f"Arguments for {descriptor.display_name} must be a JSON object")

    # Unwrap the generic {"args": "<json>"} shape unless the tool has a real "args" field
    declared = (descriptor.input_schema or {}).get("properties", {})
    if (
        unwrap
        and set(arguments) == {"args"}
        and isinstance(arguments["args"], str)
        and "args" not in declared
    ):
        return _parse_arguments(arguments["args"], descriptor, unwrap=False)
    return arguments
