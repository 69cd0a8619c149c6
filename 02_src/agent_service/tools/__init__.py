"""Tool broker module."""

from .broker import IToolBroker, ToolBroker, matches_any, normalize_patterns
from .connection import (
    ProviderConnection,
    ProviderConnectionError,
    ProviderError,
    ProviderProtocolError,
    ProviderTimeoutError,
    ServerInfo,
    ToolDefinition,
)
from .http import HttpProvider
from .naming import decode_function_name, encode_function_name
from .provider_config import ProviderConfig, create_connection, load_provider_configs
from .stdio import StdioProvider

__all__ = [
    "IToolBroker",
    "ToolBroker",
    "matches_any",
    "normalize_patterns",
    "ProviderConnection",
    "ProviderConnectionError",
    "ProviderError",
    "ProviderProtocolError",
    "ProviderTimeoutError",
    "ServerInfo",
    "ToolDefinition",
    "HttpProvider",
    "StdioProvider",
    "decode_function_name",
    "encode_function_name",
    "ProviderConfig",
    "create_connection",
    "load_provider_configs",
]
