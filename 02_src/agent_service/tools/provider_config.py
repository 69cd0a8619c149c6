"""Tool provider configuration and connection construction."""

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, TypeAdapter, model_validator

from ..logging_config import get_logger
from .connection import ProviderConnection
from .http import HttpProvider
from .stdio import StdioProvider

logger = get_logger(__name__)


class ProviderConfig(BaseModel):
    """One entry of the provider configuration file."""

    name: str = Field(min_length=1)
    transport: Literal["stdio", "http"]
    # stdio transport
    command: str | None = None
    args: list[str] = Field(default_factory=list)
    env: dict[str, str] = Field(default_factory=dict)
    cwd: str | None = None
    # http transport
    url: str | None = None
    headers: dict[str, str] = Field(default_factory=dict)

    timeout: float = Field(default=30.0, gt=0)

    @model_validator(mode="after")
    def _check_transport_fields(self) -> "ProviderConfig":
        if self.transport == "stdio" and not self.command:
            raise ValueError('stdio transport requires "command"')
        if self.transport == "http":
            if not self.url:
                raise ValueError('http transport requires "url"')
            if not self.url.startswith(("http://", "https://")):
                raise ValueError('"url" must be an http(s) URL')
        return self


_PROVIDERS_FILE = TypeAdapter(list[ProviderConfig])


def load_provider_configs(path: str | Path) -> list[ProviderConfig]:
    """Read the provider configuration file (a JSON array).

    A missing file means zero providers. Duplicate names keep the first
    entry.
    """
    file_path = Path(path)
    if not file_path.exists():
        logger.warning(
            "Tool provider config not found; starting with 0 providers",
            extra={"context": {"path": str(file_path)}},
        )
        return []

    configs = _PROVIDERS_FILE.validate_json(file_path.read_text(encoding="utf-8"))

    seen: set[str] = set()
    unique: list[ProviderConfig] = []
    for config in configs:
        if config.name in seen:
            logger.warning("Duplicate tool provider %s ignored", config.name)
            continue
        seen.add(config.name)
        unique.append(config)
    return unique


def create_connection(config: ProviderConfig) -> ProviderConnection:
    """Build the connection for a provider's transport."""
    if config.transport == "stdio":
        return StdioProvider(
            name=config.name,
            command=[config.command, *config.args],
            environment=config.env,
            cwd=config.cwd,
            timeout=config.timeout,
        )
    if config.transport == "http":
        return HttpProvider(
            name=config.name,
            url=config.url,
            timeout=config.timeout,
            headers=config.headers,
        )
    raise ValueError(f"Unsupported transport: {config.transport}")
