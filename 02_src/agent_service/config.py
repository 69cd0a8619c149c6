"""Project-level configuration and path helpers."""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Union

PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
DATA_DIR = PROJECT_ROOT / "03_data"
LOGS_DIR = PROJECT_ROOT / "04_logs"
DEFAULT_DB_PATH = DATA_DIR / "agent_service.db"
DEFAULT_LOG_PATH = LOGS_DIR / "app.log"
DEFAULT_MCP_SERVERS_PATH = PROJECT_ROOT / "mcp-servers.json"

# Third-party loggers held above the root level
DEFAULT_QUIET_LOGGERS = ("httpx", "httpcore", "anthropic", "uvicorn.access")

DATA_DIR.mkdir(parents=True, exist_ok=True)
LOGS_DIR.mkdir(parents=True, exist_ok=True)


PathLike = Union[str, Path]


def resolve_db_path(env_value: PathLike | None = None) -> PathLike:
    """Resolve DATABASE_URL to an absolute path."""
    if not env_value:
        return DEFAULT_DB_PATH

    if str(env_value) == ":memory:":
        return ":memory:"

    candidate = Path(env_value)
    return candidate if candidate.is_absolute() else PROJECT_ROOT / candidate


def resolve_project_path(env_value: PathLike | None, default: Path) -> Path:
    """Resolve a path relative to the project root."""
    if not env_value:
        return default
    candidate = Path(env_value)
    return candidate if candidate.is_absolute() else PROJECT_ROOT / candidate


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_list(name: str) -> list[str]:
    value = os.getenv(name, "")
    return [item.strip() for item in value.split(",") if item.strip()]


def _env_log_file() -> Path | None:
    # LOG_FILE set but empty disables the file handler
    value = os.getenv("LOG_FILE")
    if value is None:
        return DEFAULT_LOG_PATH
    return resolve_project_path(value, DEFAULT_LOG_PATH) if value.strip() else None


@dataclass
class Settings:
    """Runtime settings for the agent service."""

    api_host: str = "localhost"
    api_port: int = 8080
    public_base_url: str = ""

    anthropic_api_key: str | None = None
    model_name: str = "claude-3-5-sonnet-20241022"
    model_max_tokens: int = 2000
    model_timeout: float = 120.0

    mcp_servers_config: Path = DEFAULT_MCP_SERVERS_PATH
    mcp_allowed_tools: list[str] | None = None
    tool_timeout: float = 30.0

    dedup_window_seconds: float = 5.0
    heartbeat_interval: float = 15.0
    terminal_grace: float = 0.25
    replay_grace: float = 30.0
    max_event_history: int = 1000
    stream_tokens: bool = True

    database_url: PathLike | None = None
    log_level: str = "INFO"
    log_file: Path | None = DEFAULT_LOG_PATH
    log_quiet_loggers: tuple[str, ...] = DEFAULT_QUIET_LOGGERS
    log_quiet_level: str = "WARNING"

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from environment variables."""
        return cls(
            api_host=os.getenv("API_HOST", "localhost"),
            api_port=int(os.getenv("API_PORT", "8080")),
            public_base_url=os.getenv("PUBLIC_BASE_URL", ""),
            anthropic_api_key=os.getenv("ANTHROPIC_API_KEY"),
            model_name=os.getenv("MODEL_NAME", "claude-3-5-sonnet-20241022"),
            model_max_tokens=int(os.getenv("MODEL_MAX_TOKENS", "2000")),
            model_timeout=float(os.getenv("MODEL_TIMEOUT", "120")),
            mcp_servers_config=resolve_project_path(
                os.getenv("MCP_SERVERS_CONFIG"), DEFAULT_MCP_SERVERS_PATH
            ),
            mcp_allowed_tools=_env_list("MCP_ALLOWED_TOOLS") or None,
            tool_timeout=float(os.getenv("TOOL_TIMEOUT", "30")),
            dedup_window_seconds=float(os.getenv("DEDUP_WINDOW_SECONDS", "5")),
            heartbeat_interval=float(os.getenv("HEARTBEAT_INTERVAL", "15")),
            terminal_grace=float(os.getenv("TERMINAL_GRACE", "0.25")),
            replay_grace=float(os.getenv("REPLAY_GRACE", "30")),
            max_event_history=int(os.getenv("MAX_EVENT_HISTORY", "1000")),
            stream_tokens=_env_bool("STREAM_TOKENS", True),
            database_url=os.getenv("DATABASE_URL"),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_file=_env_log_file(),
            log_quiet_loggers=tuple(_env_list("LOG_QUIET_LOGGERS")) or DEFAULT_QUIET_LOGGERS,
            log_quiet_level=os.getenv("LOG_QUIET_LEVEL", "WARNING"),
        )
