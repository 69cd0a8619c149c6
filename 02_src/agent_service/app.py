"""Application bootstrap and lifecycle management."""

from typing import Protocol

from .config import Settings
from .dedup import DedupCache
from .event_bus import EventBus
from .llm import ILLMProvider, LLMProvider
from .logging_config import get_logger
from .orchestrator import RunOrchestrator
from .profiles import ProfileRegistry
from .storage import AuditStore
from .tools import ToolBroker, load_provider_configs

logger = get_logger(__name__)


class IApplication(Protocol):
    """Bootstrap and lifecycle."""

    async def start(self) -> None:
        """Initialize components in dependency order."""
        ...

    async def stop(self) -> None:
        """Shutdown in reverse order."""
        ...


class Application:
    """Main application bootstrap.

    ``model_gateway`` and ``tool_broker`` may be injected (tests); otherwise
    they are built from settings on start.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        db_path: str | None = None,
        model_gateway: ILLMProvider | None = None,
        tool_broker: ToolBroker | None = None,
    ):
        self._settings = settings or Settings.from_env()
        self._db_path = db_path if db_path is not None else self._settings.database_url

        # Components (will be initialized in start())
        self._storage: AuditStore | None = None
        self._event_bus: EventBus | None = None
        self._dedup: DedupCache | None = None
        self._tool_broker: ToolBroker | None = tool_broker
        self._llm: ILLMProvider | None = model_gateway
        self._orchestrator: RunOrchestrator | None = None
        self._started = False

    @property
    def settings(self) -> Settings:
        return self._settings

    async def start(self) -> None:
        """Initialize components in dependency order."""
        logger.info("Starting application")
        settings = self._settings

        # 1. Storage (no dependencies)
        self._storage = AuditStore(self._db_path)
        await self._storage.init()
        logger.info("Audit store initialized")

        # 2. EventBus (no dependencies)
        self._event_bus = EventBus(
            heartbeat_interval=settings.heartbeat_interval,
            terminal_grace=settings.terminal_grace,
            replay_grace=settings.replay_grace,
            max_history=settings.max_event_history,
        )
        logger.info("EventBus initialized")

        # 3. Dedup cache (no dependencies)
        self._dedup = DedupCache(window_seconds=settings.dedup_window_seconds)

        # 4. Tool broker (connects providers from the config file)
        if self._tool_broker is None:
            self._tool_broker = ToolBroker(tool_timeout=settings.tool_timeout)
        configs = load_provider_configs(settings.mcp_servers_config)
        await self._tool_broker.discover(configs)
        logger.info(
            "Tool broker initialized",
            extra={"context": {"providers": len(configs), "tools": len(self._tool_broker.list_names())}},
        )

        # 5. Model gateway (no internal dependencies)
        if self._llm is None:
            self._llm = LLMProvider(
                api_key=settings.anthropic_api_key,
                model=settings.model_name,
                max_tokens=settings.model_max_tokens,
                timeout=settings.model_timeout,
            )
        logger.info("LLM provider initialized")

        # 6. Orchestrator (depends on everything above)
        self._orchestrator = RunOrchestrator(
            model_gateway=self._llm,
            tool_broker=self._tool_broker,
            event_bus=self._event_bus,
            dedup_cache=self._dedup,
            audit_store=self._storage,
            profiles=ProfileRegistry(default_allowlist=settings.mcp_allowed_tools),
            public_base_url=settings.public_base_url,
            stream_tokens=settings.stream_tokens,
        )
        self._started = True
        logger.info("All components initialized successfully")

    async def stop(self) -> None:
        """Shutdown in reverse order."""
        if self._orchestrator:
            await self._orchestrator.stop()
        if self._tool_broker:
            await self._tool_broker.close()
            logger.info("Tool providers disconnected")
        if self._event_bus:
            await self._event_bus.close()
        if self._storage:
            await self._storage.close()
            logger.info("Storage closed")
        self._started = False

    @property
    def storage(self) -> AuditStore:
        """Get audit store instance."""
        if not self._started or not self._storage:
            raise RuntimeError("Application not started")
        return self._storage

    @property
    def event_bus(self) -> EventBus:
        """Get event bus instance."""
        if not self._started or not self._event_bus:
            raise RuntimeError("Application not started")
        return self._event_bus

    @property
    def tool_broker(self) -> ToolBroker:
        """Get tool broker instance."""
        if not self._started or not self._tool_broker:
            raise RuntimeError("Application not started")
        return self._tool_broker

    @property
    def orchestrator(self) -> RunOrchestrator:
        """Get orchestrator instance."""
        if not self._started or not self._orchestrator:
            raise RuntimeError("Application not started")
        return self._orchestrator
