"""Pytest configuration and fixtures."""

import sys
from pathlib import Path

import pytest
import pytest_asyncio

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from agent_service.tools import ProviderConfig, ToolBroker  # noqa: E402


@pytest_asyncio.fixture
async def storage():
    """Create in-memory audit store for testing."""
    from agent_service.storage import AuditStore

    st = AuditStore(":memory:")
    await st.init()
    yield st
    await st.close()


@pytest_asyncio.fixture
async def event_bus():
    """EventBus with short grace periods."""
    from agent_service.event_bus import EventBus

    bus = EventBus(
        heartbeat_interval=60.0,
        terminal_grace=0.01,
        replay_grace=0.2,
        max_history=100,
    )
    yield bus
    await bus.close()


@pytest.fixture
def make_broker():
    """Build a ToolBroker over fake connections and run discovery."""

    async def _make(*connections, tool_timeout: float = 5.0) -> ToolBroker:
        by_name = {connection.name: connection for connection in connections}
        broker = ToolBroker(
            connection_factory=lambda config: by_name[config.name],
            tool_timeout=tool_timeout,
        )
        configs = [
            ProviderConfig(name=name, transport="stdio", command="fake-provider")
            for name in by_name
        ]
        await broker.discover(configs)
        return broker

    return _make


@pytest_asyncio.fixture
async def make_orchestrator(storage, event_bus):
    """Build a RunOrchestrator wired to the test bus and store."""
    from agent_service.dedup import DedupCache
    from agent_service.orchestrator import RunOrchestrator

    orchestrators = []

    def _make(gateway, broker=None, dedup=None, **kwargs):
        orchestrator = RunOrchestrator(
            model_gateway=gateway,
            tool_broker=broker or ToolBroker(),
            event_bus=event_bus,
            dedup_cache=dedup or DedupCache(window_seconds=5.0),
            audit_store=storage,
            **kwargs,
        )
        orchestrators.append(orchestrator)
        return orchestrator

    yield _make

    for orchestrator in orchestrators:
        await orchestrator.stop()
