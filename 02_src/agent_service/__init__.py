"""Core module."""

from .app import Application, IApplication
from .config import Settings
from .dedup import DedupCache, IDedupCache
from .event_bus import EventBus, IEventBus, Subscription
from .llm import ILLMProvider, LLMProvider
from .models import (
    ChatMessage,
    Completion,
    Event,
    EventKind,
    Requester,
    Run,
    RunContext,
    RunRecord,
    RunRequest,
    RunStatus,
    ToolCall,
    ToolDescriptor,
    ToolResult,
)
from .orchestrator import IRunOrchestrator, RunOrchestrator, SubmitResult
from .storage import AuditStore, IAuditStore
from .tools import IToolBroker, ToolBroker

__all__ = [
    # Application
    "Application",
    "IApplication",
    "Settings",
    # Models
    "Requester",
    "Run",
    "RunContext",
    "RunRecord",
    "RunRequest",
    "RunStatus",
    "Event",
    "EventKind",
    "ToolDescriptor",
    "ToolResult",
    "ChatMessage",
    "Completion",
    "ToolCall",
    # Components
    "IAuditStore",
    "AuditStore",
    "IEventBus",
    "EventBus",
    "Subscription",
    "IDedupCache",
    "DedupCache",
    "IToolBroker",
    "ToolBroker",
    "ILLMProvider",
    "LLMProvider",
    "IRunOrchestrator",
    "RunOrchestrator",
    "SubmitResult",
]
