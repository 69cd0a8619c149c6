"""Core data models for the agent service."""

from .chat import ChatMessage, Completion, ToolCall
from .events import Event, EventKind
from .runs import Requester, Run, RunContext, RunRecord, RunRequest, RunStatus
from .tools import ToolDescriptor, ToolResult

__all__ = [
    # Runs
    "Requester",
    "Run",
    "RunContext",
    "RunRecord",
    "RunRequest",
    "RunStatus",
    # Events
    "Event",
    "EventKind",
    # Tools
    "ToolDescriptor",
    "ToolResult",
    # Chat
    "ChatMessage",
    "Completion",
    "ToolCall",
]
