"""Provider-neutral chat models exchanged with the Model Gateway."""

from dataclasses import dataclass, field
from typing import Literal


@dataclass(frozen=True)
class ToolCall:
    """A function call requested by the model."""

    id: str
    name: str
    arguments: str  # JSON-encoded


@dataclass
class ChatMessage:
    """A single message in a run's conversation."""

    role: Literal["system", "user", "assistant", "tool"]
    content: str
    tool_calls: list[ToolCall] = field(default_factory=list)
    tool_call_id: str | None = None  # set on role="tool"
    is_error: bool = False


@dataclass
class Completion:
    """A single model response."""

    content: str
    tool_calls: list[ToolCall] = field(default_factory=list)
    stop_reason: str | None = None
