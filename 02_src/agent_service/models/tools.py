"""Tool-related data models."""

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class ToolDescriptor:
    """A callable tool advertised by a provider."""

    provider_name: str
    tool_name: str
    fully_qualified_name: str  # model-facing function name
    description: str = ""
    input_schema: dict[str, Any] | None = None

    @property
    def display_name(self) -> str:
        return f"{self.provider_name}.{self.tool_name}"


@dataclass
class ToolResult:
    """Transport-agnostic tool result: content blocks plus an error flag."""

    content: list[dict[str, Any]] = field(default_factory=list)
    is_error: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "ToolResult":
        """Normalize an MCP ``tools/call`` result."""
        if not data:
            return cls()
        raw_content = data.get("content")
        if raw_content is None:
            content: list[dict[str, Any]] = []
        elif isinstance(raw_content, list):
            content = [
                block if isinstance(block, dict) else {"type": "text", "text": str(block)}
                for block in raw_content
            ]
        else:
            content = [{"type": "text", "text": str(raw_content)}]
        return cls(content=content, is_error=bool(data.get("isError", False)))

    @classmethod
    def error(cls, message: str) -> "ToolResult":
        return cls(content=[{"type": "text", "text": message}], is_error=True)

    def to_dict(self) -> dict[str, Any]:
        return {"content": self.content, "isError": self.is_error}

    @property
    def text(self) -> str:
        """Concatenated text blocks."""
        return "\n".join(
            block.get("text", "") for block in self.content if block.get("type") == "text"
        )
