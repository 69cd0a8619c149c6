"""LLM Provider implementation using Anthropic Claude API."""

import asyncio
import json
import os
from typing import Any, Protocol

import anthropic

from ..errors import ModelGatewayError
from ..logging_config import get_logger
from ..models import ChatMessage, Completion, ToolCall

logger = get_logger(__name__)


class ILLMProvider(Protocol):
    """Abstraction for the model gateway."""

    async def complete(
        self,
        messages: list[ChatMessage],
        tools: list[dict] | None = None,
        temperature: float | None = None,
    ) -> Completion:
        """One model turn: final text or a batch of tool calls."""
        ...


class LLMProvider:
    """Anthropic Claude API provider."""

    def __init__(
        self,
        api_key: str | None = None,
        model: str = "claude-3-5-sonnet-20241022",
        max_tokens: int = 2000,
        timeout: float = 120.0,
    ):
        self._api_key = api_key or os.getenv("ANTHROPIC_API_KEY")
        if not self._api_key:
            raise ValueError("ANTHROPIC_API_KEY environment variable not set")

        self._model = model
        self._max_tokens = max_tokens
        self._timeout = timeout
        self._client = anthropic.AsyncAnthropic(api_key=self._api_key)

    @property
    def model(self) -> str:
        return self._model

    async def complete(
        self,
        messages: list[ChatMessage],
        tools: list[dict] | None = None,
        temperature: float | None = None,
    ) -> Completion:
        """Send the conversation and return the model's reply.

        Raises:
            ModelGatewayError: On timeout, API failure or unreadable reply
        """
        system, api_messages = to_anthropic_messages(messages)
        request: dict[str, Any] = {
            "model": self._model,
            "messages": api_messages,
            "max_tokens": self._max_tokens,
        }
        if system:
            request["system"] = system
        if tools:
            request["tools"] = tools
        if temperature is not None:
            request["temperature"] = temperature

        try:
            response = await asyncio.wait_for(
                self._client.messages.create(**request),
                timeout=self._timeout,
            )
            return from_anthropic_response(response)
        except asyncio.TimeoutError as e:
            raise ModelGatewayError(
                f"LLM API error: no response within {self._timeout}s", e
            ) from e
        except Exception as e:
            raise ModelGatewayError(f"LLM API error: {e}", e) from e


def to_anthropic_messages(messages: list[ChatMessage]) -> tuple[str, list[dict]]:
    """Split out the system prompt and convert the rest to API blocks.

    Consecutive tool results are folded into a single user message, which
    is how the API expects the answers to one batch of tool calls.
    """
    system_parts: list[str] = []
    converted: list[dict] = []

    for message in messages:
        if message.role == "system":
            system_parts.append(message.content)
            continue

        if message.role == "tool":
            block = {
                "type": "tool_result",
                "tool_use_id": message.tool_call_id,
                "content": message.content,
                "is_error": message.is_error,
            }
            previous = converted[-1] if converted else None
            if (
                previous is not None
                and previous["role"] == "user"
                and isinstance(previous["content"], list)
                and previous["content"]
                and previous["content"][-1].get("type") == "tool_result"
            ):
                previous["content"].append(block)
            else:
                converted.append({"role": "user", "content": [block]})
            continue

        if message.role == "assistant" and message.tool_calls:
            blocks: list[dict] = []
            if message.content:
                blocks.append({"type": "text", "text": message.content})
            for call in message.tool_calls:
                blocks.append(
                    {
                        "type": "tool_use",
                        "id": call.id,
                        "name": call.name,
                        "input": _call_input(call),
                    }
                )
            converted.append({"role": "assistant", "content": blocks})
            continue

        converted.append({"role": message.role, "content": message.content})

    return "\n\n".join(system_parts), converted


def from_anthropic_response(response: Any) -> Completion:
    """Collect text and tool_use blocks from an API response."""
    texts: list[str] = []
    tool_calls: list[ToolCall] = []
    for block in response.content:
        block_type = getattr(block, "type", "text")
        if block_type == "tool_use":
            tool_calls.append(
                ToolCall(
                    id=block.id,
                    name=block.name,
                    arguments=json.dumps(block.input or {}),
                )
            )
        elif block_type == "text":
            texts.append(block.text or "")

    return Completion(
        content="".join(texts),
        tool_calls=tool_calls,
        stop_reason=getattr(response, "stop_reason", None),
    )


def _call_input(call: ToolCall) -> dict:
    if not call.arguments:
        return {}
    try:
        value = json.loads(call.arguments)
    except json.JSONDecodeError:
        logger.warning(
            "Tool call arguments are not JSON, sending raw string",
            extra={"context": {"tool_call_id": call.id, "name": call.name}},
        )
        return {"args": call.arguments}
    return value if isinstance(value, dict) else {"args": call.arguments}
