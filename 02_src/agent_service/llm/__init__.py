"""LLM module."""

from .llm_provider import (
    ILLMProvider,
    LLMProvider,
    from_anthropic_response,
    to_anthropic_messages,
)

__all__ = ["ILLMProvider", "LLMProvider", "from_anthropic_response", "to_anthropic_messages"]
