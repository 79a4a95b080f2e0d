"""LLM provider interface.

A provider streams one model round: text deltas as they are generated, the
tool calls the model requested (complete, after the round), and usage.
"""

import json
from collections.abc import AsyncIterator
from dataclasses import dataclass
from dataclasses import field
from typing import Any
from typing import Protocol


@dataclass
class TextDelta:
    """Incremental assistant text."""

    text: str


@dataclass
class ToolCallRequest:
    """Tool call requested by the model."""

    id: str
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)

    def to_message_tool_call(self) -> dict[str, Any]:
        """Chat-completion shape stored on the assistant turn."""
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": json.dumps(self.arguments)},
        }


@dataclass
class UsageReport:
    """Token usage for one round."""

    prompt_tokens: int = 0
    completion_tokens: int = 0


ProviderEvent = TextDelta | ToolCallRequest | UsageReport


class LLMProvider(Protocol):
    """Streaming chat-completion provider."""

    def stream(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]],
    ) -> AsyncIterator[ProviderEvent]:
        """Stream one round.

        Args:
            messages: Chat-completion messages, system prompt first
            tools: Tool definitions in function-calling format

        Yields:
            TextDelta, ToolCallRequest and UsageReport events
        """
        ...
