"""Tool interface for LLM function calling."""

from collections.abc import Awaitable
from collections.abc import Callable
from typing import Any

# Broadcasts (event_type, data) on the conversation stream
Broadcast = Callable[[str, dict[str, Any]], Awaitable[None]]


class ToolError(Exception):
    """Logical tool failure, reported to the model and client as an error result."""


class ToolContext:
    """Per-invocation context handed to a tool.

    Attributes:
        conversation_id: Conversation the call belongs to
        tool_call_id: Identifier of this invocation
    """

    def __init__(
        self: "ToolContext",
        conversation_id: str,
        tool_call_id: str,
        progress: Callable[[dict[str, Any]], Awaitable[None]],
        broadcast: Broadcast,
    ) -> None:
        self.conversation_id = conversation_id
        self.tool_call_id = tool_call_id
        self._progress = progress
        self._broadcast = broadcast

    async def report_progress(self: "ToolContext", data: dict[str, Any]) -> None:
        """Broadcast intermediate progress as a tool_call with status=progress."""
        await self._progress(data)

    async def emit(self: "ToolContext", event_type: str, data: dict[str, Any]) -> None:
        """Broadcast a conversation-level event (e.g., todo_update)."""
        await self._broadcast(event_type, data)


class Tool:
    """Base class for tools the model can call.

    Subclasses set ``name``, ``description`` and ``parameters`` (JSON schema)
    and implement ``execute``. Raising ToolError (or any exception) marks the
    invocation as failed.
    """

    name: str = ""
    description: str = ""
    parameters: dict[str, Any] = {"type": "object", "properties": {}}

    async def execute(self: "Tool", args: dict[str, Any], context: ToolContext) -> Any:
        raise NotImplementedError

    def to_openai_tool(self: "Tool") -> dict[str, Any]:
        """Function-calling definition."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }
