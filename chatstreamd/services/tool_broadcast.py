"""Tool execution with three-phase broadcast.

Wraps every tool invocation so clients observe its whole lifecycle:

- start:    tool_call {status: "call"}, then {status: "executing"}
- progress: tool_call {status: "progress"} (reported by the tool)
- success:  tool_result {result}
- failure:  tool_call {status: "error", error}

Unknown tools fail through the same path, so the model sees an error
result instead of the turn aborting.
"""

import logging
from dataclasses import dataclass
from typing import Any

from ..tools.base import Broadcast
from ..tools.base import Tool
from ..tools.base import ToolContext
from ..tools.base import ToolError

logger = logging.getLogger(__name__)


@dataclass
class ToolOutcome:
    """Result of one tool invocation (exactly one of result / error is meaningful)."""

    tool_call_id: str
    tool_name: str
    result: Any = None
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.error is None

    def to_content(self) -> Any:
        """Payload stored in the tool turn."""
        if self.error is not None:
            return {"error": self.error}
        return self.result


class ToolBroadcaster:
    """Executes tools for one conversation, broadcasting each phase."""

    def __init__(
        self: "ToolBroadcaster",
        conversation_id: str,
        tools: dict[str, Tool],
        broadcast: Broadcast,
    ) -> None:
        """Initialize broadcaster.

        Args:
            conversation_id: Conversation the tools run for
            tools: Available tools keyed by name
            broadcast: Sends (event_type, data) to stream subscribers
        """
        self.conversation_id = conversation_id
        self.tools = tools
        self._broadcast = broadcast

    def definitions(self: "ToolBroadcaster") -> list[dict[str, Any]]:
        return [tool.to_openai_tool() for tool in self.tools.values()]

    async def execute(
        self: "ToolBroadcaster",
        tool_call_id: str,
        tool_name: str,
        args: dict[str, Any],
        assistant_message_id: str,
    ) -> ToolOutcome:
        """Run one tool call.

        Args:
            tool_call_id: Identifier from the model
            tool_name: Requested tool
            args: Parsed arguments
            assistant_message_id: Assistant message the call belongs to

        Returns:
            Outcome with either a result or an error
        """
        base = {
            "toolCallId": tool_call_id,
            "toolName": tool_name,
            "assistantMessageId": assistant_message_id,
        }
        await self._broadcast("tool_call", {**base, "args": args, "status": "call"})

        tool = self.tools.get(tool_name)
        try:
            if tool is None:
                raise ToolError(f"Unknown tool: {tool_name}")

            await self._broadcast("tool_call", {**base, "args": args, "status": "executing"})

            async def progress(data: dict[str, Any]) -> None:
                await self._broadcast("tool_call", {**base, "status": "progress", "result": data})

            context = ToolContext(
                conversation_id=self.conversation_id,
                tool_call_id=tool_call_id,
                progress=progress,
                broadcast=self._broadcast,
            )
            result = await tool.execute(args, context)

        except Exception as e:
            error = str(e) or type(e).__name__
            if isinstance(e, ToolError):
                logger.info(f"Tool {tool_name} ({tool_call_id}) failed: {error}")
            else:
                logger.error(f"Tool {tool_name} ({tool_call_id}) raised {type(e).__name__}: {error}")
            await self._broadcast("tool_call", {**base, "status": "error", "error": error, "result": {"error": error}})
            return ToolOutcome(tool_call_id=tool_call_id, tool_name=tool_name, error=error)

        await self._broadcast("tool_result", {**base, "result": result})
        return ToolOutcome(tool_call_id=tool_call_id, tool_name=tool_name, result=result)
