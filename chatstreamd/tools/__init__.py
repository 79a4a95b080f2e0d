"""Built-in tools."""

from chatstream_library.storage.conversation_store import ConversationStore

from .base import Tool
from .base import ToolContext
from .base import ToolError
from .todo import TodoTool
from .widgets import ShowChartTool
from .widgets import ShowTableTool


def build_default_tools(store: ConversationStore) -> dict[str, Tool]:
    """Create the built-in tool set keyed by tool name."""
    tools: list[Tool] = [TodoTool(store), ShowTableTool(), ShowChartTool()]
    return {tool.name: tool for tool in tools}


__all__ = [
    "ShowChartTool",
    "ShowTableTool",
    "TodoTool",
    "Tool",
    "ToolContext",
    "ToolError",
    "build_default_tools",
]
