"""Todo list tool.

Lets the model maintain a task list for multi-step work. The list is
persisted per conversation and broadcast as ``todo_update``.
"""

import logging
from typing import Any
from typing import Literal

from pydantic import BaseModel
from pydantic import Field
from pydantic import ValidationError

from chatstream_library.storage.conversation_store import ConversationStore

from .base import Tool
from .base import ToolContext
from .base import ToolError

logger = logging.getLogger(__name__)


class TodoItem(BaseModel):
    id: str = Field(description="Stable item identifier")
    content: str = Field(min_length=1, description="What needs doing")
    status: Literal["pending", "in_progress", "completed"] = Field(default="pending")


class TodoTool(Tool):
    name = "todo_write"
    description = (
        "Replace the task list for this conversation. Use it to plan multi-step work "
        "and mark progress. Send the complete list every time."
    )
    parameters = {
        "type": "object",
        "properties": {
            "todos": {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": {
                        "id": {"type": "string"},
                        "content": {"type": "string"},
                        "status": {"type": "string", "enum": ["pending", "in_progress", "completed"]},
                    },
                    "required": ["id", "content", "status"],
                },
            }
        },
        "required": ["todos"],
    }

    def __init__(self: "TodoTool", store: ConversationStore) -> None:
        self.store = store

    async def execute(self: "TodoTool", args: dict[str, Any], context: ToolContext) -> dict[str, Any]:
        try:
            items = [TodoItem.model_validate(item) for item in args.get("todos", [])]
        except ValidationError as e:
            raise ToolError(f"Invalid todo list: {e.error_count()} validation errors") from e

        todos = [item.model_dump() for item in items]
        self.store.save_todos(context.conversation_id, todos)
        await context.emit("todo_update", {"todos": todos})
        logger.info(f"Updated {len(todos)} todos for conversation {context.conversation_id}")

        completed = sum(1 for item in items if item.status == "completed")
        return {"success": True, "total": len(todos), "completed": completed}
