"""Response models for chatstreamd API.

Pydantic models for API responses.
"""

from typing import Any

from pydantic import Field

from chatstream_library.models.base import CamelCaseModel
from chatstream_library.models.events import RawTurn
from chatstream_library.models.transcript import TokenUsage


class SendMessageResponse(CamelCaseModel):
    """Acknowledgement of an accepted turn.

    Attributes:
        status: Always "processing"
        conversation_id: Conversation identifier
        user_message_id: Id used for the user message
        assistant_message_id: Id used for the assistant reply
    """

    status: str = Field(default="processing", description="Turn status")
    conversation_id: str = Field(..., description="Conversation identifier")
    user_message_id: str = Field(..., description="User message id")
    assistant_message_id: str = Field(..., description="Assistant message id")


class ControlResponse(CamelCaseModel):
    """Response to a control command.

    ``messages`` carries wire envelopes for get_history (accumulated stream
    replay first, history response last).
    """

    status: str = Field(..., description="Command outcome")
    messages: list[dict[str, Any]] = Field(default_factory=list, description="Wire envelopes")
    detail: dict[str, Any] | None = Field(default=None, description="Command-specific details")


class HistoryResponse(CamelCaseModel):
    """Stored history of a conversation."""

    conversation_id: str = Field(..., description="Conversation identifier")
    title: str | None = Field(default=None, description="Conversation title")
    history: list[RawTurn] = Field(default_factory=list, description="Stored turns, oldest first")
    todos: list[dict[str, Any]] = Field(default_factory=list, description="Current todo list")
    token_usage: TokenUsage = Field(default_factory=TokenUsage, description="Cumulative token usage")
    has_active_stream: bool = Field(default=False, description="A turn is currently streaming")
