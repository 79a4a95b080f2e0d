"""Wire envelope, raw history turns and typed stream events.

Every payload on the event stream is a ``WireMessage`` envelope. The event
normalizer turns envelopes into exactly one member of the closed
``StreamEvent`` union; nothing downstream of the normalizer inspects raw
payloads.
"""

from datetime import datetime
from typing import Annotated
from typing import Any
from typing import Literal

from pydantic import Field

from .base import CamelCaseModel
from .transcript import TokenUsage


class WireMetadata(CamelCaseModel):
    """Envelope metadata."""

    timestamp: int = Field(description="Epoch milliseconds when the envelope was produced")
    conv_id: str | None = Field(default=None, description="Conversation identifier")
    sequence: int | None = Field(default=None, description="Per-conversation broadcast sequence")
    is_accumulated: bool | None = Field(default=None, description="Replay of accumulated stream content")


class WireMessage(CamelCaseModel):
    """Envelope for every event on the conversation stream.

    Example:
        >>> envelope = WireMessage(type="llm_chunk", id="m1", data={"chunk": "Hi"},
        ...                        metadata=WireMetadata(timestamp=0, conv_id="c1"))
        >>> envelope.to_wire()["metadata"]["convId"]
        'c1'
    """

    type: str = Field(description="Event type")
    id: str | None = Field(default=None, description="Subject identifier (message id for llm events)")
    data: dict[str, Any] = Field(default_factory=dict, description="Event payload")
    metadata: WireMetadata

    def to_wire(self) -> dict[str, Any]:
        """Serialize with camelCase keys, omitting unset optionals."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class RawTurn(CamelCaseModel):
    """One persisted history turn, in chat-completion shape.

    Assistant turns may carry ``tool_calls``; each call's outcome is stored as
    a following ``tool`` turn referencing it through ``tool_call_id``.
    """

    id: str | None = Field(default=None, description="Message identifier")
    role: str = Field(description="user, assistant, tool or system")
    content: Any = Field(default=None, description="Text content (JSON string for tool turns)")
    tool_calls: list[dict[str, Any]] | None = Field(default=None, description="Tool calls requested by the assistant")
    tool_call_id: str | None = Field(default=None, description="Tool call answered by a tool turn")
    name: str | None = Field(default=None, description="Tool name for tool turns")
    created_at: datetime | None = Field(default=None, description="Creation time")
    completion_time: float | None = Field(default=None, description="Seconds from request to completion")
    thinking_duration: float | None = Field(default=None, description="Seconds before the first chunk")
    token_usage: TokenUsage | None = Field(default=None, description="Token usage for the turn")
    aborted: bool = Field(default=False, description="Turn was aborted")
    attachments: list[dict[str, Any]] | None = Field(default=None, description="Uploaded file metadata")


class ConnectedEvent(CamelCaseModel):
    type: Literal["connected"] = "connected"
    conversation_id: str | None = None


class DisconnectedEvent(CamelCaseModel):
    type: Literal["disconnected"] = "disconnected"
    reason: str | None = None


class ChunkEvent(CamelCaseModel):
    """Incremental (or accumulated replay of) assistant text.

    ``chunk`` may be None, which is ignored, or the empty string, which is
    processed (an empty accumulated chunk still delivers ``start_time``).
    """

    type: Literal["chunk"] = "chunk"
    chunk: str | None = None
    message_id: str | None = None
    sequence: int | None = None
    is_accumulated: bool = False
    start_time: int | None = None


class CompleteEvent(CamelCaseModel):
    type: Literal["complete"] = "complete"
    full_text: str = ""
    message_id: str | None = None
    is_accumulated: bool = False
    aborted: bool = False
    completion_time: float | None = None
    thinking_duration: float | None = None
    token_usage: TokenUsage | None = None
    max_tokens: int | None = None


class ToolCallEvent(CamelCaseModel):
    type: Literal["tool_call"] = "tool_call"
    tool_call_id: str
    tool_name: str = ""
    args: dict[str, Any] = Field(default_factory=dict)
    status: str = "call"
    result: Any = None
    error: str | None = None
    assistant_message_id: str | None = None


class ToolResultEvent(CamelCaseModel):
    type: Literal["tool_result"] = "tool_result"
    tool_call_id: str
    tool_name: str = ""
    result: Any = None
    assistant_message_id: str | None = None


class HistoryResponseEvent(CamelCaseModel):
    type: Literal["history_response"] = "history_response"
    history: list[RawTurn] = Field(default_factory=list)
    has_active_stream: bool = False
    max_tokens: int | None = None
    token_usage: TokenUsage | None = None
    todos: list[dict[str, Any]] | None = None
    title: str | None = None


class CommunicationErrorEvent(CamelCaseModel):
    type: Literal["communication_error"] = "communication_error"
    code: str | None = None
    message: str = "Unknown error"


class TodoUpdateEvent(CamelCaseModel):
    type: Literal["todo_update"] = "todo_update"
    todos: list[dict[str, Any]] = Field(default_factory=list)


class TitleUpdateEvent(CamelCaseModel):
    type: Literal["title_update"] = "title_update"
    title: str


StreamEvent = Annotated[
    ConnectedEvent
    | DisconnectedEvent
    | ChunkEvent
    | CompleteEvent
    | ToolCallEvent
    | ToolResultEvent
    | HistoryResponseEvent
    | CommunicationErrorEvent
    | TodoUpdateEvent
    | TitleUpdateEvent,
    Field(discriminator="type"),
]
