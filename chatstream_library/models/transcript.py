"""Transcript models: messages, parts and tool invocations.

A message body is an ordered list of parts. Text and tool-invocation parts
interleave in the order they were observed, and the flat ``content`` and
``tool_invocations`` views are derived from that list so the two can never
disagree.
"""

from datetime import UTC
from datetime import datetime
from enum import Enum
from typing import Annotated
from typing import Any
from typing import Literal

from pydantic import Field
from pydantic import computed_field

from .base import CamelCaseModel

THINKING_LABEL = "Thinking..."


class Role(str, Enum):
    """Author of a transcript message."""

    USER = "user"
    ASSISTANT = "assistant"


class ToolState(str, Enum):
    """Tool invocation lifecycle state.

    State transitions (linear, no backward edges):
    - CALL: Invocation announced by the backend
    - EXECUTING: Tool function started
    - PROGRESS: Intermediate progress reported (repeatable)
    - RESULT: Completed successfully (terminal)
    - ERROR: Failed, or returned an error payload (terminal)
    """

    CALL = "call"
    EXECUTING = "executing"
    PROGRESS = "progress"
    RESULT = "result"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (ToolState.RESULT, ToolState.ERROR)

    @property
    def rank(self) -> int:
        return _STATE_RANK[self]


_STATE_RANK = {
    ToolState.CALL: 0,
    ToolState.EXECUTING: 1,
    ToolState.PROGRESS: 2,
    ToolState.RESULT: 3,
    ToolState.ERROR: 3,
}


class TokenUsage(CamelCaseModel):
    """Token accounting reported with a completed turn."""

    prompt_tokens: int = Field(default=0, description="Tokens in the prompt")
    completion_tokens: int = Field(default=0, description="Tokens generated")
    total_tokens: int = Field(default=0, description="Prompt plus completion tokens")
    message_count: int | None = Field(default=None, description="Messages in the conversation context")


class ToolInvocation(CamelCaseModel):
    """One tool call and its lifecycle state.

    ``result`` and ``error`` are mutually exclusive and only populated once
    the invocation reaches a terminal state.
    """

    tool_call_id: str = Field(description="Backend-assigned tool call identifier")
    tool_name: str = Field(default="", description="Name of the invoked tool")
    args: dict[str, Any] = Field(default_factory=dict, description="Arguments, shallow-merged across updates")
    state: ToolState = Field(default=ToolState.CALL, description="Lifecycle state")
    result: Any = Field(default=None, description="Tool result (state=result only)")
    error: str | None = Field(default=None, description="Error message (state=error only)")
    timestamp: int = Field(description="Epoch milliseconds at first observation")
    duration: int | None = Field(default=None, description="Seconds from first observation to terminal state")


class TextPart(CamelCaseModel):
    """Run of assistant or user text."""

    type: Literal["text"] = "text"
    text: str = ""


class ToolInvocationPart(CamelCaseModel):
    """Tool invocation positioned inside the message body."""

    type: Literal["tool-invocation"] = "tool-invocation"
    tool_invocation: ToolInvocation


Part = Annotated[TextPart | ToolInvocationPart, Field(discriminator="type")]


def _utc_now() -> datetime:
    return datetime.now(UTC)


class Message(CamelCaseModel):
    """A transcript entry.

    ``is_thinking`` marks the ephemeral trailing placeholder; it is never
    persisted. ``synthesized`` marks an assistant message created locally
    (for example by a tool event that carried no server id) whose id may be
    replaced once by the first server-confirmed id.
    """

    id: str = Field(description="Message identifier")
    role: Role = Field(description="Message author")
    parts: list[Part] = Field(default_factory=list, description="Ordered body parts")
    created_at: datetime = Field(default_factory=_utc_now, description="First observation time")
    completion_time: float | None = Field(default=None, description="Seconds from request to completion")
    thinking_duration: float | None = Field(default=None, description="Seconds before the first chunk")
    token_usage: TokenUsage | None = Field(default=None, description="Token usage for the turn")
    aborted: bool = Field(default=False, description="Turn was aborted; accepts no more events")
    is_thinking: bool = Field(default=False, description="Ephemeral placeholder marker")
    attachments: list[dict[str, Any]] = Field(default_factory=list, description="Uploaded file metadata")
    synthesized: bool = Field(default=False, exclude=True)

    @computed_field  # type: ignore[misc]
    @property
    def content(self) -> str:
        """In-order concatenation of every text part."""
        return "".join(part.text for part in self.parts if isinstance(part, TextPart))

    @computed_field  # type: ignore[misc]
    @property
    def tool_invocations(self) -> list[ToolInvocation]:
        """Tool invocations in the order they appear in ``parts``."""
        return [part.tool_invocation for part in self.parts if isinstance(part, ToolInvocationPart)]

    @classmethod
    def from_text(cls, message_id: str, role: Role, text: str, **kwargs: Any) -> "Message":
        """Create a message with a single text part (none for empty text)."""
        parts: list[Part] = [TextPart(text=text)] if text else []
        return cls(id=message_id, role=role, parts=parts, **kwargs)

    @classmethod
    def placeholder(cls, label: str = THINKING_LABEL, now_ms: int | None = None) -> "Message":
        """Create the trailing thinking placeholder."""
        stamp = now_ms if now_ms is not None else int(_utc_now().timestamp() * 1000)
        return cls.from_text(f"thinking_{stamp}", Role.ASSISTANT, label, is_thinking=True)

    def append_text(self, text: str) -> None:
        """Extend the trailing text part, or open a new one after a tool part."""
        if not text:
            return
        if self.parts and isinstance(self.parts[-1], TextPart):
            self.parts[-1].text += text
        else:
            self.parts.append(TextPart(text=text))

    def replace_text(self, text: str) -> None:
        """Rewrite the text of the message, keeping tool parts.

        All text parts are dropped and the full text becomes the leading part.
        """
        tool_parts = [part for part in self.parts if isinstance(part, ToolInvocationPart)]
        self.parts = ([TextPart(text=text)] if text else []) + tool_parts

    def set_label(self, text: str) -> None:
        """Set the whole text body (used for the placeholder label)."""
        self.parts = [TextPart(text=text)] if text else []

    def find_tool_invocation(self, tool_call_id: str) -> ToolInvocation | None:
        for part in self.parts:
            if isinstance(part, ToolInvocationPart) and part.tool_invocation.tool_call_id == tool_call_id:
                return part.tool_invocation
        return None

    def upsert_tool_invocation(self, invocation: ToolInvocation) -> None:
        """Update a tool part in place, or append it at the current position."""
        snapshot = invocation.model_copy(deep=True)
        for part in self.parts:
            if isinstance(part, ToolInvocationPart) and part.tool_invocation.tool_call_id == invocation.tool_call_id:
                part.tool_invocation = snapshot
                return
        self.parts.append(ToolInvocationPart(tool_invocation=snapshot))

    @property
    def is_complete(self) -> bool:
        return self.completion_time is not None or self.aborted
