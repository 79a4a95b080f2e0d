"""Ordered transcript with a single trailing placeholder slot.

The placeholder is held apart from the message list, so the rendered view
can contain at most one placeholder and it is always last.
"""

import time

from chatstream_library.models.transcript import THINKING_LABEL
from chatstream_library.models.transcript import Message
from chatstream_library.models.transcript import Role


class Transcript:
    """Messages of one conversation, oldest first."""

    def __init__(self: "Transcript") -> None:
        self.messages: list[Message] = []
        self.placeholder: Message | None = None

    def rendered(self: "Transcript") -> list[Message]:
        """Messages followed by the placeholder, if any."""
        if self.placeholder is None:
            return list(self.messages)
        return [*self.messages, self.placeholder]

    def find(self: "Transcript", message_id: str | None) -> Message | None:
        if message_id is None:
            return None
        for message in self.messages:
            if message.id == message_id:
                return message
        return None

    def find_with_tool(self: "Transcript", tool_call_id: str) -> Message | None:
        for message in reversed(self.messages):
            if message.find_tool_invocation(tool_call_id) is not None:
                return message
        return None

    def last_assistant(self: "Transcript") -> Message | None:
        for message in reversed(self.messages):
            if message.role is Role.ASSISTANT:
                return message
        return None

    def last_empty_assistant(self: "Transcript") -> Message | None:
        """Trailing assistant message with no text that is still in flight.

        Only the last message qualifies, and only while it carries no
        completion metadata; finished turns keep their server ids.
        """
        if not self.messages:
            return None
        message = self.messages[-1]
        if message.role is Role.ASSISTANT and not message.content.strip() and not message.is_complete:
            return message
        return None

    def add(self: "Transcript", message: Message) -> Message:
        self.messages.append(message)
        return message

    def remove(self: "Transcript", message_id: str) -> bool:
        for index, message in enumerate(self.messages):
            if message.id == message_id:
                del self.messages[index]
                return True
        return False

    def replace(self: "Transcript", messages: list[Message]) -> None:
        self.messages = list(messages)

    def clear(self: "Transcript") -> None:
        self.messages = []
        self.placeholder = None

    def ensure_placeholder(self: "Transcript", label: str = THINKING_LABEL) -> Message:
        """Return the placeholder, creating it only when none exists."""
        if self.placeholder is None:
            self.placeholder = Message.placeholder(label, now_ms=int(time.time() * 1000))
        elif self.placeholder.content != label:
            self.placeholder.set_label(label)
        return self.placeholder

    def remove_placeholder(self: "Transcript") -> None:
        self.placeholder = None

    def __len__(self: "Transcript") -> int:
        return len(self.messages)
