"""Request models for chatstreamd API.

Pydantic models for validating incoming API requests.
"""

from pydantic import Field

from chatstream_library.models.base import CamelCaseModel


class SendMessageRequest(CamelCaseModel):
    """Request to send a user message to a conversation.

    Attributes:
        text: Message text
        file_ids: Identifiers of previously uploaded attachments
        user_message_id: Client-chosen id for the user message
        assistant_message_id: Client-chosen id for the assistant reply
    """

    text: str = Field(..., min_length=1, description="Message text")
    file_ids: list[str] = Field(default_factory=list, description="Uploaded attachment identifiers")
    user_message_id: str | None = Field(default=None, description="Client-chosen user message id")
    assistant_message_id: str | None = Field(default=None, description="Client-chosen assistant message id")


class ControlRequest(CamelCaseModel):
    """Control command for a conversation.

    Attributes:
        type: Command (get_history, abort, clear_history, get_status)
    """

    type: str = Field(..., description="Control command")
