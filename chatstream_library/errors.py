"""Exception types raised by the chatstream library."""


class ChatStreamError(Exception):
    """Base class for chatstream errors."""


class ReconciliationInconsistencyError(ChatStreamError):
    """Local and server text diverge with no length-based winner.

    Only raised when strict reconciliation is enabled; otherwise the
    divergence is logged and the local transcript is kept.
    """

    def __init__(self, message_id: str, local_text: str, server_text: str) -> None:
        self.message_id = message_id
        self.local_text = local_text
        self.server_text = server_text
        super().__init__(
            f"Message {message_id} diverged: local and server text have equal length "
            f"({len(local_text)} chars) but different content"
        )


class TransportError(ChatStreamError):
    """Transport command failed (not connected, HTTP error, bad response)."""


class UploadError(ChatStreamError):
    """Attachment upload failed before a submission could be sent."""
