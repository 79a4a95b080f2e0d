"""Client side transport for chatstreamd conversations."""

from .conversation_client import ConversationClient
from .transport import HttpConversationTransport
from .transport import iter_sse_data

__all__ = ["ConversationClient", "HttpConversationTransport", "iter_sse_data"]
