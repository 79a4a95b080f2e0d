"""Service layer for chatstreamd daemon.

Turn execution, tool broadcasting and per-conversation streaming.
"""

from .conversation_runner import ConversationRunner
from .conversation_stream import ConversationStream
from .conversation_stream import ConversationStreamRegistry
from .conversation_stream import TurnInProgressError
from .conversation_stream import get_stream_registry
from .streaming_state import StreamingManager
from .streaming_state import StreamingState
from .tool_broadcast import ToolBroadcaster
from .tool_broadcast import ToolOutcome

__all__ = [
    "ConversationRunner",
    "ConversationStream",
    "ConversationStreamRegistry",
    "TurnInProgressError",
    "get_stream_registry",
    "StreamingManager",
    "StreamingState",
    "ToolBroadcaster",
    "ToolOutcome",
]
