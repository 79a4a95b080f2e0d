"""Shared data models for chatstream."""

from .base import CamelCaseModel
from .events import ChunkEvent
from .events import CommunicationErrorEvent
from .events import CompleteEvent
from .events import ConnectedEvent
from .events import DisconnectedEvent
from .events import HistoryResponseEvent
from .events import RawTurn
from .events import StreamEvent
from .events import TitleUpdateEvent
from .events import TodoUpdateEvent
from .events import ToolCallEvent
from .events import ToolResultEvent
from .events import WireMessage
from .events import WireMetadata
from .transcript import THINKING_LABEL
from .transcript import Message
from .transcript import Part
from .transcript import Role
from .transcript import TextPart
from .transcript import TokenUsage
from .transcript import ToolInvocation
from .transcript import ToolInvocationPart
from .transcript import ToolState

__all__ = [
    "CamelCaseModel",
    "ChunkEvent",
    "CommunicationErrorEvent",
    "CompleteEvent",
    "ConnectedEvent",
    "DisconnectedEvent",
    "HistoryResponseEvent",
    "Message",
    "Part",
    "RawTurn",
    "Role",
    "StreamEvent",
    "THINKING_LABEL",
    "TextPart",
    "TitleUpdateEvent",
    "TodoUpdateEvent",
    "TokenUsage",
    "ToolCallEvent",
    "ToolInvocation",
    "ToolInvocationPart",
    "ToolState",
    "WireMessage",
    "WireMetadata",
]
