"""chatstream library layer.

This is the business logic layer shared by the chatstreamd daemon (producer
of conversation events) and its clients (consumers that reconcile those
events into a transcript).

Public Interface:
    Modules:
    - models: Transcript, wire envelope and stream event models
    - reconciliation: Streaming Conversation Reconciliation Protocol
    - client: HTTP/SSE transport and conversation client
    - storage: JSON-based conversation persistence
    - config: Client settings loading
"""

from .models import Message
from .models import StreamEvent
from .reconciliation import ChatController
from .reconciliation import ReconciliationEngine

__all__ = [
    "ChatController",
    "Message",
    "ReconciliationEngine",
    "StreamEvent",
]
