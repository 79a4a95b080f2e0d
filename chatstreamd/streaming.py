"""SSE streaming utilities for chatstreamd.

Provides the multi-subscriber event emitter behind every conversation
stream and the wire envelope builder.
"""

import asyncio
import logging
import time
from typing import Any

from chatstream_library.models.events import WireMessage
from chatstream_library.models.events import WireMetadata

logger = logging.getLogger(__name__)


def now_ms() -> int:
    return int(time.time() * 1000)


def wire_message(
    event_type: str,
    data: dict[str, Any],
    conversation_id: str,
    message_id: str | None = None,
    sequence: int | None = None,
    is_accumulated: bool | None = None,
) -> dict[str, Any]:
    """Build a wire envelope.

    Args:
        event_type: Event type (e.g., 'llm_chunk', 'tool_call')
        data: Event payload
        conversation_id: Conversation the event belongs to
        message_id: Subject id (assistant message id for llm events)
        sequence: Per-conversation broadcast sequence
        is_accumulated: Marks replayed accumulated content

    Returns:
        Envelope dict with camelCase keys

    Example:
        >>> envelope = wire_message("llm_chunk", {"chunk": "Hi"}, "c1", message_id="m1")
        >>> envelope["type"], envelope["id"], envelope["metadata"]["convId"]
        ('llm_chunk', 'm1', 'c1')
    """
    return WireMessage(
        type=event_type,
        id=message_id,
        data=data,
        metadata=WireMetadata(
            timestamp=now_ms(),
            conv_id=conversation_id,
            sequence=sequence,
            is_accumulated=is_accumulated,
        ),
    ).to_wire()


class EventQueueEmitter:
    """Emitter that queues events for async consumption.

    Allows multiple subscribers to receive events emitted during a turn.
    Each subscriber gets their own queue to prevent blocking.
    """

    def __init__(self: "EventQueueEmitter") -> None:
        self.queues: list[asyncio.Queue[dict[str, Any]]] = []
        self._lock = asyncio.Lock()

    def subscribe(self: "EventQueueEmitter") -> asyncio.Queue[dict[str, Any]]:
        """Create new subscriber queue.

        Returns:
            asyncio.Queue that will receive all emitted events
        """
        queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue()
        self.queues.append(queue)
        return queue

    async def emit(self: "EventQueueEmitter", event_type: str, data: dict[str, Any]) -> None:
        """Emit event to all subscriber queues.

        Args:
            event_type: Event type identifier (e.g., "llm_chunk")
            data: Event payload
        """
        event = {"event": event_type, "data": data}
        async with self._lock:
            for queue in self.queues:
                await queue.put(event)

    def unsubscribe(self: "EventQueueEmitter", queue: asyncio.Queue[dict[str, Any]]) -> None:
        """Remove subscriber queue.

        Args:
            queue: Queue to remove
        """
        if queue in self.queues:
            self.queues.remove(queue)

    @property
    def subscriber_count(self: "EventQueueEmitter") -> int:
        return len(self.queues)
