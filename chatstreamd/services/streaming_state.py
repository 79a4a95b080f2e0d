"""Active stream tracking.

Records what has been streamed for every in-flight assistant message so a
client that (re)connects mid-turn can be sent the accumulated text, and so
history responses can report whether a stream is active.
"""

import logging
from dataclasses import dataclass

from ..streaming import now_ms

logger = logging.getLogger(__name__)


@dataclass
class StreamingState:
    """Accumulated state of one in-flight assistant message."""

    conversation_id: str
    message_id: str
    start_time: int
    full_response: str = ""
    first_chunk_time: int | None = None
    last_chunk_time: int | None = None
    chunk_count: int = 0

    @property
    def thinking_duration(self) -> float | None:
        """Seconds between the request and the first chunk."""
        if self.first_chunk_time is None:
            return None
        return round((self.first_chunk_time - self.start_time) / 1000, 1)


class StreamingManager:
    """Tracks active streams keyed by (conversation_id, message_id)."""

    def __init__(self: "StreamingManager") -> None:
        self._streams: dict[tuple[str, str], StreamingState] = {}

    def start_stream(
        self: "StreamingManager",
        conversation_id: str,
        message_id: str,
        start_time: int | None = None,
    ) -> StreamingState:
        state = StreamingState(
            conversation_id=conversation_id,
            message_id=message_id,
            start_time=start_time if start_time is not None else now_ms(),
        )
        self._streams[(conversation_id, message_id)] = state
        logger.debug(f"Started stream {conversation_id}/{message_id}")
        return state

    def add_chunk(self: "StreamingManager", conversation_id: str, message_id: str, chunk: str) -> StreamingState | None:
        state = self._streams.get((conversation_id, message_id))
        if state is None:
            logger.warning(f"Chunk for unknown stream {conversation_id}/{message_id}")
            return None
        now = now_ms()
        if state.first_chunk_time is None:
            state.first_chunk_time = now
        state.last_chunk_time = now
        state.full_response += chunk
        state.chunk_count += 1
        return state

    def complete_stream(self: "StreamingManager", conversation_id: str, message_id: str) -> StreamingState | None:
        state = self._streams.pop((conversation_id, message_id), None)
        if state is not None:
            logger.debug(f"Completed stream {conversation_id}/{message_id} ({state.chunk_count} chunks)")
        return state

    def get_stream(self: "StreamingManager", conversation_id: str, message_id: str) -> StreamingState | None:
        return self._streams.get((conversation_id, message_id))

    def get_active_streams(self: "StreamingManager", conversation_id: str) -> list[StreamingState]:
        """Active streams of a conversation, oldest first."""
        return [state for (conv_id, _), state in self._streams.items() if conv_id == conversation_id]

    def has_active_stream(self: "StreamingManager", conversation_id: str) -> bool:
        return any(conv_id == conversation_id for conv_id, _ in self._streams)
