"""Conversation stream and registry.

Provides:
- ConversationStream: Streaming infrastructure for a single conversation
- ConversationStreamRegistry: Manages ConversationStream instances
"""

import asyncio
import logging
import uuid
from typing import Any

from chatstream_library.models.events import RawTurn
from chatstream_library.storage.conversation_store import ConversationStore

from ..config.models import Config
from ..providers.base import LLMProvider
from ..streaming import EventQueueEmitter
from ..streaming import wire_message
from ..tools import build_default_tools
from .conversation_runner import ConversationRunner
from .streaming_state import StreamingManager
from .tool_broadcast import ToolBroadcaster

logger = logging.getLogger(__name__)

# Events whose envelope id is the assistant message id
_MESSAGE_EVENTS = {"llm_chunk", "llm_complete"}


class TurnInProgressError(Exception):
    """Raised when a turn is started while another one is still running."""


def new_message_ids() -> tuple[str, str]:
    """Generate a (user, assistant) message id pair."""
    base = f"msg_{uuid.uuid4().hex[:12]}"
    return f"{base}_user", f"{base}_assistant"


class ConversationStream:
    """Streaming infrastructure for a single conversation.

    Owns the subscriber emitter, the broadcast sequence counter and the
    background task of the running turn. One instance per conversation with
    SSE subscribers or a running turn.
    """

    def __init__(
        self: "ConversationStream",
        conversation_id: str,
        store: ConversationStore,
        streaming: StreamingManager | None = None,
    ) -> None:
        """Initialize conversation stream.

        Args:
            conversation_id: Conversation identifier
            store: Conversation persistence
            streaming: Active stream tracker (shared across conversations)
        """
        self.conversation_id = conversation_id
        self.store = store
        self.streaming = streaming or StreamingManager()
        self.emitter = EventQueueEmitter()
        self._sequence = 0
        self._task: asyncio.Task | None = None
        self._active_message_id: str | None = None
        logger.info(f"Created ConversationStream for {conversation_id}")

    @property
    def is_processing(self: "ConversationStream") -> bool:
        return self._task is not None and not self._task.done()

    @property
    def active_message_id(self: "ConversationStream") -> str | None:
        return self._active_message_id if self.is_processing else None

    def subscribe(self: "ConversationStream") -> asyncio.Queue:
        """Create new SSE subscriber queue."""
        return self.emitter.subscribe()

    def unsubscribe(self: "ConversationStream", queue: asyncio.Queue) -> None:
        """Remove SSE subscriber."""
        self.emitter.unsubscribe(queue)

    async def broadcast(
        self: "ConversationStream",
        event_type: str,
        data: dict[str, Any],
        message_id: str | None = None,
        is_accumulated: bool | None = None,
    ) -> dict[str, Any]:
        """Wrap data in a wire envelope and send it to every subscriber.

        Args:
            event_type: Wire event type
            data: Event payload
            message_id: Envelope id (defaults to data.messageId for llm events)
            is_accumulated: Marks replayed accumulated content

        Returns:
            The envelope that was sent
        """
        if message_id is None and event_type in _MESSAGE_EVENTS:
            message_id = data.get("messageId")
        self._sequence += 1
        envelope = wire_message(
            event_type,
            data,
            self.conversation_id,
            message_id=message_id,
            sequence=self._sequence,
            is_accumulated=is_accumulated,
        )
        await self.emitter.emit(event_type, envelope)
        return envelope

    async def start_turn(
        self: "ConversationStream",
        text: str,
        provider: LLMProvider,
        config: Config,
        file_ids: list[str] | None = None,
        user_message_id: str | None = None,
        assistant_message_id: str | None = None,
    ) -> tuple[str, str]:
        """Start a turn in the background.

        Args:
            text: User message text
            provider: LLM provider for the turn
            config: Daemon configuration
            file_ids: Uploaded attachment identifiers
            user_message_id: Client-chosen user message id
            assistant_message_id: Client-chosen assistant message id

        Returns:
            (user_message_id, assistant_message_id) actually used

        Raises:
            TurnInProgressError: If a turn is already running
        """
        if self.is_processing:
            raise TurnInProgressError(f"Conversation {self.conversation_id} is already processing a turn")

        generated_user_id, generated_assistant_id = new_message_ids()
        user_message_id = user_message_id or generated_user_id
        assistant_message_id = assistant_message_id or generated_assistant_id

        tools = ToolBroadcaster(
            self.conversation_id,
            build_default_tools(self.store),
            self.broadcast,
        )
        runner = ConversationRunner(
            conversation_id=self.conversation_id,
            store=self.store,
            provider=provider,
            tools=tools,
            streaming=self.streaming,
            broadcast=self.broadcast,
            llm_config=config.llm,
            title_max_length=config.streaming.title_max_length,
        )

        self._active_message_id = assistant_message_id
        self._task = asyncio.create_task(
            runner.run_turn(text, file_ids, user_message_id, assistant_message_id),
            name=f"turn-{assistant_message_id}",
        )
        return user_message_id, assistant_message_id

    async def abort(self: "ConversationStream") -> str | None:
        """Cancel the running turn and wait for it to wind down.

        Returns:
            Id of the aborted assistant message, or None when idle
        """
        if not self.is_processing or self._task is None:
            return None

        message_id = self._active_message_id
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            logger.info(f"Aborted turn {message_id} in conversation {self.conversation_id}")
        return message_id

    async def clear_history(self: "ConversationStream") -> None:
        """Abort any running turn, delete stored state, and tell subscribers."""
        await self.abort()
        self.store.clear_history(self.conversation_id)
        await self.broadcast("control_response", self.history_data([]))
        await self.broadcast("todo_update", {"todos": []})

    def _repair_orphaned_turn(self: "ConversationStream", history: list[RawTurn]) -> None:
        """Mark a trailing unfinished assistant turn aborted when nothing is running.

        Happens when the daemon stopped mid-turn; without the repair clients
        would wait forever for the stream to finish.
        """
        if self.is_processing:
            return
        for turn in reversed(history):
            if turn.role == "user":
                return
            if turn.role != "assistant":
                continue
            if turn.completion_time is None and not turn.aborted:
                turn.aborted = True
                self.store.save_history(self.conversation_id, history)
                logger.warning(f"Marked orphaned turn {turn.id} in {self.conversation_id} as aborted")
            return

    def history_data(self: "ConversationStream", history: list[RawTurn]) -> dict[str, Any]:
        """Payload of a history control_response."""
        info = self.store.load_info(self.conversation_id)
        last_usage = next(
            (turn.token_usage for turn in reversed(history) if turn.role == "assistant" and turn.token_usage),
            None,
        )
        data: dict[str, Any] = {
            "status": "history",
            "history": [turn.model_dump(mode="json", by_alias=True, exclude_none=True) for turn in history],
            "hasActiveStream": self.is_processing,
            "todos": self.store.load_todos(self.conversation_id),
            "title": info.title,
        }
        if last_usage is not None:
            data["tokenUsage"] = last_usage.model_dump(by_alias=True)
        return data

    def build_history_replay(self: "ConversationStream", max_tokens: int | None = None) -> list[dict[str, Any]]:
        """Envelopes answering a history request, in delivery order.

        Active streams are replayed first as accumulated llm_chunk envelopes
        carrying the whole text so far, followed by the history response.

        Args:
            max_tokens: Context window reported to the client

        Returns:
            Wire envelopes
        """
        history = self.store.load_history(self.conversation_id)
        self._repair_orphaned_turn(history)

        envelopes = []
        for state in self.streaming.get_active_streams(self.conversation_id):
            envelopes.append(
                wire_message(
                    "llm_chunk",
                    {
                        "chunk": state.full_response,
                        "messageId": state.message_id,
                        "isAccumulated": True,
                        "startTime": state.start_time,
                    },
                    self.conversation_id,
                    message_id=state.message_id,
                    is_accumulated=True,
                )
            )

        data = self.history_data(history)
        if max_tokens is not None:
            data["maxTokens"] = max_tokens
        envelopes.append(wire_message("control_response", data, self.conversation_id))
        return envelopes

    def status(self: "ConversationStream") -> dict[str, Any]:
        return {
            "conversationId": self.conversation_id,
            "isProcessing": self.is_processing,
            "activeMessageId": self.active_message_id,
            "subscriberCount": self.emitter.subscriber_count,
        }

    async def cleanup(self: "ConversationStream") -> None:
        """Abort running work when the conversation stream is dropped."""
        await self.abort()
        logger.info(f"Cleaned up ConversationStream for {self.conversation_id}")


class ConversationStreamRegistry:
    """Global registry of conversation streams.

    Singleton managing ConversationStream instances, one per conversation.
    """

    def __init__(self: "ConversationStreamRegistry") -> None:
        """Initialize registry."""
        self._streams: dict[str, ConversationStream] = {}
        self._lock = asyncio.Lock()
        self.streaming = StreamingManager()

    async def get_or_create(
        self: "ConversationStreamRegistry",
        conversation_id: str,
        store: ConversationStore,
    ) -> ConversationStream:
        """Get existing stream or create new one.

        Args:
            conversation_id: Conversation identifier
            store: Conversation persistence

        Returns:
            ConversationStream for the conversation
        """
        async with self._lock:
            if conversation_id not in self._streams:
                self._streams[conversation_id] = ConversationStream(conversation_id, store, self.streaming)
                logger.info(f"Registered ConversationStream for conversation {conversation_id}")
            return self._streams[conversation_id]

    def get(self: "ConversationStreamRegistry", conversation_id: str) -> ConversationStream | None:
        """Get existing stream (no creation)."""
        return self._streams.get(conversation_id)

    async def cleanup_conversation(self: "ConversationStreamRegistry", conversation_id: str) -> None:
        """Remove stream when the conversation is deleted."""
        async with self._lock:
            stream = self._streams.pop(conversation_id, None)
        if stream is not None:
            await stream.cleanup()

    async def cleanup_all(self: "ConversationStreamRegistry") -> None:
        """Clean up all streams (for shutdown)."""
        async with self._lock:
            streams = list(self._streams.values())
            self._streams.clear()
        for stream in streams:
            await stream.cleanup()
        logger.info("Cleaned up all ConversationStreams")

    def get_active_count(self: "ConversationStreamRegistry") -> int:
        return len(self._streams)


# Global registry instance
_stream_registry = ConversationStreamRegistry()


def get_stream_registry() -> ConversationStreamRegistry:
    """Get global stream registry.

    Returns:
        Global ConversationStreamRegistry singleton
    """
    return _stream_registry
