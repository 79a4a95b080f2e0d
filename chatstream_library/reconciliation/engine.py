"""Reconciliation engine.

One engine per (conversation, tab). The engine owns the canonical transcript
and every piece of per-turn state (tool tracker, current message pointer,
thinking start time, abort markers) and applies events strictly in arrival
order. Each event is processed to completion before the next one; handlers
never suspend mid-mutation.

Contract:
- Inputs: Typed stream events (or raw payloads via handle_payload),
  submission commands from ChatController
- Outputs: Deep-copied snapshots for rendering, listener notifications
- Side Effects: Registers the engine as a tab with the leadership coordinator
"""

import logging
import time
import uuid
from collections.abc import Callable
from typing import Any

from pydantic import Field

from chatstream_library.models.base import CamelCaseModel
from chatstream_library.models.events import ChunkEvent
from chatstream_library.models.events import CommunicationErrorEvent
from chatstream_library.models.events import CompleteEvent
from chatstream_library.models.events import ConnectedEvent
from chatstream_library.models.events import DisconnectedEvent
from chatstream_library.models.events import HistoryResponseEvent
from chatstream_library.models.events import StreamEvent
from chatstream_library.models.events import TitleUpdateEvent
from chatstream_library.models.events import TodoUpdateEvent
from chatstream_library.models.events import ToolCallEvent
from chatstream_library.models.events import ToolResultEvent
from chatstream_library.models.transcript import THINKING_LABEL
from chatstream_library.models.transcript import Message
from chatstream_library.models.transcript import Role
from chatstream_library.models.transcript import TokenUsage
from chatstream_library.models.transcript import ToolInvocation

from .accumulator import StreamingTextAccumulator
from .history_merger import merge_history
from .history_merger import transform_history
from .normalizer import normalize_event
from .tab_leadership import TabLeadershipCoordinator
from .tab_leadership import get_tab_coordinator
from .tool_tracker import ToolInvocationTracker
from .transcript import Transcript

logger = logging.getLogger(__name__)

# Transport-level events every tab applies, leader or not
UNGATED_EVENTS = {"disconnected", "communication_error"}


def _now_ms() -> int:
    return int(time.time() * 1000)


class EngineSnapshot(CamelCaseModel):
    """Read-only view of engine state for rendering."""

    conversation_id: str = Field(description="Conversation identifier")
    messages: list[Message] = Field(default_factory=list, description="Transcript including the placeholder")
    is_loading: bool = Field(default=False, description="A turn is in flight")
    is_history_loading: bool = Field(default=False, description="A history request is outstanding")
    is_connected: bool = Field(default=False, description="Transport reported connected")
    error: str | None = Field(default=None, description="Last surfaced error")
    current_message_id: str | None = Field(default=None, description="Assistant message being streamed")
    todos: list[dict[str, Any]] = Field(default_factory=list, description="Current todo list")
    title: str | None = Field(default=None, description="Conversation title")
    max_tokens: int | None = Field(default=None, description="Context window size")
    token_usage: TokenUsage | None = Field(default=None, description="Latest token usage")


class ReconciliationEngine:
    """Builds one consistent transcript from chunk, tool and history events.

    Example:
        >>> engine = ReconciliationEngine("c1", coordinator=TabLeadershipCoordinator())
        >>> engine.mount()
        >>> engine.begin_turn("m1")
        >>> engine.handle_payload({"type": "llm_chunk", "id": "m1", "data": {"chunk": "Hi"}})
        True
        >>> engine.snapshot().messages[0].content
        'Hi'
    """

    def __init__(
        self: "ReconciliationEngine",
        conversation_id: str,
        coordinator: TabLeadershipCoordinator | None = None,
        strict: bool = False,
        history_requester: Callable[[], None] | None = None,
        clock: Callable[[], int] | None = None,
    ) -> None:
        """Initialize engine.

        Args:
            conversation_id: Conversation this tab shows
            coordinator: Tab leadership coordinator (default: process-wide instance)
            strict: Raise on unresolvable text divergence
            history_requester: Called when a history snapshot should be fetched
            clock: Returns the current time in epoch milliseconds
        """
        self.conversation_id = conversation_id
        self.tab_id = uuid.uuid4().hex[:8]
        self.coordinator = coordinator or get_tab_coordinator()
        self.history_requester = history_requester
        self._clock = clock or _now_ms

        self.transcript = Transcript()
        self.tracker = ToolInvocationTracker(clock=self._clock)
        self.accumulator = StreamingTextAccumulator(strict=strict)

        self.current_message_id: str | None = None
        self.aborted_ids: set[str] = set()
        self.thinking_started_at: int | None = None
        self.is_loading = False
        self.is_history_loading = False
        self.is_connected = False
        self.error: str | None = None
        self.todos: list[dict[str, Any]] = []
        self.title: str | None = None
        self.max_tokens: int | None = None
        self.token_usage: TokenUsage | None = None

        self._listeners: list[Callable[["ReconciliationEngine"], None]] = []
        self._handlers: dict[str, Callable[[Any], bool]] = {
            "connected": self._on_connected,
            "disconnected": self._on_disconnected,
            "chunk": self._on_chunk,
            "complete": self._on_complete,
            "tool_call": self._on_tool_call,
            "tool_result": self._on_tool_result,
            "history_response": self._on_history,
            "communication_error": self._on_communication_error,
            "todo_update": self._on_todo_update,
            "title_update": self._on_title_update,
        }

    # --- Tab lifecycle ---

    def mount(self: "ReconciliationEngine") -> None:
        """Register this tab; the most recently mounted tab leads."""
        self.coordinator.register_tab(self, self.conversation_id)
        logger.debug(f"Tab {self.tab_id} mounted on conversation {self.conversation_id}")

    def unmount(self: "ReconciliationEngine") -> None:
        self.coordinator.unregister_tab(self, self.conversation_id)
        logger.debug(f"Tab {self.tab_id} unmounted from conversation {self.conversation_id}")

    @property
    def is_leader(self: "ReconciliationEngine") -> bool:
        return self.coordinator.is_active_tab(self, self.conversation_id)

    # --- Observation ---

    def subscribe(self: "ReconciliationEngine", listener: Callable[["ReconciliationEngine"], None]) -> Callable[[], None]:
        """Register a listener called after every applied event.

        Returns:
            Callable removing the listener
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self: "ReconciliationEngine") -> None:
        for listener in list(self._listeners):
            listener(self)

    def snapshot(self: "ReconciliationEngine") -> EngineSnapshot:
        """Deep copy of the rendered state."""
        return EngineSnapshot(
            conversation_id=self.conversation_id,
            messages=[message.model_copy(deep=True) for message in self.transcript.rendered()],
            is_loading=self.is_loading,
            is_history_loading=self.is_history_loading,
            is_connected=self.is_connected,
            error=self.error,
            current_message_id=self.current_message_id,
            todos=[dict(todo) for todo in self.todos],
            title=self.title,
            max_tokens=self.max_tokens,
            token_usage=self.token_usage.model_copy() if self.token_usage else None,
        )

    @property
    def messages(self: "ReconciliationEngine") -> list[Message]:
        """Rendered transcript (live objects; use snapshot() for copies)."""
        return self.transcript.rendered()

    # --- Event application ---

    def handle_payload(self: "ReconciliationEngine", payload: dict[str, Any] | str | bytes) -> bool:
        """Normalize a raw transport payload and apply it.

        Returns:
            True if the transcript or engine state changed
        """
        event = normalize_event(payload)
        if event is None:
            return False
        return self.apply(event)

    def apply(self: "ReconciliationEngine", event: StreamEvent) -> bool:
        """Apply one event to completion.

        Args:
            event: Normalized stream event

        Returns:
            True if the transcript or engine state changed
        """
        if event.type not in UNGATED_EVENTS and not self.is_leader:
            logger.debug(f"Tab {self.tab_id} is not the active tab; skipping {event.type}")
            return False

        changed = self._handlers[event.type](event)
        if changed:
            self._notify()
        return changed

    def _placeholder_label(self: "ReconciliationEngine") -> str:
        active = self.tracker.first_active()
        if active is not None:
            return f"Running {active.tool_name}..."
        return THINKING_LABEL

    def _finish_turn(self: "ReconciliationEngine") -> None:
        self.transcript.remove_placeholder()
        self.tracker.clear()
        self.current_message_id = None
        self.thinking_started_at = None
        self.is_loading = False

    def _on_connected(self: "ReconciliationEngine", event: ConnectedEvent) -> bool:
        self.is_connected = True
        self.error = None
        if self.history_requester is not None:
            self.is_history_loading = True
            self.history_requester()
        return True

    def _on_disconnected(self: "ReconciliationEngine", event: DisconnectedEvent) -> bool:
        self.is_connected = False
        self.is_loading = False
        self.error = f"Connection lost: {event.reason}" if event.reason else "Connection lost"
        return True

    def _on_chunk(self: "ReconciliationEngine", event: ChunkEvent) -> bool:
        if event.start_time is not None and self.thinking_started_at is None:
            self.thinking_started_at = event.start_time

        # Empty strings are processed; only a missing chunk is skipped
        if event.chunk is None:
            return False

        message_id = event.message_id or f"msg_{self._clock()}_assistant"
        if message_id in self.aborted_ids:
            logger.debug(f"Dropping chunk for aborted message {message_id}")
            return False

        if event.is_accumulated:
            message = self.accumulator.apply_accumulated(self.transcript, message_id, event.chunk)
        else:
            if self.current_message_id is not None and self.current_message_id != message_id:
                logger.debug(f"Ignoring chunk for {message_id}; current message is {self.current_message_id}")
                return False
            existing = self.transcript.find(message_id)
            if existing is not None and existing.is_complete:
                logger.debug(f"Ignoring chunk for completed message {message_id}")
                return False
            self.current_message_id = message_id
            self.is_loading = True
            message = self.accumulator.apply_live(self.transcript, message_id, event.chunk)

        if message.aborted:
            return False
        self.transcript.ensure_placeholder(self._placeholder_label())
        return True

    def _on_complete(self: "ReconciliationEngine", event: CompleteEvent) -> bool:
        message_id = event.message_id or self.current_message_id
        if message_id is not None and message_id in self.aborted_ids:
            logger.debug(f"Dropping completion for aborted message {message_id}")
            return False

        message = self.transcript.find(message_id)
        if message is None and event.full_text:
            message = self.accumulator.apply_live(
                self.transcript,
                message_id or f"msg_{self._clock()}_assistant",
                "",
            )

        if message is None:
            # Empty completion with nothing to attach it to
            self._finish_turn()
            return True

        if message.aborted:
            return False

        if event.full_text:
            local = message.content
            if local and local != event.full_text:
                logger.warning(
                    f"Completion text for {message.id} differs from streamed text "
                    f"({len(local)} vs {len(event.full_text)} chars); using server text"
                )
            self.accumulator.reconcile_text(message, event.full_text, authoritative=True)

        for invocation in self.tracker.values():
            owner = self.transcript.find_with_tool(invocation.tool_call_id)
            if owner is None or owner is message:
                message.upsert_tool_invocation(invocation)

        if event.completion_time is not None:
            message.completion_time = event.completion_time
        elif self.thinking_started_at is not None:
            message.completion_time = round((self._clock() - self.thinking_started_at) / 1000, 1)
        else:
            message.completion_time = 0.0
        if event.thinking_duration is not None:
            message.thinking_duration = event.thinking_duration
        if event.token_usage is not None:
            message.token_usage = event.token_usage
            self.token_usage = event.token_usage
        if event.max_tokens is not None:
            self.max_tokens = event.max_tokens
        if event.aborted:
            message.aborted = True

        message.synthesized = False
        self._finish_turn()
        return True

    def _tool_target(self: "ReconciliationEngine", assistant_message_id: str | None) -> Message | None:
        """Find the assistant message a tool event belongs to.

        Lookup order: the server-provided assistant id, then the current
        message, else a synthesized empty assistant message.
        """
        if assistant_message_id is not None:
            message = self.transcript.find(assistant_message_id)
            if message is not None:
                return message
            if self.current_message_id not in (None, assistant_message_id):
                logger.debug(f"Tool event for {assistant_message_id} while streaming {self.current_message_id}")
                return None
            message = self.accumulator.adopt_synthesized(self.transcript, assistant_message_id)
            if message is None:
                message = self.transcript.add(Message(id=assistant_message_id, role=Role.ASSISTANT))
            self.current_message_id = assistant_message_id
            return message

        message = self.transcript.find(self.current_message_id)
        if message is not None:
            return message

        last = self.transcript.last_assistant()
        if last is not None and last.synthesized:
            return last
        message_id = self.current_message_id or f"msg_{self._clock()}_assistant"
        return self.transcript.add(
            Message(id=message_id, role=Role.ASSISTANT, synthesized=self.current_message_id is None)
        )

    def _attach_tool(self: "ReconciliationEngine", message: Message, invocation: ToolInvocation) -> None:
        message.upsert_tool_invocation(invocation)
        if not invocation.state.is_terminal:
            self.is_loading = True
            self.transcript.ensure_placeholder(self._placeholder_label())
        elif self.transcript.placeholder is not None:
            if self.is_loading or self.tracker.has_active():
                self.transcript.ensure_placeholder(self._placeholder_label())
            else:
                self.transcript.remove_placeholder()

    def _on_tool_call(self: "ReconciliationEngine", event: ToolCallEvent) -> bool:
        if event.assistant_message_id is not None and event.assistant_message_id in self.aborted_ids:
            logger.debug(f"Dropping tool_call {event.tool_call_id} for aborted message")
            return False

        message = self.transcript.find_with_tool(event.tool_call_id) or self._tool_target(event.assistant_message_id)
        if message is None or message.aborted:
            return False

        if event.tool_call_id not in self.tracker:
            existing = message.find_tool_invocation(event.tool_call_id)
            if existing is not None:
                self.tracker.seed([existing])

        invocation = self.tracker.apply_call(event)
        if invocation is None:
            return False
        self._attach_tool(message, invocation)
        return True

    def _on_tool_result(self: "ReconciliationEngine", event: ToolResultEvent) -> bool:
        if event.assistant_message_id is not None and event.assistant_message_id in self.aborted_ids:
            return False

        message = self.transcript.find_with_tool(event.tool_call_id) or self._tool_target(event.assistant_message_id)
        if message is None or message.aborted:
            return False

        if event.tool_call_id not in self.tracker:
            existing = message.find_tool_invocation(event.tool_call_id)
            if existing is not None:
                self.tracker.seed([existing])

        invocation = self.tracker.apply_result(event)
        if invocation is None:
            return False
        self._attach_tool(message, invocation)
        return True

    def _on_history(self: "ReconciliationEngine", event: HistoryResponseEvent) -> bool:
        self.is_history_loading = False
        server_messages = transform_history(event.history)
        had_placeholder = self.transcript.placeholder is not None
        outcome = merge_history(
            self.transcript.messages,
            server_messages,
            has_active_stream=event.has_active_stream,
            had_placeholder=had_placeholder,
        )
        self.transcript.replace(outcome.messages)

        if outcome.stream_active:
            self.is_loading = True
            if outcome.active_message_id is not None and self.current_message_id is None:
                self.current_message_id = outcome.active_message_id
            active = self.transcript.find(outcome.active_message_id)
            if active is not None:
                self.tracker.seed(inv for inv in active.tool_invocations if not inv.state.is_terminal)

        if outcome.show_placeholder:
            self.transcript.ensure_placeholder(self._placeholder_label())
        else:
            self.transcript.remove_placeholder()

        if event.todos is not None:
            self.todos = list(event.todos)
        if event.title:
            self.title = event.title
        if event.max_tokens is not None:
            self.max_tokens = event.max_tokens
        if event.token_usage is not None:
            self.token_usage = event.token_usage
        logger.info(
            f"History merged for {self.conversation_id}: {len(self.transcript)} messages, "
            f"stream active: {outcome.stream_active}"
        )
        return True

    def _on_communication_error(self: "ReconciliationEngine", event: CommunicationErrorEvent) -> bool:
        logger.error(f"Communication error on {self.conversation_id}: {event.message}")
        self.error = event.message
        self.is_loading = False
        self.transcript.remove_placeholder()
        self.transcript.add(
            Message.from_text(
                f"error_{self._clock()}",
                Role.ASSISTANT,
                f"Error: {event.message}",
                completion_time=0.0,
            )
        )
        return True

    def _on_todo_update(self: "ReconciliationEngine", event: TodoUpdateEvent) -> bool:
        self.todos = list(event.todos)
        return True

    def _on_title_update(self: "ReconciliationEngine", event: TitleUpdateEvent) -> bool:
        self.title = event.title
        return True

    # --- Submission commands ---

    def add_user_message(
        self: "ReconciliationEngine",
        text: str,
        message_id: str | None = None,
        attachments: list[dict[str, Any]] | None = None,
        role: Role = Role.USER,
    ) -> Message:
        """Append a locally submitted user message."""
        message = Message.from_text(
            message_id or f"msg_{self._clock()}_user",
            role,
            text,
            attachments=attachments or [],
        )
        self.transcript.add(message)
        self._notify()
        return message

    def begin_turn(self: "ReconciliationEngine", assistant_message_id: str | None = None) -> None:
        """Show the placeholder and expect the given assistant message id."""
        self.error = None
        self.is_loading = True
        self.thinking_started_at = self._clock()
        self.current_message_id = assistant_message_id
        self.transcript.ensure_placeholder(THINKING_LABEL)
        self._notify()

    def rollback_submission(self: "ReconciliationEngine", user_message_id: str, error: str | None = None) -> None:
        """Undo a submission whose send failed."""
        self.transcript.remove(user_message_id)
        self.transcript.remove_placeholder()
        self.current_message_id = None
        self.thinking_started_at = None
        self.is_loading = False
        if error is not None:
            self.error = error
        self._notify()

    def abort_current_turn(self: "ReconciliationEngine") -> str | None:
        """Mark the streaming message aborted and drop per-turn state.

        Returns:
            Id of the aborted message, if one was being streamed
        """
        message_id = self.current_message_id
        if message_id is not None:
            self.aborted_ids.add(message_id)
            message = self.transcript.find(message_id)
            if message is not None:
                message.aborted = True
            logger.info(f"Aborted message {message_id} on {self.conversation_id}")
        self._finish_turn()
        self._notify()
        return message_id

    def set_error(self: "ReconciliationEngine", error: str | None) -> None:
        self.error = error
        self._notify()

    def reset(self: "ReconciliationEngine") -> None:
        """Clear all conversation state (new conversation)."""
        self.transcript.clear()
        self.tracker.clear()
        self.aborted_ids.clear()
        self.current_message_id = None
        self.thinking_started_at = None
        self.is_loading = False
        self.is_history_loading = False
        self.error = None
        self.todos = []
        self.title = None
        self.max_tokens = None
        self.token_usage = None
        self._notify()
