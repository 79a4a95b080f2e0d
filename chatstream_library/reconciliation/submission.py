"""Abort and resubmission guard.

ChatController owns the input box state and turns user submissions into
transport commands, guaranteeing at most one submission in flight.

Rules:
- Blank input or a disconnected transport makes submit a no-op (input kept)
- A second submit while one is in flight, or inside the debounce window, is rejected
- Submitting while a turn streams aborts that turn first, then waits a grace delay
- A failed upload restores the input; a failed send rolls the transcript back
"""

import asyncio
import logging
import time
import uuid
from collections.abc import Awaitable
from collections.abc import Callable
from typing import Any
from typing import Protocol

from chatstream_library.config.settings import ClientSettings
from chatstream_library.errors import ChatStreamError
from chatstream_library.errors import TransportError
from chatstream_library.models.transcript import Message
from chatstream_library.models.transcript import Role

from .engine import ReconciliationEngine

logger = logging.getLogger(__name__)

# Uploads attachments and returns one metadata dict (with an "id") per file
Uploader = Callable[[list[Any]], Awaitable[list[dict[str, Any]]]]


class ConversationTransport(Protocol):
    """Commands a client sends to the backend for one conversation."""

    async def connect(self) -> None: ...

    async def disconnect(self) -> None: ...

    def is_connected(self) -> bool: ...

    async def get_history(self) -> None: ...

    async def send_message(
        self,
        text: str,
        file_ids: list[str] | None = None,
        user_message_id: str | None = None,
        assistant_message_id: str | None = None,
    ) -> str | None: ...

    async def abort(self) -> None: ...


def _new_message_id(suffix: str) -> str:
    return f"msg_{uuid.uuid4().hex[:12]}_{suffix}"


class ChatController:
    """Submission state machine for one tab.

    Example:
        >>> controller = ChatController(engine, transport)
        >>> controller.input = "What were sales in Q3?"
        >>> await controller.handle_submit()
        True
    """

    def __init__(
        self: "ChatController",
        engine: ReconciliationEngine,
        transport: ConversationTransport,
        settings: ClientSettings | None = None,
        uploader: Uploader | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        """Initialize controller.

        Args:
            engine: Reconciliation engine of this tab
            transport: Transport for the conversation
            settings: Client settings (debounce and grace delays)
            uploader: Uploads attachments before sending
            clock: Monotonic clock in seconds
        """
        self.engine = engine
        self.transport = transport
        self.settings = settings or ClientSettings()
        self.uploader = uploader
        self._clock = clock or time.monotonic

        self.input = ""
        self.is_submitting = False
        self._last_submit_at: float | None = None

    def append(self: "ChatController", role: Role | str, content: str) -> Message:
        """Add a local message to the transcript without sending it.

        Args:
            role: Author of the message
            content: Message text

        Returns:
            The added message
        """
        return self.engine.add_user_message(content, role=Role(role))

    async def handle_submit(self: "ChatController", attachments: list[Any] | None = None) -> bool:
        """Submit the current input.

        Args:
            attachments: Files to upload and reference from the message

        Returns:
            True if the message was sent
        """
        text = self.input.strip()
        if not text and not attachments:
            return False

        if not self.transport.is_connected():
            logger.info("Not connected; submission skipped")
            return False

        if self.is_submitting:
            logger.debug("Submission already in flight; rejecting")
            return False

        now = self._clock()
        if self._last_submit_at is not None and now - self._last_submit_at < self.settings.submit_debounce_seconds:
            logger.debug("Submission inside debounce window; rejecting")
            return False

        self._last_submit_at = now
        self.is_submitting = True
        try:
            return await self._submit(text, attachments)
        finally:
            self.is_submitting = False

    async def _submit(self: "ChatController", text: str, attachments: list[Any] | None) -> bool:
        if self.engine.is_loading:
            logger.info("Turn in progress; aborting before resubmitting")
            await self.abort()
            await asyncio.sleep(self.settings.abort_grace_seconds)

        submitted_input = self.input
        self.input = ""

        uploaded: list[dict[str, Any]] = []
        if attachments:
            if self.uploader is None:
                self.input = submitted_input
                self.engine.set_error("Attachments require an uploader")
                return False
            try:
                uploaded = await self.uploader(attachments)
            except (ChatStreamError, OSError) as e:
                logger.error(f"Attachment upload failed: {e}")
                self.input = submitted_input
                self.engine.set_error(f"Upload failed: {e}")
                return False

        user_message_id = _new_message_id("user")
        assistant_message_id = _new_message_id("assistant")
        self.engine.add_user_message(text, message_id=user_message_id, attachments=uploaded)
        self.engine.begin_turn(assistant_message_id)

        file_ids = [item["id"] for item in uploaded if "id" in item]
        try:
            confirmed_id = await self.transport.send_message(
                text,
                file_ids=file_ids or None,
                user_message_id=user_message_id,
                assistant_message_id=assistant_message_id,
            )
        except TransportError as e:
            logger.error(f"Failed to send message: {e}")
            self.engine.rollback_submission(user_message_id, error=str(e))
            return False

        if confirmed_id and confirmed_id != assistant_message_id and self.engine.current_message_id == assistant_message_id:
            # Backend assigned its own id before any chunk arrived
            self.engine.current_message_id = confirmed_id
        return True

    async def abort(self: "ChatController") -> None:
        """Abort the streaming turn, if any."""
        self.engine.abort_current_turn()
        try:
            await self.transport.abort()
        except TransportError as e:
            logger.warning(f"Abort command failed: {e}")

    async def new_conversation(self: "ChatController") -> None:
        """Abort anything in flight and reset all state."""
        if self.engine.is_loading:
            await self.abort()
        self.engine.reset()
        self.input = ""
        self.is_submitting = False
        self._last_submit_at = None
