"""Conversation client: transport, engine and controller wired together."""

import asyncio
import logging

from chatstream_library.config.settings import ClientSettings
from chatstream_library.errors import TransportError
from chatstream_library.reconciliation.engine import ReconciliationEngine
from chatstream_library.reconciliation.submission import ChatController
from chatstream_library.reconciliation.submission import ConversationTransport
from chatstream_library.reconciliation.submission import Uploader
from chatstream_library.reconciliation.tab_leadership import TabLeadershipCoordinator

from .transport import HttpConversationTransport

logger = logging.getLogger(__name__)


class ConversationClient:
    """One tab on one conversation.

    Example:
        >>> client = ConversationClient("c1")
        >>> await client.open()
        >>> await client.send("Hello")
        >>> await client.wait_until_idle()
        >>> print(client.engine.snapshot().messages[-1].content)
        >>> await client.close()
    """

    def __init__(
        self: "ConversationClient",
        conversation_id: str,
        settings: ClientSettings | None = None,
        transport: ConversationTransport | None = None,
        coordinator: TabLeadershipCoordinator | None = None,
        uploader: Uploader | None = None,
    ) -> None:
        self.conversation_id = conversation_id
        self.settings = settings or ClientSettings()
        self.transport = transport or HttpConversationTransport(conversation_id, self.settings)
        self.engine = ReconciliationEngine(
            conversation_id,
            coordinator=coordinator,
            strict=self.settings.strict_reconciliation,
            history_requester=self._request_history,
        )
        self.controller = ChatController(self.engine, self.transport, self.settings, uploader=uploader)
        self._history_ready = asyncio.Event()
        self._background: set[asyncio.Task] = set()

        set_handler = getattr(self.transport, "set_handler", None)
        if set_handler is not None:
            set_handler(self.engine.handle_payload)

    def _request_history(self: "ConversationClient") -> None:
        self._history_ready.clear()
        task = asyncio.create_task(self._fetch_history())
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _fetch_history(self: "ConversationClient") -> None:
        try:
            await self.transport.get_history()
        except TransportError as e:
            logger.error(f"Failed to load history for {self.conversation_id}: {e}")
            self.engine.is_history_loading = False
            self.engine.set_error(str(e))
        finally:
            self._history_ready.set()

    async def open(self: "ConversationClient", timeout: float = 10.0) -> None:
        """Mount the tab, connect, and wait for the first history snapshot."""
        self.engine.mount()
        await self.transport.connect()
        await asyncio.wait_for(self._history_ready.wait(), timeout=timeout)

    async def close(self: "ConversationClient") -> None:
        await self.transport.disconnect()
        self.engine.unmount()
        for task in list(self._background):
            task.cancel()

    async def send(self: "ConversationClient", text: str) -> bool:
        """Put text in the input box and submit it."""
        self.controller.input = text
        return await self.controller.handle_submit()

    async def wait_until_idle(self: "ConversationClient", timeout: float = 120.0, poll_interval: float = 0.05) -> None:
        """Wait until no turn is in flight.

        Raises:
            TimeoutError: If the turn does not finish in time
        """
        async with asyncio.timeout(timeout):
            while self.engine.is_loading:
                await asyncio.sleep(poll_interval)
