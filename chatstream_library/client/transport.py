"""HTTP/SSE transport for one conversation.

Events arrive over a long-lived SSE stream; commands are plain HTTP requests.
Envelopes are handed to a single handler (usually the reconciliation engine)
in arrival order. Losing the stream dispatches a synthetic ``disconnected``
envelope and the transport reconnects with a fixed delay.
"""

import asyncio
import json
import logging
import time
from collections.abc import AsyncIterator
from collections.abc import Callable
from typing import Any

import httpx

from chatstream_library.config.settings import ClientSettings
from chatstream_library.errors import TransportError

logger = logging.getLogger(__name__)

PayloadHandler = Callable[[dict[str, Any] | str], Any]


async def iter_sse_data(lines: AsyncIterator[str]) -> AsyncIterator[tuple[str, str]]:
    """Parse SSE lines into (event, data) frames.

    Args:
        lines: Decoded response lines without trailing newlines

    Yields:
        Event name (default "message") and joined data for each frame
    """
    event_type = "message"
    data_lines: list[str] = []
    async for line in lines:
        if not line:
            if data_lines:
                yield event_type, "\n".join(data_lines)
            event_type = "message"
            data_lines = []
            continue
        if line.startswith(":"):
            continue
        field, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if field == "event":
            event_type = value
        elif field == "data":
            data_lines.append(value)
    if data_lines:
        yield event_type, "\n".join(data_lines)


class HttpConversationTransport:
    """ConversationTransport over the chatstreamd HTTP API."""

    def __init__(
        self: "HttpConversationTransport",
        conversation_id: str,
        settings: ClientSettings | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize transport.

        Args:
            conversation_id: Conversation to stream
            settings: Client settings (server URL, reconnect policy)
            client: Optional preconfigured httpx client (owned by the caller)
        """
        self.conversation_id = conversation_id
        self.settings = settings or ClientSettings()
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=self.settings.server_url,
            timeout=self.settings.request_timeout_seconds,
        )
        self._handler: PayloadHandler | None = None
        self._reader: asyncio.Task | None = None
        self._connected = False
        self._closing = False

    @property
    def base_path(self: "HttpConversationTransport") -> str:
        return f"/api/v1/conversations/{self.conversation_id}"

    def set_handler(self: "HttpConversationTransport", handler: PayloadHandler) -> None:
        """Set the callable receiving every envelope."""
        self._handler = handler

    def is_connected(self: "HttpConversationTransport") -> bool:
        return self._connected

    def _dispatch(self: "HttpConversationTransport", payload: dict[str, Any] | str) -> None:
        if self._handler is None:
            logger.debug("No handler set; dropping payload")
            return
        self._handler(payload)

    def _deliver(self: "HttpConversationTransport", payload: dict[str, Any] | str) -> None:
        """Dispatch a streamed payload; a failing handler never stops the reader."""
        try:
            self._dispatch(payload)
        except Exception:
            logger.exception(f"Handler failed on a stream event for conversation {self.conversation_id}")

    def _dispatch_disconnected(self: "HttpConversationTransport", reason: str) -> None:
        self._deliver(
            {
                "type": "disconnected",
                "data": {"reason": reason},
                "metadata": {"timestamp": int(time.time() * 1000), "convId": self.conversation_id},
            }
        )

    async def connect(self: "HttpConversationTransport") -> None:
        """Start the background stream reader."""
        if self._reader is not None and not self._reader.done():
            return
        self._closing = False
        self._reader = asyncio.create_task(self._run_stream())

    async def _run_stream(self: "HttpConversationTransport") -> None:
        try:
            failures = 0
            while not self._closing:
                reason = "stream closed"
                try:
                    async with self._client.stream("GET", f"{self.base_path}/stream", timeout=None) as response:
                        response.raise_for_status()
                        self._connected = True
                        failures = 0
                        logger.info(f"Stream connected for conversation {self.conversation_id}")
                        async for event_type, data in iter_sse_data(response.aiter_lines()):
                            if event_type == "keepalive":
                                continue
                            self._deliver(data)
                except httpx.HTTPError as e:
                    reason = str(e) or type(e).__name__
                    logger.warning(f"Stream error for conversation {self.conversation_id}: {reason}")

                was_connected = self._connected
                self._connected = False
                if self._closing:
                    break
                if was_connected:
                    self._dispatch_disconnected(reason)

                failures += 1
                if failures > self.settings.reconnect_attempts:
                    logger.error(f"Giving up on conversation {self.conversation_id} after {failures} failed attempts")
                    if not was_connected:
                        self._dispatch_disconnected(reason)
                    break
                await asyncio.sleep(self.settings.reconnect_delay_seconds)
        finally:
            self._connected = False

    async def disconnect(self: "HttpConversationTransport") -> None:
        """Stop streaming and release the HTTP client."""
        self._closing = True
        self._connected = False
        if self._reader is not None:
            self._reader.cancel()
            try:
                await self._reader
            except asyncio.CancelledError:
                logger.debug(f"Stream reader stopped for conversation {self.conversation_id}")
            self._reader = None
        if self._owns_client:
            await self._client.aclose()

    async def _post(self: "HttpConversationTransport", path: str, body: dict[str, Any]) -> dict[str, Any]:
        try:
            response = await self._client.post(f"{self.base_path}{path}", json=body)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            detail = e.response.text
            raise TransportError(f"{path} failed with {e.response.status_code}: {detail}") from e
        except httpx.HTTPError as e:
            raise TransportError(f"{path} failed: {e}") from e
        try:
            return response.json()
        except json.JSONDecodeError as e:
            raise TransportError(f"{path} returned invalid JSON") from e

    async def get_history(self: "HttpConversationTransport") -> None:
        """Fetch the history snapshot and dispatch its envelopes in order.

        The daemon answers with any accumulated stream replay first, followed
        by the history response itself.
        """
        body = await self._post("/control", {"type": "get_history"})
        for envelope in body.get("messages", []):
            self._dispatch(envelope)

    async def send_message(
        self: "HttpConversationTransport",
        text: str,
        file_ids: list[str] | None = None,
        user_message_id: str | None = None,
        assistant_message_id: str | None = None,
    ) -> str | None:
        """Submit a user message.

        Returns:
            Assistant message id confirmed by the daemon

        Raises:
            TransportError: If not connected or the request failed
        """
        if not self._connected:
            raise TransportError("Not connected")
        body: dict[str, Any] = {"text": text}
        if file_ids:
            body["fileIds"] = file_ids
        if user_message_id:
            body["userMessageId"] = user_message_id
        if assistant_message_id:
            body["assistantMessageId"] = assistant_message_id
        response = await self._post("/messages", body)
        return response.get("assistantMessageId")

    async def abort(self: "HttpConversationTransport") -> None:
        await self._post("/control", {"type": "abort"})
