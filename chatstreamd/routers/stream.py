"""SSE stream endpoint for persistent conversation streaming.

Provides long-lived SSE connections for receiving conversation events.
"""

import asyncio
import json
import logging
from typing import Annotated

from fastapi import APIRouter
from fastapi import Depends
from fastapi import HTTPException
from sse_starlette.event import ServerSentEvent
from sse_starlette.sse import EventSourceResponse

from chatstream_library.storage.conversation_store import ConversationStore

from ..config.models import Config
from ..dependencies import get_config
from ..dependencies import get_conversation_store
from ..services.conversation_stream import get_stream_registry
from ..streaming import wire_message

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/conversations", tags=["stream"])


@router.get("/{conversation_id}/stream")
async def stream_conversation_events(
    conversation_id: str,
    store: Annotated[ConversationStore, Depends(get_conversation_store)],
    config: Annotated[Config, Depends(get_config)],
) -> EventSourceResponse:
    """Persistent SSE stream for conversation events.

    Connects once and receives every event of the conversation, from any
    tab's turns. Each SSE frame carries one wire envelope
    ({type, id, data, metadata}) as JSON, with the envelope type as the
    SSE event name.

    Connection lifecycle:
    - Connect: Creates/reuses ConversationStream
    - Disconnect: Keeps the stream (and any running turn) alive for reconnection

    Args:
        conversation_id: Conversation identifier
        store: Conversation store dependency
        config: Daemon configuration dependency

    Returns:
        SSE EventSourceResponse streaming conversation events

    Raises:
        HTTPException: 400 if the conversation id is invalid

    Events:
        - connected: Initial connection established
        - keepalive: Periodic heartbeat
        - llm_chunk, llm_complete, tool_call, tool_result, todo_update,
          conversation_title_update, control_response: Conversation events
        - error: Stream error occurred
    """
    try:
        store.exists(conversation_id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e

    keepalive_seconds = config.streaming.keepalive_seconds

    async def event_generator():
        """Generate SSE events from conversation stream."""
        registry = get_stream_registry()
        stream = await registry.get_or_create(conversation_id, store)

        queue = stream.subscribe()

        try:
            yield ServerSentEvent(
                data=json.dumps(wire_message("connected", {"convId": conversation_id}, conversation_id)),
                event="connected",
            )

            logger.info(f"SSE stream connected for conversation {conversation_id}")

            while True:
                try:
                    # Wait for events with timeout (allows keepalive + cancellation)
                    event = await asyncio.wait_for(queue.get(), timeout=keepalive_seconds)
                    yield ServerSentEvent(
                        data=json.dumps(event["data"]),
                        event=event["event"],
                    )

                except TimeoutError:
                    yield ServerSentEvent(
                        data=json.dumps(wire_message("keepalive", {}, conversation_id)),
                        event="keepalive",
                    )

        except asyncio.CancelledError:
            logger.info(f"SSE stream disconnected for conversation {conversation_id}")
            raise

        except Exception as e:
            logger.error(f"SSE stream error for {conversation_id}: {e}")
            yield ServerSentEvent(
                data=json.dumps(
                    wire_message("error", {"code": "stream_error", "message": str(e)}, conversation_id)
                ),
                event="error",
            )

        finally:
            stream.unsubscribe(queue)
            logger.info(f"Unsubscribed from events for conversation {conversation_id}")

    return EventSourceResponse(event_generator())
