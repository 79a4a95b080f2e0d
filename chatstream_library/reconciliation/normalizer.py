"""Event normalizer.

Classifies raw transport payloads into the closed ``StreamEvent`` union.

Contract:
- Inputs: One wire envelope ({type, id, data, metadata}) as dict, str or bytes
- Outputs: Exactly one typed event, or None when the payload is dropped
- Side Effects: Logs dropped payloads; never raises, holds no state
"""

import json
import logging
from collections.abc import Callable
from typing import Any

from pydantic import ValidationError

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

logger = logging.getLogger(__name__)

# Transport chatter with no transcript meaning
SILENT_TYPES = {"keepalive", "ping", "pong"}


def _payload(data: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in data.items() if key != "type"}


def _connected(envelope_id: str | None, data: dict[str, Any], metadata: dict[str, Any]) -> StreamEvent:
    return ConnectedEvent(conversation_id=data.get("convId") or metadata.get("convId"))


def _disconnected(envelope_id: str | None, data: dict[str, Any], metadata: dict[str, Any]) -> StreamEvent:
    return DisconnectedEvent(reason=data.get("reason"))


def _chunk(envelope_id: str | None, data: dict[str, Any], metadata: dict[str, Any]) -> StreamEvent:
    payload = _payload(data)
    payload["messageId"] = data.get("messageId") or envelope_id
    payload["isAccumulated"] = bool(data.get("isAccumulated") or metadata.get("isAccumulated"))
    if payload.get("sequence") is None:
        payload["sequence"] = metadata.get("sequence")
    return ChunkEvent.model_validate(payload)


def _complete(envelope_id: str | None, data: dict[str, Any], metadata: dict[str, Any]) -> StreamEvent:
    payload = _payload(data)
    payload["messageId"] = data.get("messageId") or envelope_id
    payload["isAccumulated"] = bool(data.get("isAccumulated") or metadata.get("isAccumulated"))
    if payload.get("fullText") is None:
        payload["fullText"] = ""
    return CompleteEvent.model_validate(payload)


def _tool_call(envelope_id: str | None, data: dict[str, Any], metadata: dict[str, Any]) -> StreamEvent:
    payload = _payload(data)
    if payload.get("args") is None:
        payload["args"] = {}
    return ToolCallEvent.model_validate(payload)


def _tool_result(envelope_id: str | None, data: dict[str, Any], metadata: dict[str, Any]) -> StreamEvent:
    return ToolResultEvent.model_validate(_payload(data))


def _control_response(envelope_id: str | None, data: dict[str, Any], metadata: dict[str, Any]) -> StreamEvent | None:
    if data.get("status") != "history":
        logger.debug(f"Ignoring control response with status {data.get('status')!r}")
        return None
    payload = _payload(data)
    payload.pop("status", None)
    if payload.get("history") is None:
        payload["history"] = payload.pop("messages", None) or []
    return HistoryResponseEvent.model_validate(payload)


def _error(envelope_id: str | None, data: dict[str, Any], metadata: dict[str, Any]) -> StreamEvent:
    message = data.get("message") or data.get("error") or "Unknown error"
    return CommunicationErrorEvent(code=data.get("code"), message=str(message))


def _todo_update(envelope_id: str | None, data: dict[str, Any], metadata: dict[str, Any]) -> StreamEvent:
    return TodoUpdateEvent(todos=data.get("todos") or [])


def _title_update(envelope_id: str | None, data: dict[str, Any], metadata: dict[str, Any]) -> StreamEvent:
    return TitleUpdateEvent(title=data["title"])


_Builder = Callable[[str | None, dict[str, Any], dict[str, Any]], StreamEvent | None]

_BUILDERS: dict[str, _Builder] = {
    "connected": _connected,
    "disconnected": _disconnected,
    "llm_chunk": _chunk,
    "llm_complete": _complete,
    "tool_call": _tool_call,
    "tool_result": _tool_result,
    "control_response": _control_response,
    "control": _control_response,
    "error": _error,
    "communication_error": _error,
    "todo_update": _todo_update,
    "conversation_title_update": _title_update,
}


def normalize_event(payload: dict[str, Any] | str | bytes) -> StreamEvent | None:
    """Classify one raw payload.

    Args:
        payload: Wire envelope, or its JSON text

    Returns:
        The typed event, or None if the payload was dropped

    Example:
        >>> event = normalize_event({"type": "llm_chunk", "id": "m1", "data": {"chunk": "Hi"}})
        >>> event.type, event.message_id, event.chunk
        ('chunk', 'm1', 'Hi')
    """
    if isinstance(payload, (str, bytes)):
        try:
            payload = json.loads(payload)
        except json.JSONDecodeError as e:
            logger.warning(f"Dropping malformed payload (invalid JSON): {e}")
            return None

    if not isinstance(payload, dict):
        logger.warning(f"Dropping malformed payload of type {type(payload).__name__}")
        return None

    event_type = payload.get("type")
    data = payload.get("data") or {}
    metadata = payload.get("metadata") or {}
    if not isinstance(data, dict) or not isinstance(metadata, dict):
        logger.warning(f"Dropping {event_type!r} payload with non-object data or metadata")
        return None

    builder = _BUILDERS.get(event_type) if isinstance(event_type, str) else None
    if builder is None:
        if isinstance(event_type, str) and event_type in SILENT_TYPES:
            logger.debug(f"Ignoring {event_type} payload")
        else:
            logger.warning(f"Dropping payload with unknown type {event_type!r}")
        return None

    try:
        return builder(payload.get("id"), data, metadata)
    except (ValidationError, KeyError, TypeError) as e:
        logger.warning(f"Dropping invalid {event_type!r} payload: {e}")
        return None
