"""Conversations router for chatstreamd API.

Handles conversation commands: send message, control (history, abort,
clear, status), and stored history.

Every command answers over HTTP; resulting events are broadcast to all
/stream subscribers of the conversation.
"""

import logging
from typing import Annotated

from fastapi import APIRouter
from fastapi import Depends
from fastapi import HTTPException

from chatstream_library.storage.conversation_store import ConversationStore

from ..config.models import Config
from ..dependencies import get_config
from ..dependencies import get_conversation_store
from ..dependencies import get_provider
from ..models import ControlRequest
from ..models import ControlResponse
from ..models import HistoryResponse
from ..models import SendMessageRequest
from ..models import SendMessageResponse
from ..providers.base import LLMProvider
from ..services.conversation_stream import TurnInProgressError
from ..services.conversation_stream import get_stream_registry

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/conversations/{conversation_id}", tags=["conversations"])


def _validate_conversation_id(store: ConversationStore, conversation_id: str) -> None:
    try:
        store.exists(conversation_id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e


@router.post("/messages", response_model=SendMessageResponse, status_code=202)
async def send_message(
    conversation_id: str,
    request: SendMessageRequest,
    store: Annotated[ConversationStore, Depends(get_conversation_store)],
    config: Annotated[Config, Depends(get_config)],
    provider: Annotated[LLMProvider, Depends(get_provider)],
) -> SendMessageResponse:
    """Send a user message and start a turn (SSE-only architecture).

    Returns immediately; the assistant reply is broadcast to persistent
    /stream subscribers as llm_chunk / tool_call / tool_result / llm_complete.

    Args:
        conversation_id: Conversation identifier
        request: Message request
        store: Conversation store dependency
        config: Daemon configuration dependency
        provider: LLM provider dependency

    Returns:
        Ids used for the user message and the assistant reply

    Raises:
        HTTPException: 400 if the id is invalid, 409 if a turn is running, 500 on error
    """
    _validate_conversation_id(store, conversation_id)

    try:
        registry = get_stream_registry()
        stream = await registry.get_or_create(conversation_id, store)

        user_message_id, assistant_message_id = await stream.start_turn(
            request.text,
            provider,
            config,
            file_ids=request.file_ids,
            user_message_id=request.user_message_id,
            assistant_message_id=request.assistant_message_id,
        )

        return SendMessageResponse(
            conversation_id=conversation_id,
            user_message_id=user_message_id,
            assistant_message_id=assistant_message_id,
        )

    except TurnInProgressError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    except Exception as e:
        logger.error(f"Failed to send message to conversation {conversation_id}: {e}")
        raise HTTPException(status_code=500, detail="Internal server error") from e


@router.post("/control", response_model=ControlResponse)
async def control(
    conversation_id: str,
    request: ControlRequest,
    store: Annotated[ConversationStore, Depends(get_conversation_store)],
    config: Annotated[Config, Depends(get_config)],
) -> ControlResponse:
    """Run a control command.

    Commands:
        - get_history: Accumulated stream replay plus history response envelopes
        - abort: Cancel the running turn (partial answer is kept, marked aborted)
        - clear_history: Delete stored state and broadcast an empty history
        - get_status: Processing state of the conversation

    Args:
        conversation_id: Conversation identifier
        request: Control request
        store: Conversation store dependency
        config: Daemon configuration dependency

    Returns:
        Command outcome

    Raises:
        HTTPException: 400 for an invalid id or unknown command, 500 on error
    """
    _validate_conversation_id(store, conversation_id)

    try:
        registry = get_stream_registry()
        stream = await registry.get_or_create(conversation_id, store)

        if request.type == "get_history":
            messages = stream.build_history_replay(max_tokens=config.llm.max_context_tokens)
            return ControlResponse(status="history", messages=messages)

        if request.type == "abort":
            message_id = await stream.abort()
            return ControlResponse(
                status="aborted" if message_id else "idle",
                detail={"messageId": message_id},
            )

        if request.type == "clear_history":
            await stream.clear_history()
            return ControlResponse(status="cleared")

        if request.type == "get_status":
            return ControlResponse(status="ok", detail=stream.status())

        raise HTTPException(status_code=400, detail=f"Unknown control command: {request.type}")

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Control {request.type} failed for conversation {conversation_id}: {e}")
        raise HTTPException(status_code=500, detail="Internal server error") from e


@router.get("/history", response_model=HistoryResponse)
async def get_history(
    conversation_id: str,
    store: Annotated[ConversationStore, Depends(get_conversation_store)],
) -> HistoryResponse:
    """Get stored conversation history.

    Args:
        conversation_id: Conversation identifier
        store: Conversation store dependency

    Returns:
        Stored turns with title, todos and cumulative usage

    Raises:
        HTTPException: 400 if the id is invalid, 404 if the conversation does not exist
    """
    _validate_conversation_id(store, conversation_id)

    try:
        if not store.exists(conversation_id):
            raise HTTPException(status_code=404, detail=f"Conversation {conversation_id} not found")

        info = store.load_info(conversation_id)
        stream = get_stream_registry().get(conversation_id)

        return HistoryResponse(
            conversation_id=conversation_id,
            title=info.title,
            history=store.load_history(conversation_id),
            todos=store.load_todos(conversation_id),
            token_usage=info.token_usage,
            has_active_stream=stream is not None and stream.is_processing,
        )

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Failed to get history for conversation {conversation_id}: {e}")
        raise HTTPException(status_code=500, detail="Internal server error") from e
