"""Turn execution for one conversation.

Runs a user turn against the LLM provider, executing requested tools
between rounds, and broadcasts the result as wire events.

Contract:
- Inputs: User text plus client-chosen user/assistant message ids
- Outputs: llm_chunk* (tool_call/tool_result)* llm_complete on the stream
- Side Effects: Persists history after every round, records token usage,
  generates the conversation title after the first exchange

Persistence layout of one turn:

    user            {id: user_message_id}
    assistant       {id: assistant_message_id, tool_calls?}   round 0
    tool            {tool_call_id}                             per call
    assistant       {id: assistant_message_id_1}               round 1
    ...

The first assistant turn is written empty when the turn starts, so history
snapshots taken mid-turn already contain the in-flight message. Completion
metadata lands on the last assistant turn of the group.
"""

import asyncio
import json
import logging
from datetime import UTC
from datetime import datetime
from typing import Any

from chatstream_library.models.events import RawTurn
from chatstream_library.models.transcript import TokenUsage
from chatstream_library.storage.conversation_store import ConversationStore

from ..config.models import LLMConfig
from ..providers.base import LLMProvider
from ..providers.base import TextDelta
from ..providers.base import ToolCallRequest
from ..providers.base import UsageReport
from ..streaming import now_ms
from ..tools.base import Broadcast
from .streaming_state import StreamingManager
from .tool_broadcast import ToolBroadcaster

logger = logging.getLogger(__name__)

APOLOGY = "I'm sorry, something went wrong while generating a response. Please try again."


def make_title(text: str, max_length: int) -> str:
    """Derive a conversation title from the first user message.

    Example:
        >>> make_title("  Plot   monthly revenue  ", 60)
        'Plot monthly revenue'
        >>> make_title("Summarize the quarterly numbers for every region", 24)
        'Summarize the...'
    """
    title = " ".join(text.split())
    if len(title) <= max_length:
        return title
    cut = title[: max_length - 3]
    if " " in cut:
        cut = cut.rsplit(" ", 1)[0]
    return cut.rstrip(" ,.;:") + "..."


def provider_messages(history: list[RawTurn], system_prompt: str) -> list[dict[str, Any]]:
    """Convert stored turns into chat-completion messages.

    Empty assistant turns (in-flight stubs) are skipped, and tool calls that
    never received a result (aborted turns) are dropped so every remaining
    call is answered.
    """
    answered = {turn.tool_call_id for turn in history if turn.role == "tool" and turn.tool_call_id}
    messages: list[dict[str, Any]] = [{"role": "system", "content": system_prompt}]

    for turn in history:
        if turn.role == "user":
            messages.append({"role": "user", "content": turn.content or ""})
        elif turn.role == "assistant":
            tool_calls = [call for call in turn.tool_calls or [] if call.get("id") in answered]
            if not turn.content and not tool_calls:
                continue
            message: dict[str, Any] = {"role": "assistant", "content": turn.content or None}
            if tool_calls:
                message["tool_calls"] = tool_calls
            messages.append(message)
        elif turn.role == "tool":
            content = turn.content if isinstance(turn.content, str) else json.dumps(turn.content)
            messages.append({"role": "tool", "tool_call_id": turn.tool_call_id, "content": content})

    return messages


class ConversationRunner:
    """Executes turns for one conversation."""

    def __init__(
        self: "ConversationRunner",
        conversation_id: str,
        store: ConversationStore,
        provider: LLMProvider,
        tools: ToolBroadcaster,
        streaming: StreamingManager,
        broadcast: Broadcast,
        llm_config: LLMConfig,
        title_max_length: int = 60,
    ) -> None:
        """Initialize runner.

        Args:
            conversation_id: Conversation identifier
            store: Conversation persistence
            provider: LLM provider used for every round
            tools: Tool executor broadcasting tool lifecycle events
            streaming: Active stream tracker shared with history replay
            broadcast: Sends (event_type, data) to stream subscribers
            llm_config: Model settings (system prompt, round limit, context size)
            title_max_length: Maximum generated title length
        """
        self.conversation_id = conversation_id
        self.store = store
        self.provider = provider
        self.tools = tools
        self.streaming = streaming
        self._broadcast = broadcast
        self.llm_config = llm_config
        self.title_max_length = title_max_length

    async def run_turn(
        self: "ConversationRunner",
        text: str,
        file_ids: list[str] | None,
        user_message_id: str,
        assistant_message_id: str,
    ) -> None:
        """Run one user turn to completion.

        Cancellation (abort) persists the partial answer marked aborted and
        broadcasts llm_complete with aborted=true before re-raising. Any other
        failure ends the turn with an apology instead of an error event.

        Args:
            text: User message text
            file_ids: Uploaded attachment identifiers
            user_message_id: Id for the user turn
            assistant_message_id: Id for the assistant reply
        """
        start_time = now_ms()
        created_at = datetime.now(UTC)
        history = self.store.load_history(self.conversation_id)
        history.append(
            RawTurn(
                id=user_message_id,
                role="user",
                content=text,
                created_at=created_at,
                attachments=[{"fileId": file_id} for file_id in file_ids] if file_ids else None,
            )
        )
        history.append(RawTurn(id=assistant_message_id, role="assistant", content="", created_at=created_at))
        self.store.save_history(self.conversation_id, history)
        self.streaming.start_stream(self.conversation_id, assistant_message_id, start_time)
        logger.info(f"Started turn {assistant_message_id} in conversation {self.conversation_id}")

        usage = UsageReport()
        try:
            await self._run_rounds(history, assistant_message_id, start_time, usage)

        except asyncio.CancelledError:
            logger.info(f"Turn {assistant_message_id} aborted")
            await self._finish(history, assistant_message_id, start_time, usage, aborted=True)
            raise

        except Exception as e:
            logger.error(f"Turn {assistant_message_id} failed: {type(e).__name__}: {e}")
            await self._apologize(history, assistant_message_id, start_time)
            await self._finish(history, assistant_message_id, start_time, usage)
            return

        await self._finish(history, assistant_message_id, start_time, usage)
        await self._update_title(history)

    async def _run_rounds(
        self: "ConversationRunner",
        history: list[RawTurn],
        assistant_message_id: str,
        start_time: int,
        usage: UsageReport,
    ) -> None:
        turn = history[-1]
        for round_index in range(self.llm_config.max_tool_rounds):
            if round_index > 0:
                turn = RawTurn(
                    id=f"{assistant_message_id}_{round_index}",
                    role="assistant",
                    content="",
                    created_at=datetime.now(UTC),
                )
                history.append(turn)

            requests: list[ToolCallRequest] = []
            messages = provider_messages(history, self.llm_config.system_prompt)
            async for event in self.provider.stream(messages, self.tools.definitions()):
                if isinstance(event, TextDelta):
                    if not event.text:
                        continue
                    turn.content = (turn.content or "") + event.text
                    await self._emit_chunk(assistant_message_id, event.text, start_time)
                elif isinstance(event, ToolCallRequest):
                    requests.append(event)
                elif isinstance(event, UsageReport):
                    usage.prompt_tokens += event.prompt_tokens
                    usage.completion_tokens += event.completion_tokens

            if requests:
                turn.tool_calls = [request.to_message_tool_call() for request in requests]
            self.store.save_history(self.conversation_id, history)

            if not requests:
                return

            for request in requests:
                outcome = await self.tools.execute(request.id, request.name, request.arguments, assistant_message_id)
                history.append(
                    RawTurn(
                        role="tool",
                        tool_call_id=request.id,
                        name=request.name,
                        content=json.dumps(outcome.to_content(), default=str),
                        created_at=datetime.now(UTC),
                    )
                )
                self.store.save_history(self.conversation_id, history)

        logger.warning(
            f"Turn {assistant_message_id} stopped after {self.llm_config.max_tool_rounds} tool rounds"
        )

    async def _emit_chunk(self: "ConversationRunner", message_id: str, chunk: str, start_time: int) -> None:
        self.streaming.add_chunk(self.conversation_id, message_id, chunk)
        await self._broadcast(
            "llm_chunk",
            {"chunk": chunk, "messageId": message_id, "startTime": start_time},
        )

    async def _apologize(self: "ConversationRunner", history: list[RawTurn], message_id: str, start_time: int) -> None:
        turn = self._final_assistant_turn(history, message_id)
        chunk = f"\n\n{APOLOGY}" if turn.content else APOLOGY
        turn.content = (turn.content or "") + chunk
        await self._emit_chunk(message_id, chunk, start_time)

    def _final_assistant_turn(self: "ConversationRunner", history: list[RawTurn], message_id: str) -> RawTurn:
        for turn in reversed(history):
            if turn.role != "assistant" or not turn.id:
                continue
            if turn.id == message_id or turn.id.startswith(f"{message_id}_"):
                return turn
        raise LookupError(f"Assistant turn {message_id} missing from history")

    async def _finish(
        self: "ConversationRunner",
        history: list[RawTurn],
        message_id: str,
        start_time: int,
        usage: UsageReport,
        aborted: bool = False,
    ) -> None:
        state = self.streaming.complete_stream(self.conversation_id, message_id)
        full_text = state.full_response if state else ""
        thinking_duration = state.thinking_duration if state else None
        completion_time = round((now_ms() - start_time) / 1000, 1)
        token_usage = TokenUsage(
            prompt_tokens=usage.prompt_tokens,
            completion_tokens=usage.completion_tokens,
            total_tokens=usage.prompt_tokens + usage.completion_tokens,
            message_count=len(history),
        )

        turn = self._final_assistant_turn(history, message_id)
        turn.completion_time = completion_time
        turn.thinking_duration = thinking_duration
        turn.token_usage = token_usage
        turn.aborted = aborted
        self.store.save_history(self.conversation_id, history)
        self.store.record_token_usage(self.conversation_id, token_usage)

        data: dict[str, Any] = {
            "messageId": message_id,
            "fullText": full_text,
            "completionTime": completion_time,
            "thinkingDuration": thinking_duration,
            "tokenUsage": token_usage.model_dump(by_alias=True),
            "maxTokens": self.llm_config.max_context_tokens,
        }
        if aborted:
            data["aborted"] = True
        await self._broadcast("llm_complete", data)
        logger.info(
            f"Completed turn {message_id} in {completion_time}s "
            f"({len(full_text)} chars, {token_usage.total_tokens} tokens)"
        )

    async def _update_title(self: "ConversationRunner", history: list[RawTurn]) -> None:
        info = self.store.load_info(self.conversation_id)
        if info.title:
            return
        first_user = next((turn for turn in history if turn.role == "user" and turn.content), None)
        if first_user is None:
            return
        title = make_title(str(first_user.content), self.title_max_length)
        self.store.update_info(self.conversation_id, title=title)
        await self._broadcast("conversation_title_update", {"title": title})
        logger.info(f"Titled conversation {self.conversation_id}: {title!r}")
