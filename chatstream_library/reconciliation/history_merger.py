"""History merger.

Transforms a raw server history snapshot into transcript messages and merges
it with the locally built transcript.

Rules:
- Tool turns collapse into the invocations of the assistant turn that
  requested them; an invocation with no result yet stays in ``call``
- Consecutive assistant turns of one response (a tool-calling turn followed
  by its continuation) merge into one message: text, tools, trailing text
- Local messages found in the snapshot keep whichever version has more text
- Local messages missing from the snapshot are stale and dropped
"""

import json
import logging
import time
from datetime import UTC
from datetime import datetime
from typing import Any

from pydantic import BaseModel
from pydantic import Field

from chatstream_library.models.events import RawTurn
from chatstream_library.models.transcript import Message
from chatstream_library.models.transcript import Role
from chatstream_library.models.transcript import ToolInvocation
from chatstream_library.models.transcript import ToolInvocationPart
from chatstream_library.models.transcript import ToolState

logger = logging.getLogger(__name__)


class MergeOutcome(BaseModel):
    """Result of merging a history snapshot into the local transcript."""

    messages: list[Message] = Field(default_factory=list)
    show_placeholder: bool = False
    stream_active: bool = False
    active_message_id: str | None = None


def _text_of(content: Any) -> str:
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        # Multi-part content: keep the text items only
        return "".join(item.get("text", "") for item in content if isinstance(item, dict))
    return str(content)


def _parse_arguments(raw: Any) -> dict[str, Any]:
    if isinstance(raw, dict):
        return raw
    if isinstance(raw, str) and raw.strip():
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning(f"Unparseable tool arguments in history: {raw[:80]!r}")
            return {}
        return parsed if isinstance(parsed, dict) else {"value": parsed}
    return {}


def _tool_call_fields(tool_call: dict[str, Any]) -> tuple[str | None, str, dict[str, Any]]:
    function = tool_call.get("function") or {}
    name = function.get("name") or tool_call.get("name") or tool_call.get("toolName") or ""
    arguments = function.get("arguments", tool_call.get("arguments", tool_call.get("args")))
    return tool_call.get("id"), name, _parse_arguments(arguments)


def _parse_tool_content(content: Any) -> Any:
    if isinstance(content, str):
        try:
            return json.loads(content)
        except json.JSONDecodeError:
            return content
    return content


def _created_at(turn: RawTurn) -> datetime:
    return turn.created_at or datetime.now(UTC)


def _timestamp_ms(turn: RawTurn) -> int:
    return int(_created_at(turn).timestamp() * 1000)


def _collect_tool_results(turns: list[RawTurn], start: int) -> tuple[dict[str, RawTurn], int]:
    """Gather the contiguous run of tool turns beginning at ``start``.

    Returns:
        Tool turns keyed by tool_call_id, and the index after the run
    """
    results: dict[str, RawTurn] = {}
    index = start
    while index < len(turns) and turns[index].role == "tool":
        turn = turns[index]
        if turn.tool_call_id:
            results[turn.tool_call_id] = turn
        index += 1
    return results, index


def _invocation_from_history(
    tool_call: dict[str, Any],
    results: dict[str, RawTurn],
    owner: RawTurn,
    position: int,
) -> ToolInvocation:
    tool_call_id, name, args = _tool_call_fields(tool_call)
    tool_call_id = tool_call_id or f"{owner.id or 'history'}_tool_{position}"
    invocation = ToolInvocation(
        tool_call_id=tool_call_id,
        tool_name=name,
        args=args,
        timestamp=_timestamp_ms(owner),
    )

    result_turn = results.get(tool_call_id)
    if result_turn is None:
        return invocation

    result = _parse_tool_content(result_turn.content)
    if isinstance(result, dict) and result.get("error") is not None:
        invocation.state = ToolState.ERROR
        invocation.error = str(result["error"])
    else:
        invocation.state = ToolState.RESULT
        invocation.result = result
    if result_turn.created_at is not None:
        invocation.duration = max(0, round((_timestamp_ms(result_turn) - invocation.timestamp) / 1000))
    return invocation


def transform_history(turns: list[RawTurn]) -> list[Message]:
    """Convert raw history turns into transcript messages.

    Args:
        turns: Server history, oldest first

    Returns:
        Messages with tool results folded into their assistant turns

    Example:
        >>> turns = [RawTurn(id="u1", role="user", content="Hi"),
        ...          RawTurn(id="a1", role="assistant", content="Hello", completion_time=1.0)]
        >>> [m.content for m in transform_history(turns)]
        ['Hi', 'Hello']
    """
    messages: list[Message] = []
    stamp = int(time.time() * 1000)
    index = 0

    while index < len(turns):
        turn = turns[index]

        if turn.role == "user":
            messages.append(
                Message.from_text(
                    turn.id or f"history_{stamp}_{index}",
                    Role.USER,
                    _text_of(turn.content),
                    created_at=_created_at(turn),
                    attachments=turn.attachments or [],
                )
            )
            index += 1
            continue

        if turn.role != "assistant":
            # Orphan tool turns and system prompts have no transcript entry
            index += 1
            continue

        message = Message(
            id=turn.id or f"history_{stamp}_{index}",
            role=Role.ASSISTANT,
            created_at=_created_at(turn),
        )
        current = turn
        index += 1
        while True:
            message.append_text(_text_of(current.content))
            if current.completion_time is not None:
                message.completion_time = current.completion_time
            if current.thinking_duration is not None:
                message.thinking_duration = current.thinking_duration
            if current.token_usage is not None:
                message.token_usage = current.token_usage
            if current.aborted:
                message.aborted = True

            if not current.tool_calls:
                break

            results, index = _collect_tool_results(turns, index)
            for position, tool_call in enumerate(current.tool_calls):
                invocation = _invocation_from_history(tool_call, results, current, position)
                message.parts.append(ToolInvocationPart(tool_invocation=invocation))

            if index < len(turns) and turns[index].role == "assistant":
                current = turns[index]
                index += 1
                continue
            break

        messages.append(message)

    return messages


def merge_history(
    local: list[Message],
    server: list[Message],
    has_active_stream: bool = False,
    had_placeholder: bool = False,
) -> MergeOutcome:
    """Merge a transformed snapshot with the local transcript.

    Args:
        local: Local messages (placeholder excluded)
        server: Transformed server history
        has_active_stream: Backend reports a turn still streaming
        had_placeholder: A placeholder was shown before the merge

    Returns:
        Merged messages plus placeholder and stream-pointer decisions
    """
    last = server[-1] if server else None
    last_incomplete = last is not None and last.role is Role.ASSISTANT and not last.is_complete
    stream_active = has_active_stream or last_incomplete

    merged = [message.model_copy(deep=True) for message in server]
    positions = {message.id: position for position, message in enumerate(merged)}
    for existing in local:
        position = positions.get(existing.id)
        if position is None:
            logger.debug(f"Discarding stale local message {existing.id} (absent from history)")
            continue

        server_message = merged[position]
        if len(existing.content) > len(server_message.content):
            kept = existing.model_copy(deep=True)
            if server_message.token_usage is not None:
                kept.token_usage = server_message.token_usage
            if server_message.completion_time is not None and kept.completion_time is None:
                kept.completion_time = server_message.completion_time
            merged[position] = kept
            logger.debug(f"Keeping streamed version of {existing.id} ({len(existing.content)} chars)")

    active_message_id = None
    if stream_active and merged and merged[-1].role is Role.ASSISTANT and not merged[-1].is_complete:
        active_message_id = merged[-1].id

    return MergeOutcome(
        messages=merged,
        show_placeholder=stream_active or had_placeholder,
        stream_active=stream_active,
        active_message_id=active_message_id,
    )
