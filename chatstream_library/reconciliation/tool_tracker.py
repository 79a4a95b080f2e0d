"""Tool invocation tracker.

Owns the lifecycle state of every tool call in the current turn. The state
machine is linear, ``call -> executing -> progress* -> result | error``;
updates carrying a lower-ranked state never move an invocation backwards and
nothing changes once a terminal state is reached.
"""

import logging
import time
from collections.abc import Callable
from collections.abc import Iterable
from typing import Any

from chatstream_library.models.events import ToolCallEvent
from chatstream_library.models.events import ToolResultEvent
from chatstream_library.models.transcript import ToolInvocation
from chatstream_library.models.transcript import ToolState

logger = logging.getLogger(__name__)

_STATUS_MAP = {
    "start": ToolState.CALL,
    "call": ToolState.CALL,
    "executing": ToolState.EXECUTING,
    "progress": ToolState.PROGRESS,
    "complete": ToolState.RESULT,
    "result": ToolState.RESULT,
    "error": ToolState.ERROR,
}


def map_tool_status(status: str | None) -> ToolState:
    """Map a wire status to a tool state (unknown statuses count as ``call``)."""
    return _STATUS_MAP.get((status or "").lower(), ToolState.CALL)


def _error_from_result(result: Any) -> str | None:
    if isinstance(result, dict) and result.get("error") is not None:
        return str(result["error"])
    return None


def _now_ms() -> int:
    return int(time.time() * 1000)


class ToolInvocationTracker:
    """Per-turn registry of tool invocations keyed by tool call id.

    Iteration order is first-observation order.
    """

    def __init__(self: "ToolInvocationTracker", clock: Callable[[], int] | None = None) -> None:
        """Initialize tracker.

        Args:
            clock: Returns the current time in epoch milliseconds
        """
        self._invocations: dict[str, ToolInvocation] = {}
        self._clock = clock or _now_ms

    def apply_call(self: "ToolInvocationTracker", event: ToolCallEvent) -> ToolInvocation | None:
        """Apply a ``tool_call`` lifecycle event.

        Returns:
            The updated invocation, or None if the event was ignored
        """
        state = map_tool_status(event.status)
        error = event.error
        result = event.result
        payload_error = _error_from_result(result)
        if state is ToolState.RESULT and payload_error is not None:
            state = ToolState.ERROR
        if state is ToolState.ERROR and error is None:
            error = payload_error or "Tool execution failed"

        return self._update(
            tool_call_id=event.tool_call_id,
            tool_name=event.tool_name,
            args=event.args,
            state=state,
            result=result,
            error=error,
        )

    def apply_result(self: "ToolInvocationTracker", event: ToolResultEvent) -> ToolInvocation | None:
        """Apply a ``tool_result`` event.

        A result payload carrying an ``error`` key terminates the invocation
        in the ``error`` state.
        """
        error = _error_from_result(event.result)
        state = ToolState.ERROR if error is not None else ToolState.RESULT
        return self._update(
            tool_call_id=event.tool_call_id,
            tool_name=event.tool_name,
            args=None,
            state=state,
            result=event.result,
            error=error,
        )

    def _update(
        self: "ToolInvocationTracker",
        tool_call_id: str,
        tool_name: str,
        args: dict[str, Any] | None,
        state: ToolState,
        result: Any,
        error: str | None,
    ) -> ToolInvocation | None:
        now = self._clock()
        invocation = self._invocations.get(tool_call_id)

        if invocation is None:
            invocation = ToolInvocation(tool_call_id=tool_call_id, tool_name=tool_name, timestamp=now)
            self._invocations[tool_call_id] = invocation
        elif invocation.state.is_terminal:
            logger.debug(f"Ignoring {state.value} for {tool_call_id}: already {invocation.state.value}")
            return None

        if tool_name and not invocation.tool_name:
            invocation.tool_name = tool_name
        if args:
            invocation.args = {**invocation.args, **args}

        if state.rank < invocation.state.rank:
            logger.debug(f"Stale {state.value} for {tool_call_id} (current {invocation.state.value})")
            return invocation

        invocation.state = state
        if state is ToolState.RESULT:
            invocation.result = result
            invocation.error = None
        elif state is ToolState.ERROR:
            invocation.error = error
            invocation.result = None
        if state.is_terminal:
            invocation.duration = round((now - invocation.timestamp) / 1000)
        return invocation

    def seed(self: "ToolInvocationTracker", invocations: Iterable[ToolInvocation]) -> None:
        """Adopt invocations rebuilt from history so later events update them in place."""
        for invocation in invocations:
            if invocation.tool_call_id not in self._invocations:
                self._invocations[invocation.tool_call_id] = invocation.model_copy(deep=True)

    def get(self: "ToolInvocationTracker", tool_call_id: str) -> ToolInvocation | None:
        return self._invocations.get(tool_call_id)

    def values(self: "ToolInvocationTracker") -> list[ToolInvocation]:
        return list(self._invocations.values())

    def has_active(self: "ToolInvocationTracker") -> bool:
        """True while any invocation is in call, executing or progress."""
        return any(not invocation.state.is_terminal for invocation in self._invocations.values())

    def first_active(self: "ToolInvocationTracker") -> ToolInvocation | None:
        for invocation in self._invocations.values():
            if not invocation.state.is_terminal:
                return invocation
        return None

    def clear(self: "ToolInvocationTracker") -> None:
        self._invocations.clear()

    def __len__(self: "ToolInvocationTracker") -> int:
        return len(self._invocations)

    def __contains__(self: "ToolInvocationTracker", tool_call_id: object) -> bool:
        return tool_call_id in self._invocations
