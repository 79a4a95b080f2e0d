"""
Unit tests for tool execution broadcasting.

Tests the call/executing/progress/result lifecycle and failure reporting.
"""

from typing import Any

import pytest

from chatstreamd.services.tool_broadcast import ToolBroadcaster
from chatstreamd.services.tool_broadcast import ToolOutcome
from chatstreamd.tools import Tool
from chatstreamd.tools import ToolContext
from chatstreamd.tools import ToolError


class EchoTool(Tool):
    name = "echo"
    description = "Echo the arguments after reporting progress."

    async def execute(self, args: dict[str, Any], context: ToolContext) -> Any:
        await context.report_progress({"step": 1})
        return {"echo": args}


class RejectingTool(Tool):
    name = "reject"

    async def execute(self, args: dict[str, Any], context: ToolContext) -> Any:
        raise ToolError("not allowed")


class CrashingTool(Tool):
    name = "crash"

    async def execute(self, args: dict[str, Any], context: ToolContext) -> Any:
        raise RuntimeError("kaboom")


@pytest.fixture
def broadcaster(recorder) -> ToolBroadcaster:
    tools = {tool.name: tool for tool in (EchoTool(), RejectingTool(), CrashingTool())}
    return ToolBroadcaster("c1", tools, recorder)


@pytest.mark.unit
class TestToolOutcome:
    """Test ToolOutcome."""

    def test_success_content(self) -> None:
        """Test a successful outcome stores the result."""
        outcome = ToolOutcome("t1", "echo", result={"a": 1})

        assert outcome.succeeded
        assert outcome.to_content() == {"a": 1}

    def test_error_content(self) -> None:
        """Test a failed outcome stores an error object."""
        outcome = ToolOutcome("t1", "echo", error="bad")

        assert not outcome.succeeded
        assert outcome.to_content() == {"error": "bad"}


@pytest.mark.unit
class TestToolBroadcaster:
    """Test ToolBroadcaster.execute."""

    def test_definitions(self, broadcaster: ToolBroadcaster) -> None:
        """Test every tool is offered to the model."""
        assert [definition["function"]["name"] for definition in broadcaster.definitions()] == [
            "echo",
            "reject",
            "crash",
        ]

    async def test_success_lifecycle(self, broadcaster: ToolBroadcaster, recorder) -> None:
        """Test call, executing, progress and result are broadcast in order."""
        outcome = await broadcaster.execute("t1", "echo", {"x": 1}, "a1")

        assert outcome.result == {"echo": {"x": 1}}
        assert recorder.types == ["tool_call", "tool_call", "tool_call", "tool_result"]
        statuses = [data["status"] for data in recorder.of_type("tool_call")]
        assert statuses == ["call", "executing", "progress"]
        assert recorder.of_type("tool_call")[2]["result"] == {"step": 1}

        result = recorder.of_type("tool_result")[0]
        assert result["toolCallId"] == "t1"
        assert result["toolName"] == "echo"
        assert result["assistantMessageId"] == "a1"
        assert result["result"] == {"echo": {"x": 1}}

    async def test_tool_error(self, broadcaster: ToolBroadcaster, recorder) -> None:
        """Test a ToolError ends in an error broadcast."""
        outcome = await broadcaster.execute("t1", "reject", {}, "a1")

        assert outcome.error == "not allowed"
        last = recorder.events[-1]
        assert last[0] == "tool_call"
        assert last[1]["status"] == "error"
        assert last[1]["error"] == "not allowed"
        assert last[1]["result"] == {"error": "not allowed"}
        assert "tool_result" not in recorder.types

    async def test_unexpected_exception(
        self, broadcaster: ToolBroadcaster, recorder, caplog: pytest.LogCaptureFixture
    ) -> None:
        """Test any exception is reported as a tool error."""
        outcome = await broadcaster.execute("t1", "crash", {}, "a1")

        assert outcome.error == "kaboom"
        assert "RuntimeError" in caplog.text
        assert recorder.events[-1][1]["status"] == "error"

    async def test_unknown_tool(self, broadcaster: ToolBroadcaster, recorder) -> None:
        """Test an unknown tool fails without an executing phase."""
        outcome = await broadcaster.execute("t1", "missing", {}, "a1")

        assert outcome.error == "Unknown tool: missing"
        assert [data["status"] for data in recorder.of_type("tool_call")] == ["call", "error"]
