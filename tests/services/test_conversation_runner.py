"""
Unit tests for turn execution.

Tests the broadcast sequence of text and tool rounds, persistence of the
turn, the apology path, abort handling and message conversion.
"""

import asyncio
import json

import pytest

from chatstream_library.models.events import RawTurn
from chatstream_library.storage.conversation_store import ConversationStore
from chatstreamd.config.models import LLMConfig
from chatstreamd.providers.base import TextDelta
from chatstreamd.providers.base import ToolCallRequest
from chatstreamd.providers.base import UsageReport
from chatstreamd.services.conversation_runner import APOLOGY
from chatstreamd.services.conversation_runner import ConversationRunner
from chatstreamd.services.conversation_runner import make_title
from chatstreamd.services.conversation_runner import provider_messages
from chatstreamd.services.streaming_state import StreamingManager
from chatstreamd.services.tool_broadcast import ToolBroadcaster
from chatstreamd.tools import build_default_tools


@pytest.fixture
def streaming() -> StreamingManager:
    return StreamingManager()


@pytest.fixture
def make_runner(store: ConversationStore, streaming: StreamingManager, recorder):
    """Build a runner for conversation c1 around a provider."""

    def build(provider, **llm_settings) -> ConversationRunner:
        tools = ToolBroadcaster("c1", build_default_tools(store), recorder)
        return ConversationRunner(
            conversation_id="c1",
            store=store,
            provider=provider,
            tools=tools,
            streaming=streaming,
            broadcast=recorder,
            llm_config=LLMConfig(**llm_settings),
        )

    return build


@pytest.mark.unit
class TestTextTurn:
    """Test a turn without tools."""

    async def test_broadcast_sequence(self, make_runner, make_provider, recorder, store, streaming) -> None:
        """Test chunks, completion and title are broadcast in order."""
        provider = make_provider([[TextDelta("Hel"), TextDelta("lo"), UsageReport(prompt_tokens=3, completion_tokens=2)]])

        await make_runner(provider).run_turn("Hi there", None, "u1", "a1")

        assert recorder.types == ["llm_chunk", "llm_chunk", "llm_complete", "conversation_title_update"]
        assert [data["chunk"] for data in recorder.of_type("llm_chunk")] == ["Hel", "lo"]
        assert all(data["messageId"] == "a1" for data in recorder.of_type("llm_chunk"))

        complete = recorder.of_type("llm_complete")[0]
        assert complete["messageId"] == "a1"
        assert complete["fullText"] == "Hello"
        assert complete["tokenUsage"] == {
            "promptTokens": 3,
            "completionTokens": 2,
            "totalTokens": 5,
            "messageCount": 2,
        }
        assert complete["maxTokens"] == 128000
        assert complete["completionTime"] >= 0
        assert "aborted" not in complete
        assert recorder.of_type("conversation_title_update")[0]["title"] == "Hi there"
        assert not streaming.has_active_stream("c1")

    async def test_history_is_persisted(self, make_runner, make_provider, store) -> None:
        """Test the user turn and the completed assistant turn are stored."""
        await make_runner(make_provider([[TextDelta("Hello")]])).run_turn("Hi", ["f1"], "u1", "a1")

        history = store.load_history("c1")
        assert [(turn.id, turn.role, turn.content) for turn in history] == [
            ("u1", "user", "Hi"),
            ("a1", "assistant", "Hello"),
        ]
        assert history[0].attachments == [{"fileId": "f1"}]
        assert history[1].completion_time is not None
        assert store.load_info("c1").title == "Hi"

    async def test_existing_title_is_kept(self, make_runner, make_provider, store, recorder) -> None:
        """Test the title is generated only once."""
        store.update_info("c1", title="Earlier")
        await make_runner(make_provider([[TextDelta("Hello")]])).run_turn("Hi", None, "u1", "a1")

        assert store.load_info("c1").title == "Earlier"
        assert "conversation_title_update" not in recorder.types

    async def test_token_usage_recorded(self, make_runner, make_provider, store) -> None:
        """Test usage is added to the conversation totals."""
        provider = make_provider([[TextDelta("x"), UsageReport(prompt_tokens=7, completion_tokens=1)]])
        await make_runner(provider).run_turn("Hi", None, "u1", "a1")

        assert store.load_info("c1").token_usage.total_tokens == 8


@pytest.mark.unit
class TestToolRounds:
    """Test turns with tool calls."""

    async def test_tool_round_ordering(self, make_runner, make_provider, recorder, store) -> None:
        """Test text, tool lifecycle, continuation text and completion order."""
        provider = make_provider(
            [
                [
                    TextDelta("Let me check."),
                    ToolCallRequest("t1", "show_table", {"columns": ["q"], "rows": [["Q1"]]}),
                ],
                [TextDelta(" Done.")],
            ]
        )

        await make_runner(provider).run_turn("Show sales", None, "u1", "a1")

        assert recorder.types[:6] == [
            "llm_chunk",
            "tool_call",
            "tool_call",
            "tool_result",
            "llm_chunk",
            "llm_complete",
        ]
        assert all(data["assistantMessageId"] == "a1" for data in recorder.of_type("tool_call"))
        assert recorder.of_type("llm_complete")[0]["fullText"] == "Let me check. Done."

        history = store.load_history("c1")
        assert [(turn.id, turn.role) for turn in history] == [
            ("u1", "user"),
            ("a1", "assistant"),
            (None, "tool"),
            ("a1_1", "assistant"),
        ]
        assert history[1].tool_calls[0]["function"]["name"] == "show_table"
        assert json.loads(history[2].content)["widget"] == "table"
        assert history[1].completion_time is None
        assert history[3].completion_time is not None

        second_call = provider.calls[1]["messages"]
        assert [message["role"] for message in second_call] == ["system", "user", "assistant", "tool"]
        assert second_call[3]["tool_call_id"] == "t1"
        assert {tool["function"]["name"] for tool in provider.calls[0]["tools"]} == {
            "todo_write",
            "show_table",
            "show_chart",
        }

    async def test_unknown_tool(self, make_runner, make_provider, recorder, store) -> None:
        """Test an unknown tool becomes an error result the model sees."""
        provider = make_provider([[ToolCallRequest("t1", "nope", {})], [TextDelta("Sorry.")]])

        await make_runner(provider).run_turn("Go", None, "u1", "a1")

        errors = [data for data in recorder.of_type("tool_call") if data["status"] == "error"]
        assert errors[0]["error"] == "Unknown tool: nope"
        tool_turn = store.load_history("c1")[2]
        assert json.loads(tool_turn.content) == {"error": "Unknown tool: nope"}

    async def test_round_limit(self, make_runner, make_provider, recorder, caplog) -> None:
        """Test the turn stops after the configured number of rounds."""
        todo = {"todos": [{"id": "1", "content": "Loop", "status": "pending"}]}
        provider = make_provider([[ToolCallRequest("t1", "todo_write", todo)], [ToolCallRequest("t2", "todo_write", todo)]])

        await make_runner(provider, max_tool_rounds=2).run_turn("Go", None, "u1", "a1")

        assert len(provider.calls) == 2
        assert "stopped after 2 tool rounds" in caplog.text
        assert recorder.types.count("llm_complete") == 1
        assert recorder.types.count("todo_update") == 2


@pytest.mark.unit
class TestFailures:
    """Test provider failure and abort."""

    async def test_provider_error_apologizes(self, make_runner, make_provider, recorder, store) -> None:
        """Test a failing provider ends the turn with an apology, not an error event."""
        provider = make_provider([[TextDelta("Part")]], fail_with=RuntimeError("upstream down"))

        await make_runner(provider).run_turn("Hi", None, "u1", "a1")

        assert recorder.types == ["llm_chunk", "llm_chunk", "llm_complete"]
        assert recorder.of_type("llm_chunk")[1]["chunk"] == f"\n\n{APOLOGY}"
        assert recorder.of_type("llm_complete")[0]["fullText"] == f"Part\n\n{APOLOGY}"
        assert store.load_history("c1")[1].content == f"Part\n\n{APOLOGY}"

    async def test_provider_error_before_text(self, make_runner, make_provider, recorder) -> None:
        """Test the apology stands alone when nothing was streamed."""
        provider = make_provider([[]], fail_with=RuntimeError("boom"))

        await make_runner(provider).run_turn("Hi", None, "u1", "a1")

        assert recorder.of_type("llm_complete")[0]["fullText"] == APOLOGY

    async def test_cancel_marks_aborted(self, make_runner, make_provider, recorder, store, streaming) -> None:
        """Test cancellation persists the partial answer as aborted."""
        provider = make_provider([[TextDelta("Part")]], hang=True)
        task = asyncio.create_task(make_runner(provider).run_turn("Hi", None, "u1", "a1"))
        while not recorder.of_type("llm_chunk"):
            await asyncio.sleep(0)

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        complete = recorder.of_type("llm_complete")[0]
        assert complete["aborted"] is True
        assert complete["fullText"] == "Part"
        stored = store.load_history("c1")[1]
        assert stored.aborted
        assert stored.content == "Part"
        assert not streaming.has_active_stream("c1")
        assert "conversation_title_update" not in recorder.types


@pytest.mark.unit
class TestProviderMessages:
    """Test provider_messages."""

    def test_conversion(self) -> None:
        """Test roles map to chat-completion messages."""
        history = [
            RawTurn(id="u1", role="user", content="Hi"),
            RawTurn(
                id="a1",
                role="assistant",
                content="",
                tool_calls=[{"id": "t1", "type": "function", "function": {"name": "x", "arguments": "{}"}}],
            ),
            RawTurn(role="tool", tool_call_id="t1", content={"ok": True}),
            RawTurn(id="a1_1", role="assistant", content="Done"),
        ]

        messages = provider_messages(history, "Be brief")

        assert messages[0] == {"role": "system", "content": "Be brief"}
        assert messages[1] == {"role": "user", "content": "Hi"}
        assert messages[2]["content"] is None
        assert messages[2]["tool_calls"][0]["id"] == "t1"
        assert messages[3] == {"role": "tool", "tool_call_id": "t1", "content": '{"ok": true}'}
        assert messages[4] == {"role": "assistant", "content": "Done"}

    def test_unanswered_calls_and_empty_stubs_are_dropped(self) -> None:
        """Test aborted tool calls and empty assistant stubs never reach the model."""
        history = [
            RawTurn(id="u1", role="user", content="Hi"),
            RawTurn(
                id="a1",
                role="assistant",
                content="",
                aborted=True,
                tool_calls=[{"id": "t1", "type": "function", "function": {"name": "x", "arguments": "{}"}}],
            ),
            RawTurn(id="u2", role="user", content="Again"),
            RawTurn(id="a2", role="assistant", content=""),
        ]

        messages = provider_messages(history, "sys")

        assert [message["role"] for message in messages] == ["system", "user", "user"]


@pytest.mark.unit
class TestMakeTitle:
    """Test make_title."""

    def test_short_text(self) -> None:
        """Test whitespace is collapsed."""
        assert make_title("  Plot   monthly revenue  ", 60) == "Plot monthly revenue"

    def test_truncates_at_word_boundary(self) -> None:
        """Test long text is cut on a word and marked with an ellipsis."""
        assert make_title("Summarize the quarterly numbers for every region", 24) == "Summarize the..."

    def test_single_long_word(self) -> None:
        """Test text without spaces is cut hard."""
        assert make_title("a" * 30, 10) == "aaaaaaa..."
