"""
Unit tests for the reconciliation engine.

Tests transcript construction from interleaved chunk, tool, completion and
history events, placeholder handling, abort semantics and tab gating.
"""

import pytest

from chatstream_library.models.transcript import Role
from chatstream_library.models.transcript import ToolState
from chatstream_library.reconciliation.engine import ReconciliationEngine
from chatstream_library.reconciliation.tab_leadership import TabLeadershipCoordinator


def placeholders(engine: ReconciliationEngine) -> list:
    return [message for message in engine.messages if message.is_thinking]


def chunk(envelope, text: str, message_id: str = "m1", **data):
    return envelope("llm_chunk", {"chunk": text, **data}, message_id)


def complete(envelope, full_text: str = "", message_id: str = "m1", **data):
    return envelope("llm_complete", {"fullText": full_text, **data}, message_id)


def tool_call(envelope, status: str = "call", tool_call_id: str = "t1", message_id: str | None = "m1", **data):
    payload = {"toolCallId": tool_call_id, "toolName": "show_table", "status": status, **data}
    if message_id is not None:
        payload["assistantMessageId"] = message_id
    return envelope("tool_call", payload)


def tool_result(envelope, result, tool_call_id: str = "t1", message_id: str = "m1"):
    return envelope(
        "tool_result",
        {"toolCallId": tool_call_id, "toolName": "show_table", "result": result, "assistantMessageId": message_id},
    )


def history(envelope, turns: list[dict], has_active_stream: bool = False, **data):
    return envelope(
        "control_response",
        {"status": "history", "history": turns, "hasActiveStream": has_active_stream, **data},
    )


@pytest.mark.unit
class TestStreamingTurn:
    """Test a live turn from submission to completion."""

    def test_simple_turn(self, engine: ReconciliationEngine, envelope) -> None:
        """Test chunks build the reply and completion clears the placeholder."""
        engine.add_user_message("Hello", "u1")
        engine.begin_turn("m1")

        assert engine.handle_payload(chunk(envelope, "Hi"))
        assert engine.handle_payload(chunk(envelope, " there"))
        assert [message.id for message in engine.messages][:2] == ["u1", "m1"]
        assert engine.messages[-1].is_thinking

        assert engine.handle_payload(complete(envelope, "Hi there", completionTime=1.2))

        snapshot = engine.snapshot()
        assert [(message.role, message.content) for message in snapshot.messages] == [
            (Role.USER, "Hello"),
            (Role.ASSISTANT, "Hi there"),
        ]
        assert snapshot.messages[1].completion_time == 1.2
        assert not snapshot.is_loading
        assert snapshot.current_message_id is None

    def test_at_most_one_placeholder(self, engine: ReconciliationEngine, envelope) -> None:
        """Test the placeholder is never duplicated and always last."""
        engine.begin_turn("m1")
        engine.begin_turn("m1")
        engine.handle_payload(chunk(envelope, "A"))
        engine.handle_payload(tool_call(envelope))
        engine.handle_payload(tool_call(envelope, status="executing"))
        engine.handle_payload(chunk(envelope, "B"))

        assert len(placeholders(engine)) == 1
        assert engine.messages[-1].is_thinking

    def test_text_and_tools_keep_arrival_order(self, engine: ReconciliationEngine, envelope) -> None:
        """Test [A][tool][C] ordering inside one message."""
        engine.begin_turn("m1")
        engine.handle_payload(chunk(envelope, "A"))
        engine.handle_payload(tool_call(envelope))
        engine.handle_payload(tool_result(envelope, {"rows": 1}))
        engine.handle_payload(chunk(envelope, "C"))
        engine.handle_payload(complete(envelope, "AC"))

        message = engine.transcript.find("m1")
        assert [part.type for part in message.parts] == ["text", "tool-invocation", "text"]
        assert message.content == "AC"
        assert message.tool_invocations[0].state is ToolState.RESULT

    def test_chunk_for_other_message_is_discarded(self, engine: ReconciliationEngine, envelope) -> None:
        """Test stale chunks for a previous message are dropped."""
        engine.begin_turn("m1")
        engine.handle_payload(chunk(envelope, "Hi"))

        assert not engine.handle_payload(chunk(envelope, "old", message_id="m0"))
        assert engine.transcript.find("m0") is None

    def test_chunk_after_completion_is_ignored(self, engine: ReconciliationEngine, envelope) -> None:
        """Test a completed message accepts no more live text."""
        engine.begin_turn("m1")
        engine.handle_payload(chunk(envelope, "Hi"))
        engine.handle_payload(complete(envelope, "Hi"))

        assert not engine.handle_payload(chunk(envelope, "late"))
        assert engine.transcript.find("m1").content == "Hi"

    def test_empty_chunk_is_processed(self, engine: ReconciliationEngine, envelope) -> None:
        """Test an empty chunk still creates the message."""
        engine.begin_turn("m1")

        assert engine.handle_payload(chunk(envelope, ""))
        assert engine.transcript.find("m1") is not None

    def test_placeholder_label_names_running_tool(self, engine: ReconciliationEngine, envelope) -> None:
        """Test the placeholder shows the active tool."""
        engine.begin_turn("m1")
        engine.handle_payload(tool_call(envelope, status="executing"))

        assert engine.messages[-1].content == "Running show_table..."


@pytest.mark.unit
class TestCompletion:
    """Test llm_complete handling."""

    def test_completion_text_is_authoritative(self, engine: ReconciliationEngine, envelope) -> None:
        """Test fullText replaces diverged streamed text."""
        engine.begin_turn("m1")
        engine.handle_payload(chunk(envelope, "Hello wrld"))
        engine.handle_payload(complete(envelope, "Hi"))

        assert engine.transcript.find("m1").content == "Hi"

    def test_completion_time_from_clock(self, coordinator: TabLeadershipCoordinator, clock, envelope) -> None:
        """Test completion time falls back to the thinking start."""
        clock.now = 1000
        engine = ReconciliationEngine("c1", coordinator=coordinator, clock=clock)
        engine.mount()
        engine.begin_turn("m1")
        engine.handle_payload(chunk(envelope, "Hi"))
        clock.now = 3500
        engine.handle_payload(complete(envelope, "Hi"))

        assert engine.transcript.find("m1").completion_time == 2.5

    def test_completion_metadata(self, engine: ReconciliationEngine, envelope) -> None:
        """Test usage and context size are recorded."""
        engine.begin_turn("m1")
        engine.handle_payload(chunk(envelope, "Hi"))
        engine.handle_payload(
            complete(
                envelope,
                "Hi",
                thinkingDuration=0.3,
                tokenUsage={"promptTokens": 3, "completionTokens": 2, "totalTokens": 5},
                maxTokens=8000,
            )
        )

        message = engine.transcript.find("m1")
        assert message.thinking_duration == 0.3
        assert message.token_usage.total_tokens == 5
        assert engine.token_usage.total_tokens == 5
        assert engine.max_tokens == 8000

    def test_completion_without_message_or_text(self, engine: ReconciliationEngine, envelope) -> None:
        """Test an empty completion just ends the turn."""
        engine.begin_turn("m1")

        assert engine.handle_payload(complete(envelope, ""))
        assert not engine.is_loading
        assert placeholders(engine) == []

    def test_completion_creates_missing_message(self, engine: ReconciliationEngine, envelope) -> None:
        """Test fullText for an unseen message creates it."""
        engine.begin_turn("m1")
        engine.handle_payload(complete(envelope, "Answer"))

        assert engine.transcript.find("m1").content == "Answer"

    def test_aborted_completion_flag(self, engine: ReconciliationEngine, envelope) -> None:
        """Test a server-side abort marks the message aborted."""
        engine.begin_turn("m1")
        engine.handle_payload(chunk(envelope, "Part"))
        engine.handle_payload(complete(envelope, "Part", aborted=True))

        assert engine.transcript.find("m1").aborted


@pytest.mark.unit
class TestAbort:
    """Test local abort."""

    def test_abort_drops_later_events(self, engine: ReconciliationEngine, envelope) -> None:
        """Test chunks and completion after an abort are ignored."""
        engine.begin_turn("m1")
        engine.handle_payload(chunk(envelope, "Hi"))

        assert engine.abort_current_turn() == "m1"
        assert not engine.handle_payload(chunk(envelope, " more"))
        assert not engine.handle_payload(complete(envelope, "Hi more"))
        assert not engine.handle_payload(tool_call(envelope))

        message = engine.transcript.find("m1")
        assert message.content == "Hi"
        assert message.aborted
        assert placeholders(engine) == []
        assert not engine.is_loading

    def test_abort_when_idle(self, engine: ReconciliationEngine) -> None:
        """Test aborting without a turn returns None."""
        assert engine.abort_current_turn() is None


@pytest.mark.unit
class TestAccumulatedReplay:
    """Test reconnect replay."""

    def test_replay_is_idempotent(self, engine: ReconciliationEngine, envelope) -> None:
        """Test applying the same accumulated chunk twice."""
        replay = chunk(envelope, "Hello", isAccumulated=True)
        engine.handle_payload(replay)
        engine.handle_payload(replay)

        assert [message.content for message in engine.transcript.messages] == ["Hello"]
        assert len(placeholders(engine)) == 1

    def test_longer_local_text_wins(self, engine: ReconciliationEngine, envelope) -> None:
        """Test a shorter replay never truncates streamed text."""
        engine.begin_turn("m1")
        engine.handle_payload(chunk(envelope, "Hello world"))
        engine.handle_payload(chunk(envelope, "Hello", isAccumulated=True))

        assert engine.transcript.find("m1").content == "Hello world"

    def test_replay_sets_thinking_start(self, engine: ReconciliationEngine, envelope) -> None:
        """Test startTime on a replay seeds the thinking clock."""
        engine.handle_payload(chunk(envelope, "", isAccumulated=True, startTime=42))
        assert engine.thinking_started_at == 42

    def test_replay_after_finished_tool_turn(self, engine: ReconciliationEngine, envelope) -> None:
        """Test a new stream's replay and live chunks do not touch a finished tool-only turn."""
        engine.handle_payload(
            history(
                envelope,
                [
                    {"id": "u1", "role": "user", "content": "Plot it"},
                    {
                        "id": "a1",
                        "role": "assistant",
                        "content": "",
                        "toolCalls": [{"id": "t1", "type": "function", "function": {"name": "show_chart", "arguments": "{}"}}],
                    },
                    {"role": "tool", "toolCallId": "t1", "name": "show_chart", "content": "{\"ok\": true}"},
                    {"id": "a1_1", "role": "assistant", "content": "", "completionTime": 2.0},
                ],
            )
        )

        engine.handle_payload(chunk(envelope, "Par", message_id="m2", isAccumulated=True))
        assert engine.handle_payload(chunk(envelope, "tial", message_id="m2"))

        assert [message.id for message in engine.transcript.messages] == ["u1", "a1", "m2"]
        assert len(engine.transcript.find("a1").tool_invocations) == 1
        assert engine.transcript.find("m2").content == "Partial"


@pytest.mark.unit
class TestTools:
    """Test tool events."""

    def test_state_is_monotonic(self, engine: ReconciliationEngine, envelope) -> None:
        """Test a late call status does not move the tool backwards."""
        engine.begin_turn("m1")
        engine.handle_payload(tool_call(envelope, status="executing"))
        engine.handle_payload(tool_call(envelope, status="call"))

        invocation = engine.transcript.find("m1").tool_invocations[0]
        assert invocation.state is ToolState.EXECUTING

    def test_args_merge(self, engine: ReconciliationEngine, envelope) -> None:
        """Test args from successive updates are merged."""
        engine.begin_turn("m1")
        engine.handle_payload(tool_call(envelope, args={"title": "Sales"}))
        engine.handle_payload(tool_call(envelope, status="executing", args={"rows": 2}))

        invocation = engine.transcript.find("m1").tool_invocations[0]
        assert invocation.args == {"title": "Sales", "rows": 2}

    def test_tool_result_error_payload(self, engine: ReconciliationEngine, envelope) -> None:
        """Test a result with an error key ends in error."""
        engine.begin_turn("m1")
        engine.handle_payload(tool_call(envelope))
        engine.handle_payload(tool_result(envelope, {"error": "bad"}))

        invocation = engine.transcript.find("m1").tool_invocations[0]
        assert invocation.state is ToolState.ERROR
        assert invocation.error == "bad"

    def test_synthesized_message_adopted_by_chunk(self, engine: ReconciliationEngine, envelope) -> None:
        """Test a tool event without an id is later adopted by the server id."""
        engine.handle_payload(tool_call(envelope, message_id=None))
        assert engine.transcript.last_assistant().synthesized

        engine.handle_payload(chunk(envelope, "Done"))

        assert len(engine.transcript) == 1
        message = engine.transcript.find("m1")
        assert message is not None
        assert [part.type for part in message.parts] == ["tool-invocation", "text"]
        assert not message.synthesized


@pytest.mark.unit
class TestHistory:
    """Test history snapshots."""

    def test_active_stream_shows_one_placeholder(self, engine: ReconciliationEngine, envelope) -> None:
        """Test hasActiveStream keeps exactly one placeholder even when applied twice."""
        snapshot = history(
            envelope,
            [{"id": "u1", "role": "user", "content": "Hi"}, {"id": "a1", "role": "assistant", "content": "Par"}],
            has_active_stream=True,
        )
        engine.handle_payload(snapshot)
        engine.handle_payload(snapshot)

        assert [message.id for message in engine.transcript.messages] == ["u1", "a1"]
        assert len(placeholders(engine)) == 1
        assert engine.messages[-1].is_thinking
        assert engine.current_message_id == "a1"
        assert engine.is_loading

    def test_replay_then_shorter_history(self, engine: ReconciliationEngine, envelope) -> None:
        """Test history never shortens text delivered by the replay."""
        engine.handle_payload(chunk(envelope, "Hello world", message_id="a1", isAccumulated=True))
        engine.handle_payload(
            history(
                envelope,
                [{"id": "u1", "role": "user", "content": "Hi"}, {"id": "a1", "role": "assistant", "content": "Hello"}],
                has_active_stream=True,
            )
        )

        assert engine.transcript.find("a1").content == "Hello world"
        assert [message.id for message in engine.transcript.messages] == ["u1", "a1"]

    def test_finished_history_has_no_placeholder(self, engine: ReconciliationEngine, envelope) -> None:
        """Test a complete snapshot clears loading state."""
        engine.handle_payload(
            history(
                envelope,
                [
                    {"id": "u1", "role": "user", "content": "Hi"},
                    {"id": "a1", "role": "assistant", "content": "Hello", "completionTime": 1.0},
                ],
                todos=[{"id": "1", "content": "Plan"}],
                title="Greeting",
                maxTokens=8000,
            )
        )

        assert placeholders(engine) == []
        assert not engine.is_history_loading
        assert engine.todos == [{"id": "1", "content": "Plan"}]
        assert engine.title == "Greeting"
        assert engine.max_tokens == 8000

    def test_placeholder_survives_complete_snapshot(self, engine: ReconciliationEngine, envelope) -> None:
        """Test a placeholder shown before the merge is kept after it."""
        engine.handle_payload(chunk(envelope, "Hel", message_id="m2", isAccumulated=True))
        assert not engine.is_loading
        assert len(placeholders(engine)) == 1

        engine.handle_payload(
            history(
                envelope,
                [
                    {"id": "u1", "role": "user", "content": "Hi"},
                    {"id": "a1", "role": "assistant", "content": "Hello", "completionTime": 1.0},
                ],
            )
        )

        assert len(placeholders(engine)) == 1
        assert engine.messages[-1].is_thinking


@pytest.mark.unit
class TestConnectionEvents:
    """Test connection, error and metadata events."""

    def test_non_leader_is_gated(self, coordinator: TabLeadershipCoordinator, engine, envelope) -> None:
        """Test only the active tab applies transcript events."""
        newer = ReconciliationEngine("c1", coordinator=coordinator)
        newer.mount()

        assert not engine.handle_payload(chunk(envelope, "Hi"))
        assert newer.handle_payload(chunk(envelope, "Hi"))
        assert engine.handle_payload(envelope("disconnected", {"reason": "closed"}))
        assert engine.error == "Connection lost: closed"

    def test_leadership_returns_on_unmount(self, coordinator: TabLeadershipCoordinator, engine, envelope) -> None:
        """Test the older tab leads again once the newer one unmounts."""
        newer = ReconciliationEngine("c1", coordinator=coordinator)
        newer.mount()
        newer.unmount()

        assert engine.is_leader

    def test_communication_error(self, engine: ReconciliationEngine, envelope) -> None:
        """Test an error event ends the turn with an error message."""
        engine.begin_turn("m1")
        engine.handle_payload(envelope("error", {"message": "boom"}))

        assert engine.error == "boom"
        assert not engine.is_loading
        assert placeholders(engine) == []
        assert engine.transcript.messages[-1].content == "Error: boom"

    def test_connected_requests_history(self, coordinator: TabLeadershipCoordinator, envelope) -> None:
        """Test the history requester fires on connect."""
        requests = []
        engine = ReconciliationEngine("c1", coordinator=coordinator, history_requester=lambda: requests.append(1))
        engine.mount()
        engine.handle_payload(envelope("connected", {"convId": "c1"}))

        assert requests == [1]
        assert engine.is_connected
        assert engine.is_history_loading

    def test_todo_and_title_updates(self, engine: ReconciliationEngine, envelope) -> None:
        """Test metadata events update engine state."""
        engine.handle_payload(envelope("todo_update", {"todos": [{"id": "1", "content": "Plan", "status": "pending"}]}))
        engine.handle_payload(envelope("conversation_title_update", {"title": "Sales review"}))

        assert engine.todos[0]["content"] == "Plan"
        assert engine.title == "Sales review"

    def test_dropped_payload_returns_false(self, engine: ReconciliationEngine, envelope) -> None:
        """Test silent payloads change nothing."""
        assert not engine.handle_payload(envelope("keepalive"))


@pytest.mark.unit
class TestObservation:
    """Test snapshots and listeners."""

    def test_snapshot_is_deep_copy(self, engine: ReconciliationEngine, envelope) -> None:
        """Test mutating a snapshot leaves the engine untouched."""
        engine.begin_turn("m1")
        engine.handle_payload(chunk(envelope, "Hi"))
        snapshot = engine.snapshot()
        snapshot.messages[0].append_text("!")
        snapshot.todos.append({"id": "x"})

        assert engine.transcript.find("m1").content == "Hi"
        assert engine.todos == []

    def test_subscribe_and_unsubscribe(self, engine: ReconciliationEngine, envelope) -> None:
        """Test listeners run after applied events only while subscribed."""
        calls = []
        unsubscribe = engine.subscribe(lambda current: calls.append(current.title))

        engine.handle_payload(envelope("conversation_title_update", {"title": "A"}))
        unsubscribe()
        unsubscribe()
        engine.handle_payload(envelope("conversation_title_update", {"title": "B"}))

        assert calls == ["A"]

    def test_reset(self, engine: ReconciliationEngine, envelope) -> None:
        """Test reset clears the conversation."""
        engine.begin_turn("m1")
        engine.handle_payload(chunk(envelope, "Hi"))
        engine.reset()

        assert engine.messages == []
        assert engine.current_message_id is None
