"""
Shared pytest fixtures for the chatstream test suite.

Provides fixtures for:
- Temporary storage directories and isolated CHATSTREAMD_HOME
- Conversation stores with isolated storage
- Deterministic clocks and wire envelope builders
- Scripted LLM providers and broadcast recorders
"""

import asyncio
import os
import tempfile
from collections.abc import AsyncIterator
from collections.abc import Callable
from collections.abc import Generator
from pathlib import Path
from typing import Any

import pytest

# Isolate storage before any application module is imported
os.environ["CHATSTREAMD_HOME"] = tempfile.mkdtemp(prefix="chatstreamd-tests-")

from chatstream_library.reconciliation.engine import ReconciliationEngine  # noqa: E402
from chatstream_library.reconciliation.tab_leadership import TabLeadershipCoordinator  # noqa: E402
from chatstream_library.storage.conversation_store import ConversationStore  # noqa: E402
from chatstreamd.providers.base import ProviderEvent  # noqa: E402
from chatstreamd.providers.base import TextDelta  # noqa: E402
from chatstreamd.services import conversation_stream  # noqa: E402


@pytest.fixture
def temp_storage_dir() -> Generator[Path, None, None]:
    """Create temporary directory for test storage.

    Yields:
        Path to temporary directory (cleaned up after test)
    """
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def mock_storage_env(temp_storage_dir: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point CHATSTREAMD_HOME at a temp directory.

    Example:
        >>> def test_with_isolated_storage(mock_storage_env):
        ...     from chatstream_library.storage.paths import get_home_dir
        ...     assert get_home_dir() == mock_storage_env
    """
    monkeypatch.setenv("CHATSTREAMD_HOME", str(temp_storage_dir))
    for override in ("CHATSTREAMD_CONFIG_DIR", "CHATSTREAMD_STATE_DIR", "CHATSTREAMD_LOG_DIR"):
        monkeypatch.delenv(override, raising=False)
    return temp_storage_dir


@pytest.fixture
def store(tmp_path: Path) -> ConversationStore:
    """ConversationStore backed by a temp state directory."""
    return ConversationStore(storage_dir=tmp_path / "state")


class FakeClock:
    """Millisecond clock that only moves when told to."""

    def __init__(self, now: int = 1_000_000) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


@pytest.fixture
def clock() -> FakeClock:
    """Deterministic millisecond clock."""
    return FakeClock()


@pytest.fixture
def coordinator() -> TabLeadershipCoordinator:
    """Fresh tab coordinator (not the process-wide one)."""
    return TabLeadershipCoordinator()


@pytest.fixture
def engine(coordinator: TabLeadershipCoordinator, clock: FakeClock) -> ReconciliationEngine:
    """Mounted engine that leads conversation c1."""
    engine = ReconciliationEngine("c1", coordinator=coordinator, clock=clock)
    engine.mount()
    return engine


def make_envelope(
    event_type: str,
    data: dict[str, Any] | None = None,
    message_id: str | None = None,
    **metadata: Any,
) -> dict[str, Any]:
    return {
        "type": event_type,
        "id": message_id,
        "data": data or {},
        "metadata": {"timestamp": 0, "convId": "c1", **metadata},
    }


@pytest.fixture
def envelope() -> Callable[..., dict[str, Any]]:
    """Builder for wire envelopes: envelope(type, data, message_id, **metadata)."""
    return make_envelope


class FakeProvider:
    """LLM provider replaying scripted rounds.

    Each call to ``stream`` consumes one round. With ``hang`` set, the
    provider blocks after the round's events until cancelled; with
    ``fail_with`` set, it raises after them.
    """

    def __init__(
        self,
        rounds: list[list[ProviderEvent]] | None = None,
        fail_with: Exception | None = None,
        hang: bool = False,
    ) -> None:
        self.rounds = list(rounds or [])
        self.fail_with = fail_with
        self.hang = hang
        self.calls: list[dict[str, Any]] = []

    async def stream(self, messages: list[dict[str, Any]], tools: list[dict[str, Any]]) -> AsyncIterator[ProviderEvent]:
        self.calls.append({"messages": [dict(message) for message in messages], "tools": tools})
        events = self.rounds.pop(0) if self.rounds else [TextDelta("")]
        for event in events:
            yield event
        if self.fail_with is not None:
            raise self.fail_with
        if self.hang:
            await asyncio.Event().wait()


@pytest.fixture
def fake_provider() -> FakeProvider:
    """Provider answering "Hello!" once."""
    return FakeProvider([[TextDelta("Hello!")]])


class BroadcastRecorder:
    """Collects (event_type, data) broadcasts."""

    def __init__(self) -> None:
        self.events: list[tuple[str, dict[str, Any]]] = []

    async def __call__(self, event_type: str, data: dict[str, Any]) -> None:
        self.events.append((event_type, data))

    @property
    def types(self) -> list[str]:
        return [event_type for event_type, _ in self.events]

    def of_type(self, event_type: str) -> list[dict[str, Any]]:
        return [data for recorded_type, data in self.events if recorded_type == event_type]


@pytest.fixture
def recorder() -> BroadcastRecorder:
    """Broadcast sink recording every event."""
    return BroadcastRecorder()


@pytest.fixture
def stream_registry(monkeypatch: pytest.MonkeyPatch) -> conversation_stream.ConversationStreamRegistry:
    """Replace the global stream registry with a fresh one."""
    registry = conversation_stream.ConversationStreamRegistry()
    monkeypatch.setattr(conversation_stream, "_stream_registry", registry)
    return registry


@pytest.fixture
def make_provider() -> type[FakeProvider]:
    """FakeProvider class, for tests scripting their own rounds."""
    return FakeProvider
