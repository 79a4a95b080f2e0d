"""Streaming Conversation Reconciliation Protocol (client side).

Data flow: transport -> normalize_event -> tab leadership gate ->
{accumulator, tool tracker, history merger} -> ReconciliationEngine.
"""

from .accumulator import StreamingTextAccumulator
from .engine import EngineSnapshot
from .engine import ReconciliationEngine
from .history_merger import MergeOutcome
from .history_merger import merge_history
from .history_merger import transform_history
from .normalizer import normalize_event
from .submission import ChatController
from .submission import ConversationTransport
from .tab_leadership import TabLeadershipCoordinator
from .tab_leadership import get_tab_coordinator
from .tool_tracker import ToolInvocationTracker
from .tool_tracker import map_tool_status
from .transcript import Transcript

__all__ = [
    "ChatController",
    "ConversationTransport",
    "EngineSnapshot",
    "MergeOutcome",
    "ReconciliationEngine",
    "StreamingTextAccumulator",
    "TabLeadershipCoordinator",
    "ToolInvocationTracker",
    "Transcript",
    "get_tab_coordinator",
    "map_tool_status",
    "merge_history",
    "normalize_event",
    "transform_history",
]
