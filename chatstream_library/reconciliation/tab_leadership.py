"""Tab leadership coordinator.

Several tabs (client instances) may observe the same conversation, but only
one of them applies side-effecting reconciliation. The most recently
registered live tab leads. When the leader unregisters, leadership falls back
to the next most recently registered tab that is still alive, or to no tab.

Tabs are held through weak references: a tab that was garbage collected
without unregistering no longer counts as live.
"""

import logging
import weakref
from typing import Any

logger = logging.getLogger(__name__)


class TabLeadershipCoordinator:
    """Per-conversation registry of tabs, most recent last."""

    def __init__(self: "TabLeadershipCoordinator") -> None:
        self._tabs: dict[str, list[weakref.ref]] = {}

    def _live_refs(self: "TabLeadershipCoordinator", conversation_id: str) -> list[weakref.ref]:
        refs = [ref for ref in self._tabs.get(conversation_id, []) if ref() is not None]
        if refs:
            self._tabs[conversation_id] = refs
        else:
            self._tabs.pop(conversation_id, None)
        return refs

    def register_tab(self: "TabLeadershipCoordinator", tab: Any, conversation_id: str) -> None:
        """Register a tab and make it the leader for the conversation.

        Re-registering an already registered tab moves it to the top.
        """
        refs = [ref for ref in self._live_refs(conversation_id) if ref() is not tab]
        refs.append(weakref.ref(tab))
        self._tabs[conversation_id] = refs
        logger.debug(f"Tab {id(tab):x} now leads conversation {conversation_id} ({len(refs)} tabs)")

    def unregister_tab(self: "TabLeadershipCoordinator", tab: Any, conversation_id: str) -> None:
        """Remove a tab; leadership falls back to the previous live tab."""
        refs = [ref for ref in self._live_refs(conversation_id) if ref() is not tab]
        if refs:
            self._tabs[conversation_id] = refs
        else:
            self._tabs.pop(conversation_id, None)
        logger.debug(f"Tab {id(tab):x} unregistered from conversation {conversation_id}")

    def get_active_tab(self: "TabLeadershipCoordinator", conversation_id: str) -> Any | None:
        refs = self._live_refs(conversation_id)
        return refs[-1]() if refs else None

    def is_active_tab(self: "TabLeadershipCoordinator", tab: Any, conversation_id: str) -> bool:
        """True only for the current leader of the conversation."""
        leader = self.get_active_tab(conversation_id)
        return leader is not None and leader is tab

    def get_stats(self: "TabLeadershipCoordinator") -> dict[str, int]:
        """Count live tabs per conversation."""
        return {conversation_id: len(self._live_refs(conversation_id)) for conversation_id in list(self._tabs)}


# Process-wide coordinator shared by engines that are not given one explicitly
_coordinator = TabLeadershipCoordinator()


def get_tab_coordinator() -> TabLeadershipCoordinator:
    """Get global tab coordinator.

    Returns:
        Global TabLeadershipCoordinator singleton
    """
    return _coordinator
