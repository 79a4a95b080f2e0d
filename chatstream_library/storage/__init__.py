"""Storage layer: path resolution and conversation persistence."""

from .conversation_store import ConversationInfo
from .conversation_store import ConversationStore
from .paths import get_config_dir
from .paths import get_home_dir
from .paths import get_log_dir
from .paths import get_state_dir

__all__ = [
    "ConversationInfo",
    "ConversationStore",
    "get_config_dir",
    "get_home_dir",
    "get_log_dir",
    "get_state_dir",
]
