"""Conversation persistence.

Each conversation lives in its own directory under the state dir:

    state/conversations/{conversation_id}/
        history.json   raw turns (user, assistant, tool)
        todos.json     current todo list
        info.json      title and cumulative token usage

All writes use the tmp + rename pattern so readers never observe a partial file.
"""

import json
import logging
import re
import shutil
from datetime import UTC
from datetime import datetime
from pathlib import Path
from typing import Any

from pydantic import Field
from pydantic import ValidationError

from chatstream_library.models.base import CamelCaseModel
from chatstream_library.models.events import RawTurn
from chatstream_library.models.transcript import TokenUsage

logger = logging.getLogger(__name__)

_CONVERSATION_ID = re.compile(r"^[A-Za-z0-9_.-]{1,128}$")


class ConversationInfo(CamelCaseModel):
    """Conversation-level metadata stored in info.json."""

    conversation_id: str = Field(description="Conversation identifier")
    title: str | None = Field(default=None, description="Generated conversation title")
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC), description="Creation time")
    updated_at: datetime | None = Field(default=None, description="Last update time")
    token_usage: TokenUsage = Field(default_factory=TokenUsage, description="Cumulative token usage")
    message_count: int = Field(default=0, description="Turns in the stored history")


class ConversationStore:
    """Reads and writes conversation state on disk.

    Example:
        >>> store = ConversationStore(storage_dir=Path("/tmp/state"))
        >>> store.save_history("c1", [RawTurn(id="u1", role="user", content="Hi")])
        >>> [turn.id for turn in store.load_history("c1")]
        ['u1']
    """

    def __init__(self, storage_dir: Path) -> None:
        """Initialize with storage directory.

        Args:
            storage_dir: Parent directory - a conversations/ subdirectory is created inside
        """
        self.storage_dir = Path(storage_dir) / "conversations"
        self.storage_dir.mkdir(parents=True, exist_ok=True)

    def _conversation_dir(self, conversation_id: str) -> Path:
        if not _CONVERSATION_ID.match(conversation_id):
            raise ValueError(f"Invalid conversation id: {conversation_id!r}")
        return self.storage_dir / conversation_id

    def _write_json(self, path: Path, data: Any) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_suffix(".tmp")
        tmp_path.write_text(json.dumps(data, indent=2, ensure_ascii=False))
        tmp_path.rename(path)

    def _read_json(self, path: Path) -> Any:
        if not path.exists():
            return None
        try:
            return json.loads(path.read_text())
        except json.JSONDecodeError as e:
            logger.error(f"Corrupt JSON in {path}: {e}")
            return None

    def exists(self, conversation_id: str) -> bool:
        return self._conversation_dir(conversation_id).exists()

    # --- History ---

    def load_history(self, conversation_id: str) -> list[RawTurn]:
        """Load raw history turns.

        Args:
            conversation_id: Conversation identifier

        Returns:
            Stored turns, oldest first (empty when nothing is stored)
        """
        data = self._read_json(self._conversation_dir(conversation_id) / "history.json")
        if not data:
            return []

        turns = []
        for index, entry in enumerate(data):
            try:
                turns.append(RawTurn.model_validate(entry))
            except ValidationError as e:
                logger.warning(f"Skipping invalid history entry {index} in {conversation_id}: {e}")
        return turns

    def save_history(self, conversation_id: str, turns: list[RawTurn]) -> None:
        """Replace the stored history atomically.

        Args:
            conversation_id: Conversation identifier
            turns: Complete list of turns to store
        """
        path = self._conversation_dir(conversation_id) / "history.json"
        self._write_json(path, [turn.model_dump(mode="json", exclude_none=True) for turn in turns])
        self.update_info(conversation_id, message_count=len(turns))

    def clear_history(self, conversation_id: str) -> None:
        """Delete every stored file of a conversation."""
        conversation_dir = self._conversation_dir(conversation_id)
        if conversation_dir.exists():
            shutil.rmtree(conversation_dir)
            logger.info(f"Cleared conversation {conversation_id}")

    # --- Todos ---

    def load_todos(self, conversation_id: str) -> list[dict[str, Any]]:
        data = self._read_json(self._conversation_dir(conversation_id) / "todos.json")
        return data if isinstance(data, list) else []

    def save_todos(self, conversation_id: str, todos: list[dict[str, Any]]) -> None:
        self._write_json(self._conversation_dir(conversation_id) / "todos.json", todos)

    # --- Info ---

    def load_info(self, conversation_id: str) -> ConversationInfo:
        """Load conversation metadata, defaulting when none is stored."""
        data = self._read_json(self._conversation_dir(conversation_id) / "info.json")
        if data:
            try:
                return ConversationInfo.model_validate(data)
            except ValidationError as e:
                logger.warning(f"Invalid info.json for {conversation_id}: {e}")
        return ConversationInfo(conversation_id=conversation_id)

    def update_info(self, conversation_id: str, **changes: Any) -> ConversationInfo:
        """Apply field changes to info.json.

        Args:
            conversation_id: Conversation identifier
            **changes: ConversationInfo fields to set

        Returns:
            Updated metadata
        """
        info = self.load_info(conversation_id)
        info = info.model_copy(update={**changes, "updated_at": datetime.now(UTC)})
        self._write_json(
            self._conversation_dir(conversation_id) / "info.json",
            info.model_dump(mode="json"),
        )
        return info

    def record_token_usage(self, conversation_id: str, usage: TokenUsage) -> TokenUsage:
        """Add a turn's usage to the cumulative totals.

        Returns:
            Cumulative usage after the addition
        """
        info = self.load_info(conversation_id)
        total = TokenUsage(
            prompt_tokens=info.token_usage.prompt_tokens + usage.prompt_tokens,
            completion_tokens=info.token_usage.completion_tokens + usage.completion_tokens,
            total_tokens=info.token_usage.total_tokens + usage.total_tokens,
            message_count=usage.message_count,
        )
        self.update_info(conversation_id, token_usage=total)
        return total
