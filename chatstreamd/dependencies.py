"""Shared dependency factories for FastAPI endpoints.

These factories provide dependency injection for configuration, storage
and the LLM provider, so tests can override each one independently.
"""

import logging

from chatstream_library.storage import get_state_dir
from chatstream_library.storage.conversation_store import ConversationStore

from .config.loader import load_config
from .config.loader import load_secrets
from .config.models import Config
from .providers.base import LLMProvider
from .providers.openai_provider import OpenAIProvider

logger = logging.getLogger(__name__)


def get_config() -> Config:
    """Get daemon configuration.

    Returns:
        Configuration loaded from file, environment and defaults
    """
    return load_config()


def get_conversation_store() -> ConversationStore:
    """Get conversation store.

    Returns:
        ConversationStore instance configured with state directory
    """
    return ConversationStore(storage_dir=get_state_dir())


def create_provider(config: Config) -> LLMProvider:
    """Build the configured LLM provider.

    Args:
        config: Daemon configuration

    Returns:
        Provider instance

    Raises:
        ValueError: If the configured provider is not supported
    """
    llm = config.llm
    if llm.provider != "openai":
        raise ValueError(f"Unsupported LLM provider: {llm.provider}")

    secrets = load_secrets()
    return OpenAIProvider(
        model=llm.model,
        api_key=secrets.api_keys.get(llm.provider),
        base_url=llm.base_url,
        temperature=llm.temperature,
    )


def get_provider() -> LLMProvider:
    """Get LLM provider for the current configuration."""
    return create_provider(get_config())
