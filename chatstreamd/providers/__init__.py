"""LLM providers."""

from .base import LLMProvider
from .base import ProviderEvent
from .base import TextDelta
from .base import ToolCallRequest
from .base import UsageReport
from .openai_provider import OpenAIProvider

__all__ = [
    "LLMProvider",
    "OpenAIProvider",
    "ProviderEvent",
    "TextDelta",
    "ToolCallRequest",
    "UsageReport",
]
