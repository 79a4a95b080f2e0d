"""OpenAI chat-completions provider.

Streams a round with the async OpenAI client. Tool call fragments arrive
spread over many deltas keyed by index; they are assembled and yielded once
the round ends.
"""

import json
import logging
from collections.abc import AsyncIterator
from typing import Any

from openai import AsyncOpenAI

from .base import ProviderEvent
from .base import TextDelta
from .base import ToolCallRequest
from .base import UsageReport

logger = logging.getLogger(__name__)


class OpenAIProvider:
    """LLMProvider backed by the OpenAI API (or a compatible server)."""

    def __init__(
        self: "OpenAIProvider",
        model: str,
        api_key: str | None = None,
        base_url: str | None = None,
        temperature: float = 0.2,
        client: AsyncOpenAI | None = None,
    ) -> None:
        """Initialize provider.

        Args:
            model: Model identifier
            api_key: API key (falls back to OPENAI_API_KEY)
            base_url: Optional OpenAI-compatible base URL
            temperature: Sampling temperature
            client: Preconfigured client (tests)
        """
        self.model = model
        self.temperature = temperature
        self._client = client or AsyncOpenAI(api_key=api_key, base_url=base_url)

    async def stream(
        self: "OpenAIProvider",
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]],
    ) -> AsyncIterator[ProviderEvent]:
        request: dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "temperature": self.temperature,
            "stream": True,
            "stream_options": {"include_usage": True},
        }
        if tools:
            request["tools"] = tools

        pending: dict[int, dict[str, str]] = {}
        stream = await self._client.chat.completions.create(**request)
        async for chunk in stream:
            if chunk.usage is not None:
                yield UsageReport(
                    prompt_tokens=chunk.usage.prompt_tokens or 0,
                    completion_tokens=chunk.usage.completion_tokens or 0,
                )
            if not chunk.choices:
                continue

            delta = chunk.choices[0].delta
            if delta.content:
                yield TextDelta(delta.content)

            for fragment in delta.tool_calls or []:
                entry = pending.setdefault(fragment.index, {"id": "", "name": "", "arguments": ""})
                if fragment.id:
                    entry["id"] = fragment.id
                if fragment.function is not None:
                    entry["name"] += fragment.function.name or ""
                    entry["arguments"] += fragment.function.arguments or ""

        for index in sorted(pending):
            entry = pending[index]
            yield ToolCallRequest(
                id=entry["id"] or f"call_{index}",
                name=entry["name"],
                arguments=_parse_arguments(entry["arguments"], entry["name"]),
            )


def _parse_arguments(raw: str, tool_name: str) -> dict[str, Any]:
    if not raw.strip():
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as e:
        logger.warning(f"Model produced invalid JSON arguments for {tool_name}: {e}")
        return {}
    return parsed if isinstance(parsed, dict) else {"value": parsed}
