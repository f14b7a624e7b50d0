"""LLM Integration Layer using LlamaIndex.

Every provider answers with an ordered list of content blocks, each either
text or a tool-use request:
- Anthropic (Messages API)
- OpenAI (function calling, mapped onto tool-use blocks)
- OpenAI-compatible endpoints such as x.ai, with any model name
- Mock provider for tests

The LLM has no direct access to tool providers.
"""

import json
from abc import ABC, abstractmethod
from collections import deque
from typing import Any, Optional

from shared.config import LLMSettings
from shared.errors import ModelError
from shared.logging import get_logger
from shared.models import (
    ContentBlock,
    LLMResponse,
    Message,
    MessageRole,
    TextBlock,
    ToolUseBlock,
)

logger = get_logger(__name__)


def _field(obj: Any, name: str, default: Any = None) -> Any:
    """Read a field from either a mapping or an SDK object."""
    if isinstance(obj, dict):
        return obj.get(name, default)
    return getattr(obj, name, default)


def _to_chat_messages(messages: list[Message]) -> list:
    """Convert transcript messages to LlamaIndex chat messages."""
    from llama_index.core.llms import ChatMessage
    from llama_index.core.llms import MessageRole as ChatRole

    role_map = {
        MessageRole.USER: ChatRole.USER,
        MessageRole.ASSISTANT: ChatRole.ASSISTANT,
        # Tool results go back to the model as user turns
        MessageRole.TOOL_RESULT: ChatRole.USER,
    }
    return [ChatMessage(role=role_map[m.role], content=m.content) for m in messages]


class LLMProvider(ABC):
    """
    Abstract base class for LLM providers.

    A provider receives the transcript and, optionally, the tool catalog,
    and returns the model's content blocks in order.
    """

    @abstractmethod
    async def complete(
        self,
        messages: list[Message],
        tools: Optional[list[dict[str, Any]]] = None,
        max_tokens: Optional[int] = None
    ) -> LLMResponse:
        """
        Generate a response from the LLM.

        Args:
            messages: Transcript of the current turn
            tools: Callable tools as {name, description, input_schema}
            max_tokens: Maximum tokens to generate

        Returns:
            Response with ordered text and tool-use blocks

        Raises:
            ModelError: If the request fails
        """
        pass


class AnthropicProvider(LLMProvider):
    """Anthropic Messages API provider using LlamaIndex."""

    def __init__(self, settings: LLMSettings) -> None:
        self.settings = settings
        self._llm = None

    def _get_llm(self):
        """Lazy initialization of LlamaIndex LLM."""
        if self._llm is None:
            from llama_index.llms.anthropic import Anthropic

            kwargs: dict[str, Any] = {}
            if self.settings.api_base:
                kwargs["base_url"] = self.settings.api_base

            self._llm = Anthropic(
                model=self.settings.model,
                api_key=self.settings.api_key,
                max_tokens=self.settings.max_tokens,
                max_retries=0,
                **kwargs,
            )
        return self._llm

    async def complete(
        self,
        messages: list[Message],
        tools: Optional[list[dict[str, Any]]] = None,
        max_tokens: Optional[int] = None
    ) -> LLMResponse:
        """Generate a response using the Anthropic Messages API."""
        llm = self._get_llm()

        kwargs: dict[str, Any] = {}
        if tools:
            kwargs["tools"] = tools
        if max_tokens is not None:
            kwargs["max_tokens"] = max_tokens

        try:
            response = await llm.achat(_to_chat_messages(messages), **kwargs)
        except Exception as e:
            logger.error("LLM completion failed", provider="anthropic", error=str(e))
            raise ModelError(f"Model request failed: {e}") from e

        return self._parse_response(response.raw)

    def _parse_response(self, raw: Any) -> LLMResponse:
        """Map a raw Messages API response onto content blocks."""
        blocks: list[ContentBlock] = []
        for item in _field(raw, "content") or []:
            kind = _field(item, "type")
            if kind == "text":
                blocks.append(TextBlock(text=_field(item, "text", "")))
            elif kind == "tool_use":
                blocks.append(ToolUseBlock(
                    id=_field(item, "id", ""),
                    name=_field(item, "name"),
                    input=_field(item, "input") or {}
                ))
            else:
                logger.debug("Skipping content block", type=kind)

        usage = _field(raw, "usage")
        return LLMResponse(
            content=blocks,
            stop_reason=_field(raw, "stop_reason"),
            usage={
                "input_tokens": _field(usage, "input_tokens", 0) or 0,
                "output_tokens": _field(usage, "output_tokens", 0) or 0,
            } if usage is not None else {}
        )


class OpenAIProvider(LLMProvider):
    """OpenAI LLM provider using LlamaIndex."""

    def __init__(self, settings: LLMSettings) -> None:
        self.settings = settings
        self._llm = None

    def _get_llm(self):
        """Lazy initialization of LlamaIndex LLM."""
        if self._llm is None:
            from llama_index.llms.openai import OpenAI

            self._llm = OpenAI(
                model=self.settings.model,
                api_key=self.settings.api_key,
                api_base=self.settings.api_base,
                max_tokens=self.settings.max_tokens,
                max_retries=0,
            )
        return self._llm

    @staticmethod
    def _to_functions(tools: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """Convert catalog tools to OpenAI function definitions."""
        return [
            {
                "type": "function",
                "function": {
                    "name": tool["name"],
                    "description": tool.get("description", ""),
                    "parameters": tool.get("input_schema") or {"type": "object", "properties": {}},
                }
            }
            for tool in tools
        ]

    async def complete(
        self,
        messages: list[Message],
        tools: Optional[list[dict[str, Any]]] = None,
        max_tokens: Optional[int] = None
    ) -> LLMResponse:
        """Generate a response using OpenAI."""
        llm = self._get_llm()

        kwargs: dict[str, Any] = {}
        if tools:
            kwargs["tools"] = self._to_functions(tools)
        if max_tokens is not None:
            kwargs["max_tokens"] = max_tokens

        try:
            response = await llm.achat(_to_chat_messages(messages), **kwargs)
        except Exception as e:
            logger.error("LLM completion failed", provider=self.settings.provider, error=str(e))
            raise ModelError(f"Model request failed: {e}") from e

        message = response.message
        blocks: list[ContentBlock] = []
        if message.content:
            blocks.append(TextBlock(text=message.content))

        tool_calls = message.additional_kwargs.get("tool_calls") or []
        for call in tool_calls:
            function = _field(call, "function")
            arguments = _field(function, "arguments") or "{}"
            try:
                parsed = json.loads(arguments) if isinstance(arguments, str) else dict(arguments)
            except json.JSONDecodeError as e:
                raise ModelError(f"Invalid arguments for tool call '{_field(function, 'name')}'") from e

            blocks.append(ToolUseBlock(
                id=_field(call, "id") or "",
                name=_field(function, "name"),
                input=parsed
            ))

        return LLMResponse(
            content=blocks,
            stop_reason="tool_use" if tool_calls else "end_turn"
        )


class OpenAILikeProvider(OpenAIProvider):
    """
    Provider for OpenAI-compatible endpoints (x.ai, vLLM, local gateways).

    Model names are passed through unchecked, so the endpoint decides which
    models exist. Requires api_base.
    """

    def _get_llm(self):
        """Lazy initialization of LlamaIndex LLM."""
        if self._llm is None:
            from llama_index.llms.openai_like import OpenAILike

            if not self.settings.api_base:
                raise ModelError("The openai_like provider requires api_base")

            self._llm = OpenAILike(
                model=self.settings.model,
                api_key=self.settings.api_key,
                api_base=self.settings.api_base,
                max_tokens=self.settings.max_tokens,
                context_window=self.settings.context_window,
                is_chat_model=True,
                is_function_calling_model=True,
                max_retries=0,
            )
        return self._llm


class MockLLMProvider(LLMProvider):
    """Mock LLM provider for testing without API calls."""

    def __init__(
        self,
        settings: Optional[LLMSettings] = None,
        responses: Optional[list[LLMResponse]] = None
    ) -> None:
        self.settings = settings
        self.call_history: list[dict[str, Any]] = []
        self._responses: deque[LLMResponse] = deque(responses or [])

    def set_next_response(self, response: LLMResponse) -> None:
        """Queue a response to return."""
        self._responses.append(response)

    def queue_responses(self, *responses: LLMResponse) -> None:
        """Queue several responses, returned in order."""
        self._responses.extend(responses)

    async def complete(
        self,
        messages: list[Message],
        tools: Optional[list[dict[str, Any]]] = None,
        max_tokens: Optional[int] = None
    ) -> LLMResponse:
        """Return the next queued response."""
        self.call_history.append({
            "messages": list(messages),
            "tools": tools,
            "max_tokens": max_tokens
        })

        if self._responses:
            return self._responses.popleft()

        return LLMResponse(
            content=[TextBlock(text="This is a mock response.")],
            stop_reason="end_turn",
            usage={"input_tokens": 10, "output_tokens": 5}
        )


def create_llm_provider(settings: LLMSettings) -> LLMProvider:
    """
    Factory function to create appropriate LLM provider.

    Supports:
    - anthropic: Anthropic Messages API
    - openai: OpenAI API
    - openai_like: Any OpenAI-compatible chat endpoint (set api_base)
    - mock: Mock provider for testing

    Args:
        settings: LLM configuration settings

    Returns:
        Configured LLM provider

    Raises:
        ValueError: If provider is not supported
    """
    providers = {
        "anthropic": AnthropicProvider,
        "openai": OpenAIProvider,
        "openai_like": OpenAILikeProvider,
        "mock": MockLLMProvider,
    }

    provider_class = providers.get(settings.provider)
    if not provider_class:
        raise ValueError(
            f"Unsupported LLM provider: {settings.provider}. "
            f"Supported: {list(providers.keys())}"
        )

    logger.info("Creating LLM provider", provider=settings.provider, model=settings.model)
    return provider_class(settings)
