"""Conversation engine driving a single prompt turn.

The engine sends the transcript and the tool catalog to the model, runs the
tool calls it asks for on the owning provider connections, feeds each result
back and collects the textual answer.
"""

import asyncio
import json
from typing import Any, Mapping, Optional, Protocol

from mcp_client.catalog import ToolCatalog
from shared.errors import ModelError
from shared.logging import get_logger
from shared.models import (
    LLMResponse,
    Message,
    MessageRole,
    ToolInvocationResult,
    ToolUseBlock,
)
from orchestrator.llm import LLMProvider

logger = get_logger(__name__)


class ToolInvoker(Protocol):
    """What the engine needs from a provider connection."""

    async def invoke(
        self,
        original_name: str,
        arguments: Optional[dict[str, Any]] = None
    ) -> ToolInvocationResult:
        ...


def describe_tool_call(public_name: str, arguments: dict[str, Any]) -> str:
    """Diagnostic line recorded in the answer for each tool call."""
    args = json.dumps(arguments, separators=(",", ":"), ensure_ascii=False)
    return f"[Calling tool {public_name} with args {args}]"


class ConversationEngine:
    """
    Runs one turn of the model/tool exchange.

    States:
    1. AwaitingModel: send the transcript (with tools on the first call)
    2. InterpretingResponse: walk the content blocks in order
    3. InvokingTool: call the tool, append its result, ask for a follow-up
    4. Done: return the collected answer

    An engine instance owns a private transcript; the catalog and the
    connections are shared and only read.
    """

    def __init__(
        self,
        llm_provider: LLMProvider,
        catalog: ToolCatalog,
        connections: Mapping[str, ToolInvoker],
        max_tokens: int = 1000,
        model_timeout: Optional[float] = None
    ) -> None:
        """
        Initialize conversation engine.

        Args:
            llm_provider: Model used for the turn
            catalog: Tool catalog shared by all turns
            connections: Provider connections keyed by provider name
            max_tokens: Maximum output tokens per model call
            model_timeout: Seconds allowed per model call
        """
        self.llm = llm_provider
        self.catalog = catalog
        self.connections = connections
        self.max_tokens = max_tokens
        self.model_timeout = model_timeout

        self.transcript: list[Message] = []
        self.answer: list[str] = []
        self.tool_results: list[ToolInvocationResult] = []

    async def run(self, query: str) -> str:
        """
        Answer a query, invoking tools as the model requests.

        Args:
            query: User query seeding the transcript

        Returns:
            Text blocks, tool call diagnostics and follow-up text joined
            with newlines

        Raises:
            UnknownToolError: If the model names a tool not in the catalog
            ToolInvocationError: If a tool call fails at the transport
            ModelError: If a model call fails or times out
        """
        self.transcript = [Message(role=MessageRole.USER, content=query)]
        self.answer = []
        self.tool_results = []

        response = await self._call_model(tools=self.catalog.as_model_tool_list())

        # Fail on hallucinated names before any tool has run
        targets = {
            block.name: self.catalog.resolve(block.name)
            for block in response.tool_uses
        }

        for block in response.content:
            if block.type == "text":
                self.answer.append(block.text)
            elif block.type == "tool_use":
                provider_name, original_name = targets[block.name]
                await self._invoke_tool(block, provider_name, original_name)

                follow_up = await self._call_model()
                self.answer.append(follow_up.first_text)

        return "\n".join(self.answer)

    async def _invoke_tool(
        self,
        block: ToolUseBlock,
        provider_name: str,
        original_name: str
    ) -> ToolInvocationResult:
        """Run one tool call and append its result to the transcript."""
        connection = self.connections[provider_name]

        logger.info("Executing tool", tool=block.name, provider=provider_name)
        result = await connection.invoke(original_name, block.input)
        logger.info("Tool executed", tool=block.name, is_error=result.is_error)

        self.tool_results.append(result)
        self.answer.append(describe_tool_call(block.name, block.input))
        self.transcript.append(Message(role=MessageRole.TOOL_RESULT, content=result.as_text()))
        return result

    async def _call_model(
        self,
        tools: Optional[list[dict[str, Any]]] = None
    ) -> LLMResponse:
        """Send the transcript to the model within the model deadline."""
        try:
            return await asyncio.wait_for(
                self.llm.complete(
                    messages=list(self.transcript),
                    tools=tools,
                    max_tokens=self.max_tokens
                ),
                timeout=self.model_timeout
            )
        except asyncio.TimeoutError as e:
            logger.error("Model call timed out", timeout=self.model_timeout)
            raise ModelError(f"Model call timed out after {self.model_timeout}s") from e
