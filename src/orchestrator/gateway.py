"""Orchestrator - owns the tool provider runtime.

The orchestrator coordinates:
- Concurrent startup of all provider connections
- Aggregation of their tools into the shared catalog
- One conversation engine turn per prompt
- Shutdown of every connection
"""

import asyncio
import uuid
from typing import Any, Callable, Optional

from mcp_client.catalog import ToolCatalog
from mcp_client.connection import ProviderConnection
from shared.config import Settings, load_provider_specs
from shared.errors import OrchestratorError, OrchestratorNotReadyError
from shared.logging import get_logger, request_context
from shared.models import ProviderSpec
from orchestrator.conversation import ConversationEngine
from orchestrator.llm import LLMProvider, create_llm_provider

logger = get_logger(__name__)


ConnectionFactory = Callable[..., ProviderConnection]


class Orchestrator:
    """
    Tool orchestrator connecting a chat model to tool providers.

    Constructed once at process start and handed to whatever serves
    requests. Startup is fail-fast: if any provider cannot be connected,
    every connection is closed and the error propagates.
    """

    def __init__(
        self,
        llm_provider: LLMProvider,
        provider_specs: list[ProviderSpec],
        max_tokens: int = 1000,
        model_timeout: Optional[float] = None,
        connect_timeout: Optional[float] = None,
        tool_timeout: Optional[float] = None,
        connection_factory: ConnectionFactory = ProviderConnection
    ) -> None:
        """
        Initialize the orchestrator.

        Args:
            llm_provider: Model shared by all prompts
            provider_specs: Tool providers to launch
            max_tokens: Maximum output tokens per model call
            model_timeout: Seconds allowed per model call
            connect_timeout: Seconds allowed per provider handshake
            tool_timeout: Seconds allowed per tool call
            connection_factory: Builds a connection from a provider spec
        """
        names = [spec.name for spec in provider_specs]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise ValueError(f"Duplicate provider names: {duplicates}")

        self.llm = llm_provider
        self.provider_specs = list(provider_specs)
        self.max_tokens = max_tokens
        self.model_timeout = model_timeout
        self.connect_timeout = connect_timeout
        self.tool_timeout = tool_timeout
        self.connection_factory = connection_factory

        self.catalog = ToolCatalog()
        self.connections: dict[str, ProviderConnection] = {}
        self._ready = False
        self._startup_lock = asyncio.Lock()

    @classmethod
    def from_settings(cls, settings: Settings) -> "Orchestrator":
        """Build an orchestrator from application settings."""
        return cls(
            llm_provider=create_llm_provider(settings.llm),
            provider_specs=load_provider_specs(settings.orchestrator.providers_path),
            max_tokens=settings.llm.max_tokens,
            model_timeout=settings.llm.timeout_seconds,
            connect_timeout=settings.orchestrator.connect_timeout_seconds,
            tool_timeout=settings.orchestrator.tool_timeout_seconds,
        )

    @property
    def is_ready(self) -> bool:
        return self._ready

    @property
    def provider_names(self) -> list[str]:
        return list(self.connections)

    @property
    def tool_count(self) -> int:
        return len(self.catalog)

    async def connect_to_servers(self) -> None:
        """
        Connect to every provider concurrently and build the catalog.

        Raises:
            ProviderConnectionError: If any provider fails to start, to list
                its tools or contributes a colliding tool name
        """
        async with self._startup_lock:
            if self._ready:
                return

            connections = [
                self.connection_factory(
                    spec,
                    connect_timeout=self.connect_timeout,
                    call_timeout=self.tool_timeout
                )
                for spec in self.provider_specs
            ]

            results = await asyncio.gather(
                *(self._connect_one(connection) for connection in connections),
                return_exceptions=True
            )
            failures = [r for r in results if isinstance(r, BaseException)]

            if failures:
                await asyncio.gather(
                    *(connection.close() for connection in connections),
                    return_exceptions=True
                )
                self.catalog = ToolCatalog()
                logger.error(
                    "Provider startup failed",
                    failed=len(failures),
                    total=len(connections),
                    error=str(failures[0])
                )
                raise failures[0]

            self.connections = {c.provider_name: c for c in connections}
            self._ready = True

            logger.info(
                "Orchestrator ready",
                providers=self.provider_names,
                tool_count=self.tool_count
            )

    async def _connect_one(self, connection: ProviderConnection) -> None:
        """Connect, discover and register one provider."""
        try:
            await connection.connect()
            descriptors = await connection.discover_tools()
            await self.catalog.register(connection.provider_name, descriptors)
        except Exception as e:
            logger.error(
                "Failed to connect to provider",
                provider=connection.provider_name,
                error=str(e)
            )
            raise

        logger.info(
            "Connected to provider",
            provider=connection.provider_name,
            tools=[d.public_name for d in descriptors]
        )

    async def prompt(self, query: str) -> str:
        """
        Answer a query with the model and the provider tools.

        Each call runs its own engine with a private transcript.

        Args:
            query: User query

        Returns:
            Accumulated answer text

        Raises:
            OrchestratorNotReadyError: If startup has not completed
            OrchestratorError: If the model or a tool call fails
        """
        if not self._ready:
            raise OrchestratorNotReadyError("Orchestrator has not connected to its providers")

        request_id = str(uuid.uuid4())
        with request_context(request_id=request_id):
            logger.info("Processing prompt", length=len(query))

            engine = ConversationEngine(
                llm_provider=self.llm,
                catalog=self.catalog,
                connections=self.connections,
                max_tokens=self.max_tokens,
                model_timeout=self.model_timeout
            )

            try:
                answer = await engine.run(query)
            except OrchestratorError as e:
                logger.warning("Prompt failed", error_type=type(e).__name__, error=str(e))
                raise

            logger.info("Prompt completed", tool_calls=len(engine.tool_results))
            return answer

    async def cleanup(self) -> None:
        """Close every provider connection."""
        connections = list(self.connections.values())
        self.connections = {}
        self.catalog = ToolCatalog()
        self._ready = False

        if connections:
            logger.info("Shutting down providers", count=len(connections))
            results = await asyncio.gather(
                *(connection.close() for connection in connections),
                return_exceptions=True
            )
            for connection, result in zip(connections, results):
                if isinstance(result, Exception):
                    logger.warning(
                        "Provider did not close cleanly",
                        provider=connection.provider_name,
                        error=str(result)
                    )

    def health(self) -> dict[str, Any]:
        """Summarize runtime state for health reporting."""
        return {
            "status": "healthy" if self._ready else "starting",
            "providers": self.provider_names,
            "tool_count": self.tool_count
        }

    async def __aenter__(self) -> "Orchestrator":
        await self.connect_to_servers()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.cleanup()
