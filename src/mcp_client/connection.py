"""Connection to a single subprocess-backed tool provider.

Launches the provider over stdio with the MCP SDK, discovers its tools and
forwards tool calls. Each connection owns one subprocess and one session.
"""

import asyncio
import sys
from pathlib import PurePath
from typing import Any, Optional

from mcp import ClientSession, StdioServerParameters
from mcp.client.stdio import stdio_client

from shared.errors import (
    ProtocolError,
    ProviderConnectionError,
    ToolInvocationError,
    UnsupportedLaunchError,
)
from shared.logging import get_logger
from shared.models import ProviderSpec, ToolDescriptor, ToolInvocationResult
from shared.schema import check_input_schema

logger = get_logger(__name__)


# Entry point extension -> interpreter
SCRIPT_INTERPRETERS: dict[str, str] = {
    ".py": "python" if sys.platform == "win32" else "python3",
    ".js": "node",
    ".mjs": "node",
    ".cjs": "node",
}


def resolve_launch_command(spec: ProviderSpec) -> str:
    """
    Determine the executable used to launch a provider.

    An explicit command always wins. Otherwise the interpreter is looked up
    from the entry point's extension; entry points without an extension
    run under the current Python interpreter.

    Raises:
        UnsupportedLaunchError: If the extension has no known interpreter
    """
    if spec.command:
        return spec.command

    suffix = PurePath(spec.args[0]).suffix.lower()
    if not suffix:
        return sys.executable

    interpreter = SCRIPT_INTERPRETERS.get(suffix)
    if interpreter is None:
        raise UnsupportedLaunchError(
            f"No interpreter known for '{spec.args[0]}' of provider '{spec.name}'. "
            f"Supported: {sorted(SCRIPT_INTERPRETERS)}; set 'command' explicitly"
        )
    return interpreter


def _first_field(obj: Any, *names: str, default: Any = None) -> Any:
    """Read the first present attribute; SDK releases disagree on field casing."""
    for name in names:
        value = getattr(obj, name, None)
        if value is not None:
            return value
    return default


def _root_cause(error: BaseException) -> BaseException:
    """Unwrap task group errors down to the first underlying exception."""
    while getattr(error, "exceptions", None):
        error = error.exceptions[0]
    return error


class ProviderConnection:
    """
    Client side of one tool provider process.

    The MCP SDK context managers are entered and exited by a single owner
    task, so the connection can be closed from any task. Calls to the
    provider are serialized: one request is in flight at a time.
    """

    def __init__(
        self,
        spec: ProviderSpec,
        connect_timeout: Optional[float] = None,
        call_timeout: Optional[float] = None
    ) -> None:
        """
        Initialize a provider connection.

        Args:
            spec: Provider launch description
            connect_timeout: Seconds allowed for launch and handshake
            call_timeout: Seconds allowed per tool call
        """
        self.spec = spec
        self.connect_timeout = connect_timeout
        self.call_timeout = call_timeout

        self._session: Optional[ClientSession] = None
        self._runner: Optional[asyncio.Task] = None
        self._shutdown = asyncio.Event()
        self._call_lock = asyncio.Lock()
        self._tool_names: dict[str, str] = {}
        self._closed = False

    @property
    def provider_name(self) -> str:
        return self.spec.name

    @property
    def is_connected(self) -> bool:
        return self._session is not None

    @property
    def tool_names(self) -> list[str]:
        """Public names of the tools discovered on this provider."""
        return list(self._tool_names)

    def server_parameters(self) -> StdioServerParameters:
        """Build the stdio launch parameters for this provider."""
        return StdioServerParameters(
            command=resolve_launch_command(self.spec),
            args=list(self.spec.args),
            env=dict(self.spec.env) if self.spec.env is not None else None,
        )

    async def connect(self) -> "ProviderConnection":
        """
        Launch the provider and complete the MCP handshake.

        Returns:
            This connection, ready for discovery

        Raises:
            ProviderConnectionError: If the process cannot start or the
                handshake fails or times out
        """
        if self._runner is not None:
            raise ProviderConnectionError(f"Provider '{self.provider_name}' is already connected")

        params = self.server_parameters()
        logger.debug(
            "Launching provider",
            provider=self.provider_name,
            command=params.command,
            args=params.args
        )

        started: asyncio.Future = asyncio.get_running_loop().create_future()
        self._runner = asyncio.create_task(
            self._run(params, started),
            name=f"provider-{self.provider_name}"
        )

        try:
            await asyncio.wait_for(asyncio.shield(started), timeout=self.connect_timeout)
        except asyncio.TimeoutError:
            await self.close()
            raise ProviderConnectionError(
                f"Provider '{self.provider_name}' did not complete the handshake "
                f"within {self.connect_timeout}s"
            )
        except ProviderConnectionError:
            await self.close()
            raise

        return self

    async def _run(self, params: StdioServerParameters, started: asyncio.Future) -> None:
        """Own the transport and session until shutdown is requested."""
        try:
            async with stdio_client(params) as (read_stream, write_stream):
                async with ClientSession(read_stream, write_stream) as session:
                    await session.initialize()
                    self._session = session
                    if not started.done():
                        started.set_result(None)
                    await self._shutdown.wait()
        except Exception as e:
            cause = _root_cause(e)
            if not started.done():
                started.set_exception(ProviderConnectionError(
                    f"Failed to connect to provider '{self.provider_name}': "
                    f"{type(cause).__name__}: {cause}"
                ))
            else:
                logger.error("Provider connection lost", provider=self.provider_name, error=str(cause))
        finally:
            self._session = None
            if not started.done():
                started.cancel()

    async def discover_tools(self) -> list[ToolDescriptor]:
        """
        List the provider's tools under their public names.

        Returns:
            Descriptors in the order the provider reported them

        Raises:
            ProtocolError: If the listing fails or is malformed
        """
        async with self._call_lock:
            session = self._session
            if session is None:
                raise ProtocolError(f"Provider '{self.provider_name}' is not connected")

            try:
                result = await asyncio.wait_for(session.list_tools(), timeout=self.connect_timeout)
            except asyncio.TimeoutError as e:
                raise ProtocolError(f"Tool discovery timed out for provider '{self.provider_name}'") from e
            except Exception as e:
                raise ProtocolError(f"Tool discovery failed for provider '{self.provider_name}': {e}") from e

        tools = getattr(result, "tools", None)
        if tools is None:
            raise ProtocolError(f"Provider '{self.provider_name}' returned no tool list")

        descriptors = []
        for tool in tools:
            name = getattr(tool, "name", None)
            if not name:
                raise ProtocolError(f"Provider '{self.provider_name}' returned a tool without a name")

            schema = _first_field(tool, "inputSchema", "input_schema")
            problems = check_input_schema(schema)
            if problems:
                raise ProtocolError(
                    f"Tool '{name}' of provider '{self.provider_name}' has an invalid "
                    f"input schema: {'; '.join(problems)}"
                )

            descriptors.append(ToolDescriptor.for_provider(
                self.provider_name,
                name,
                description=getattr(tool, "description", None),
                input_schema=schema
            ))

        self._tool_names = {d.public_name: d.original_name for d in descriptors}
        return descriptors

    async def invoke(
        self,
        original_name: str,
        arguments: Optional[dict[str, Any]] = None
    ) -> ToolInvocationResult:
        """
        Call a tool on the provider.

        Args:
            original_name: Tool name as known to the provider
            arguments: Tool arguments

        Returns:
            Tool result content

        Raises:
            ToolInvocationError: If the connection is closed, the transport
                fails or the call exceeds its deadline
        """
        arguments = arguments or {}
        public_name = f"{self.provider_name}_{original_name}"

        async with self._call_lock:
            session = self._session
            if session is None:
                raise ToolInvocationError(f"Provider '{self.provider_name}' is not connected")

            logger.debug("Calling tool", tool=public_name, provider=self.provider_name)

            try:
                result = await asyncio.wait_for(
                    session.call_tool(original_name, arguments),
                    timeout=self.call_timeout
                )
            except asyncio.TimeoutError as e:
                logger.error("Tool call timed out", tool=public_name, timeout=self.call_timeout)
                raise ToolInvocationError(
                    f"Tool '{public_name}' timed out after {self.call_timeout}s"
                ) from e
            except Exception as e:
                logger.error("Tool call failed", tool=public_name, error=str(e))
                raise ToolInvocationError(f"Tool '{public_name}' failed: {e}") from e

        content = [
            item if isinstance(item, dict) else item.model_dump(mode="json", exclude_none=True)
            for item in (result.content or [])
        ]
        is_error = bool(_first_field(result, "isError", "is_error", default=False))
        if is_error:
            logger.warning("Tool reported an error", tool=public_name)

        return ToolInvocationResult(
            tool_public_name=public_name,
            arguments=arguments,
            content=content,
            is_error=is_error
        )

    async def close(self) -> None:
        """Stop the provider process and release the transport."""
        if self._closed:
            return
        self._closed = True
        self._shutdown.set()

        runner = self._runner
        if runner is None:
            return

        # Still in the handshake: nothing is waiting on the shutdown event yet
        if not runner.done() and self._session is None:
            runner.cancel()
        await asyncio.gather(runner, return_exceptions=True)

        logger.info("Provider connection closed", provider=self.provider_name)

    async def __aenter__(self) -> "ProviderConnection":
        return await self.connect()

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
