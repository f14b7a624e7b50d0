"""Tests for provider connections."""

import asyncio
import sys
from types import SimpleNamespace

import pytest
from mcp import types

from fakes import make_tool
from shared.errors import (
    ProtocolError,
    ProviderConnectionError,
    ToolInvocationError,
    UnsupportedLaunchError,
)
from shared.models import ProviderSpec


class TestResolveLaunchCommand:
    """Tests for interpreter inference."""

    def test_explicit_command_wins(self):
        from mcp_client.connection import resolve_launch_command

        spec = ProviderSpec(name="fs", command="npx", args=["server.py"])
        assert resolve_launch_command(spec) == "npx"

    def test_python_script(self):
        from mcp_client.connection import SCRIPT_INTERPRETERS, resolve_launch_command

        spec = ProviderSpec(name="weather", args=["servers/weather.py"])
        assert resolve_launch_command(spec) == SCRIPT_INTERPRETERS[".py"]

    def test_extension_is_case_insensitive(self):
        from mcp_client.connection import SCRIPT_INTERPRETERS, resolve_launch_command

        spec = ProviderSpec(name="weather", args=["SERVER.PY"])
        assert resolve_launch_command(spec) == SCRIPT_INTERPRETERS[".py"]

    @pytest.mark.parametrize("entry", ["build/index.js", "server.mjs", "server.cjs"])
    def test_node_scripts(self, entry):
        from mcp_client.connection import resolve_launch_command

        spec = ProviderSpec(name="notes", args=[entry])
        assert resolve_launch_command(spec) == "node"

    def test_no_extension_uses_host_interpreter(self):
        from mcp_client.connection import resolve_launch_command

        spec = ProviderSpec(name="mod", args=["-m", "my_server"])
        assert resolve_launch_command(spec) == sys.executable

    def test_unknown_extension_raises(self):
        from mcp_client.connection import resolve_launch_command

        spec = ProviderSpec(name="ruby", args=["server.rb"])
        with pytest.raises(UnsupportedLaunchError, match="server.rb"):
            resolve_launch_command(spec)

    def test_server_parameters_carry_args_and_env(self):
        from mcp_client.connection import ProviderConnection

        spec = ProviderSpec(name="fs", command="npx", args=["-y", "fs-server"], env={"ROOT": "/tmp"})
        params = ProviderConnection(spec).server_parameters()

        assert params.command == "npx"
        assert params.args == ["-y", "fs-server"]
        assert params.env == {"ROOT": "/tmp"}


class TestProviderConnection:
    """Tests for connecting, discovery and invocation."""

    @pytest.mark.asyncio
    async def test_connect_and_discover(self, fake_mcp):
        from mcp_client.connection import ProviderConnection

        fake_mcp.tools = [
            make_tool("search", "Search the web"),
            make_tool("fetch", schema={
                "type": "object",
                "properties": {"url": {"type": "string"}},
                "required": ["url"]
            }),
        ]
        connection = ProviderConnection(ProviderSpec(name="web", args=["web.py"]))

        await connection.connect()
        descriptors = await connection.discover_tools()

        assert connection.is_connected
        assert [d.public_name for d in descriptors] == ["web_search", "web_fetch"]
        assert descriptors[0].original_name == "search"
        assert descriptors[0].description == "Search the web"
        assert descriptors[1].input_schema["required"] == ["url"]
        assert connection.tool_names == ["web_search", "web_fetch"]

        await connection.close()
        assert not connection.is_connected

    @pytest.mark.asyncio
    async def test_launch_failure_raises_connection_error(self, fake_mcp):
        from mcp_client.connection import ProviderConnection

        fake_mcp.launch_error = FileNotFoundError("python3: not found")
        connection = ProviderConnection(ProviderSpec(name="broken", args=["broken.py"]))

        with pytest.raises(ProviderConnectionError, match="broken"):
            await connection.connect()
        assert not connection.is_connected

    @pytest.mark.asyncio
    async def test_launch_failure_reports_task_group_cause(self, fake_mcp):
        import builtins

        from mcp_client.connection import ProviderConnection

        group_class = getattr(builtins, "ExceptionGroup", None)
        if group_class is None:
            pytest.skip("ExceptionGroup requires Python 3.11")

        fake_mcp.launch_error = group_class(
            "unhandled errors in a TaskGroup",
            [FileNotFoundError("servers/missing.py")]
        )
        connection = ProviderConnection(ProviderSpec(name="broken", args=["missing.py"]))

        with pytest.raises(ProviderConnectionError) as exc_info:
            await connection.connect()

        message = str(exc_info.value)
        assert "FileNotFoundError: servers/missing.py" in message
        assert "TaskGroup" not in message

    @pytest.mark.asyncio
    async def test_handshake_timeout(self, fake_mcp):
        from mcp_client.connection import ProviderConnection

        fake_mcp.hang_on_initialize = True
        connection = ProviderConnection(
            ProviderSpec(name="slow", args=["slow.py"]),
            connect_timeout=0.05
        )

        with pytest.raises(ProviderConnectionError, match="handshake"):
            await connection.connect()
        assert fake_mcp.closed == 1

    @pytest.mark.asyncio
    async def test_discovery_failure_is_protocol_error(self, fake_mcp):
        from mcp_client.connection import ProviderConnection

        fake_mcp.listing = RuntimeError("method not found")
        connection = ProviderConnection(ProviderSpec(name="web", args=["web.py"]))
        await connection.connect()

        with pytest.raises(ProtocolError, match="method not found"):
            await connection.discover_tools()
        await connection.close()

    @pytest.mark.asyncio
    async def test_missing_tool_list_is_protocol_error(self, fake_mcp):
        from mcp_client.connection import ProviderConnection

        fake_mcp.listing = SimpleNamespace(tools=None)
        connection = ProviderConnection(ProviderSpec(name="web", args=["web.py"]))
        await connection.connect()

        with pytest.raises(ProtocolError):
            await connection.discover_tools()
        await connection.close()

    @pytest.mark.asyncio
    async def test_invalid_input_schema_is_protocol_error(self, fake_mcp):
        from mcp_client.connection import ProviderConnection

        fake_mcp.tools = [make_tool("bad", schema={"type": "object", "properties": 5})]
        connection = ProviderConnection(ProviderSpec(name="web", args=["web.py"]))
        await connection.connect()

        with pytest.raises(ProtocolError, match="bad"):
            await connection.discover_tools()
        await connection.close()

    def test_protocol_error_is_connection_error(self):
        assert issubclass(ProtocolError, ProviderConnectionError)

    @pytest.mark.asyncio
    async def test_invoke_returns_content(self, fake_mcp):
        from mcp_client.connection import ProviderConnection

        fake_mcp.tools = [make_tool("add")]
        fake_mcp.results["add"] = types.CallToolResult(
            content=[types.TextContent(type="text", text="4")],
            isError=False
        )
        connection = ProviderConnection(ProviderSpec(name="math", args=["math.py"]))
        await connection.connect()

        result = await connection.invoke("add", {"a": 2, "b": 2})

        assert fake_mcp.calls == [("add", {"a": 2, "b": 2})]
        assert result.tool_public_name == "math_add"
        assert result.as_text() == "4"
        assert not result.is_error
        await connection.close()

    @pytest.mark.asyncio
    async def test_provider_error_result_is_returned(self, fake_mcp):
        from mcp_client.connection import ProviderConnection

        fake_mcp.results["div"] = types.CallToolResult(
            content=[types.TextContent(type="text", text="division by zero")],
            isError=True
        )
        connection = ProviderConnection(ProviderSpec(name="math", args=["math.py"]))
        await connection.connect()

        result = await connection.invoke("div", {"a": 1, "b": 0})

        assert result.is_error
        assert result.as_text() == "division by zero"
        await connection.close()

    @pytest.mark.asyncio
    async def test_snake_case_sdk_fields(self, fake_mcp):
        from mcp_client.connection import ProviderConnection

        schema = {"type": "object", "properties": {"q": {"type": "string"}}}
        fake_mcp.listing = SimpleNamespace(tools=[
            SimpleNamespace(name="search", description="Search", input_schema=schema)
        ])
        fake_mcp.results["search"] = SimpleNamespace(
            content=[{"type": "text", "text": "rate limited"}],
            is_error=True
        )
        connection = ProviderConnection(ProviderSpec(name="web", args=["web.py"]))
        await connection.connect()

        descriptors = await connection.discover_tools()
        result = await connection.invoke("search", {"q": "mcp"})

        assert descriptors[0].input_schema == schema
        assert result.is_error
        assert result.as_text() == "rate limited"
        await connection.close()

    @pytest.mark.asyncio
    async def test_transport_failure_raises_invocation_error(self, fake_mcp):
        from mcp_client.connection import ProviderConnection

        fake_mcp.results["add"] = BrokenPipeError("pipe closed")
        connection = ProviderConnection(ProviderSpec(name="math", args=["math.py"]))
        await connection.connect()

        with pytest.raises(ToolInvocationError, match="math_add"):
            await connection.invoke("add", {})
        assert len(fake_mcp.calls) == 1
        await connection.close()

    @pytest.mark.asyncio
    async def test_invoke_timeout(self, fake_mcp):
        from mcp_client.connection import ProviderConnection

        fake_mcp.call_delay = 1.0
        connection = ProviderConnection(
            ProviderSpec(name="math", args=["math.py"]),
            call_timeout=0.05
        )
        await connection.connect()

        with pytest.raises(ToolInvocationError, match="timed out"):
            await connection.invoke("add", {})
        await connection.close()

    @pytest.mark.asyncio
    async def test_invocations_are_serialized(self, fake_mcp):
        from mcp_client.connection import ProviderConnection

        fake_mcp.call_delay = 0.01
        connection = ProviderConnection(ProviderSpec(name="math", args=["math.py"]))
        await connection.connect()

        results = await asyncio.gather(
            connection.invoke("add", {"a": 1}),
            connection.invoke("add", {"a": 2}),
            connection.invoke("add", {"a": 3}),
        )

        assert len(results) == 3
        assert fake_mcp.max_active_calls == 1
        await connection.close()

    @pytest.mark.asyncio
    async def test_invoke_after_close_raises(self, fake_mcp):
        from mcp_client.connection import ProviderConnection

        connection = ProviderConnection(ProviderSpec(name="math", args=["math.py"]))
        await connection.connect()
        await connection.close()

        with pytest.raises(ToolInvocationError, match="not connected"):
            await connection.invoke("add", {})

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self, fake_mcp):
        from mcp_client.connection import ProviderConnection

        connection = ProviderConnection(ProviderSpec(name="math", args=["math.py"]))
        await connection.connect()

        await connection.close()
        await connection.close()

        assert fake_mcp.closed == 1

    @pytest.mark.asyncio
    async def test_close_without_connect(self):
        from mcp_client.connection import ProviderConnection

        connection = ProviderConnection(ProviderSpec(name="math", args=["math.py"]))
        await connection.close()

        assert not connection.is_connected

    @pytest.mark.asyncio
    async def test_async_context_manager(self, fake_mcp):
        from mcp_client.connection import ProviderConnection

        async with ProviderConnection(ProviderSpec(name="math", args=["math.py"])) as connection:
            assert connection.is_connected

        assert fake_mcp.closed == 1


class TestStdioProvider:
    """Tests against a real provider subprocess."""

    @pytest.mark.asyncio
    async def test_discover_and_call_real_provider(self):
        from pathlib import Path

        from mcp_client.connection import ProviderConnection

        script = Path(__file__).parent / "servers" / "echo_server.py"
        spec = ProviderSpec(name="echo", command=sys.executable, args=[str(script)])

        async with ProviderConnection(spec, connect_timeout=30, call_timeout=30) as connection:
            descriptors = await connection.discover_tools()
            results = await asyncio.gather(
                connection.invoke("search", {"query": "a"}),
                connection.invoke("search", {"query": "b"}),
            )

        assert [d.public_name for d in descriptors] == ["echo_search"]
        assert descriptors[0].input_schema["type"] == "object"
        assert "query" in descriptors[0].input_schema["properties"]
        assert [r.as_text() for r in results] == ["found a", "found b"]
        assert not any(r.is_error for r in results)
        assert not connection.is_connected
