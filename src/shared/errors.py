"""Exception hierarchy for the tool orchestrator.

Startup failures (configuration, provider connection, discovery) are fatal
to the orchestrator. Turn-level failures (tool invocation, unknown tool,
model errors) fail a single prompt call and leave the runtime usable.
"""


class OrchestratorError(Exception):
    """Base exception for orchestrator errors."""
    pass


class ConfigurationError(OrchestratorError):
    """Configuration or provider list could not be loaded."""
    pass


class ProviderConnectionError(OrchestratorError):
    """Tool provider process failed to start or complete its handshake."""
    pass


class ProtocolError(ProviderConnectionError):
    """Tool provider returned a missing or malformed discovery response."""
    pass


class UnsupportedLaunchError(ProviderConnectionError):
    """No interpreter is known for the provider entry point."""
    pass


class ToolNameCollisionError(ProviderConnectionError):
    """Two tools resolved to the same public name."""
    pass


class ToolInvocationError(OrchestratorError):
    """Tool call failed at the transport level."""
    pass


class UnknownToolError(OrchestratorError):
    """Model referenced a tool name that is not in the catalog."""

    def __init__(self, tool_name: str) -> None:
        super().__init__(f"Unknown tool: {tool_name}")
        self.tool_name = tool_name


class ModelError(OrchestratorError):
    """Language model request failed or timed out."""
    pass


class OrchestratorNotReadyError(OrchestratorError):
    """Prompt issued before provider startup completed."""
    pass
