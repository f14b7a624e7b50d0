"""Shared models, configuration and logging for the tool orchestrator."""

from shared.models import (
    LLMResponse,
    Message,
    MessageRole,
    ProviderSpec,
    TextBlock,
    ToolDescriptor,
    ToolInvocationResult,
    ToolUseBlock,
)
from shared.config import Settings, get_settings, load_provider_specs
from shared.logging import get_logger, setup_logging

__all__ = [
    "LLMResponse",
    "Message",
    "MessageRole",
    "ProviderSpec",
    "TextBlock",
    "ToolDescriptor",
    "ToolInvocationResult",
    "ToolUseBlock",
    "Settings",
    "get_settings",
    "load_provider_specs",
    "get_logger",
    "setup_logging",
]
