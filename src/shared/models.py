"""Core data models for the tool orchestrator.

Provider specifications, tool descriptors, transcript messages and the
content blocks exchanged with the language model.
"""

import json
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class ProviderSpec(BaseModel):
    """
    Launch description for one tool provider.

    args[0] is the provider entry point; when no command is given the
    interpreter is inferred from its file extension.
    """
    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1, description="Unique provider name")
    command: Optional[str] = Field(default=None, description="Executable to launch")
    args: list[str] = Field(..., min_length=1, description="Launch arguments")
    env: Optional[dict[str, str]] = Field(default=None, description="Process environment")


class ToolDescriptor(BaseModel):
    """A provider tool exposed to the model under its namespaced name."""
    public_name: str = Field(..., description="providerName_originalName")
    original_name: str
    provider_name: str
    description: str = ""
    input_schema: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def for_provider(
        cls,
        provider_name: str,
        original_name: str,
        description: Optional[str] = None,
        input_schema: Optional[dict[str, Any]] = None
    ) -> "ToolDescriptor":
        """Build a descriptor with the public name derived from the provider."""
        return cls(
            public_name=f"{provider_name}_{original_name}",
            original_name=original_name,
            provider_name=provider_name,
            description=description or "",
            input_schema=input_schema or {},
        )

    def as_model_tool(self) -> dict[str, Any]:
        """Return the tool in the shape handed to the model."""
        return {
            "name": self.public_name,
            "description": self.description,
            "input_schema": self.input_schema,
        }


class MessageRole(str, Enum):
    """Transcript message roles."""
    USER = "user"
    ASSISTANT = "assistant"
    TOOL_RESULT = "tool_result"


class Message(BaseModel):
    """A single transcript message. Tool results are sent as user turns."""
    role: MessageRole
    content: str


class TextBlock(BaseModel):
    """Text produced by the model."""
    type: Literal["text"] = "text"
    text: str


class ToolUseBlock(BaseModel):
    """A tool call requested by the model."""
    type: Literal["tool_use"] = "tool_use"
    id: str = ""
    name: str
    input: dict[str, Any] = Field(default_factory=dict)


ContentBlock = Annotated[Union[TextBlock, ToolUseBlock], Field(discriminator="type")]


class LLMResponse(BaseModel):
    """Ordered content blocks returned by the model."""
    content: list[ContentBlock] = Field(default_factory=list)
    stop_reason: Optional[str] = None
    usage: dict[str, int] = Field(default_factory=dict)

    @property
    def tool_uses(self) -> list[ToolUseBlock]:
        """Tool-use blocks in response order."""
        return [block for block in self.content if block.type == "tool_use"]

    @property
    def first_text(self) -> str:
        """Text of the first block, or an empty string if it is not text."""
        if self.content and self.content[0].type == "text":
            return self.content[0].text
        return ""


class ToolInvocationResult(BaseModel):
    """Outcome of one tool call on a provider."""
    tool_public_name: str
    arguments: dict[str, Any] = Field(default_factory=dict)
    content: list[dict[str, Any]] = Field(default_factory=list)
    is_error: bool = False

    def as_text(self) -> str:
        """Flatten result content into the text appended to the transcript."""
        parts = []
        for item in self.content:
            if item.get("type") == "text":
                parts.append(item.get("text", ""))
            else:
                parts.append(json.dumps(item, default=str))
        return "\n".join(parts)
