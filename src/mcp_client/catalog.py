"""Tool catalog aggregating tools across provider connections.

Maps each public tool name back to the provider and the tool's original
name. Filled during startup, read-only while prompts run.
"""

import asyncio
from typing import Any, Iterable, Optional

from shared.errors import ToolNameCollisionError, UnknownToolError
from shared.logging import get_logger
from shared.models import ToolDescriptor

logger = get_logger(__name__)


class ToolCatalog:
    """
    Registry of all tools exposed to the model.

    Responsibilities:
    - Register provider tools under collision-free public names
    - Resolve public names to (provider, original name)
    - Produce the tool list handed to the model
    """

    def __init__(self) -> None:
        self._tools: dict[str, ToolDescriptor] = {}
        self._lock = asyncio.Lock()

    async def register(
        self,
        provider_name: str,
        descriptors: Iterable[ToolDescriptor]
    ) -> None:
        """
        Add one provider's tools to the catalog.

        The registration is atomic: either every descriptor is added or,
        on a collision, none is.

        Args:
            provider_name: Provider contributing the tools
            descriptors: Tools discovered on that provider

        Raises:
            ToolNameCollisionError: If a public name is already registered
        """
        descriptors = list(descriptors)

        async with self._lock:
            batch: dict[str, ToolDescriptor] = {}
            for descriptor in descriptors:
                name = descriptor.public_name
                if descriptor.provider_name != provider_name:
                    raise ValueError(
                        f"Tool '{name}' belongs to '{descriptor.provider_name}', not '{provider_name}'"
                    )
                if name in self._tools or name in batch:
                    owner = self._tools[name].provider_name if name in self._tools else provider_name
                    raise ToolNameCollisionError(
                        f"Tool '{name}' from provider '{provider_name}' collides with "
                        f"a tool already registered by provider '{owner}'"
                    )
                batch[name] = descriptor

            self._tools.update(batch)

        logger.debug("Tools registered", provider=provider_name, count=len(descriptors))

    def resolve(self, public_name: str) -> tuple[str, str]:
        """
        Map a public tool name to its provider and original name.

        Raises:
            UnknownToolError: If the name is not registered
        """
        descriptor = self._tools.get(public_name)
        if descriptor is None:
            raise UnknownToolError(public_name)
        return descriptor.provider_name, descriptor.original_name

    def get(self, public_name: str) -> Optional[ToolDescriptor]:
        """Get a tool descriptor by public name."""
        return self._tools.get(public_name)

    def as_model_tool_list(self) -> list[dict[str, Any]]:
        """Tools in registration order, shaped for the model."""
        return [descriptor.as_model_tool() for descriptor in self._tools.values()]

    def provider_names(self) -> list[str]:
        """Providers with at least one registered tool."""
        return list(dict.fromkeys(d.provider_name for d in self._tools.values()))

    def __contains__(self, public_name: object) -> bool:
        return public_name in self._tools

    def __len__(self) -> int:
        return len(self._tools)
