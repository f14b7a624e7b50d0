"""Configuration management for the tool orchestrator.

Settings come from an optional YAML file with environment variable
overrides. The provider list lives in its own file using the common
``mcpServers`` layout and is loaded separately.
"""

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from shared.errors import ConfigurationError
from shared.models import ProviderSpec


class LLMSettings(BaseSettings):
    """Language model configuration."""
    provider: str = Field(default="anthropic", description="LLM provider: anthropic, openai, openai_like, mock")
    model: str = Field(default="claude-sonnet-4-5", description="Model name")
    api_key: Optional[str] = Field(default=None, description="API key")
    api_base: Optional[str] = Field(default=None, description="API base URL")
    max_tokens: int = Field(default=1000, gt=0)
    timeout_seconds: Optional[float] = Field(default=120.0, gt=0, description="Deadline per model call")
    context_window: int = Field(default=131072, gt=0, description="Context size for openai_like endpoints")

    model_config = SettingsConfigDict(
        env_prefix="LLM_",
        env_file=".env",
        extra="ignore"
    )


class OrchestratorSettings(BaseSettings):
    """Orchestrator and HTTP front end configuration."""
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=3000)
    api_key: Optional[str] = Field(default=None, description="Expected X-API-Key header value")
    providers_path: str = Field(default="config.json")

    # Deadlines
    connect_timeout_seconds: Optional[float] = Field(default=30.0, gt=0)
    tool_timeout_seconds: Optional[float] = Field(default=60.0, gt=0)

    model_config = SettingsConfigDict(
        env_prefix="ORCHESTRATOR_",
        env_file=".env",
        extra="ignore"
    )


class Settings(BaseSettings):
    """Main application settings."""
    environment: str = Field(default="development")
    log_level: str = Field(default="INFO")

    llm: LLMSettings = Field(default_factory=LLMSettings)
    orchestrator: OrchestratorSettings = Field(default_factory=OrchestratorSettings)

    model_config = SettingsConfigDict(
        env_prefix="MCP_",
        env_file=".env",
        extra="ignore"
    )

    @classmethod
    def from_yaml(cls, path: str | Path) -> "Settings":
        """Load settings from a YAML file, falling back to defaults."""
        path = Path(path)
        if not path.exists():
            return cls()

        with open(path) as f:
            data = yaml.safe_load(f) or {}

        return cls(**data)


def load_yaml_config(path: str | Path) -> dict[str, Any]:
    """Load a YAML (or JSON) mapping from disk."""
    path = Path(path)
    if not path.exists():
        raise ConfigurationError(f"Configuration file not found: {path}")

    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Cannot parse {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigurationError(f"Expected a mapping at the top of {path}")
    return data


def parse_provider_specs(data: dict[str, Any]) -> list[ProviderSpec]:
    """
    Build provider specs from an ``mcpServers`` mapping.

    Args:
        data: Parsed configuration with an ``mcpServers`` key

    Returns:
        Provider specs in file order

    Raises:
        ConfigurationError: If the mapping is missing or an entry is invalid
    """
    servers = data.get("mcpServers")
    if not isinstance(servers, dict):
        raise ConfigurationError("Configuration must contain an 'mcpServers' mapping")

    specs = []
    for name, entry in servers.items():
        if not isinstance(entry, dict):
            raise ConfigurationError(f"Provider '{name}' must be a mapping")
        try:
            specs.append(ProviderSpec(name=name, **entry))
        except (ValidationError, TypeError) as e:
            raise ConfigurationError(f"Invalid provider '{name}': {e}") from e

    return specs


def load_provider_specs(path: str | Path) -> list[ProviderSpec]:
    """Load provider specs from a JSON or YAML provider file."""
    return parse_provider_specs(load_yaml_config(path))


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings."""
    config_path = os.environ.get("MCP_CONFIG_PATH", "config/settings.yaml")
    return Settings.from_yaml(config_path)
