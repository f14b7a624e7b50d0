"""Orchestrator - Model/tool conversation loop.

Connects the tool providers, supplies their tools to the model, runs the
tool calls it requests and returns the answer.
"""

from orchestrator.llm import LLMProvider, create_llm_provider
from orchestrator.conversation import ConversationEngine
from orchestrator.gateway import Orchestrator

__all__ = [
    "LLMProvider",
    "create_llm_provider",
    "ConversationEngine",
    "Orchestrator",
]
