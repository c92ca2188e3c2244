"""Extraction agent and provider implementations."""

from ad_intake.pipeline.agents.base import (
    AgentConfigurationError,
    AgentId,
    ExtractionProvider,
    ProviderKind,
    UnknownAgentError,
)
from ad_intake.pipeline.agents.dispatcher import ExtractionAgent
from ad_intake.pipeline.agents.providers import GeminiProvider, OpenRouterProvider

__all__ = [
    "AgentConfigurationError",
    "AgentId",
    "ExtractionAgent",
    "ExtractionProvider",
    "GeminiProvider",
    "OpenRouterProvider",
    "ProviderKind",
    "UnknownAgentError",
]
