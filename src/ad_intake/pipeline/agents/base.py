"""Provider identifiers and the interface implemented by extraction providers."""

from __future__ import annotations

from enum import Enum
from typing import Protocol


class AgentId(str, Enum):
    """Provider identifiers accepted on submission."""

    CHATGPT = "chatgpt"
    OPENROUTER = "openrouter"
    GEMINI = "gemini"


class ProviderKind(str, Enum):
    """Concrete providers that serve extraction requests."""

    OPENROUTER = "openrouter"
    GEMINI = "gemini"


# Every AgentId must appear here; test_agents checks the mapping is exhaustive.
AGENT_PROVIDERS: dict[AgentId, ProviderKind] = {
    AgentId.CHATGPT: ProviderKind.OPENROUTER,
    AgentId.OPENROUTER: ProviderKind.OPENROUTER,
    AgentId.GEMINI: ProviderKind.GEMINI,
}

SUPPORTED_AGENTS = tuple(agent.value for agent in AgentId)


class UnknownAgentError(ValueError):
    """Raised for an agent identifier outside the supported set."""

    def __init__(self, agent: str) -> None:
        super().__init__(f"Invalid agent: {agent}")
        self.agent = agent


class AgentConfigurationError(RuntimeError):
    """Raised when a provider is selected but its credentials are missing."""


class ExtractionProvider(Protocol):
    """Protocol implemented by provider clients."""

    label: str

    def complete(self, prompt: str) -> str:
        """Send the prompt and return the raw textual answer."""


def parse_agent_id(agent: str) -> AgentId:
    try:
        return AgentId(agent)
    except ValueError as error:
        raise UnknownAgentError(agent) from error


def resolve_provider_kind(agent: str) -> ProviderKind:
    """Map a submitted identifier to the provider that serves it."""

    return AGENT_PROVIDERS[parse_agent_id(agent)]
