"""Extraction agent: provider selection plus answer interpretation."""

from __future__ import annotations

from collections.abc import Mapping

from ad_intake.config import AgentSettings
from ad_intake.pipeline.agents.base import (
    ExtractionProvider,
    ProviderKind,
    resolve_provider_kind,
)
from ad_intake.pipeline.agents.interpretation import interpret_response, strip_code_fences
from ad_intake.pipeline.agents.prompts import build_extraction_prompt
from ad_intake.pipeline.agents.providers import GeminiProvider, OpenRouterProvider
from ad_intake.pipeline.models import ExtractionOutcome


class ExtractionAgent:
    """Routes one request to its provider and interprets the answer."""

    def __init__(self, providers: Mapping[ProviderKind, ExtractionProvider]) -> None:
        missing = [kind.value for kind in ProviderKind if kind not in providers]
        if missing:
            raise ValueError(f"Missing extraction providers: {', '.join(missing)}")
        self.providers = dict(providers)

    @classmethod
    def from_settings(cls, settings: AgentSettings) -> ExtractionAgent:
        return cls(
            {
                ProviderKind.OPENROUTER: OpenRouterProvider(
                    api_key=settings.openrouter_api_key,
                    model=settings.openrouter_model,
                    timeout_seconds=settings.timeout_seconds,
                ),
                ProviderKind.GEMINI: GeminiProvider(
                    api_key=settings.google_api_key,
                    model=settings.gemini_model,
                    timeout_seconds=settings.timeout_seconds,
                ),
            },
        )

    def extract(self, agent: str, text: str) -> ExtractionOutcome:
        """Run one extraction.

        Raises:
            UnknownAgentError: ``agent`` is not a supported identifier.
            AgentConfigurationError: the provider has no API key.
            httpx.HTTPError: transport failure or error status from the provider.
        """

        provider = self.providers[resolve_provider_kind(agent)]
        raw = provider.complete(build_extraction_prompt(text))
        return interpret_response(
            strip_code_fences(raw),
            original_text=text,
            provider_label=provider.label,
        )

    def close(self) -> None:
        for provider in self.providers.values():
            close = getattr(provider, "close", None)
            if close is not None:
                close()
