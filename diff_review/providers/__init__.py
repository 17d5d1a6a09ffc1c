"""AI provider boundary: protocol, registry and built-in providers."""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from typing import Protocol

from diff_review.chunk_builder import ReviewChunk
from diff_review.config import AppConfig, ConfigError
from diff_review.providers.base import (
    LLMProvider,
    ProviderError,
    build_prompt,
    extract_findings_from_text,
    merge_additional_prompts,
)
from diff_review.providers.mock import MockProvider
from diff_review.rules.base import Finding


class AIProvider(Protocol):
    """Anything that reviews chunks and returns findings without mutating its input."""

    name: str

    def review_chunks(self, chunks: Sequence[ReviewChunk]) -> list[Finding]:
        """Review token-budgeted chunks and return findings."""


ProviderFactory = Callable[[AppConfig], AIProvider]


class ProviderRegistry:
    """Named provider factories; each caller owns its own registry."""

    def __init__(self, factories: Mapping[str, ProviderFactory] | None = None) -> None:
        self._factories: dict[str, ProviderFactory] = {}
        for name, factory in (factories or {}).items():
            self.register(name, factory)

    def register(self, name: str, factory: ProviderFactory) -> None:
        """Make a provider constructible by name from configuration."""
        self._factories[name.strip().lower()] = factory

    def names(self) -> list[str]:
        return sorted(self._factories)

    def build(self, name: str, config: AppConfig) -> AIProvider:
        provider_name = name.strip().lower()
        factory = self._factories.get(provider_name)
        if factory is None:
            choices = ", ".join(self.names())
            raise ConfigError(f"Unknown provider: {provider_name} (available: {choices})")
        return factory(config)


def default_registry() -> ProviderRegistry:
    """A fresh registry holding the built-in providers."""
    return ProviderRegistry({"mock": lambda config: MockProvider()})


def build_provider(
    config: AppConfig,
    override: AIProvider | None = None,
    *,
    name: str | None = None,
    registry: ProviderRegistry | None = None,
) -> AIProvider:
    """Return ``override`` when given, else the provider named by ``name`` or config."""
    if override is not None:
        return override
    providers = registry if registry is not None else default_registry()
    return providers.build(name or config.provider, config)


__all__ = [
    "AIProvider",
    "LLMProvider",
    "MockProvider",
    "ProviderError",
    "ProviderFactory",
    "ProviderRegistry",
    "build_prompt",
    "build_provider",
    "default_registry",
    "extract_findings_from_text",
    "merge_additional_prompts",
]
