"""Provider registry: builds provider objects by name."""

from typing import Callable

from ...models.providers import ProviderName
from ..dependencies import Dependencies
from .antigravity import AntigravityUsageProvider
from .base import SupportsCredentialProbe, UsageProvider
from .claude import ClaudeUsageProvider
from .codex import CodexUsageProvider
from .copilot import CopilotUsageProvider
from .gemini import GeminiUsageProvider
from .kiro import KiroUsageProvider
from .zai import ZaiUsageProvider

ProviderFactory = Callable[[ProviderName], UsageProvider]

PROVIDER_CLASSES: dict[ProviderName, type] = {
    ProviderName.ANTHROPIC: ClaudeUsageProvider,
    ProviderName.COPILOT: CopilotUsageProvider,
    ProviderName.ANTIGRAVITY: AntigravityUsageProvider,
    ProviderName.GEMINI: GeminiUsageProvider,
    ProviderName.CODEX: CodexUsageProvider,
    ProviderName.KIRO: KiroUsageProvider,
    ProviderName.ZAI: ZaiUsageProvider,
}


def create_provider(name: ProviderName) -> UsageProvider:
    """Build a fresh provider object.

    Raises:
        ValueError: ``name`` is not a known provider.
    """
    try:
        provider_class = PROVIDER_CLASSES[ProviderName(name)]
    except (KeyError, ValueError):
        raise ValueError(f"Unknown provider: {name}") from None
    return provider_class()


def get_all_providers() -> list[UsageProvider]:
    """One provider object per known provider, in registration order."""
    return [create_provider(name) for name in ProviderName]


def has_provider_credentials(name: ProviderName, deps: Dependencies) -> bool:
    """Cheap local credential check; True when the provider has no probe."""
    provider = create_provider(name)
    if isinstance(provider, SupportsCredentialProbe):
        return provider.has_credentials(deps)
    return True
