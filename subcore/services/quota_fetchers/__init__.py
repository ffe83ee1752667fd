"""Per-provider usage fetchers."""

from .base import SupportsCredentialProbe, SupportsStatus, UsageProvider
from .detection import detect_provider_from_model
from .registry import (
    PROVIDER_CLASSES,
    ProviderFactory,
    create_provider,
    get_all_providers,
    has_provider_credentials,
)

__all__ = [
    "UsageProvider",
    "SupportsStatus",
    "SupportsCredentialProbe",
    "detect_provider_from_model",
    "PROVIDER_CLASSES",
    "ProviderFactory",
    "create_provider",
    "get_all_providers",
    "has_provider_credentials",
]
