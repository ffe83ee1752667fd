"""
Provider capability interfaces.

WORKFLOW OVERVIEW:
==================
Every provider (Claude, Copilot, Codex, ...) is a small object that knows
how to read its credentials and turn the provider's usage endpoint into a
UsageSnapshot.

CAPABILITIES:
- UsageProvider: required. fetch_usage(deps) never raises; every failure
  path returns a snapshot whose ``error`` is set.
- SupportsStatus: optional. fetch_status(deps) returns the service health.
- SupportsCredentialProbe: optional. has_credentials(deps) is a cheap local
  check (no network) used to decide whether an "auto" provider is enabled.

Providers hold no mutable state and do no I/O at construction time, so the
registry can build a fresh one for every fetch.
"""

import asyncio
import logging
from typing import Optional, Protocol, runtime_checkable

from ...models.providers import ProviderName
from ...models.usage import ProviderStatus, RateWindow, UsageError, UsageSnapshot
from ..dependencies import Dependencies
from ..errors import fetch_failed, timeout_error

logger = logging.getLogger(__name__)


@runtime_checkable
class UsageProvider(Protocol):
    name: ProviderName
    display_name: str

    async def fetch_usage(self, deps: Dependencies) -> UsageSnapshot:
        ...


@runtime_checkable
class SupportsStatus(Protocol):
    async def fetch_status(self, deps: Dependencies) -> ProviderStatus:
        ...


@runtime_checkable
class SupportsCredentialProbe(Protocol):
    def has_credentials(self, deps: Dependencies) -> bool:
        ...


def empty_snapshot(provider: UsageProvider, error: Optional[UsageError] = None) -> UsageSnapshot:
    """A snapshot with no windows, optionally carrying an error."""
    return UsageSnapshot(
        provider=provider.name,
        display_name=provider.display_name,
        windows=[],
        error=error,
    )


def snapshot(provider: UsageProvider, windows: list[RateWindow], **extra) -> UsageSnapshot:
    """A successful snapshot."""
    return UsageSnapshot(
        provider=provider.name,
        display_name=provider.display_name,
        windows=windows,
        **extra,
    )


def error_from_exception(provider: UsageProvider, exc: BaseException) -> UsageSnapshot:
    """Classify an exception raised while talking to a provider."""
    if isinstance(exc, asyncio.TimeoutError):
        return empty_snapshot(provider, timeout_error())
    logger.debug("%s fetch failed: %s", provider.name.value, exc)
    return empty_snapshot(provider, fetch_failed())
