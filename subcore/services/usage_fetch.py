"""
Usage fetch orchestration.

WORKFLOW OVERVIEW:
==================
fetch_usage_for_provider(provider):
1. Disabled provider -> empty FetchResult, the cache is not touched
2. Last fetch younger than behavior.min_refresh_interval -> serve the stored
   entry even when forced (UI triggers such as "refresh on every tool
   result" would otherwise hammer the provider). If only the status clock
   is due, refresh the status alone.
3. Otherwise go through CacheStore.fetch_with_cache with the usage TTL

Status runs on its own clock (status_refresh.*): it is only fetched when the
provider has a status source, fetch_status is on, and the status TTL/floor
allow it. Otherwise the previously stored status is carried forward.

fetch_usage_entries(providers):
- at most min(3, n) fetches in flight
- results keep the input order; a failure in one provider becomes an
  UNKNOWN error on that provider's entry only
- "not configured" providers (no windows + expected-missing error) are
  dropped from the result
"""

import asyncio
import logging
from typing import Iterable, Optional

from ..models.cache import CacheEntry
from ..models.providers import ProviderName
from ..models.settings import CoreSettings, ProviderEnabled
from ..models.usage import FetchResult, ProviderStatus, ProviderUsageEntry, StatusIndicator, UsageSnapshot
from .cache_store import CacheStore
from .dependencies import Dependencies
from .errors import is_expected_missing_data, unknown_error
from .file_lock import now_ms
from .quota_fetchers.base import SupportsCredentialProbe, UsageProvider
from .quota_fetchers.registry import ProviderFactory, create_provider
from .status import fetch_provider_status_with_fallback, provider_has_status

logger = logging.getLogger(__name__)

MAX_CONCURRENT_FETCHES = 3


def is_reportable(usage: Optional[UsageSnapshot]) -> bool:
    """False for missing usage and for "provider not configured" snapshots."""
    if usage is None:
        return False
    return not (not usage.windows and is_expected_missing_data(usage.error))


class UsageFetchOrchestrator:
    """Decides when to hit a provider and when the cache answers instead."""

    def __init__(
        self,
        settings: CoreSettings,
        cache_store: CacheStore,
        deps: Dependencies,
        provider_factory: ProviderFactory = create_provider,
    ):
        self.settings = settings
        self.cache_store = cache_store
        self.deps = deps
        self.provider_factory = provider_factory

    # Settings-derived values

    def get_cache_ttl_ms(self) -> int:
        return self.settings.behavior.refresh_interval * 1000

    def _min_refresh_ms(self) -> int:
        return self.settings.behavior.min_refresh_interval * 1000

    def is_provider_enabled(self, provider: ProviderName) -> bool:
        """Explicit on/off wins; "auto" means enabled when credentials are present."""
        enabled = self.settings.provider(provider).enabled
        if enabled == ProviderEnabled.ENABLED:
            return True
        if enabled == ProviderEnabled.DISABLED:
            return False
        instance = self.provider_factory(provider)
        if isinstance(instance, SupportsCredentialProbe):
            return instance.has_credentials(self.deps)
        return True

    def get_enabled_providers(self) -> list[ProviderName]:
        """Enabled providers in the configured display order."""
        return [p for p in self.settings.provider_order if self.is_provider_enabled(p)]

    # Status clock

    def _status_wanted(self, provider: ProviderName, instance: UsageProvider) -> bool:
        return self.settings.provider(provider).fetch_status and provider_has_status(provider, instance)

    def _status_due(self, previous: Optional[CacheEntry], force_status: bool) -> bool:
        if previous is None or previous.status is None or previous.status_fetched_at is None:
            return True
        age = now_ms() - previous.status_fetched_at
        if age < self.settings.status_refresh.min_refresh_interval * 1000:
            return False
        if force_status:
            return True
        return age >= self.settings.status_refresh.refresh_interval * 1000

    async def _fetch_status(self, provider: ProviderName, instance: UsageProvider) -> ProviderStatus:
        try:
            return await fetch_provider_status_with_fallback(provider, instance, self.deps)
        except Exception as e:
            logger.warning("Status fetch for %s failed: %s", provider.value, e)
            return ProviderStatus(indicator=StatusIndicator.UNKNOWN)

    async def _resolve_status(
        self,
        provider: ProviderName,
        instance: UsageProvider,
        previous: Optional[CacheEntry],
        force_status: bool,
    ) -> tuple[Optional[ProviderStatus], Optional[int]]:
        """(status, status_fetched_at) for a usage fetch that is about to be stored."""
        if not self._status_wanted(provider, instance):
            return ProviderStatus(indicator=StatusIndicator.NONE), None
        if not self._status_due(previous, force_status):
            return previous.status, previous.status_fetched_at
        return await self._fetch_status(provider, instance), now_ms()

    # Single provider

    def _within_min_refresh(self, entry: Optional[CacheEntry]) -> bool:
        min_ms = self._min_refresh_ms()
        if entry is None or entry.usage is None or min_ms <= 0 or entry.fetched_at <= 0:
            return False
        return now_ms() - entry.fetched_at < min_ms

    async def fetch_usage_for_provider(
        self,
        provider: ProviderName,
        force: bool = False,
        force_status: bool = False,
    ) -> FetchResult:
        """Usage (and status) for one provider, from the cache when fresh enough."""
        if not self.is_provider_enabled(provider):
            return FetchResult()

        entry = self.cache_store.get_entry(provider)
        if self._within_min_refresh(entry):
            instance = self.provider_factory(provider)
            if self._status_wanted(provider, instance) and self._status_due(entry, force_status):
                status = await self._fetch_status(provider, instance)
                entry = await self.cache_store.update_status(provider, status)
            logger.debug("Serving %s from cache (minimum refresh interval)", provider.value)
            return FetchResult(
                usage=entry.usage,
                status=entry.status,
                status_fetched_at=entry.status_fetched_at,
            )

        async def fetch() -> FetchResult:
            instance = self.provider_factory(provider)
            usage = await instance.fetch_usage(self.deps)
            previous = self.cache_store.get_entry(provider)
            status, status_fetched_at = await self._resolve_status(provider, instance, previous, force_status)
            return FetchResult(usage=usage, status=status, status_fetched_at=status_fetched_at)

        return await self.cache_store.fetch_with_cache(
            provider,
            self.get_cache_ttl_ms(),
            fetch,
            force=force,
        )

    # Many providers

    async def fetch_usage_entries(
        self,
        providers: Optional[Iterable[ProviderName]] = None,
        force: bool = False,
    ) -> list[ProviderUsageEntry]:
        """Fetch several providers with bounded concurrency, keeping input order."""
        targets = list(providers) if providers is not None else self.get_enabled_providers()
        if not targets:
            return []

        semaphore = asyncio.Semaphore(min(MAX_CONCURRENT_FETCHES, len(targets)))

        async def fetch_with_semaphore(provider: ProviderName) -> FetchResult:
            async with semaphore:
                return await self.fetch_usage_for_provider(provider, force=force)

        results = await asyncio.gather(
            *(fetch_with_semaphore(provider) for provider in targets),
            return_exceptions=True,
        )

        entries: list[ProviderUsageEntry] = []
        for provider, result in zip(targets, results):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, BaseException):
                logger.error("Usage fetch for %s raised: %s", provider.value, result)
                usage = UsageSnapshot(
                    provider=provider,
                    display_name=provider.display_name,
                    error=unknown_error(str(result) or None),
                )
            else:
                usage = result.merged_usage()
            if is_reportable(usage):
                entries.append(ProviderUsageEntry(provider=provider, usage=usage))
        return entries

    # Cache-only view

    def get_cached_usage_entry(self, provider: ProviderName) -> Optional[ProviderUsageEntry]:
        """The fresh cached entry for ``provider``, without fetching."""
        entries = self.get_cached_usage_entries([provider])
        return entries[0] if entries else None

    def get_cached_usage_entries(
        self,
        providers: Optional[Iterable[ProviderName]] = None,
    ) -> list[ProviderUsageEntry]:
        targets = list(providers) if providers is not None else self.get_enabled_providers()
        cache = self.cache_store.read()
        entries = []
        for provider in targets:
            entry = self.cache_store.get_cached_data(provider, self.get_cache_ttl_ms(), cache)
            usage = entry.merged_usage() if entry else None
            if usage is None or (usage.error and is_expected_missing_data(usage.error)):
                continue
            entries.append(ProviderUsageEntry(provider=provider, usage=usage))
        return entries
