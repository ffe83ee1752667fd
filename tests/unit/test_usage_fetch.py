"""
Tests for UsageFetchOrchestrator
================================
"""

import asyncio

import pytest

from subcore.models.cache import CacheEntry
from subcore.models.providers import ProviderName
from subcore.models.settings import ProviderEnabled
from subcore.models.usage import ProviderStatus, StatusIndicator, UsageErrorCode
from subcore.services.errors import http_error, no_credentials
from subcore.services.file_lock import now_ms

from ..conftest import FakeProvider


class StatusProvider(FakeProvider):
    """Fake provider that also reports service status."""

    def __init__(self, name, results, indicator=StatusIndicator.MINOR):
        super().__init__(name, results)
        self.indicator = indicator
        self.status_calls = 0

    async def fetch_status(self, deps):
        self.status_calls += 1
        return ProviderStatus(indicator=self.indicator)


class TestEnablement:
    def test_explicit_switches(self, make_settings, make_orchestrator):
        settings = make_settings(enabled=[ProviderName.CODEX])
        orchestrator = make_orchestrator(settings, {})
        assert orchestrator.is_provider_enabled(ProviderName.CODEX) is True
        assert orchestrator.is_provider_enabled(ProviderName.ZAI) is False

    def test_auto_follows_credentials(self, make_settings, make_orchestrator):
        settings = make_settings()
        settings.providers[ProviderName.CODEX].enabled = ProviderEnabled.AUTO
        settings.providers[ProviderName.ZAI].enabled = ProviderEnabled.AUTO
        providers = {
            ProviderName.CODEX: FakeProvider(ProviderName.CODEX, credentials=True),
            ProviderName.ZAI: FakeProvider(ProviderName.ZAI, credentials=False),
        }
        orchestrator = make_orchestrator(settings, providers)
        assert orchestrator.get_enabled_providers() == [ProviderName.CODEX]

    def test_enabled_providers_follow_configured_order(self, make_settings, make_orchestrator):
        order = [ProviderName.ZAI, ProviderName.ANTHROPIC, ProviderName.CODEX]
        settings = make_settings(enabled=[ProviderName.CODEX, ProviderName.ZAI], order=order)
        orchestrator = make_orchestrator(settings, {})
        assert orchestrator.get_enabled_providers() == [ProviderName.ZAI, ProviderName.CODEX]

    def test_ttl_comes_from_refresh_interval(self, make_settings, make_orchestrator):
        orchestrator = make_orchestrator(make_settings(refresh_interval=45), {})
        assert orchestrator.get_cache_ttl_ms() == 45_000

    @pytest.mark.asyncio
    async def test_disabled_provider_returns_empty_result(self, make_settings, make_orchestrator, cache_store):
        provider = FakeProvider(ProviderName.CODEX)
        orchestrator = make_orchestrator(make_settings(), {ProviderName.CODEX: provider})

        result = await orchestrator.fetch_usage_for_provider(ProviderName.CODEX, force=True)

        assert result.usage is None and result.status is None
        assert provider.calls == 0
        assert not cache_store.cache_path.exists()


class TestFetchUsageForProvider:
    @pytest.mark.asyncio
    async def test_cache_hit_skips_second_fetch(self, make_settings, make_orchestrator, make_usage):
        provider = FakeProvider(ProviderName.CODEX, [make_usage(ProviderName.CODEX, (10,))])
        orchestrator = make_orchestrator(make_settings(enabled=[ProviderName.CODEX]), {ProviderName.CODEX: provider})

        await orchestrator.fetch_usage_for_provider(ProviderName.CODEX)
        result = await orchestrator.fetch_usage_for_provider(ProviderName.CODEX)

        assert provider.calls == 1
        assert result.usage.windows[0].used_percent == 10

    @pytest.mark.asyncio
    async def test_min_refresh_interval_suppresses_forced_fetch(self, make_settings, make_orchestrator, make_usage):
        provider = FakeProvider(ProviderName.CODEX, [
            make_usage(ProviderName.CODEX, (10,)),
            make_usage(ProviderName.CODEX, (20,)),
        ])
        settings = make_settings(enabled=[ProviderName.CODEX], min_refresh_interval=30)
        orchestrator = make_orchestrator(settings, {ProviderName.CODEX: provider})

        await orchestrator.fetch_usage_for_provider(ProviderName.CODEX)
        result = await orchestrator.fetch_usage_for_provider(ProviderName.CODEX, force=True)

        assert provider.calls == 1
        assert result.usage.windows[0].used_percent == 10

    @pytest.mark.asyncio
    async def test_min_refresh_serves_stale_entry(self, make_settings, make_orchestrator, make_usage, cache_store):
        settings = make_settings(enabled=[ProviderName.CODEX], min_refresh_interval=30, refresh_interval=1)
        provider = FakeProvider(ProviderName.CODEX, [make_usage(ProviderName.CODEX, (99,))])
        cache_store.put_entry(ProviderName.CODEX, CacheEntry(
            fetched_at=now_ms() - 5_000,
            usage=make_usage(ProviderName.CODEX, (10,)),
        ))
        orchestrator = make_orchestrator(settings, {ProviderName.CODEX: provider})

        result = await orchestrator.fetch_usage_for_provider(ProviderName.CODEX, force=True)

        assert provider.calls == 0
        assert result.usage.windows[0].used_percent == 10

    @pytest.mark.asyncio
    async def test_force_refetches_outside_min_interval(self, make_settings, make_orchestrator, make_usage):
        provider = FakeProvider(ProviderName.CODEX, [
            make_usage(ProviderName.CODEX, (10,)),
            make_usage(ProviderName.CODEX, (20,)),
        ])
        orchestrator = make_orchestrator(make_settings(enabled=[ProviderName.CODEX]), {ProviderName.CODEX: provider})

        await orchestrator.fetch_usage_for_provider(ProviderName.CODEX)
        result = await orchestrator.fetch_usage_for_provider(ProviderName.CODEX, force=True)

        assert provider.calls == 2
        assert result.usage.windows[0].used_percent == 20


class TestStatusClock:
    @pytest.mark.asyncio
    async def test_status_is_fetched_and_stored(self, make_settings, make_orchestrator, make_usage, cache_store):
        settings = make_settings(enabled=[ProviderName.ANTHROPIC])
        settings.providers[ProviderName.ANTHROPIC].fetch_status = True
        provider = StatusProvider(ProviderName.ANTHROPIC, [make_usage(ProviderName.ANTHROPIC, (5,))])
        orchestrator = make_orchestrator(settings, {ProviderName.ANTHROPIC: provider})

        result = await orchestrator.fetch_usage_for_provider(ProviderName.ANTHROPIC)

        assert result.status.indicator == StatusIndicator.MINOR
        assert result.merged_usage().status.indicator == StatusIndicator.MINOR
        assert cache_store.get_entry(ProviderName.ANTHROPIC).status_fetched_at is not None

    @pytest.mark.asyncio
    async def test_status_reused_within_status_ttl(self, make_settings, make_orchestrator, make_usage):
        settings = make_settings(enabled=[ProviderName.ANTHROPIC])
        settings.providers[ProviderName.ANTHROPIC].fetch_status = True
        provider = StatusProvider(ProviderName.ANTHROPIC, [make_usage(ProviderName.ANTHROPIC, (5,))])
        orchestrator = make_orchestrator(settings, {ProviderName.ANTHROPIC: provider})

        await orchestrator.fetch_usage_for_provider(ProviderName.ANTHROPIC)
        provider.indicator = StatusIndicator.CRITICAL
        result = await orchestrator.fetch_usage_for_provider(ProviderName.ANTHROPIC, force=True)

        assert provider.calls == 2
        assert provider.status_calls == 1
        assert result.status.indicator == StatusIndicator.MINOR

    @pytest.mark.asyncio
    async def test_status_only_refresh_within_min_interval(self, make_settings, make_orchestrator, make_usage, cache_store):
        settings = make_settings(enabled=[ProviderName.ANTHROPIC], min_refresh_interval=30)
        settings.providers[ProviderName.ANTHROPIC].fetch_status = True
        provider = StatusProvider(ProviderName.ANTHROPIC, [make_usage(ProviderName.ANTHROPIC, (99,))])
        usage = make_usage(ProviderName.ANTHROPIC, (5,))
        cache_store.put_entry(ProviderName.ANTHROPIC, CacheEntry(
            fetched_at=now_ms(),
            status_fetched_at=now_ms() - 600_000,
            usage=usage,
            status=ProviderStatus(indicator=StatusIndicator.NONE),
        ))
        orchestrator = make_orchestrator(settings, {ProviderName.ANTHROPIC: provider})

        result = await orchestrator.fetch_usage_for_provider(ProviderName.ANTHROPIC)

        assert provider.calls == 0
        assert provider.status_calls == 1
        assert result.usage == usage
        assert result.status.indicator == StatusIndicator.MINOR

    @pytest.mark.asyncio
    async def test_status_skipped_when_disabled(self, make_settings, make_orchestrator, make_usage):
        settings = make_settings(enabled=[ProviderName.ANTHROPIC])
        provider = StatusProvider(ProviderName.ANTHROPIC, [make_usage(ProviderName.ANTHROPIC, (5,))])
        orchestrator = make_orchestrator(settings, {ProviderName.ANTHROPIC: provider})

        result = await orchestrator.fetch_usage_for_provider(ProviderName.ANTHROPIC)

        assert provider.status_calls == 0
        assert result.status.indicator == StatusIndicator.NONE


class TestFetchUsageEntries:
    @pytest.mark.asyncio
    async def test_order_and_filtering(self, make_settings, make_orchestrator, make_usage):
        order = [ProviderName.ZAI, ProviderName.ANTHROPIC, ProviderName.CODEX, ProviderName.KIRO]
        providers = {
            ProviderName.ZAI: FakeProvider(ProviderName.ZAI, [make_usage(ProviderName.ZAI, (1,))]),
            ProviderName.ANTHROPIC: FakeProvider(
                ProviderName.ANTHROPIC, [make_usage(ProviderName.ANTHROPIC, error=no_credentials())]
            ),
            ProviderName.CODEX: FakeProvider(ProviderName.CODEX, [make_usage(ProviderName.CODEX, error=http_error(500))]),
            ProviderName.KIRO: FakeProvider(ProviderName.KIRO, [make_usage(ProviderName.KIRO, (3,))]),
        }
        orchestrator = make_orchestrator(make_settings(enabled=order, order=order), providers)

        entries = await orchestrator.fetch_usage_entries()

        assert [e.provider for e in entries] == [ProviderName.ZAI, ProviderName.CODEX, ProviderName.KIRO]
        assert entries[1].usage.error.http_status == 500
        assert all(p.calls == 1 for p in providers.values())

    @pytest.mark.asyncio
    async def test_raising_provider_does_not_affect_others(self, make_settings, make_orchestrator, make_usage):
        order = [ProviderName.CODEX, ProviderName.ZAI]
        providers = {
            ProviderName.CODEX: FakeProvider(ProviderName.CODEX, [RuntimeError("kaboom")]),
            ProviderName.ZAI: FakeProvider(ProviderName.ZAI, [make_usage(ProviderName.ZAI, (7,))]),
        }
        orchestrator = make_orchestrator(make_settings(enabled=order, order=order), providers)

        entries = await orchestrator.fetch_usage_entries(order)

        assert [e.provider for e in entries] == order
        assert entries[0].usage.error.code == UsageErrorCode.UNKNOWN
        assert entries[1].usage.windows[0].used_percent == 7

    @pytest.mark.asyncio
    async def test_at_most_three_fetches_in_flight(
        self, make_settings, make_orchestrator, make_usage, cache_store, monkeypatch
    ):
        # Every fetch gets the lock so only the worker bound limits concurrency
        monkeypatch.setattr(cache_store.lock, "try_acquire", lambda stale_after_ms: True)
        monkeypatch.setattr(cache_store.lock, "release", lambda: None)
        in_flight = 0
        peak = 0

        class SlowProvider(FakeProvider):
            async def fetch_usage(self, deps):
                nonlocal in_flight, peak
                in_flight += 1
                peak = max(peak, in_flight)
                await asyncio.sleep(0.02)
                in_flight -= 1
                return make_usage(self.name, (1,))

        order = list(ProviderName)
        providers = {name: SlowProvider(name) for name in order}
        orchestrator = make_orchestrator(make_settings(enabled=order, order=order), providers)

        entries = await orchestrator.fetch_usage_entries(order, force=True)

        assert len(entries) == len(order)
        assert peak == 3

    @pytest.mark.asyncio
    async def test_no_providers(self, make_settings, make_orchestrator):
        orchestrator = make_orchestrator(make_settings(), {})
        assert await orchestrator.fetch_usage_entries() == []


class TestCachedEntries:
    @pytest.mark.asyncio
    async def test_only_fresh_entries(self, make_settings, make_orchestrator, make_usage, cache_store):
        order = [ProviderName.CODEX, ProviderName.ZAI]
        orchestrator = make_orchestrator(make_settings(enabled=order, order=order), {})
        cache_store.put_entry(ProviderName.CODEX, CacheEntry(fetched_at=now_ms(), usage=make_usage(ProviderName.CODEX, (4,))))
        cache_store.put_entry(ProviderName.ZAI, CacheEntry(fetched_at=now_ms() - 3_600_000, usage=make_usage(ProviderName.ZAI, (4,))))

        entries = orchestrator.get_cached_usage_entries()

        assert [e.provider for e in entries] == [ProviderName.CODEX]
        assert orchestrator.get_cached_usage_entry(ProviderName.ZAI) is None
        assert orchestrator.get_cached_usage_entry(ProviderName.CODEX).usage.windows[0].used_percent == 4
