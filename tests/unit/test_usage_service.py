"""
Tests for UsageService
======================

Session hooks, action dispatch, subscriber de-duplication and cache
listeners, using fake providers and a temporary config directory.
"""

import json

import pytest

from subcore.models.cache import CacheEntry
from subcore.models.providers import ProviderName
from subcore.models.settings import SETTINGS_VERSION
from subcore.services.file_lock import now_ms
from subcore.viewmodels.usage_controller import UsageUpdate
from subcore.viewmodels.usage_service import UsageService

from ..conftest import FakeProvider

CLAUDE_MODEL = {"provider": "anthropic", "id": "claude-opus-4"}


def write_settings(core_paths, enabled, version=SETTINGS_VERSION, **behavior):
    core_paths.ensure_dirs()
    providers = {
        name.value: {"enabled": "on" if name in enabled else "off", "fetchStatus": False}
        for name in ProviderName
    }
    core_paths.settings_path.write_text(json.dumps({
        "version": version,
        "providers": providers,
        "behavior": {"minRefreshInterval": 0, **behavior},
    }))


@pytest.fixture
def providers(make_usage):
    return {
        ProviderName.ANTHROPIC: FakeProvider(ProviderName.ANTHROPIC, [make_usage(ProviderName.ANTHROPIC, (20,))]),
        ProviderName.CODEX: FakeProvider(ProviderName.CODEX, [make_usage(ProviderName.CODEX, (60,))]),
    }


@pytest.fixture
def make_service(core_paths, deps, providers):
    def _make(enabled=(ProviderName.ANTHROPIC, ProviderName.CODEX), **behavior):
        write_settings(core_paths, enabled, **behavior)
        service = UsageService(
            paths=core_paths,
            deps=deps,
            provider_factory=lambda name: providers[name],
            watch_cache=False,
        )
        return service

    return _make


# ============================================================================
# Subscribers
# ============================================================================

class TestSubscribers:
    def test_identical_updates_are_sent_once(self, make_service, make_usage):
        service = make_service()
        received = []
        service.register_update_callback(received.append)
        update = UsageUpdate(provider=ProviderName.CODEX, usage=make_usage(ProviderName.CODEX, (1,)))

        service._emit_current(update)
        service._emit_current(update)

        assert received == [update]
        assert service.get_state() == update

    def test_unregistered_callback_is_not_called(self, make_service, make_usage):
        service = make_service()
        received = []
        service.register_update_callback(received.append)
        service.unregister_update_callback(received.append)
        service._emit_current(UsageUpdate(provider=ProviderName.CODEX))
        assert received == []

    @pytest.mark.asyncio
    async def test_cache_write_for_current_provider_is_forwarded(self, make_service, make_usage):
        service = make_service()
        await service.on_session_start(CLAUDE_MODEL)
        received = []
        service.register_update_callback(received.append)

        service.cache_store.put_entry(ProviderName.ANTHROPIC, CacheEntry(
            fetched_at=now_ms(), usage=make_usage(ProviderName.ANTHROPIC, (90,)),
        ))
        service.cache_store.put_entry(ProviderName.CODEX, CacheEntry(
            fetched_at=now_ms(), usage=make_usage(ProviderName.CODEX, (1,)),
        ))

        assert [u.provider for u in received] == [ProviderName.ANTHROPIC]
        assert received[0].usage.windows[0].used_percent == 90
        await service.on_shutdown()

    def test_entries_callback_gets_fresh_entries(self, make_service, make_usage):
        service = make_service()
        batches = []
        service.register_entries_callback(lambda provider, entries: batches.append(entries))

        service.cache_store.put_entry(ProviderName.CODEX, CacheEntry(
            fetched_at=now_ms(), usage=make_usage(ProviderName.CODEX, (5,)),
        ))

        assert [e.provider for e in batches[-1]] == [ProviderName.CODEX]


# ============================================================================
# Actions
# ============================================================================

class TestActions:
    @pytest.mark.asyncio
    async def test_pin_provider_action(self, make_service, providers):
        service = make_service()
        await service.on_session_start(CLAUDE_MODEL)

        update = await service.handle_action({"type": "pinProvider", "provider": "codex"})

        assert update.provider == ProviderName.CODEX
        assert service.controller.state.pinned_provider == ProviderName.CODEX
        assert providers[ProviderName.CODEX].calls == 1
        await service.on_shutdown()

    @pytest.mark.asyncio
    async def test_refresh_action(self, make_service, providers):
        service = make_service()
        await service.on_session_start(CLAUDE_MODEL)
        update = await service.handle_action({"type": "refresh", "force": True})
        assert update.provider == ProviderName.ANTHROPIC
        assert providers[ProviderName.ANTHROPIC].calls == 2
        await service.on_shutdown()

    @pytest.mark.asyncio
    async def test_unknown_action_is_ignored(self, make_service):
        service = make_service()
        assert await service.handle_action({"type": "explode"}) is None

    @pytest.mark.asyncio
    async def test_get_entries(self, make_service, providers):
        service = make_service()

        fetched = await service.get_entries(force=True)
        cached = await service.get_entries()

        assert [e.provider for e in fetched] == [ProviderName.ANTHROPIC, ProviderName.CODEX]
        assert [e.provider for e in cached] == [ProviderName.ANTHROPIC, ProviderName.CODEX]
        assert providers[ProviderName.CODEX].calls == 1

    @pytest.mark.asyncio
    async def test_get_entries_without_enabled_providers(self, make_service):
        service = make_service(enabled=())
        assert await service.get_entries(force=True) == []


# ============================================================================
# Session hooks
# ============================================================================

class TestSessionHooks:
    @pytest.mark.asyncio
    async def test_session_start_refreshes_and_shutdown_stops(self, make_service):
        service = make_service()

        update = await service.on_session_start(CLAUDE_MODEL)

        assert update.provider == ProviderName.ANTHROPIC
        assert update.usage.windows[0].used_percent == 20
        assert service._refresh_task is not None

        await service.on_shutdown()
        assert service._refresh_task is None

    @pytest.mark.asyncio
    async def test_zero_interval_disables_periodic_refresh(self, make_service):
        service = make_service(refreshInterval=0)
        await service.on_session_start(CLAUDE_MODEL)
        assert service._refresh_task is None

    @pytest.mark.asyncio
    async def test_tool_result_refresh_follows_settings(self, make_service, providers):
        service = make_service()
        await service.on_session_start(CLAUDE_MODEL)
        assert await service.on_tool_result() is None

        service.apply_settings_patch({"behavior": {"refreshOnToolResult": True}})
        update = await service.on_tool_result()
        assert update.provider == ProviderName.ANTHROPIC
        assert providers[ProviderName.ANTHROPIC].calls == 2
        await service.on_shutdown()

    @pytest.mark.asyncio
    async def test_model_select_switches_provider(self, make_service):
        service = make_service()
        await service.on_session_start(CLAUDE_MODEL)
        update = await service.on_model_select({"provider": "openai-codex", "id": "gpt-5"})
        assert update.provider == ProviderName.CODEX
        await service.on_shutdown()

    def test_settings_migration_clears_cache(self, core_paths, cache_store, deps, providers, make_usage):
        cache_store.put_entry(ProviderName.CODEX, CacheEntry(
            fetched_at=now_ms(), usage=make_usage(ProviderName.CODEX, (5,)),
        ))
        write_settings(core_paths, [ProviderName.CODEX], version=1)

        service = UsageService(
            paths=core_paths,
            deps=deps,
            provider_factory=lambda name: providers[name],
            watch_cache=False,
        )

        assert not core_paths.cache_path.exists()
        assert service.settings.version == SETTINGS_VERSION
