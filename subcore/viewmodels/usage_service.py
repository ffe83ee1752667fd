"""
UsageService - session-level entry point.

WORKFLOW OVERVIEW:
==================
One UsageService lives per agent session. It owns the settings, the cache
store, the orchestrator and the controller, and translates session events
into refreshes.

LIFECYCLE HOOKS:
- on_session_start: reload settings, start the periodic refresh and the
  cache watcher, refresh once
- on_turn_start / on_tool_result: refresh when the behavior settings ask for it
- on_turn_end: forced refresh (the minimum refresh interval still applies)
- on_model_select / on_session_switch: forget the selection, refresh
- on_shutdown: stop background tasks, drop cache listeners

ACTIONS (handle_action):
- {"type": "refresh", "force": bool}
- {"type": "cycleProvider"}
- {"type": "pinProvider", "provider": name}

UPDATES:
Subscribers to register_update_callback() get the current {provider, usage}
whenever it changes; identical consecutive payloads are sent once.
Subscribers to register_entries_callback() get every fresh cached entry when
another process (or this one) writes the cache.
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional

from ..models.cache import Cache, CacheEntry
from ..models.providers import ProviderName
from ..models.settings import CoreSettings
from ..models.usage import ProviderUsageEntry
from ..services.cache_store import CacheStore, CacheWatcher
from ..services.dependencies import Dependencies, create_default_dependencies
from ..services.errors import is_expected_missing_data
from ..services.file_lock import FileLock, now_ms
from ..services.quota_fetchers.registry import ProviderFactory, create_provider
from ..services.usage_fetch import UsageFetchOrchestrator
from ..utils.paths import CorePaths
from ..utils.settings import SettingsManager
from .usage_controller import UsageController, UsageUpdate, UsageUpdateCallback

logger = logging.getLogger(__name__)

EntriesCallback = Callable[[Optional[ProviderName], List[ProviderUsageEntry]], None]


@dataclass
class UsageService:
    """Wires settings, cache, orchestrator and controller for one session."""

    paths: CorePaths = field(default_factory=CorePaths.default)
    deps: Dependencies = field(default_factory=create_default_dependencies)
    provider_factory: ProviderFactory = create_provider
    watch_cache: bool = True

    settings_manager: SettingsManager = field(init=False, repr=False)
    cache_store: CacheStore = field(init=False, repr=False)
    orchestrator: UsageFetchOrchestrator = field(init=False, repr=False)
    controller: UsageController = field(init=False, repr=False)
    last_update: UsageUpdate = field(default_factory=UsageUpdate, init=False)

    _model: Any = field(default=None, init=False, repr=False)
    _refresh_task: Optional[asyncio.Task] = field(default=None, init=False, repr=False)
    _watcher: Optional[CacheWatcher] = field(default=None, init=False, repr=False)
    _unsubscribers: List[Callable[[], None]] = field(default_factory=list, init=False, repr=False)
    _update_callbacks: List[UsageUpdateCallback] = field(default_factory=list, init=False, repr=False)
    _entries_callbacks: List[EntriesCallback] = field(default_factory=list, init=False, repr=False)
    _last_current_payload: str = field(default="", init=False, repr=False)
    _last_entries_payload: str = field(default="", init=False, repr=False)

    def __post_init__(self):
        self.settings_manager = SettingsManager(self.paths.settings_path)
        self.cache_store = CacheStore(self.paths.cache_path, FileLock(self.paths.lock_path))
        self.orchestrator = UsageFetchOrchestrator(
            self._load_settings(),
            self.cache_store,
            self.deps,
            provider_factory=self.provider_factory,
        )
        self.controller = UsageController(self.orchestrator)
        self.controller.register_update_callback(self._emit_current)
        self._subscribe_cache()

    # Settings

    @property
    def settings(self) -> CoreSettings:
        return self.orchestrator.settings

    def _load_settings(self) -> CoreSettings:
        settings = self.settings_manager.load()
        if self.settings_manager.migrated:
            logger.info("Settings format changed; clearing usage cache")
            self.cache_store.clear()
        return settings

    def reload_settings(self) -> CoreSettings:
        self.orchestrator.settings = self._load_settings()
        return self.orchestrator.settings

    def apply_settings_patch(self, patch: dict[str, Any]) -> CoreSettings:
        """Merge ``patch`` into the stored settings and restart the refresh timer."""
        self.orchestrator.settings = self.settings_manager.apply_patch(patch)
        if self._refresh_task is not None:
            self._start_refresh_loop()
        return self.orchestrator.settings

    # Subscribers

    def register_update_callback(self, callback: UsageUpdateCallback) -> None:
        if callback not in self._update_callbacks:
            self._update_callbacks.append(callback)

    def unregister_update_callback(self, callback: UsageUpdateCallback) -> None:
        if callback in self._update_callbacks:
            self._update_callbacks.remove(callback)

    def register_entries_callback(self, callback: EntriesCallback) -> None:
        if callback not in self._entries_callbacks:
            self._entries_callbacks.append(callback)

    def unregister_entries_callback(self, callback: EntriesCallback) -> None:
        if callback in self._entries_callbacks:
            self._entries_callbacks.remove(callback)

    def _emit_current(self, update: UsageUpdate) -> None:
        self.last_update = update
        payload = json.dumps(update.to_wire(), sort_keys=True)
        if payload == self._last_current_payload:
            return
        self._last_current_payload = payload
        for callback in list(self._update_callbacks):
            try:
                callback(update)
            except Exception:
                logger.exception("Usage update subscriber failed")

    def _emit_entries(self, entries: List[ProviderUsageEntry]) -> None:
        provider = self.controller.state.current_provider
        payload = json.dumps({
            "provider": provider.value if provider else None,
            "entries": [entry.to_wire() for entry in entries],
        }, sort_keys=True)
        if payload == self._last_entries_payload:
            return
        self._last_entries_payload = payload
        for callback in list(self._entries_callbacks):
            try:
                callback(provider, entries)
            except Exception:
                logger.exception("Usage entries subscriber failed")

    # Cache listeners

    def _subscribe_cache(self) -> None:
        self._unsubscribers.append(self.cache_store.on_cache_update(self._on_cache_update))
        self._unsubscribers.append(self.cache_store.on_cache_snapshot(self._on_cache_snapshot))

    def _on_cache_update(self, provider: ProviderName, entry: Optional[CacheEntry]) -> None:
        state = self.controller.state
        if state.current_provider is None or provider != state.current_provider:
            return
        state.cached_usage = entry.merged_usage() if entry is not None else None
        self._emit_current(UsageUpdate(provider=provider, usage=state.cached_usage))

    def _on_cache_snapshot(self, cache: Cache) -> None:
        ttl_ms = self.orchestrator.get_cache_ttl_ms()
        now = now_ms()
        entries = []
        for provider in self.settings.provider_order:
            entry = cache.get(provider.value)
            if entry is None or entry.usage is None or now - entry.fetched_at >= ttl_ms:
                continue
            usage = entry.merged_usage()
            if usage.error and is_expected_missing_data(usage.error):
                continue
            entries.append(ProviderUsageEntry(provider=provider, usage=usage))
        self._emit_entries(entries)

    # Background tasks

    async def _refresh_loop(self, interval_seconds: int) -> None:
        while True:
            await asyncio.sleep(interval_seconds)
            try:
                await self.refresh()
            except Exception:
                logger.exception("Periodic usage refresh failed")

    def _start_refresh_loop(self) -> None:
        self._stop_refresh_loop()
        interval = self.settings.behavior.refresh_interval
        if interval > 0:
            self._refresh_task = asyncio.get_running_loop().create_task(self._refresh_loop(interval))

    def _stop_refresh_loop(self) -> None:
        if self._refresh_task is not None:
            self._refresh_task.cancel()
            self._refresh_task = None

    # Actions

    async def refresh(self, force: bool = False) -> UsageUpdate:
        """Refresh the current provider for the last seen model."""
        return await self.controller.refresh(self._model, force=force)

    async def cycle_provider(self) -> UsageUpdate:
        return await self.controller.cycle_provider()

    async def pin_provider(self, provider: Optional[ProviderName]) -> UsageUpdate:
        """Pin ``provider`` (None unpins) and force a refresh."""
        self._reset_selection()
        self.controller.pin_provider(provider)
        return await self.refresh(force=True)

    async def handle_action(self, action: dict[str, Any]) -> Optional[UsageUpdate]:
        """Dispatch an action payload from another component."""
        action_type = action.get("type")
        if action_type == "refresh":
            return await self.refresh(force=bool(action.get("force")))
        if action_type == "cycleProvider":
            return await self.cycle_provider()
        if action_type == "pinProvider":
            provider = action.get("provider")
            return await self.pin_provider(ProviderName(provider) if provider else None)
        logger.warning("Ignoring unknown action %r", action_type)
        return None

    def get_state(self) -> UsageUpdate:
        """The last update sent to subscribers."""
        return self.last_update

    async def get_entries(self, force: bool = False) -> List[ProviderUsageEntry]:
        """Usage for every enabled provider; fetched when forced, cached otherwise."""
        providers = self.orchestrator.get_enabled_providers()
        if not providers:
            return []
        if force:
            return await self.orchestrator.fetch_usage_entries(providers, force=True)
        return self.orchestrator.get_cached_usage_entries(providers)

    # Session hooks

    def _reset_selection(self) -> None:
        self.controller.state.clear()

    async def on_session_start(self, model: Any = None) -> UsageUpdate:
        self._model = model
        self.reload_settings()
        self._start_refresh_loop()
        if self.watch_cache and self._watcher is None:
            self._watcher = CacheWatcher(self.cache_store)
            self._watcher.start()
        return await self.refresh()

    async def on_turn_start(self, model: Any = None) -> Optional[UsageUpdate]:
        if model is not None:
            self._model = model
        if self.settings.behavior.refresh_on_turn_start:
            return await self.refresh()
        return None

    async def on_tool_result(self) -> Optional[UsageUpdate]:
        if self.settings.behavior.refresh_on_tool_result:
            return await self.refresh(force=True)
        return None

    async def on_turn_end(self) -> UsageUpdate:
        return await self.refresh(force=True)

    async def on_model_select(self, model: Any) -> UsageUpdate:
        self._model = model
        self._reset_selection()
        return await self.refresh(force=True)

    async def on_session_switch(self, model: Any = None) -> UsageUpdate:
        if model is not None:
            self._model = model
        self._reset_selection()
        return await self.refresh()

    async def on_shutdown(self) -> None:
        self._stop_refresh_loop()
        if self._watcher is not None:
            await self._watcher.stop()
            self._watcher = None
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()
        self._model = None
