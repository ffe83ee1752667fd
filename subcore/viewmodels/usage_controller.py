"""
UsageController - provider selection and refresh state for one session.

WORKFLOW OVERVIEW:
==================
The controller decides which provider the session is showing and keeps the
snapshot that is currently on screen. Subscribers registered with
register_update_callback() receive a UsageUpdate after every transition.

KEY WORKFLOWS:
1. Resolve:
   pinned provider > default provider > provider detected from the model
   (when auto-detect is on) > none. Each candidate must be enabled.

2. Refresh:
   - no provider: state is cleared and an empty update is emitted
   - provider changed: the old snapshot is dropped first
   - an optimistic update is emitted from whatever the cache holds
   - the fetch runs through the orchestrator and a second update follows
   - a real failure (not "provider not configured") keeps the last good
     windows on screen, tagged with the new error and a minor
     "Fetch failed" status

3. Cycle:
   Walks the enabled providers starting after the current one and pins
   the first that yields usable data. If none does, pinning and the
   current provider are cleared.

Subscribers get two updates per refresh; the second one is authoritative.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional

from ..models.providers import ProviderName
from ..models.usage import ProviderStatus, StatusIndicator, UsageSnapshot
from ..services.errors import is_expected_missing_data, unknown_error
from ..services.quota_fetchers.detection import detect_provider_from_model
from ..services.usage_fetch import UsageFetchOrchestrator

logger = logging.getLogger(__name__)

FETCH_FAILED_STATUS = ProviderStatus(indicator=StatusIndicator.MINOR, description="Fetch failed")


@dataclass
class UsageControllerState:
    """What the session is currently showing."""
    current_provider: Optional[ProviderName] = None
    cached_usage: Optional[UsageSnapshot] = None
    pinned_provider: Optional[ProviderName] = None
    # -1 means "nothing cycled yet", so the first cycle starts at the first provider
    provider_cycle_index: int = -1

    def clear(self) -> None:
        self.current_provider = None
        self.cached_usage = None
        self.pinned_provider = None


@dataclass(frozen=True)
class UsageUpdate:
    """Payload sent to subscribers."""
    provider: Optional[ProviderName] = None
    usage: Optional[UsageSnapshot] = None

    def to_wire(self) -> dict:
        return {
            "provider": self.provider.value if self.provider else None,
            "usage": self.usage.to_wire() if self.usage else None,
        }


UsageUpdateCallback = Callable[[UsageUpdate], None]


def is_usage_available(usage: Optional[UsageSnapshot]) -> bool:
    """True when the snapshot is worth showing: windows, or a real error."""
    if usage is None:
        return False
    if usage.windows:
        return True
    if usage.error is None:
        return False
    return not is_expected_missing_data(usage.error)


@dataclass
class UsageController:
    """
    Per-session usage state.

    Fetching and caching are delegated to the UsageFetchOrchestrator; this
    class only chooses the provider and decides what to display.
    """

    orchestrator: UsageFetchOrchestrator
    state: UsageControllerState = field(default_factory=UsageControllerState)

    _update_callbacks: List[UsageUpdateCallback] = field(default_factory=list, init=False, repr=False)

    def register_update_callback(self, callback: UsageUpdateCallback) -> None:
        """Register a callback to be called after every state transition."""
        if callback not in self._update_callbacks:
            self._update_callbacks.append(callback)

    def unregister_update_callback(self, callback: UsageUpdateCallback) -> None:
        if callback in self._update_callbacks:
            self._update_callbacks.remove(callback)

    def _notify_update(self) -> UsageUpdate:
        update = UsageUpdate(provider=self.state.current_provider, usage=self.state.cached_usage)
        for callback in list(self._update_callbacks):
            try:
                callback(update)
            except Exception:
                logger.exception("Usage update callback failed")
        return update

    @property
    def settings(self):
        return self.orchestrator.settings

    @property
    def cache_store(self):
        return self.orchestrator.cache_store

    def resolve_provider(self, model: Any = None) -> Optional[ProviderName]:
        """Pick the provider to show for ``model``; None when nothing qualifies."""
        is_enabled = self.orchestrator.is_provider_enabled

        pinned = self.state.pinned_provider
        if pinned is not None and is_enabled(pinned):
            return pinned

        default = self.settings.default_provider
        if default is not None and is_enabled(default):
            return default

        if self.settings.behavior.auto_detect_provider:
            detected = detect_provider_from_model(model)
            if detected is not None and is_enabled(detected):
                return detected
        return None

    def pin_provider(self, provider: Optional[ProviderName]) -> None:
        """Pin ``provider`` (None unpins); takes effect on the next refresh."""
        self.state.pinned_provider = provider

    def _last_good_usage(self, provider: ProviderName) -> Optional[UsageSnapshot]:
        entry = self.cache_store.get_entry(provider)
        usage = self.state.cached_usage
        if usage is None or usage.provider != provider or not usage.windows:
            if entry is None or entry.usage is None or not entry.usage.windows:
                return None
            usage = entry.merged_usage()
        if usage.last_success_at is None and entry is not None and entry.fetched_at:
            usage = usage.model_copy(update={"last_success_at": entry.fetched_at})
        return usage

    async def _fetch_merged(self, provider: ProviderName, force: bool = False) -> UsageSnapshot:
        try:
            result = await self.orchestrator.fetch_usage_for_provider(provider, force=force)
            return result.merged_usage()
        except Exception as e:
            logger.exception("Usage fetch for %s raised", provider.value)
            return UsageSnapshot(
                provider=provider,
                display_name=provider.display_name,
                error=unknown_error(str(e) or None),
            )

    async def refresh(self, model: Any = None, force: bool = False) -> UsageUpdate:
        """Resolve the provider, show cached data, fetch, show the result."""
        provider = self.resolve_provider(model)
        if provider is None:
            self.state.clear()
            return self._notify_update()

        if provider != self.state.current_provider:
            self.state.cached_usage = None
        self.state.current_provider = provider

        entry = self.cache_store.get_entry(provider)
        if entry is not None and entry.usage is not None:
            self.state.cached_usage = entry.merged_usage()
        self._notify_update()

        usage = await self._fetch_merged(provider, force=force)

        if usage is not None and usage.error is not None and not is_expected_missing_data(usage.error):
            fallback = self._last_good_usage(provider)
            if fallback is not None:
                logger.info(
                    "Showing last good usage for %s after %s",
                    provider.value, usage.error.code.value,
                )
                usage = fallback.model_copy(update={"error": usage.error, "status": FETCH_FAILED_STATUS})

        self.state.cached_usage = usage
        return self._notify_update()

    async def cycle_provider(self) -> UsageUpdate:
        """Pin the next enabled provider that has usable data."""
        enabled = self.orchestrator.get_enabled_providers()
        if not enabled:
            self.state.clear()
            return self._notify_update()

        if self.state.current_provider in enabled:
            self.state.provider_cycle_index = enabled.index(self.state.current_provider)

        total = len(enabled)
        for _ in range(total):
            self.state.provider_cycle_index = (self.state.provider_cycle_index + 1) % total
            candidate = enabled[self.state.provider_cycle_index]
            usage = await self._fetch_merged(candidate)
            if not is_usage_available(usage):
                logger.debug("Cycle skipped %s: no usable data", candidate.value)
                continue
            self.state.pinned_provider = candidate
            self.state.current_provider = candidate
            self.state.cached_usage = usage
            return self._notify_update()

        logger.info("No provider with usable data; clearing selection")
        self.state.clear()
        return self._notify_update()
