"""
Pytest configuration and shared fixtures for the test suite.
"""

from typing import Callable, Optional
from unittest.mock import AsyncMock

import pytest

from subcore.models.providers import ProviderName
from subcore.models.settings import CoreSettings, ProviderEnabled, ProviderSettings
from subcore.models.usage import RateWindow, UsageError, UsageSnapshot
from subcore.services.cache_store import CacheStore
from subcore.services.dependencies import Dependencies
from subcore.services.file_lock import FileLock
from subcore.services.usage_fetch import UsageFetchOrchestrator
from subcore.utils.http import CommandResult, HttpResponse
from subcore.utils.paths import CorePaths


class FakeProvider:
    """Provider double returning canned snapshots and counting fetches.

    The last queued result repeats once the queue is down to one item.
    Exceptions in the queue are raised instead of returned.
    """

    def __init__(self, name: ProviderName, results=None, credentials: bool = True):
        self.name = name
        self.display_name = f"{name.value} plan"
        self.results = list(results or [])
        self.credentials = credentials
        self.calls = 0

    def has_credentials(self, deps) -> bool:
        return self.credentials

    async def fetch_usage(self, deps) -> UsageSnapshot:
        self.calls += 1
        result = self.results.pop(0) if len(self.results) > 1 else self.results[0]
        if isinstance(result, BaseException):
            raise result
        return result


# Paths and storage


@pytest.fixture
def core_paths(tmp_path):
    return CorePaths.in_directory(tmp_path / "subcore")


@pytest.fixture
def lock(core_paths):
    return FileLock(core_paths.lock_path)


@pytest.fixture
def cache_store(core_paths, lock):
    return CacheStore(core_paths.cache_path, lock)


# Dependencies


@pytest.fixture
def home_dir(tmp_path):
    home = tmp_path / "home"
    home.mkdir()
    return home


@pytest.fixture
def deps(home_dir):
    """Dependencies with no network, no CLIs and an empty home directory."""
    return Dependencies(
        home=home_dir,
        env={},
        request=AsyncMock(return_value=HttpResponse(status=500)),
        run_command=AsyncMock(return_value=CommandResult(returncode=1)),
        which=lambda name: None,
    )


# Usage values


@pytest.fixture
def make_usage() -> Callable[..., UsageSnapshot]:
    def _make(
        provider: ProviderName,
        percents: tuple = (),
        error: Optional[UsageError] = None,
    ) -> UsageSnapshot:
        return UsageSnapshot(
            provider=provider,
            display_name=f"{provider.value} plan",
            windows=[RateWindow(label=f"w{i}", used_percent=p) for i, p in enumerate(percents)],
            error=error,
        )

    return _make


# Settings and orchestration


@pytest.fixture
def make_settings() -> Callable[..., CoreSettings]:
    """Settings with only ``enabled`` providers switched on and status fetching off."""

    def _make(enabled=(), order=None, min_refresh_interval: int = 0, refresh_interval: int = 60) -> CoreSettings:
        settings = CoreSettings()
        for provider in ProviderName:
            settings.providers[provider] = ProviderSettings(
                enabled=ProviderEnabled.ENABLED if provider in enabled else ProviderEnabled.DISABLED,
                fetch_status=False,
            )
        settings.behavior.min_refresh_interval = min_refresh_interval
        settings.behavior.refresh_interval = refresh_interval
        if order is not None:
            settings.provider_order = list(order)
        return settings

    return _make


@pytest.fixture
def make_orchestrator(cache_store, deps) -> Callable[..., UsageFetchOrchestrator]:
    def _make(settings: CoreSettings, providers: dict) -> UsageFetchOrchestrator:
        return UsageFetchOrchestrator(
            settings,
            cache_store,
            deps,
            provider_factory=lambda name: providers[name],
        )

    return _make
