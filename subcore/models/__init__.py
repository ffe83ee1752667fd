"""Data models for subcore."""

from .providers import ProviderName, DetectionHint, StatusSource, StatusSourceType
from .usage import (
    FetchResult,
    ProviderStatus,
    ProviderUsageEntry,
    RateWindow,
    StatusIndicator,
    UsageError,
    UsageErrorCode,
    UsageSnapshot,
)
from .cache import Cache, CacheEntry
from .settings import BehaviorSettings, CoreSettings, ProviderEnabled, ProviderSettings, StatusRefreshSettings

__all__ = [
    "ProviderName",
    "DetectionHint",
    "StatusSource",
    "StatusSourceType",
    "FetchResult",
    "ProviderStatus",
    "ProviderUsageEntry",
    "RateWindow",
    "StatusIndicator",
    "UsageError",
    "UsageErrorCode",
    "UsageSnapshot",
    "Cache",
    "CacheEntry",
    "BehaviorSettings",
    "CoreSettings",
    "ProviderEnabled",
    "ProviderSettings",
    "StatusRefreshSettings",
]
