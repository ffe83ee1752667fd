"""Services layer for subcore."""

from .cache_store import CacheStore, CacheWatcher
from .dependencies import Dependencies, create_default_dependencies
from .file_lock import FileLock
from .usage_fetch import UsageFetchOrchestrator

__all__ = [
    "CacheStore",
    "CacheWatcher",
    "Dependencies",
    "create_default_dependencies",
    "FileLock",
    "UsageFetchOrchestrator",
]
