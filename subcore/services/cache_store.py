"""
Shared usage cache.

WORKFLOW OVERVIEW:
==================
Several processes (one per open session) share one cache.json so that they
do not all hit the provider APIs. The file maps provider id -> CacheEntry.

READ PATH:
- read() parses the file, re-parsing only when its mtime changed
- trailing garbage (an interrupted write) is recovered by cutting the text
  back to the last "}" that yields valid JSON, and the repaired file is
  written back
- entries that fail validation are hidden from callers but kept as raw
  JSON and written back unchanged; a read never raises

FETCH PATH (fetch_with_cache):
1. Not forced and a fresh entry exists -> return it, no lock, no fetch
2. Try the lock (stale after 5s)
   - acquired: fetch, persist good results, drop the entry on
     "expected missing data" errors, release in finally
   - busy: wait up to 3s for release; return the other process's result
     if it made the entry fresh, otherwise fetch anyway without the lock

Duplicate fetches under a race are accepted; the last write wins.

LISTENERS:
on_cache_update(provider, entry | None) fires after each write that touched
a provider, on_cache_snapshot(cache) after every write. A failing listener
is logged and does not stop the others.
"""

import asyncio
import json
import logging
import os
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional, Union

from pydantic import ValidationError

from ..models.cache import Cache, CacheEntry
from ..models.providers import ProviderName
from ..models.usage import FetchResult, ProviderStatus
from .errors import is_expected_missing_data
from .file_lock import FileLock, now_ms

logger = logging.getLogger(__name__)

LOCK_STALE_MS = 5000
LOCK_WAIT_MS = 3000
MAX_RECOVERY_ATTEMPTS = 32

CacheUpdateListener = Callable[[ProviderName, Optional[CacheEntry]], None]
CacheSnapshotListener = Callable[[Cache], None]
FetchFn = Callable[[], Awaitable[FetchResult]]


def _provider_key(provider: Union[ProviderName, str]) -> str:
    return provider.value if isinstance(provider, ProviderName) else str(provider)


def _parse_entries(data: object) -> tuple[Cache, dict[str, Any]]:
    """Validate raw JSON into entries.

    Returns (entries, passthrough): entries that do not validate, for example
    ones written by a newer build for a provider this build does not know,
    are kept as raw JSON so that writes carry them over unchanged.
    """
    cache: Cache = {}
    passthrough: dict[str, Any] = {}
    if not isinstance(data, dict):
        return cache, passthrough
    for key, value in data.items():
        try:
            cache[key] = CacheEntry.model_validate(value)
        except ValidationError as e:
            logger.debug("Keeping unrecognized cache entry for %s as is: %s", key, e.error_count())
            passthrough[key] = value
    return cache, passthrough


def _serialize(cache: Cache, passthrough: Optional[dict[str, Any]] = None) -> str:
    data = {key: value for key, value in (passthrough or {}).items() if key not in cache}
    data.update((key, entry.to_wire()) for key, entry in cache.items())
    return json.dumps(data, indent=2)


class CacheStore:
    """Owns cache.json and the lock guarding fetches into it."""

    def __init__(self, cache_path: Union[str, Path], lock: FileLock):
        self.cache_path = Path(cache_path)
        self.lock = lock
        self._update_listeners: list[CacheUpdateListener] = []
        self._snapshot_listeners: list[CacheSnapshotListener] = []
        self._last_snapshot: Optional[Cache] = None
        self._passthrough: dict[str, Any] = {}
        self._last_content = ""
        self._last_mtime_ns = 0

    # Listeners

    def on_cache_update(self, listener: CacheUpdateListener) -> Callable[[], None]:
        """Register a per-provider listener; returns an unsubscribe callable."""
        self._update_listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._update_listeners:
                self._update_listeners.remove(listener)

        return unsubscribe

    def on_cache_snapshot(self, listener: CacheSnapshotListener) -> Callable[[], None]:
        """Register a whole-cache listener; returns an unsubscribe callable."""
        self._snapshot_listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._snapshot_listeners:
                self._snapshot_listeners.remove(listener)

        return unsubscribe

    def emit_update(self, provider: ProviderName, entry: Optional[CacheEntry]) -> None:
        for listener in list(self._update_listeners):
            try:
                listener(provider, entry)
            except Exception:
                logger.exception("Cache update listener failed for %s", provider.value)

    def emit_snapshot(self, cache: Cache) -> None:
        for listener in list(self._snapshot_listeners):
            try:
                listener(dict(cache))
            except Exception:
                logger.exception("Cache snapshot listener failed")

    # Raw storage

    def _remember(self, cache: Cache, content: str, mtime_ns: int) -> None:
        self._last_snapshot = cache
        self._last_content = content
        self._last_mtime_ns = mtime_ns

    def _forget(self) -> None:
        self._passthrough = {}
        self._remember({}, "", 0)

    def _mtime_ns(self) -> int:
        try:
            return self.cache_path.stat().st_mtime_ns
        except OSError:
            return 0

    def read(self) -> Cache:
        """Read the cache. Never raises; corruption yields an empty or partial cache."""
        try:
            stat = self.cache_path.stat()
        except FileNotFoundError:
            if self._last_mtime_ns or self._last_content:
                self._forget()
            return {}
        except OSError as e:
            logger.error("Failed to stat cache %s: %s", self.cache_path, e)
            return {}

        if self._last_snapshot is not None and stat.st_mtime_ns == self._last_mtime_ns:
            return dict(self._last_snapshot)

        try:
            content = self.cache_path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            logger.error("Failed to read cache %s: %s", self.cache_path, e)
            return {}

        if not content.strip():
            self._remember({}, "", stat.st_mtime_ns)
            return {}

        try:
            data = json.loads(content)
        except json.JSONDecodeError as e:
            recovered = self._recover(content)
            if recovered is None:
                logger.error("Failed to read cache %s: %s", self.cache_path, e)
                return {}
            logger.warning("Recovered corrupted cache %s by truncation", self.cache_path)
            cache, self._passthrough = _parse_entries(recovered)
            self.write(cache)
            return dict(cache)

        cache, self._passthrough = _parse_entries(data)
        self._remember(cache, content, stat.st_mtime_ns)
        return dict(cache)

    @staticmethod
    def _recover(content: str) -> Optional[object]:
        """Cut the text back to the last closing brace that parses."""
        end = len(content)
        for _ in range(MAX_RECOVERY_ATTEMPTS):
            brace = content.rfind("}", 0, end)
            if brace <= 0:
                return None
            try:
                return json.loads(content[: brace + 1])
            except json.JSONDecodeError:
                end = brace
        return None

    def write(self, cache: Cache) -> bool:
        """Persist the full mapping atomically. Returns False if the write failed."""
        content = _serialize(cache, self._passthrough)
        try:
            self.cache_path.parent.mkdir(parents=True, exist_ok=True)
            if self.cache_path.exists() and content == self._last_content:
                self._remember(dict(cache), content, self._mtime_ns())
                return True
            temp_path = self.cache_path.with_name(f"{self.cache_path.name}.{os.getpid()}.tmp")
            temp_path.write_text(content, encoding="utf-8")
            os.replace(temp_path, self.cache_path)
        except OSError as e:
            logger.error("Failed to write cache %s: %s", self.cache_path, e)
            return False
        self._remember(dict(cache), content, self._mtime_ns())
        return True

    # Entry access

    def get_entry(self, provider: ProviderName) -> Optional[CacheEntry]:
        """The stored entry regardless of age."""
        return self.read().get(_provider_key(provider))

    def get_cached_data(
        self,
        provider: ProviderName,
        ttl_ms: int,
        cache: Optional[Cache] = None,
    ) -> Optional[CacheEntry]:
        """The entry if younger than ``ttl_ms``; None is a miss, not an error."""
        snapshot = cache if cache is not None else self.read()
        entry = snapshot.get(_provider_key(provider))
        if entry is None:
            return None
        if entry.usage and entry.usage.error and not is_expected_missing_data(entry.usage.error):
            return None
        if now_ms() - entry.fetched_at < ttl_ms:
            return entry
        return None

    def put_entry(self, provider: ProviderName, entry: CacheEntry) -> None:
        cache = self.read()
        cache[_provider_key(provider)] = entry
        if self.write(cache):
            self.emit_update(provider, entry)
            self.emit_snapshot(cache)

    def remove_entry(self, provider: ProviderName) -> bool:
        """Delete one provider's entry; True if there was one."""
        cache = self.read()
        key = _provider_key(provider)
        dropped_raw = self._passthrough.pop(key, None) is not None
        if cache.pop(key, None) is None and not dropped_raw:
            return False
        if self.write(cache):
            self.emit_update(provider, None)
            self.emit_snapshot(cache)
        return True

    def clear(self, provider: Optional[ProviderName] = None) -> None:
        """Clear one provider's entry, or the whole cache file."""
        if provider is not None:
            self.remove_entry(provider)
            return
        try:
            self.cache_path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.error("Failed to clear cache %s: %s", self.cache_path, e)
        self._forget()

    async def update_status(
        self,
        provider: ProviderName,
        status: ProviderStatus,
        status_fetched_at: Optional[int] = None,
    ) -> CacheEntry:
        """Replace only the status fields of an entry, keeping usage as stored."""
        acquired = self.lock.try_acquire(LOCK_STALE_MS)
        if not acquired:
            await self.lock.wait_for_release(LOCK_WAIT_MS)
        try:
            previous = self.get_entry(provider)
            entry = CacheEntry(
                fetched_at=previous.fetched_at if previous else 0,
                status_fetched_at=status_fetched_at if status_fetched_at is not None else now_ms(),
                usage=previous.usage if previous else None,
                status=status,
            )
            self.put_entry(provider, entry)
            return entry
        finally:
            if acquired:
                self.lock.release()

    # Coordinated fetch

    async def _wait_for_lock_and_recheck(self, provider: ProviderName, ttl_ms: int) -> Optional[CacheEntry]:
        released = await self.lock.wait_for_release(LOCK_WAIT_MS)
        if not released:
            return None
        return self.get_cached_data(provider, ttl_ms)

    async def fetch_with_cache(
        self,
        provider: ProviderName,
        ttl_ms: int,
        fetch_fn: FetchFn,
        force: bool = False,
    ) -> FetchResult:
        """Return fresh cached data, or run ``fetch_fn`` under the shared lock."""
        if not force:
            cached = self.get_cached_data(provider, ttl_ms)
            if cached is not None:
                return FetchResult(
                    usage=cached.usage,
                    status=cached.status,
                    status_fetched_at=cached.status_fetched_at,
                )

        acquired = self.lock.try_acquire(LOCK_STALE_MS)
        if not acquired:
            fresh = await self._wait_for_lock_and_recheck(provider, ttl_ms)
            if fresh is not None:
                return FetchResult(
                    usage=fresh.usage,
                    status=fresh.status,
                    status_fetched_at=fresh.status_fetched_at,
                )
            logger.debug("Lock still busy for %s, fetching without it", provider.value)

        try:
            result = await fetch_fn()
            self._store_result(provider, result)
            return result
        finally:
            if acquired:
                self.lock.release()

    def _store_result(self, provider: ProviderName, result: FetchResult) -> None:
        usage = result.usage
        if usage is None:
            return
        if usage.error is None:
            fetched_at = now_ms()
            previous = self.get_entry(provider)
            status_fetched_at = result.status_fetched_at
            if status_fetched_at is None:
                status_fetched_at = fetched_at if result.status else (previous.status_fetched_at if previous else None)
            self.put_entry(provider, CacheEntry(
                fetched_at=fetched_at,
                status_fetched_at=status_fetched_at,
                usage=usage,
                status=result.status,
            ))
        elif is_expected_missing_data(usage.error):
            # Credentials were removed; do not keep serving the old numbers
            if self.remove_entry(provider):
                logger.info("Removed cached usage for %s (%s)", provider.value, usage.error.code.value)


class CacheWatcher:
    """Polls cache.json for writes made by other processes.

    When the file's mtime changes (and no fetch holds the lock) the new
    content is loaded and pushed to the store's listeners.
    """

    def __init__(
        self,
        store: CacheStore,
        poll_interval_ms: int = 5000,
        lock_retry_ms: int = 1000,
    ):
        self.store = store
        self.poll_interval_ms = poll_interval_ms
        self.lock_retry_ms = lock_retry_ms
        self._task: Optional[asyncio.Task] = None
        self._last_mtime_ns = 0
        self._last_content = ""

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.get_running_loop().create_task(self._run())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def _run(self) -> None:
        while True:
            await self.check_once()
            await asyncio.sleep(self.poll_interval_ms / 1000)

    async def check_once(self) -> bool:
        """Emit the cache if it changed since the last check. Returns True when emitted."""
        if self.store.lock.is_locked():
            released = await self.store.lock.wait_for_release(self.lock_retry_ms)
            if not released:
                return False

        path = self.store.cache_path
        try:
            mtime_ns = path.stat().st_mtime_ns
        except OSError:
            return False
        if mtime_ns == self._last_mtime_ns:
            return False
        self._last_mtime_ns = mtime_ns

        try:
            content = path.read_text(encoding="utf-8")
            data = json.loads(content)
        except (OSError, UnicodeDecodeError, json.JSONDecodeError):
            # Likely mid-write; the next poll picks it up
            return False
        if content == self._last_content:
            return False
        self._last_content = content

        cache, _ = _parse_entries(data)
        self.store.emit_snapshot(cache)
        for key, entry in cache.items():
            try:
                provider = ProviderName(key)
            except ValueError:
                continue
            self.store.emit_update(provider, entry)
        return True
