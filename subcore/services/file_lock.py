"""Advisory file lock shared between processes.

The lock file holds the acquisition time in epoch milliseconds. Locking is
poll-based and races are tolerated: a caller that fails to get the lock may
still go ahead and fetch, which costs a duplicate request but never corrupts
the cache because writes replace whole entries.
"""

import asyncio
import logging
import os
import time
from pathlib import Path
from typing import Union

logger = logging.getLogger(__name__)


def now_ms() -> int:
    return int(time.time() * 1000)


class FileLock:
    """A lock marker at ``path``; absence means unlocked."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def try_acquire(self, stale_after_ms: int) -> bool:
        """Create the marker if absent; take over a marker older than ``stale_after_ms``."""
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd = os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            return self._take_over_if_stale(stale_after_ms)
        except OSError as e:
            logger.warning("Could not create lock %s: %s", self.path, e)
            return False

        with os.fdopen(fd, "w") as f:
            f.write(str(now_ms()))
        return True

    def _take_over_if_stale(self, stale_after_ms: int) -> bool:
        try:
            content = self.path.read_text().strip()
        except FileNotFoundError:
            # Released between our create attempt and the read; next caller wins the race
            return False
        except OSError:
            return False

        try:
            locked_at = int(content)
        except ValueError:
            # Unreadable marker, most likely a holder that crashed mid-write
            locked_at = 0

        if now_ms() - locked_at <= stale_after_ms:
            return False

        logger.debug("Overriding stale lock %s (held since %s)", self.path, locked_at)
        try:
            self.path.write_text(str(now_ms()))
        except OSError:
            return False
        return True

    def release(self) -> None:
        """Remove the marker. Releasing an absent lock is a no-op."""
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning("Could not remove lock %s: %s", self.path, e)

    def is_locked(self) -> bool:
        return self.path.exists()

    async def wait_for_release(self, max_wait_ms: int, poll_ms: int = 100) -> bool:
        """Poll until the marker disappears; False if the budget runs out first."""
        deadline = time.monotonic() + max_wait_ms / 1000
        while time.monotonic() < deadline:
            await asyncio.sleep(poll_ms / 1000)
            if not self.path.exists():
                return True
        return False
