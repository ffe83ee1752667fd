"""Cache file models."""

from typing import Optional

from .usage import ProviderStatus, UsageSnapshot, WireModel


class CacheEntry(WireModel):
    """Last known data for one provider.

    ``status_fetched_at`` can differ from ``fetched_at`` because status and
    usage are refreshed on separate schedules. Timestamps are epoch
    milliseconds.
    """
    fetched_at: int = 0
    status_fetched_at: Optional[int] = None
    usage: Optional[UsageSnapshot] = None
    status: Optional[ProviderStatus] = None

    def merged_usage(self) -> Optional[UsageSnapshot]:
        """The cached usage with the cached status folded in."""
        if self.usage is None:
            return None
        return self.usage.with_status(self.status)


# Provider id (ProviderName value) -> entry
Cache = dict[str, CacheEntry]
