"""Usage snapshot models.

These are the values that flow between providers, the cache file and the
controller. They are frozen: a new snapshot replaces an old one, nothing is
edited in place. Field names are snake_case in Python and camelCase on disk.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .providers import ProviderName


class WireModel(BaseModel):
    """Shared config: camelCase aliases, unknown fields ignored, immutable."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        frozen=True,
        use_enum_values=False,
    )

    def to_wire(self) -> dict:
        """Serialize to the camelCase JSON shape, leaving out unset optionals."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class StatusIndicator(str, Enum):
    """Service health level reported by a status page."""
    NONE = "none"
    MINOR = "minor"
    MAJOR = "major"
    CRITICAL = "critical"
    MAINTENANCE = "maintenance"
    UNKNOWN = "unknown"


class UsageErrorCode(str, Enum):
    """Why a provider could not return usage."""
    NO_CREDENTIALS = "NO_CREDENTIALS"
    NO_CLI = "NO_CLI"
    NOT_LOGGED_IN = "NOT_LOGGED_IN"
    FETCH_FAILED = "FETCH_FAILED"
    HTTP_ERROR = "HTTP_ERROR"
    API_ERROR = "API_ERROR"
    TIMEOUT = "TIMEOUT"
    UNKNOWN = "UNKNOWN"


class ProviderStatus(WireModel):
    """External service health, independent of the user's own quota."""
    indicator: StatusIndicator = StatusIndicator.NONE
    description: Optional[str] = None


class RateWindow(WireModel):
    """One quota bucket (e.g. "5h", "Month")."""
    label: str
    used_percent: float = 0.0  # may be outside 0-100 at the source
    reset_description: Optional[str] = None
    reset_at: Optional[str] = None  # ISO timestamp

    @property
    def clamped_percent(self) -> float:
        """Used percentage clamped to 0-100."""
        return max(0.0, min(100.0, self.used_percent))


class UsageError(WireModel):
    """A failure captured as data."""
    code: UsageErrorCode
    message: str
    http_status: Optional[int] = None


class UsageSnapshot(WireModel):
    """Everything one provider reported at one point in time.

    ``windows`` may be empty without ``error`` being set: that means the
    provider has no quota data, which is not a failure.
    """
    provider: ProviderName
    display_name: str
    windows: list[RateWindow] = Field(default_factory=list)
    error: Optional[UsageError] = None
    status: Optional[ProviderStatus] = None
    extra_usage_enabled: Optional[bool] = None
    five_hour_usage: Optional[float] = None
    last_success_at: Optional[int] = None
    requests_summary: Optional[str] = None
    requests_remaining: Optional[int] = None
    requests_entitlement: Optional[int] = None

    def with_status(self, status: Optional[ProviderStatus]) -> "UsageSnapshot":
        """Return a copy carrying ``status``."""
        return self.model_copy(update={"status": status})


class ProviderUsageEntry(WireModel):
    """One row of a multi-provider view."""
    provider: ProviderName
    usage: Optional[UsageSnapshot] = None


class FetchResult(WireModel):
    """What a fetch (or a cache hit) yields for one provider.

    An empty result (no usage, no status) means the provider is disabled.
    """
    usage: Optional[UsageSnapshot] = None
    status: Optional[ProviderStatus] = None
    status_fetched_at: Optional[int] = None

    def merged_usage(self) -> Optional[UsageSnapshot]:
        """The usage snapshot with this result's status folded in."""
        if self.usage is None:
            return None
        return self.usage.with_status(self.status)
