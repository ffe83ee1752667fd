"""Small text helpers shared by providers."""

import re
from datetime import datetime, timezone
from typing import Optional

_ANSI_RE = re.compile(r"\x1B\[[0-9;?]*[A-Za-z]|\x1B\].*?\x07")


def format_reset(reset_at: datetime, now: Optional[datetime] = None) -> str:
    """Relative time until ``reset_at``, e.g. "45m", "3h20m", "2d4h"."""
    if reset_at.tzinfo is None:
        reset_at = reset_at.replace(tzinfo=timezone.utc)
    current = now or datetime.now(timezone.utc)
    diff_seconds = (reset_at - current).total_seconds()
    if diff_seconds < 0:
        return "now"

    diff_mins = int(diff_seconds // 60)
    if diff_mins < 60:
        return f"{diff_mins}m"

    hours, mins = divmod(diff_mins, 60)
    if hours < 24:
        return f"{hours}h{mins}m" if mins > 0 else f"{hours}h"

    days, rem_hours = divmod(hours, 24)
    return f"{days}d{rem_hours}h" if rem_hours > 0 else f"{days}d"


def parse_timestamp(value: object) -> Optional[datetime]:
    """Parse an ISO string or epoch seconds into an aware datetime."""
    if value is None or value == "":
        return None
    try:
        if isinstance(value, (int, float)):
            return datetime.fromtimestamp(float(value), tz=timezone.utc)
        if isinstance(value, str):
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
            return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    except (ValueError, OverflowError, OSError):
        return None
    return None


def iso_utc(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def strip_ansi(text: str) -> str:
    return _ANSI_RE.sub("", text)
