"""AWS Kiro usage provider.

Kiro has no usage API; the numbers come from the ``kiro-cli`` chat
command's ``/usage`` output.
"""

import re
from datetime import datetime, timezone
from typing import Optional

from ...models.providers import ProviderName
from ...models.usage import RateWindow, UsageSnapshot
from ...utils.formatting import format_reset, iso_utc, strip_ansi
from ...utils.http import API_TIMEOUT_SECONDS, CLI_TIMEOUT_SECONDS
from ..dependencies import Dependencies
from ..errors import no_cli, not_logged_in
from .base import empty_snapshot, error_from_exception, snapshot

KIRO_BINARY = "kiro-cli"

_PERCENT_RE = re.compile(r"█+\s*(\d+)%")
_CREDITS_RE = re.compile(r"\((\d+\.?\d*)\s+of\s+(\d+)\s+covered")
_RESET_RE = re.compile(r"resets on (\d{2})/(\d{2})")


def parse_usage_output(output: str, now: Optional[datetime] = None) -> RateWindow:
    """Turn ``kiro-cli chat /usage`` output into a Credits window."""
    text = strip_ansi(output)
    current = now or datetime.now(timezone.utc)

    used_percent = 0.0
    percent_match = _PERCENT_RE.search(text)
    if percent_match:
        used_percent = float(percent_match.group(1))
    else:
        credits_match = _CREDITS_RE.search(text)
        if credits_match:
            used, total = float(credits_match.group(1)), float(credits_match.group(2))
            if total > 0:
                used_percent = used / total * 100

    reset_at = None
    reset_match = _RESET_RE.search(text)
    if reset_match:
        month, day = int(reset_match.group(1)), int(reset_match.group(2))
        try:
            reset_at = current.replace(month=month, day=day, hour=0, minute=0, second=0, microsecond=0)
            if reset_at < current:
                reset_at = reset_at.replace(year=current.year + 1)
        except ValueError:
            reset_at = None

    return RateWindow(
        label="Credits",
        used_percent=used_percent,
        reset_description=format_reset(reset_at, current) if reset_at else None,
        reset_at=iso_utc(reset_at) if reset_at else None,
    )


class KiroUsageProvider:
    name = ProviderName.KIRO
    display_name = "Kiro Plan"

    def has_credentials(self, deps: Dependencies) -> bool:
        return bool(deps.which(KIRO_BINARY))

    async def fetch_usage(self, deps: Dependencies) -> UsageSnapshot:
        binary = deps.which(KIRO_BINARY)
        if not binary:
            return empty_snapshot(self, no_cli(KIRO_BINARY))

        try:
            whoami = await deps.run_command([binary, "whoami"], timeout=API_TIMEOUT_SECONDS)
        except Exception:
            return empty_snapshot(self, not_logged_in())
        if whoami.returncode != 0:
            return empty_snapshot(self, not_logged_in())

        try:
            result = await deps.run_command(
                [binary, "chat", "--no-interactive", "/usage"],
                timeout=CLI_TIMEOUT_SECONDS,
                env={**deps.env, "TERM": "xterm-256color"},
            )
            return snapshot(self, [parse_usage_output(result.stdout)])
        except Exception as e:
            return error_from_exception(self, e)
