"""OpenAI Codex usage provider."""

from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from ...models.providers import ProviderName
from ...models.usage import RateWindow, UsageSnapshot
from ...utils.formatting import format_reset, iso_utc
from ..dependencies import Dependencies
from ..errors import http_error, no_credentials
from .base import empty_snapshot, error_from_exception, snapshot


def _window_label(hours: int) -> str:
    if hours >= 144:
        return "Week"
    if hours >= 24:
        return "Day"
    return f"{hours}h"


class CodexUsageProvider:
    """Reads the ChatGPT plan's rate-limit windows."""

    USAGE_URL = "https://chatgpt.com/backend-api/wham/usage"

    name = ProviderName.CODEX
    display_name = "Codex Plan"

    def _load_credentials(self, deps: Dependencies) -> tuple[Optional[str], Optional[str]]:
        """Return (access_token, account_id)."""
        entry = deps.read_pi_auth().get("openai-codex") or {}
        if entry.get("access"):
            return entry["access"], entry.get("accountId")

        codex_home = deps.env.get("CODEX_HOME")
        auth_dir = Path(codex_home) if codex_home else deps.home / ".codex"
        data = deps.read_json(auth_dir / "auth.json")
        if not isinstance(data, dict):
            return None, None
        if data.get("OPENAI_API_KEY"):
            return data["OPENAI_API_KEY"], None
        tokens = data.get("tokens") or {}
        if tokens.get("access_token"):
            return tokens["access_token"], tokens.get("account_id")
        return None, None

    def has_credentials(self, deps: Dependencies) -> bool:
        return bool(self._load_credentials(deps)[0])

    async def fetch_usage(self, deps: Dependencies) -> UsageSnapshot:
        access_token, account_id = self._load_credentials(deps)
        if not access_token:
            return empty_snapshot(self, no_credentials())

        headers = {
            "Authorization": f"Bearer {access_token}",
            "Accept": "application/json",
        }
        if account_id:
            headers["ChatGPT-Account-Id"] = account_id

        try:
            response = await deps.request("GET", self.USAGE_URL, headers=headers)
            if not response.ok:
                return empty_snapshot(self, http_error(response.status))
            return self._parse_usage(response.data or {})
        except Exception as e:
            return error_from_exception(self, e)

    def _parse_usage(self, data: dict) -> UsageSnapshot:
        rate_limit = data.get("rate_limit") or {}
        windows: list[RateWindow] = []

        primary = rate_limit.get("primary_window")
        if primary:
            hours = round((primary.get("limit_window_seconds") or 10800) / 3600)
            windows.append(self._build_window(f"{hours}h", primary))

        secondary = rate_limit.get("secondary_window")
        if secondary:
            hours = round((secondary.get("limit_window_seconds") or 86400) / 3600)
            windows.append(self._build_window(_window_label(hours), secondary))

        return snapshot(self, windows)

    @staticmethod
    def _build_window(label: str, raw: dict) -> RateWindow:
        reset_epoch = raw.get("reset_at")
        reset_at = datetime.fromtimestamp(reset_epoch, tz=timezone.utc) if reset_epoch else None
        return RateWindow(
            label=label,
            used_percent=float(raw.get("used_percent") or 0),
            reset_description=format_reset(reset_at) if reset_at else None,
            reset_at=iso_utc(reset_at) if reset_at else None,
        )
