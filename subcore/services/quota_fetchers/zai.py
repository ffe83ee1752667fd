"""z.ai usage provider."""

from typing import Optional

from ...models.providers import ProviderName
from ...models.usage import RateWindow, UsageSnapshot
from ...utils.formatting import format_reset, iso_utc, parse_timestamp
from ..dependencies import Dependencies
from ..errors import api_error, http_error, no_credentials
from .base import empty_snapshot, error_from_exception, snapshot

LIMIT_LABELS = {
    "TOKENS_LIMIT": "Tokens",
    "TIME_LIMIT": "Monthly",
}


class ZaiUsageProvider:
    USAGE_URL = "https://api.z.ai/api/monitor/usage/quota/limit"

    name = ProviderName.ZAI
    display_name = "z.ai Plan"

    def _load_api_key(self, deps: Dependencies) -> Optional[str]:
        if deps.env.get("Z_AI_API_KEY"):
            return deps.env["Z_AI_API_KEY"]
        auth = deps.read_pi_auth()
        return (auth.get("z-ai") or {}).get("access") or (auth.get("zai") or {}).get("access")

    def has_credentials(self, deps: Dependencies) -> bool:
        return bool(self._load_api_key(deps))

    async def fetch_usage(self, deps: Dependencies) -> UsageSnapshot:
        api_key = self._load_api_key(deps)
        if not api_key:
            return empty_snapshot(self, no_credentials())

        try:
            response = await deps.request(
                "GET",
                self.USAGE_URL,
                headers={
                    "Authorization": f"Bearer {api_key}",
                    "Accept": "application/json",
                },
            )
            if not response.ok:
                return empty_snapshot(self, http_error(response.status))
            return self._parse_usage(response.data or {})
        except Exception as e:
            return error_from_exception(self, e)

    def _parse_usage(self, data: dict) -> UsageSnapshot:
        if not data.get("success") or data.get("code") != 200:
            return empty_snapshot(self, api_error(data.get("msg") or "API error"))

        windows = []
        for limit in (data.get("data") or {}).get("limits") or []:
            label = LIMIT_LABELS.get(limit.get("type"))
            if label is None:
                continue
            reset_at = parse_timestamp(limit.get("nextResetTime"))
            windows.append(RateWindow(
                label=label,
                used_percent=float(limit.get("percentage") or 0),
                reset_description=format_reset(reset_at) if reset_at else None,
                reset_at=iso_utc(reset_at) if reset_at else None,
            ))
        return snapshot(self, windows)
