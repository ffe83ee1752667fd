"""GitHub Copilot usage provider."""

import os
from typing import Optional

from ...models.providers import ProviderName
from ...models.usage import RateWindow, UsageSnapshot
from ...utils.formatting import format_reset, parse_timestamp
from ..dependencies import Dependencies
from ..errors import http_error, no_credentials
from .base import empty_snapshot, error_from_exception, snapshot

TOKEN_KEYS = ("oauth_token", "user_token", "github_token", "token")


def _token_from_host_entry(entry: object) -> Optional[str]:
    if not isinstance(entry, dict):
        return None
    for key in TOKEN_KEYS:
        value = entry.get(key)
        if isinstance(value, str) and value:
            return value
    return None


class CopilotUsageProvider:
    """Reads premium-request usage from the Copilot user endpoint."""

    USAGE_URL = "https://api.github.com/copilot_internal/user"

    name = ProviderName.COPILOT
    display_name = "Copilot Plan"

    def _load_legacy_token(self, deps: Dependencies) -> Optional[str]:
        config_home = deps.env.get("XDG_CONFIG_HOME") or os.path.join(deps.home, ".config")
        candidates = [
            deps.home.joinpath(config_home, "github-copilot", "hosts.json"),
            deps.home / ".github-copilot" / "hosts.json",
        ]
        for hosts_path in candidates:
            data = deps.read_json(hosts_path)
            if not isinstance(data, dict):
                continue
            hosts = {str(host).lower(): entry for host, entry in data.items()}
            token = (
                _token_from_host_entry(hosts.get("github.com"))
                or _token_from_host_entry(hosts.get("api.github.com"))
            )
            if token:
                return token
            for entry in hosts.values():
                token = _token_from_host_entry(entry)
                if token:
                    return token
        return None

    def _load_token(self, deps: Dependencies) -> Optional[str]:
        entry = deps.read_pi_auth().get("github-copilot") or {}
        # The refresh token is the GitHub access token, which is what this API wants
        token = entry.get("refresh") or entry.get("access")
        if isinstance(token, str) and token:
            return token
        return self._load_legacy_token(deps)

    def has_credentials(self, deps: Dependencies) -> bool:
        return bool(self._load_token(deps))

    async def fetch_usage(self, deps: Dependencies) -> UsageSnapshot:
        token = self._load_token(deps)
        if not token:
            return empty_snapshot(self, no_credentials())

        try:
            response = await deps.request(
                "GET",
                self.USAGE_URL,
                headers={
                    "Editor-Version": "vscode/1.96.2",
                    "User-Agent": "GitHubCopilotChat/0.26.7",
                    "X-Github-Api-Version": "2025-04-01",
                    "Accept": "application/json",
                    "Authorization": f"token {token}",
                },
            )
            if not response.ok:
                return empty_snapshot(self, http_error(response.status))
            return self._parse_usage(response.data or {})
        except Exception as e:
            return error_from_exception(self, e)

    def _parse_usage(self, data: dict) -> UsageSnapshot:
        reset_at = parse_timestamp(data.get("quota_reset_date_utc"))
        windows: list[RateWindow] = []
        requests_remaining = None
        requests_entitlement = None

        premium = (data.get("quota_snapshots") or {}).get("premium_interactions")
        if premium:
            used = max(0.0, 100.0 - float(premium.get("percent_remaining") or 0))
            windows.append(RateWindow(
                label="Month",
                used_percent=used,
                reset_description=format_reset(reset_at) if reset_at else None,
            ))
            requests_remaining = int(premium.get("remaining") or 0)
            requests_entitlement = int(premium.get("entitlement") or 0)

        return snapshot(
            self,
            windows,
            requests_remaining=requests_remaining,
            requests_entitlement=requests_entitlement,
        )
