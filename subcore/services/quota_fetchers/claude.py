"""Claude (Anthropic) usage provider."""

import asyncio
import json
import platform
from typing import Optional

from ...models.providers import ProviderName
from ...models.usage import RateWindow, UsageSnapshot
from ...utils.formatting import format_reset, iso_utc, parse_timestamp
from ..dependencies import Dependencies
from ..errors import http_error, no_credentials
from .base import empty_snapshot, error_from_exception, snapshot


class ClaudeUsageProvider:
    """Reads the Claude plan's 5h / 7d windows from the OAuth usage API."""

    USAGE_URL = "https://api.anthropic.com/api/oauth/usage"
    KEYCHAIN_SERVICE = "Claude Code-credentials"

    name = ProviderName.ANTHROPIC
    display_name = "Claude Plan"

    def _load_file_token(self, deps: Dependencies) -> Optional[str]:
        auth = deps.read_pi_auth()
        token = (auth.get("anthropic") or {}).get("access")
        if token:
            return token

        # Claude Code on Linux keeps its OAuth credentials in a plain file
        creds = deps.read_json(deps.home / ".claude" / ".credentials.json")
        if isinstance(creds, dict):
            return self._token_from_claude_credentials(creds)
        return None

    @staticmethod
    def _token_from_claude_credentials(data: dict) -> Optional[str]:
        oauth = data.get("claudeAiOauth") or {}
        scopes = oauth.get("scopes") or []
        if "user:profile" in scopes and oauth.get("accessToken"):
            return oauth["accessToken"]
        return None

    async def _load_keychain_token(self, deps: Dependencies) -> Optional[str]:
        if platform.system() != "Darwin":
            return None
        try:
            result = await deps.run_command(
                ["security", "find-generic-password", "-s", self.KEYCHAIN_SERVICE, "-w"]
            )
            if result.returncode != 0 or not result.stdout.strip():
                return None
            return self._token_from_claude_credentials(json.loads(result.stdout.strip()))
        except (OSError, ValueError, asyncio.TimeoutError):
            return None

    def has_credentials(self, deps: Dependencies) -> bool:
        return bool(self._load_file_token(deps))

    async def fetch_usage(self, deps: Dependencies) -> UsageSnapshot:
        token = self._load_file_token(deps) or await self._load_keychain_token(deps)
        if not token:
            return empty_snapshot(self, no_credentials())

        try:
            response = await deps.request(
                "GET",
                self.USAGE_URL,
                headers={
                    "Authorization": f"Bearer {token}",
                    "Accept": "application/json",
                    "anthropic-beta": "oauth-2025-04-20",
                },
            )
            if not response.ok:
                return empty_snapshot(self, http_error(response.status))
            return self._parse_usage(response.data or {})
        except Exception as e:
            return error_from_exception(self, e)

    def _parse_usage(self, data: dict) -> UsageSnapshot:
        windows: list[RateWindow] = []

        for key, label in (("five_hour", "5h"), ("seven_day", "7d")):
            bucket = data.get(key) or {}
            utilization = bucket.get("utilization")
            if utilization is None:
                continue
            reset_at = parse_timestamp(bucket.get("resets_at"))
            windows.append(RateWindow(
                label=label,
                used_percent=float(utilization),
                reset_description=format_reset(reset_at) if reset_at else None,
                reset_at=iso_utc(reset_at) if reset_at else None,
            ))

        extra = data.get("extra_usage") or {}
        extra_enabled = extra.get("is_enabled") is True
        five_hour_usage = float((data.get("five_hour") or {}).get("utilization") or 0)

        if extra_enabled:
            used_credits = extra.get("used_credits") or 0
            monthly_limit = extra.get("monthly_limit")
            # Extra usage is being drawn once the 5h window is exhausted
            extra_state = "active" if five_hour_usage >= 99 else "on"
            label = f"Extra [{extra_state}] {used_credits / 100:.2f}"
            if monthly_limit and monthly_limit > 0:
                label += f"/{monthly_limit / 100:.2f}"
            windows.append(RateWindow(
                label=label,
                used_percent=float(extra.get("utilization") or 0),
                reset_description="__ACTIVE__" if extra_state == "active" else None,
            ))

        return snapshot(
            self,
            windows,
            extra_usage_enabled=extra_enabled,
            five_hour_usage=five_hour_usage,
        )
