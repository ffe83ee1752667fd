"""Google Antigravity usage provider."""

import asyncio
import json
import logging
from typing import Optional

from ...models.providers import ProviderName
from ...models.usage import RateWindow, UsageSnapshot
from ..dependencies import Dependencies
from ..errors import fetch_failed, no_credentials, timeout_error
from .base import empty_snapshot, error_from_exception, snapshot
from .gemini import QUOTA_PATH, family_windows, lowest_fraction_per_model

logger = logging.getLogger(__name__)


class AntigravityUsageProvider:
    """Reads Antigravity quota buckets, trying the daily sandbox endpoint first."""

    ENDPOINTS = (
        "https://daily-cloudcode-pa.sandbox.googleapis.com",
        "https://cloudcode-pa.googleapis.com",
    )
    HEADERS = {
        "User-Agent": "antigravity/1.11.5 darwin/arm64",
        "X-Goog-Api-Client": "google-cloud-sdk vscode_cloudshelleditor/0.1",
        "Client-Metadata": json.dumps({
            "ideType": "IDE_UNSPECIFIED",
            "platform": "PLATFORM_UNSPECIFIED",
            "pluginType": "GEMINI",
        }),
    }

    name = ProviderName.ANTIGRAVITY
    display_name = "Antigravity"

    def _load_token(self, deps: Dependencies) -> Optional[str]:
        entry = deps.read_pi_auth().get("google-antigravity")
        if isinstance(entry, str):
            return entry or None
        if isinstance(entry, dict):
            return entry.get("access") or entry.get("key")
        return None

    def has_credentials(self, deps: Dependencies) -> bool:
        return bool(self._load_token(deps))

    async def _fetch_quota(self, deps: Dependencies, endpoint: str, token: str) -> Optional[dict]:
        response = await deps.request(
            "POST",
            endpoint + QUOTA_PATH,
            headers={
                "Authorization": f"Bearer {token}",
                "Content-Type": "application/json",
                **self.HEADERS,
            },
            json_body={},
        )
        if not response.ok:
            logger.debug("Antigravity endpoint %s returned HTTP %s", endpoint, response.status)
            return None
        return response.data or {}

    async def fetch_usage(self, deps: Dependencies) -> UsageSnapshot:
        token = self._load_token(deps)
        if not token:
            return empty_snapshot(self, no_credentials())

        data = None
        timed_out = False
        for endpoint in self.ENDPOINTS:
            try:
                data = await self._fetch_quota(deps, endpoint, token)
            except asyncio.TimeoutError:
                timed_out = True
                continue
            except Exception as e:
                logger.debug("Antigravity endpoint %s failed: %s", endpoint, e)
                continue
            if data is not None:
                break

        if data is None:
            return empty_snapshot(self, timeout_error() if timed_out else fetch_failed())

        try:
            return self._parse_usage(data)
        except Exception as e:
            return error_from_exception(self, e)

    def _parse_usage(self, data: dict) -> UsageSnapshot:
        quotas = lowest_fraction_per_model(data.get("buckets") or [])
        windows = family_windows(quotas, [("claude", "Claude"), ("pro", "Pro"), ("flash", "Flash")])
        if not windows:
            windows = [
                RateWindow(label=model, used_percent=(1 - frac) * 100)
                for model, frac in list(quotas.items())[:3]
            ]
        return snapshot(self, windows)
