"""Google Gemini usage provider."""

from typing import Iterable, Optional

from ...models.providers import ProviderName
from ...models.usage import RateWindow, UsageSnapshot
from ..dependencies import Dependencies
from ..errors import http_error, no_credentials
from .base import empty_snapshot, error_from_exception, snapshot

QUOTA_PATH = "/v1internal:retrieveUserQuota"


def lowest_fraction_per_model(buckets: Iterable[dict]) -> dict[str, float]:
    """Collapse quota buckets to the lowest remaining fraction per model id."""
    quotas: dict[str, float] = {}
    for bucket in buckets:
        model = bucket.get("modelId") or "unknown"
        fraction = bucket.get("remainingFraction")
        fraction = 1.0 if fraction is None else float(fraction)
        if model not in quotas or fraction < quotas[model]:
            quotas[model] = fraction
    return quotas


def family_windows(quotas: dict[str, float], families: Iterable[tuple[str, str]]) -> list[RateWindow]:
    """One window per model family present, using the family's worst bucket.

    ``families`` is a list of (substring, label); a model may count toward
    more than one family.
    """
    windows = []
    for token, label in families:
        fractions = [frac for model, frac in quotas.items() if token in model.lower()]
        if fractions:
            windows.append(RateWindow(label=label, used_percent=(1 - min(min(fractions), 1.0)) * 100))
    return windows


class GeminiUsageProvider:
    """Reads Gemini CLI quota buckets from Cloud Code."""

    QUOTA_URL = "https://cloudcode-pa.googleapis.com" + QUOTA_PATH

    name = ProviderName.GEMINI
    display_name = "Gemini Plan"

    def _load_token(self, deps: Dependencies) -> Optional[str]:
        entry = deps.read_pi_auth().get("google-gemini-cli") or {}
        if entry.get("access"):
            return entry["access"]
        creds = deps.read_json(deps.home / ".gemini" / "oauth_creds.json")
        if isinstance(creds, dict) and creds.get("access_token"):
            return creds["access_token"]
        return None

    def has_credentials(self, deps: Dependencies) -> bool:
        return bool(self._load_token(deps))

    async def fetch_usage(self, deps: Dependencies) -> UsageSnapshot:
        token = self._load_token(deps)
        if not token:
            return empty_snapshot(self, no_credentials())

        try:
            response = await deps.request(
                "POST",
                self.QUOTA_URL,
                headers={
                    "Authorization": f"Bearer {token}",
                    "Content-Type": "application/json",
                },
                json_body={},
            )
            if not response.ok:
                return empty_snapshot(self, http_error(response.status))
            quotas = lowest_fraction_per_model((response.data or {}).get("buckets") or [])
            return snapshot(self, family_windows(quotas, [("pro", "Pro"), ("flash", "Flash")]))
        except Exception as e:
            return error_from_exception(self, e)
