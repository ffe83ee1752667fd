"""Service health polling.

Status is independent of the user's own quota: a provider can have plenty
of quota left while its API is degraded. Every function here returns an
``UNKNOWN`` indicator instead of raising when the status page can't be read.
"""

import logging
from typing import Optional

from ..models.providers import GEMINI_PRODUCT_ID, GOOGLE_STATUS_URL, ProviderName, StatusSourceType
from ..models.usage import ProviderStatus, StatusIndicator
from .dependencies import Dependencies
from .quota_fetchers.base import SupportsStatus

logger = logging.getLogger(__name__)

STATUS_EMOJI = {
    StatusIndicator.NONE: "✅",
    StatusIndicator.MINOR: "⚠️",
    StatusIndicator.MAJOR: "🟠",
    StatusIndicator.CRITICAL: "🔴",
    StatusIndicator.MAINTENANCE: "🔧",
}


def _parse_indicator(value: object) -> StatusIndicator:
    try:
        return StatusIndicator(value or StatusIndicator.NONE.value)
    except ValueError:
        return StatusIndicator.UNKNOWN


async def fetch_statuspage_status(url: str, deps: Dependencies) -> ProviderStatus:
    """Read a statuspage.io ``/api/v2/status.json`` document."""
    try:
        response = await deps.request("GET", url)
    except Exception as e:
        logger.debug("Status fetch from %s failed: %s", url, e)
        return ProviderStatus(indicator=StatusIndicator.UNKNOWN)
    if not response.ok or not isinstance(response.data, dict):
        return ProviderStatus(indicator=StatusIndicator.UNKNOWN)

    status = response.data.get("status") or {}
    return ProviderStatus(
        indicator=_parse_indicator(status.get("indicator")),
        description=status.get("description"),
    )


async def fetch_google_status(deps: Dependencies, product_id: str = GEMINI_PRODUCT_ID) -> ProviderStatus:
    """Worst active Google Workspace incident affecting ``product_id``."""
    try:
        response = await deps.request("GET", GOOGLE_STATUS_URL)
    except Exception as e:
        logger.debug("Google status fetch failed: %s", e)
        return ProviderStatus(indicator=StatusIndicator.UNKNOWN)
    if not response.ok or not isinstance(response.data, list):
        return ProviderStatus(indicator=StatusIndicator.UNKNOWN)

    active = []
    for incident in response.data:
        if not isinstance(incident, dict) or incident.get("end"):
            continue
        affected = incident.get("currently_affected_products") or incident.get("affected_products") or []
        if any(product.get("id") == product_id for product in affected):
            active.append(incident)

    if not active:
        return ProviderStatus(indicator=StatusIndicator.NONE)

    indicator = StatusIndicator.MINOR
    description: Optional[str] = None
    for incident in active:
        impact = (incident.get("most_recent_update") or {}).get("status") or incident.get("status_impact")
        if impact == "SERVICE_OUTAGE":
            indicator = StatusIndicator.CRITICAL
            description = incident.get("external_desc")
        elif impact == "SERVICE_DISRUPTION" and indicator != StatusIndicator.CRITICAL:
            indicator = StatusIndicator.MAJOR
            description = incident.get("external_desc")

    return ProviderStatus(indicator=indicator, description=description)


async def fetch_provider_status(provider: ProviderName, deps: Dependencies) -> ProviderStatus:
    """Status from the provider's configured status source."""
    source = provider.status_source
    if source is None:
        return ProviderStatus(indicator=StatusIndicator.NONE)
    if source.type == StatusSourceType.GOOGLE_WORKSPACE:
        return await fetch_google_status(deps)
    return await fetch_statuspage_status(source.url, deps)


def provider_has_status(provider: ProviderName, instance: object = None) -> bool:
    return isinstance(instance, SupportsStatus) or provider.status_source is not None


async def fetch_provider_status_with_fallback(
    provider: ProviderName,
    instance: object,
    deps: Dependencies,
) -> ProviderStatus:
    """Prefer the provider object's own status check over the status source."""
    if isinstance(instance, SupportsStatus):
        return await instance.fetch_status(deps)
    return await fetch_provider_status(provider, deps)


def status_emoji(status: Optional[ProviderStatus]) -> str:
    if status is None:
        return ""
    return STATUS_EMOJI.get(status.indicator, "")
