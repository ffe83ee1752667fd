"""Core settings models.

The settings file itself belongs to the settings UI; the core only reads
these values. ``SettingsManager`` (utils/settings.py) turns the JSON file
into a ``CoreSettings`` instance.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Union

from .providers import ProviderName


SETTINGS_VERSION = 3


class ProviderEnabled(str, Enum):
    """Whether a provider takes part in refreshes.

    AUTO enables the provider only when it reports credentials.
    """

    AUTO = "auto"
    ENABLED = "on"
    DISABLED = "off"

    @classmethod
    def parse(cls, value: Union[str, bool, None]) -> "ProviderEnabled":
        """Read the legacy ``"auto" | "on" | "off" | bool`` representation."""
        if isinstance(value, cls):
            return value
        if value is True:
            return cls.ENABLED
        if value is False:
            return cls.DISABLED
        if isinstance(value, str):
            lowered = value.strip().lower()
            if lowered == "auto":
                return cls.AUTO
            if lowered in ("on", "true"):
                return cls.ENABLED
            if lowered in ("off", "false"):
                return cls.DISABLED
        return cls.AUTO


@dataclass
class ProviderSettings:
    """Per-provider switches."""
    enabled: ProviderEnabled = ProviderEnabled.AUTO
    fetch_status: bool = True
    display_name: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict[str, Any], defaults: "ProviderSettings") -> "ProviderSettings":
        """Create from dictionary. Handles both camelCase and snake_case keys."""
        fetch_status = data.get("fetchStatus", data.get("fetch_status", defaults.fetch_status))
        return cls(
            enabled=ProviderEnabled.parse(data.get("enabled", defaults.enabled)),
            fetch_status=bool(fetch_status),
            display_name=data.get("displayName") or data.get("display_name") or defaults.display_name,
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "enabled": self.enabled.value,
            "fetchStatus": self.fetch_status,
        }
        if self.display_name:
            data["displayName"] = self.display_name
        return data


@dataclass
class BehaviorSettings:
    """Refresh cadence. Intervals are in seconds, 0 disables."""
    refresh_interval: int = 60
    min_refresh_interval: int = 10
    refresh_on_turn_start: bool = False
    refresh_on_tool_result: bool = False
    auto_detect_provider: bool = True

    _KEYS = {
        "refresh_interval": "refreshInterval",
        "min_refresh_interval": "minRefreshInterval",
        "refresh_on_turn_start": "refreshOnTurnStart",
        "refresh_on_tool_result": "refreshOnToolResult",
        "auto_detect_provider": "autoDetectProvider",
    }

    @classmethod
    def from_dict(cls, data: dict[str, Any], defaults: "BehaviorSettings") -> "BehaviorSettings":
        values = {}
        for attr, key in cls._KEYS.items():
            values[attr] = data.get(key, data.get(attr, getattr(defaults, attr)))
        return cls(
            refresh_interval=_as_seconds(values["refresh_interval"], defaults.refresh_interval),
            min_refresh_interval=_as_seconds(values["min_refresh_interval"], defaults.min_refresh_interval),
            refresh_on_turn_start=bool(values["refresh_on_turn_start"]),
            refresh_on_tool_result=bool(values["refresh_on_tool_result"]),
            auto_detect_provider=bool(values["auto_detect_provider"]),
        )

    def to_dict(self) -> dict[str, Any]:
        return {key: getattr(self, attr) for attr, key in self._KEYS.items()}


def _as_seconds(value: Any, default: int) -> int:
    try:
        return max(0, int(value))
    except (TypeError, ValueError):
        return default


@dataclass
class StatusRefreshSettings:
    """Status polling cadence in seconds. Status pages change far less often than quotas."""
    refresh_interval: int = 300
    min_refresh_interval: int = 60

    @classmethod
    def from_dict(cls, data: dict[str, Any], defaults: "StatusRefreshSettings") -> "StatusRefreshSettings":
        return cls(
            refresh_interval=_as_seconds(
                data.get("refreshInterval", data.get("refresh_interval", defaults.refresh_interval)),
                defaults.refresh_interval,
            ),
            min_refresh_interval=_as_seconds(
                data.get("minRefreshInterval", data.get("min_refresh_interval", defaults.min_refresh_interval)),
                defaults.min_refresh_interval,
            ),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "refreshInterval": self.refresh_interval,
            "minRefreshInterval": self.min_refresh_interval,
        }


def default_provider_settings() -> dict[ProviderName, ProviderSettings]:
    return {
        provider: ProviderSettings(fetch_status=provider.status_source is not None)
        for provider in ProviderName
    }


@dataclass
class CoreSettings:
    """Everything the usage core reads from settings."""
    providers: dict[ProviderName, ProviderSettings] = field(default_factory=default_provider_settings)
    behavior: BehaviorSettings = field(default_factory=BehaviorSettings)
    status_refresh: StatusRefreshSettings = field(default_factory=StatusRefreshSettings)
    provider_order: list[ProviderName] = field(default_factory=lambda: list(ProviderName))
    default_provider: Optional[ProviderName] = None
    version: int = SETTINGS_VERSION

    def provider(self, name: ProviderName) -> ProviderSettings:
        """Settings for ``name``, falling back to defaults for unknown entries."""
        settings = self.providers.get(name)
        if settings is None:
            settings = ProviderSettings(fetch_status=name.status_source is not None)
            self.providers[name] = settings
        return settings

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CoreSettings":
        """Build settings from the JSON shape, filling gaps with defaults."""
        defaults = cls()

        providers = dict(defaults.providers)
        for key, value in (data.get("providers") or {}).items():
            name = _provider_or_none(key)
            if name is None or not isinstance(value, dict):
                continue
            providers[name] = ProviderSettings.from_dict(value, defaults.providers[name])

        behavior = BehaviorSettings.from_dict(data.get("behavior") or {}, defaults.behavior)
        status_data = data.get("statusRefresh") or data.get("status_refresh") or {}
        status_refresh = StatusRefreshSettings.from_dict(status_data, defaults.status_refresh)

        raw_order = data.get("providerOrder") or data.get("provider_order")
        if raw_order:
            order = [p for p in (_provider_or_none(v) for v in raw_order) if p is not None]
            # Providers missing from a stored order keep their registration position at the end
            order += [p for p in ProviderName if p not in order]
        else:
            order = defaults.provider_order

        default_provider = _provider_or_none(
            data.get("defaultProvider", data.get("default_provider"))
        )
        version = data.get("version")
        return cls(
            providers=providers,
            behavior=behavior,
            status_refresh=status_refresh,
            provider_order=order,
            default_provider=default_provider,
            version=version if isinstance(version, int) else 0,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "providers": {name.value: ps.to_dict() for name, ps in self.providers.items()},
            "behavior": self.behavior.to_dict(),
            "statusRefresh": self.status_refresh.to_dict(),
            "providerOrder": [p.value for p in self.provider_order],
            "defaultProvider": self.default_provider.value if self.default_provider else None,
        }


def _provider_or_none(value: Any) -> Optional[ProviderName]:
    if value is None:
        return None
    try:
        return ProviderName(value)
    except ValueError:
        return None
