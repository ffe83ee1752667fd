"""Settings persistence manager.

Loads ``CoreSettings`` from settings.json, merging stored values over the
defaults. The core never writes settings on its own except for a version
migration or an explicit ``apply_patch``.
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Optional

from ..models.settings import SETTINGS_VERSION, CoreSettings

logger = logging.getLogger(__name__)


def deep_merge(target: dict[str, Any], source: dict[str, Any]) -> dict[str, Any]:
    """Merge ``source`` into a copy of ``target``; nested dicts merge, everything else replaces."""
    result = dict(target)
    for key, value in source.items():
        if value is None and key not in ("defaultProvider", "default_provider"):
            continue
        current = result.get(key)
        if isinstance(value, dict) and isinstance(current, dict):
            result[key] = deep_merge(current, value)
        else:
            result[key] = value
    return result


class SettingsManager:
    """Manages core settings persistence."""

    def __init__(self, settings_file: Path):
        """Initialize settings manager."""
        self.settings_file = Path(settings_file)
        self._settings: Optional[CoreSettings] = None
        self.migrated = False

    def _read_raw(self) -> Optional[dict[str, Any]]:
        if not self.settings_file.exists():
            return None
        try:
            with open(self.settings_file, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.error("Failed to load settings from %s: %s", self.settings_file, e)
            return None
        return data if isinstance(data, dict) else None

    def load(self) -> CoreSettings:
        """Load settings from disk (defaults when missing or unreadable).

        ``migrated`` is set when the stored version was older than the
        current one; the caller is expected to clear the usage cache.
        """
        raw = self._read_raw()
        if raw is None:
            self._settings = CoreSettings()
            self.migrated = False
            return self._settings

        merged = deep_merge(CoreSettings().to_dict(), raw)
        merged["version"] = raw.get("version") if isinstance(raw.get("version"), int) else 0
        settings = CoreSettings.from_dict(merged)
        self.migrated = settings.version < SETTINGS_VERSION
        if self.migrated:
            logger.info("Migrating settings from version %s to %s", settings.version, SETTINGS_VERSION)
            settings.version = SETTINGS_VERSION
            self._settings = settings
            self.save()
        self._settings = settings
        return settings

    @property
    def settings(self) -> CoreSettings:
        if self._settings is None:
            return self.load()
        return self._settings

    def save(self) -> None:
        """Save settings to file."""
        if self._settings is None:
            return
        try:
            self.settings_file.parent.mkdir(parents=True, exist_ok=True)
            # Set restrictive permissions
            old_umask = os.umask(0o077)
            try:
                with open(self.settings_file, "w", encoding="utf-8") as f:
                    json.dump(self._settings.to_dict(), f, indent=2)
                os.chmod(self.settings_file, 0o600)
            finally:
                os.umask(old_umask)
        except OSError as e:
            logger.error("Failed to save settings to %s: %s", self.settings_file, e)

    def apply_patch(self, patch: dict[str, Any]) -> CoreSettings:
        """Deep-merge a camelCase patch into the current settings and persist."""
        merged = deep_merge(self.settings.to_dict(), patch)
        self._settings = CoreSettings.from_dict(merged)
        self._settings.version = SETTINGS_VERSION
        self.save()
        return self._settings
