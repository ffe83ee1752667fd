"""File locations shared by the cache, lock and settings."""

import os
import platform
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

APP_NAME = "subcore"


def config_dir(app_name: str = APP_NAME) -> Path:
    """Per-platform configuration directory (``SUBCORE_HOME`` overrides it)."""
    override = os.getenv("SUBCORE_HOME")
    if override:
        return Path(override).expanduser()

    system = platform.system()
    if system == "Darwin":  # macOS
        return Path.home() / "Library" / "Preferences" / app_name
    if system == "Windows":
        return Path.home() / "AppData" / "Local" / app_name
    return Path.home() / ".config" / app_name


@dataclass(frozen=True)
class CorePaths:
    """Where the shared cache, its lock and the settings live.

    Built once at startup and handed to each component.
    """
    cache_path: Path
    lock_path: Path
    settings_path: Path

    @classmethod
    def in_directory(cls, directory: Union[str, Path]) -> "CorePaths":
        base = Path(directory)
        return cls(
            cache_path=base / "cache.json",
            lock_path=base / "cache.lock",
            settings_path=base / "settings.json",
        )

    @classmethod
    def default(cls, directory: Optional[Union[str, Path]] = None) -> "CorePaths":
        return cls.in_directory(directory or config_dir())

    def ensure_dirs(self) -> None:
        for path in (self.cache_path, self.lock_path, self.settings_path):
            path.parent.mkdir(parents=True, exist_ok=True)
