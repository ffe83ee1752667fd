"""Utility functions for subcore."""

from .paths import CorePaths
from .settings import SettingsManager

__all__ = [
    "CorePaths",
    "SettingsManager",
]
