"""ViewModels for subcore."""

from .usage_controller import UsageController, UsageControllerState, UsageUpdate
from .usage_service import UsageService

__all__ = [
    "UsageController",
    "UsageControllerState",
    "UsageUpdate",
    "UsageService",
]
