"""Pickup service core module.

Shared components used by the API and the worker:
- Configuration management
- Settings accessor
"""

from pharmapickup.core.config import (
    ConfigValidationError,
    DatabaseSettings,
    Environment,
    EventSettings,
    PickupSettings,
    Settings,
    SweeperSettings,
)
from pharmapickup.core.settings import (
    clear_settings_cache,
    get_settings,
    get_settings_safe,
)

__all__ = [
    "ConfigValidationError",
    "DatabaseSettings",
    "Environment",
    "EventSettings",
    "PickupSettings",
    "Settings",
    "SweeperSettings",
    "clear_settings_cache",
    "get_settings",
    "get_settings_safe",
]
