"""
Core module initialization.
Exports configuration and logging utilities.
"""

from tableside.core.config import (
    ClientSettings,
    EnvironmentMode,
    Settings,
    get_client_settings,
    get_settings,
)

__all__ = [
    "get_settings",
    "get_client_settings",
    "Settings",
    "ClientSettings",
    "EnvironmentMode",
]
