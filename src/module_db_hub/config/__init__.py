"""Configuration management for ModuleDbHub.

This module provides centralized configuration loaded from environment variables
with validation using Pydantic BaseSettings.

Usage:
    >>> from module_db_hub.config import get_settings
    >>> settings = get_settings()
    >>> print(settings.platform_schema)
"""

from module_db_hub.config.settings import (
    DEFAULT_RESERVED_NAMES_FILE,
    Settings,
    get_settings,
)

__all__ = [
    "DEFAULT_RESERVED_NAMES_FILE",
    "Settings",
    "get_settings",
]
