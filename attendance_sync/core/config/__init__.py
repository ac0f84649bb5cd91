"""Configuration module for the attendance sync service.

Usage:
    from attendance_sync.core.config import settings, Environment

    if settings.ENVIRONMENT == Environment.PRD:
        ...
"""

from attendance_sync.core.config.enums import Environment
from attendance_sync.core.config.settings import Settings

__all__ = [
    "Settings",
    "Environment",
    "settings",
]

# Singleton settings instance
settings = Settings()
