"""Core app configuration, database and credential primitives."""

from backoffice.core.config import get_settings, settings
from backoffice.core.database import get_db

__all__ = ["get_settings", "settings", "get_db"]
