"""
Core module initialization.
Exports configuration, logging utilities and domain errors.
"""

from app.core.config import get_settings, Settings, EnvironmentMode
from app.core.errors import POSError, ValidationError, NotFoundError, ConflictError

__all__ = [
    "get_settings",
    "Settings",
    "EnvironmentMode",
    "POSError",
    "ValidationError",
    "NotFoundError",
    "ConflictError",
]
