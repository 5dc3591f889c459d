"""
MedVerse Common package - shared client-side infrastructure for the MedVerse app.

Contains the cache/loading coordinator, notification sinks and logging setup.
"""

__version__ = "0.1.0"

from .cache import (
    CacheClearError,
    CacheManager,
    CacheManagerConfig,
    ConfirmationRequiredError,
    LoadingSupervisor,
    SeverityLevel,
)
from .notify import Toast

__all__ = [
    "CacheClearError",
    "CacheManager",
    "CacheManagerConfig",
    "ConfirmationRequiredError",
    "LoadingSupervisor",
    "SeverityLevel",
    "Toast",
]
