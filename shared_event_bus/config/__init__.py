"""
PURPOSE: Export configuration settings and constants for the shared event bus.
"""

from .constants import DEFAULT_CHANNEL_PREFIX, DistributedOutcome, EventName
from .settings import Settings, load_settings

__all__ = [
    "DEFAULT_CHANNEL_PREFIX",
    "DistributedOutcome",
    "EventName",
    "Settings",
    "load_settings",
]
