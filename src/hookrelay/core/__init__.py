"""Core module for HookRelay.

Contains settings and logging configuration.
"""

from .logging_config import setup_logging
from .settings import DispatchSettings, get_settings

__all__ = [
    "DispatchSettings",
    "get_settings",
    "setup_logging",
]
