"""Core utilities for the gateway application."""

from tendergate.app.core.config import Settings, settings
from tendergate.app.core.logging import get_logger, setup_logging

__all__ = [
    "Settings",
    "settings",
    "get_logger",
    "setup_logging",
]
