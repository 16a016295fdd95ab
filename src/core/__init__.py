"""Core module — config, types, logging."""

from src.core.config import Settings, get_settings, load_settings, reset_settings
from src.core.logging import setup_logging
from src.core.types import (
    Alert,
    AlertSeverity,
    AlertStatus,
    AlertType,
    Server,
    ServerStatus,
    Site,
    SiteStatus,
)

__all__ = [
    "Alert",
    "AlertSeverity",
    "AlertStatus",
    "AlertType",
    "Server",
    "ServerStatus",
    "Settings",
    "Site",
    "SiteStatus",
    "get_settings",
    "load_settings",
    "reset_settings",
    "setup_logging",
]
