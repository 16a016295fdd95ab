"""Pydantic settings loaded from YAML configuration."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, SecretStr

_settings: Settings | None = None

_DEFAULT_CONFIG_PATH = Path("config/settings.yaml")


class LivenessConfig(BaseModel):
    """Heartbeat staleness detection."""

    heartbeat_timeout_secs: float = 30.0
    sweep_interval_secs: float = 30.0


class SitesConfig(BaseModel):
    """HTTP uptime probing of tracked sites."""

    check_interval_secs: float = 30.0
    request_timeout_secs: float = 5.0


class NotificationsConfig(BaseModel):
    """Outbound webhook notifications (Discord-compatible embeds)."""

    enabled: bool = False
    webhook_url: SecretStr = SecretStr("")
    min_send_interval_secs: float = 2.0
    default_retry_after_secs: float = 5.0
    request_timeout_secs: float = 10.0


class EventsConfig(BaseModel):
    """Live-update fan-out to connected viewers."""

    subscriber_queue_size: int = 256
    keepalive_secs: float = 15.0


class ServerConfig(BaseModel):
    """HTTP listener for the live-update stream and ingestion glue."""

    host: str = "0.0.0.0"
    port: int = 3000


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    format: str = "json"


class Settings(BaseModel):
    """Root settings container."""

    liveness: LivenessConfig = LivenessConfig()
    sites: SitesConfig = SitesConfig()
    notifications: NotificationsConfig = NotificationsConfig()
    events: EventsConfig = EventsConfig()
    server: ServerConfig = ServerConfig()
    logging: LoggingConfig = LoggingConfig()


def load_settings(path: str | Path | None = None) -> Settings:
    """Load settings from a YAML file and cache globally.

    Args:
        path: Path to YAML config. Defaults to config/settings.yaml.

    Returns:
        Parsed Settings instance.
    """
    global _settings  # noqa: PLW0603

    config_path = Path(path) if path else _DEFAULT_CONFIG_PATH

    data: dict[str, Any] = {}
    if config_path.exists():
        with open(config_path) as f:
            raw = yaml.safe_load(f)
            if isinstance(raw, dict):
                data = raw

    _settings = Settings(**data)
    return _settings


def get_settings() -> Settings:
    """Return the cached settings, loading defaults if not yet loaded."""
    global _settings  # noqa: PLW0603
    if _settings is None:
        _settings = load_settings()
    return _settings


def reset_settings() -> None:
    """Reset the cached settings (useful for testing)."""
    global _settings  # noqa: PLW0603
    _settings = None
