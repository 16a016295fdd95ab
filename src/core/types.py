"""Domain types for fleet monitoring — servers, tracked sites, and alerts."""

from __future__ import annotations

import time
from enum import StrEnum

from pydantic import BaseModel, Field


class ServerStatus(StrEnum):
    """Liveness state of a monitored server."""

    ONLINE = "online"
    OFFLINE = "offline"
    DEGRADED = "degraded"
    UNKNOWN = "unknown"


class SiteStatus(StrEnum):
    """Reachability of a tracked site."""

    UP = "up"
    DOWN = "down"
    UNKNOWN = "unknown"


class AlertType(StrEnum):
    """Kind of condition an alert reports."""

    SERVER_DOWN = "server_down"
    CONTAINER_STOPPED = "container_stopped"
    HIGH_CPU = "high_cpu"
    HIGH_MEMORY = "high_memory"


class AlertSeverity(StrEnum):
    """Alert severity as shown to operators and the webhook sink."""

    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


class AlertStatus(StrEnum):
    """Alert lifecycle state."""

    ACTIVE = "active"
    ACKNOWLEDGED = "acknowledged"
    RESOLVED = "resolved"


class Server(BaseModel):
    """A monitored host that pushes heartbeats."""

    id: str
    name: str
    hostname: str = ""
    status: ServerStatus = ServerStatus.UNKNOWN
    last_heartbeat: float | None = None
    registered_at: float = Field(default_factory=time.time)

    def heartbeat_age(self, now: float) -> float | None:
        """Seconds since the last heartbeat, or None if never seen."""
        if self.last_heartbeat is None:
            return None
        return now - self.last_heartbeat


class Site(BaseModel):
    """An external URL probed for uptime on behalf of a server."""

    id: str
    server_id: str
    name: str
    url: str
    status: SiteStatus = SiteStatus.UNKNOWN
    response_time: int | None = None  # milliseconds
    last_checked: float | None = None
    created_at: float = Field(default_factory=time.time)


class Alert(BaseModel):
    """A raised condition tied to a server, a container, or a tracked site.

    ``(server_id, container_id, site_id, type)`` is the dedup key: at most one
    alert with that key may be ``active`` at a time.
    """

    id: int = 0
    server_id: str | None = None
    container_id: str | None = None
    site_id: str | None = None
    type: AlertType
    message: str
    severity: AlertSeverity = AlertSeverity.WARNING
    status: AlertStatus = AlertStatus.ACTIVE
    created_at: float = Field(default_factory=time.time)
    acknowledged_at: float | None = None
    resolved_at: float | None = None
    notified: bool = False

    @property
    def key(self) -> tuple[str | None, str | None, str | None, AlertType]:
        return (self.server_id, self.container_id, self.site_id, self.type)

    @property
    def is_active(self) -> bool:
        return self.status == AlertStatus.ACTIVE
