"""Storage interface the engine reads and writes through.

Persistence itself lives outside the engine; anything implementing
:class:`FleetStore` (SQL, document store, the in-memory store used by tests
and single-process deployments) can back the monitors.
"""

from __future__ import annotations

import abc

from src.core.types import (
    Alert,
    AlertStatus,
    AlertType,
    Server,
    ServerStatus,
    Site,
    SiteStatus,
)


class FleetStore(abc.ABC):
    """Servers, tracked sites, and alerts as seen by the monitoring engine."""

    # ── Servers ──────────────────────────────────────────────────

    @abc.abstractmethod
    async def list_servers(self) -> list[Server]:
        """Return every known server."""

    @abc.abstractmethod
    async def get_server(self, server_id: str) -> Server | None:
        """Return a server by id, or None."""

    @abc.abstractmethod
    async def update_server_status(self, server_id: str, status: ServerStatus) -> Server:
        """Overwrite a server's status and return the updated record."""

    @abc.abstractmethod
    async def record_heartbeat(self, server_id: str, timestamp: float) -> Server:
        """Store a heartbeat and mark the server online."""

    # ── Sites ────────────────────────────────────────────────────

    @abc.abstractmethod
    async def list_sites(self) -> list[Site]:
        """Return every tracked site."""

    @abc.abstractmethod
    async def get_site(self, site_id: str) -> Site | None:
        """Return a site by id, or None."""

    @abc.abstractmethod
    async def update_site_status(
        self,
        site_id: str,
        status: SiteStatus,
        response_time: int | None,
        checked_at: float,
    ) -> Site:
        """Persist the outcome of one probe and return the updated record."""

    # ── Alerts ───────────────────────────────────────────────────

    @abc.abstractmethod
    async def find_active_alert(
        self,
        server_id: str | None,
        alert_type: AlertType,
        container_id: str | None = None,
        site_id: str | None = None,
    ) -> Alert | None:
        """Return the active alert for an entity/type key, or None."""

    @abc.abstractmethod
    async def create_alert(self, alert: Alert) -> Alert:
        """Insert an alert unconditionally and return it with its new id."""

    @abc.abstractmethod
    async def create_alert_if_absent(self, alert: Alert) -> tuple[Alert, bool]:
        """Insert an alert unless one is already active for its key.

        The check and the insert happen atomically.

        Returns:
            (alert, created) — the existing active alert and False when the
            key was taken, otherwise the inserted alert and True.
        """

    @abc.abstractmethod
    async def acknowledge_alert(self, alert_id: int) -> Alert:
        """Mark an alert acknowledged by an operator."""

    @abc.abstractmethod
    async def resolve_alert(self, alert_id: int) -> Alert:
        """Mark an alert resolved."""

    @abc.abstractmethod
    async def mark_notified(self, alert_id: int) -> None:
        """Record that a notification for the alert was delivered."""

    @abc.abstractmethod
    async def list_alerts(
        self, status: AlertStatus | None = None, limit: int = 200,
    ) -> list[Alert]:
        """Return alerts newest first, optionally filtered by status."""
