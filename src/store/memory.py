"""In-process FleetStore backed by dicts.

Records are copied on the way in and out so callers never hold a reference
to stored state.
"""

from __future__ import annotations

import asyncio
import itertools
import time

import structlog

from src.core.types import (
    Alert,
    AlertStatus,
    AlertType,
    Server,
    ServerStatus,
    Site,
    SiteStatus,
)
from src.store.base import FleetStore
from src.store.exceptions import (
    AlertNotFoundError,
    ServerNotFoundError,
    SiteNotFoundError,
)

logger = structlog.stdlib.get_logger()


class MemoryStore(FleetStore):
    """Dict-backed store with a single writer lock for alert inserts.

    Usage::

        store = MemoryStore()
        await store.add_server(Server(id="s1", name="web-1"))
        await store.add_site(Site(id="x", server_id="s1", name="app", url="https://..."))
    """

    def __init__(self) -> None:
        self._servers: dict[str, Server] = {}
        self._sites: dict[str, Site] = {}
        self._alerts: dict[int, Alert] = {}
        self._ids = itertools.count(1)
        self._alert_lock = asyncio.Lock()

    # ── Seeding ──────────────────────────────────────────────────

    async def add_server(self, server: Server) -> Server:
        self._servers[server.id] = server.model_copy()
        return server.model_copy()

    async def remove_server(self, server_id: str) -> None:
        """Delete a server and the sites it owns."""
        self._servers.pop(server_id, None)
        for site_id in [s.id for s in self._sites.values() if s.server_id == server_id]:
            del self._sites[site_id]

    async def add_site(self, site: Site) -> Site:
        self._sites[site.id] = site.model_copy()
        return site.model_copy()

    async def remove_site(self, site_id: str) -> None:
        self._sites.pop(site_id, None)

    # ── Servers ──────────────────────────────────────────────────

    async def list_servers(self) -> list[Server]:
        return [s.model_copy() for s in self._servers.values()]

    async def get_server(self, server_id: str) -> Server | None:
        server = self._servers.get(server_id)
        return server.model_copy() if server else None

    async def update_server_status(self, server_id: str, status: ServerStatus) -> Server:
        server = self._require_server(server_id)
        server.status = status
        return server.model_copy()

    async def record_heartbeat(self, server_id: str, timestamp: float) -> Server:
        server = self._require_server(server_id)
        server.last_heartbeat = timestamp
        server.status = ServerStatus.ONLINE
        return server.model_copy()

    # ── Sites ────────────────────────────────────────────────────

    async def list_sites(self) -> list[Site]:
        return [s.model_copy() for s in self._sites.values()]

    async def get_site(self, site_id: str) -> Site | None:
        site = self._sites.get(site_id)
        return site.model_copy() if site else None

    async def update_site_status(
        self,
        site_id: str,
        status: SiteStatus,
        response_time: int | None,
        checked_at: float,
    ) -> Site:
        site = self._sites.get(site_id)
        if site is None:
            raise SiteNotFoundError(site_id)
        site.status = status
        site.response_time = response_time
        site.last_checked = checked_at
        return site.model_copy()

    # ── Alerts ───────────────────────────────────────────────────

    async def find_active_alert(
        self,
        server_id: str | None,
        alert_type: AlertType,
        container_id: str | None = None,
        site_id: str | None = None,
    ) -> Alert | None:
        alert = self._find_active((server_id, container_id, site_id, alert_type))
        return alert.model_copy() if alert else None

    async def create_alert(self, alert: Alert) -> Alert:
        stored = alert.model_copy(update={"id": next(self._ids)})
        self._alerts[stored.id] = stored
        logger.debug(
            "alert_stored",
            alert_id=stored.id,
            alert_type=stored.type,
            server_id=stored.server_id,
        )
        return stored.model_copy()

    async def create_alert_if_absent(self, alert: Alert) -> tuple[Alert, bool]:
        async with self._alert_lock:
            existing = self._find_active(alert.key)
            if existing is not None:
                return existing.model_copy(), False
            return await self.create_alert(alert), True

    async def acknowledge_alert(self, alert_id: int) -> Alert:
        alert = self._require_alert(alert_id)
        alert.status = AlertStatus.ACKNOWLEDGED
        alert.acknowledged_at = time.time()
        return alert.model_copy()

    async def resolve_alert(self, alert_id: int) -> Alert:
        alert = self._require_alert(alert_id)
        alert.status = AlertStatus.RESOLVED
        alert.resolved_at = time.time()
        return alert.model_copy()

    async def mark_notified(self, alert_id: int) -> None:
        self._require_alert(alert_id).notified = True

    async def list_alerts(
        self, status: AlertStatus | None = None, limit: int = 200,
    ) -> list[Alert]:
        alerts = [
            a for a in self._alerts.values()
            if status is None or a.status == status
        ]
        alerts.sort(key=lambda a: (a.created_at, a.id), reverse=True)
        return [a.model_copy() for a in alerts[:limit]]

    # ── Helpers ──────────────────────────────────────────────────

    def _find_active(
        self, key: tuple[str | None, str | None, str | None, AlertType],
    ) -> Alert | None:
        for alert in self._alerts.values():
            if alert.is_active and alert.key == key:
                return alert
        return None

    def _require_server(self, server_id: str) -> Server:
        server = self._servers.get(server_id)
        if server is None:
            raise ServerNotFoundError(server_id)
        return server

    def _require_alert(self, alert_id: int) -> Alert:
        alert = self._alerts.get(alert_id)
        if alert is None:
            raise AlertNotFoundError(alert_id)
        return alert
