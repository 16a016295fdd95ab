"""LivenessMonitor — heartbeat staleness detection and server_down alerts.

The periodic sweep is the only writer of the ``online → offline`` transition.
Recovery happens on the heartbeat path: :meth:`LivenessMonitor.handle_heartbeat`
resolves the outstanding alert before the heartbeat flips the server back
online. Both paths hold the same lock, so a sweep and a heartbeat can never
act on the same transition concurrently.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable

import structlog

from src.core.config import LivenessConfig
from src.core.types import Alert, AlertSeverity, AlertType, Server, ServerStatus
from src.monitor.dispatcher import NotificationDispatcher
from src.monitor.events import EventBus, EventName
from src.store.base import FleetStore

logger = structlog.stdlib.get_logger()


class LivenessMonitor:
    """Flips stale servers offline and files/resolves ``server_down`` alerts.

    Usage::

        monitor = LivenessMonitor(store, bus, dispatcher, config.liveness)
        await monitor.start()
        # ingestion glue, for every accepted metrics payload:
        await monitor.handle_heartbeat(server_id, timestamp)
        # settings change:
        await monitor.restart(timeout_secs=60)
        await monitor.stop()
    """

    def __init__(
        self,
        store: FleetStore,
        bus: EventBus,
        dispatcher: NotificationDispatcher,
        config: LivenessConfig | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._bus = bus
        self._dispatcher = dispatcher
        self._config = config or LivenessConfig()
        self._clock = clock
        self._lock = asyncio.Lock()
        self._task: asyncio.Task[None] | None = None
        self._running = False
        self._sweep_count = 0
        self._last_sweep_at: float = 0.0

    # ── Properties ───────────────────────────────────────────────

    @property
    def running(self) -> bool:
        return self._running

    @property
    def timeout_secs(self) -> float:
        return self._config.heartbeat_timeout_secs

    @property
    def interval_secs(self) -> float:
        return self._config.sweep_interval_secs

    @property
    def sweep_count(self) -> int:
        """Number of completed sweeps."""
        return self._sweep_count

    @property
    def last_sweep_at(self) -> float:
        return self._last_sweep_at

    # ── Lifecycle ────────────────────────────────────────────────

    async def start(self) -> None:
        """Start the background sweep loop (first sweep runs immediately)."""
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._sweep_loop())
        logger.info(
            "liveness_monitor_started",
            interval_secs=self.interval_secs,
            timeout_secs=self.timeout_secs,
        )

    async def stop(self) -> None:
        """Stop the sweep loop and wait until it has fully exited."""
        self._running = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("liveness_monitor_stopped", sweep_count=self._sweep_count)

    async def restart(
        self,
        timeout_secs: float | None = None,
        interval_secs: float | None = None,
    ) -> None:
        """Stop, apply new timing, start again. Never two loops at once."""
        await self.stop()
        update: dict[str, float] = {}
        if timeout_secs is not None:
            update["heartbeat_timeout_secs"] = timeout_secs
        if interval_secs is not None:
            update["sweep_interval_secs"] = interval_secs
        if update:
            self._config = self._config.model_copy(update=update)
        await self.start()

    async def _sweep_loop(self) -> None:
        while self._running:
            try:
                await self.sweep()
            except asyncio.CancelledError:
                break
            except Exception:
                logger.exception("liveness_sweep_error")

            try:
                await asyncio.sleep(self._config.sweep_interval_secs)
            except asyncio.CancelledError:
                break

    # ── Sweep ────────────────────────────────────────────────────

    async def sweep(
        self,
        now: float | None = None,
        timeout_secs: float | None = None,
    ) -> list[Server]:
        """Mark every online server whose heartbeat is older than the timeout offline.

        Only the transition edge has effects: a server already offline is
        skipped, so repeated sweeps publish nothing new.

        Returns the servers transitioned by this sweep.
        """
        now = self._clock() if now is None else now
        timeout = self.timeout_secs if timeout_secs is None else timeout_secs
        transitioned: list[Server] = []

        async with self._lock:
            servers = await self._store.list_servers()
            for server in servers:
                if server.status != ServerStatus.ONLINE:
                    continue
                age = server.heartbeat_age(now)
                if age is None or age <= timeout:
                    continue
                try:
                    transitioned.append(await self._mark_offline(server, age))
                except Exception:
                    logger.exception("mark_offline_error", server_id=server.id)

        self._sweep_count += 1
        self._last_sweep_at = now
        return transitioned

    async def _mark_offline(self, server: Server, age: float) -> Server:
        # Alert before status: if either write fails the server stays online
        # and the next sweep retries, with dedup absorbing a repeat insert.
        alert, created = await self._store.create_alert_if_absent(Alert(
            server_id=server.id,
            type=AlertType.SERVER_DOWN,
            message=f'Server "{server.name}" ({server.hostname}) is not responding',
            severity=AlertSeverity.CRITICAL,
            created_at=self._clock(),
        ))
        if created:
            self._bus.publish(EventName.ALERT_NEW, alert)
            self._dispatcher.enqueue(alert, server)

        updated = await self._store.update_server_status(server.id, ServerStatus.OFFLINE)
        self._bus.publish(EventName.SERVER_UPDATE, updated)
        logger.warning(
            "server_marked_offline",
            server_id=server.id,
            heartbeat_age_secs=round(age, 1),
            alert_id=alert.id,
            alert_created=created,
        )
        return updated

    # ── Heartbeat path ───────────────────────────────────────────

    async def on_recovery(self, server_id: str) -> Alert | None:
        """Resolve the server's active ``server_down`` alert, if there is one.

        Safe to call when nothing is outstanding: no alert, no event.
        """
        server = await self._store.get_server(server_id)
        if server is None:
            return None

        existing = await self._store.find_active_alert(server_id, AlertType.SERVER_DOWN)
        if existing is None:
            return None

        resolved = await self._store.resolve_alert(existing.id)
        self._bus.publish(EventName.ALERT_RESOLVED, resolved)
        self._dispatcher.enqueue(resolved, server, is_recovery=True)
        logger.info("server_recovered", server_id=server_id, alert_id=resolved.id)
        return resolved

    async def handle_heartbeat(
        self,
        server_id: str,
        timestamp: float | None = None,
    ) -> Server | None:
        """Record a heartbeat, resolving the outage first if the server was offline.

        Returns the updated server, or None if the id is unknown.
        """
        ts = self._clock() if timestamp is None else timestamp
        async with self._lock:
            server = await self._store.get_server(server_id)
            if server is None:
                logger.warning("heartbeat_unknown_server", server_id=server_id)
                return None
            if server.status == ServerStatus.OFFLINE:
                await self.on_recovery(server_id)
            updated = await self._store.record_heartbeat(server_id, ts)

        self._bus.publish(EventName.SERVER_UPDATE, updated)
        return updated
