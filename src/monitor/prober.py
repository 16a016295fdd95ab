"""SiteProber — periodic HTTP uptime checks for tracked sites.

Every sweep probes all sites concurrently and waits for all of them (each
bounded by a hard timeout) before applying results, so one sweep never
overlaps the next.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable

import httpx
import structlog
from pydantic import BaseModel

from src.core.config import SitesConfig
from src.core.types import Alert, AlertSeverity, AlertType, Site, SiteStatus
from src.monitor.dispatcher import NotificationDispatcher
from src.monitor.events import EventBus, EventName
from src.store.base import FleetStore

logger = structlog.stdlib.get_logger()


class ProbeResult(BaseModel):
    """Outcome of one HTTP check."""

    site_id: str
    status: SiteStatus
    response_time: int | None = None  # milliseconds
    http_status: int | None = None
    checked_at: float
    error: str = ""


class SiteProber:
    """Probes tracked URLs and raises/resolves site-scoped ``server_down`` alerts.

    Site alerts carry ``site_id`` and are deduplicated per site only; they are
    independent of the owning server's own liveness alert.

    Usage::

        prober = SiteProber(store, bus, dispatcher, config.sites)
        await prober.start()
        ...
        await prober.stop()
    """

    def __init__(
        self,
        store: FleetStore,
        bus: EventBus,
        dispatcher: NotificationDispatcher,
        config: SitesConfig | None = None,
        http_client: httpx.AsyncClient | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._bus = bus
        self._dispatcher = dispatcher
        self._config = config or SitesConfig()
        self._http = http_client
        self._owns_client = http_client is None
        self._clock = clock
        self._task: asyncio.Task[None] | None = None
        self._running = False
        self._sweep_count = 0

    # ── Properties ───────────────────────────────────────────────

    @property
    def running(self) -> bool:
        return self._running

    @property
    def sweep_count(self) -> int:
        """Number of completed probe sweeps."""
        return self._sweep_count

    # ── Lifecycle ────────────────────────────────────────────────

    async def connect(self) -> httpx.AsyncClient:
        """Create the httpx async client if one was not injected; return it."""
        if self._http is None:
            self._http = httpx.AsyncClient(
                timeout=httpx.Timeout(self._config.request_timeout_secs),
                follow_redirects=True,
            )
            self._owns_client = True
        return self._http

    async def close(self) -> None:
        """Close the httpx client if this prober created it."""
        if self._http is not None and self._owns_client:
            await self._http.aclose()
            self._http = None

    async def start(self) -> None:
        """Start the background probe loop (first sweep runs immediately)."""
        if self._running:
            return
        self._running = True
        await self.connect()
        self._task = asyncio.create_task(self._probe_loop())
        logger.info(
            "site_prober_started",
            interval_secs=self._config.check_interval_secs,
            timeout_secs=self._config.request_timeout_secs,
        )

    async def stop(self) -> None:
        """Stop the probe loop, wait for it to exit, and release the client."""
        self._running = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        await self.close()
        logger.info("site_prober_stopped", sweep_count=self._sweep_count)

    async def restart(self) -> None:
        await self.stop()
        await self.start()

    async def _probe_loop(self) -> None:
        while self._running:
            try:
                await self.probe_all()
            except asyncio.CancelledError:
                break
            except Exception:
                logger.exception("site_probe_sweep_error")

            try:
                await asyncio.sleep(self._config.check_interval_secs)
            except asyncio.CancelledError:
                break

    # ── Probing ──────────────────────────────────────────────────

    async def probe_all(self) -> list[ProbeResult]:
        """Check every tracked site once and apply the results."""
        await self.connect()
        sites = await self._store.list_sites()
        results = await asyncio.gather(*(self.check(site) for site in sites))

        for site, result in zip(sites, results):
            try:
                await self._apply(site, result)
            except Exception:
                logger.exception("site_result_apply_error", site_id=site.id)

        self._sweep_count += 1
        return list(results)

    async def check(self, site: Site) -> ProbeResult:
        """Issue one GET with a hard timeout and classify the response."""
        client = await self.connect()
        started = time.perf_counter()
        try:
            resp = await asyncio.wait_for(
                client.get(site.url),
                timeout=self._config.request_timeout_secs,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException):
            return self._down(site, "timeout")
        except httpx.HTTPError as exc:
            return self._down(site, f"{type(exc).__name__}: {exc}")
        except Exception as exc:
            logger.exception("site_probe_error", site_id=site.id, url=site.url)
            return self._down(site, repr(exc))

        elapsed_ms = int((time.perf_counter() - started) * 1000)
        return ProbeResult(
            site_id=site.id,
            status=SiteStatus.UP if resp.is_success else SiteStatus.DOWN,
            response_time=elapsed_ms,
            http_status=resp.status_code,
            checked_at=self._clock(),
        )

    def _down(self, site: Site, error: str) -> ProbeResult:
        logger.debug("site_probe_failed", site_id=site.id, url=site.url, error=error)
        return ProbeResult(
            site_id=site.id,
            status=SiteStatus.DOWN,
            checked_at=self._clock(),
            error=error,
        )

    async def _apply(self, site: Site, result: ProbeResult) -> None:
        if site.status != result.status:
            await self._on_status_change(site, result.status)

        updated = await self._store.update_site_status(
            site.id, result.status, result.response_time, result.checked_at,
        )
        self._bus.publish(EventName.SITE_UPDATE, updated)

    async def _on_status_change(self, site: Site, new_status: SiteStatus) -> None:
        logger.info(
            "site_status_changed",
            site_id=site.id,
            url=site.url,
            old=site.status.value,
            new=new_status.value,
        )
        server = await self._store.get_server(site.server_id)

        if new_status == SiteStatus.DOWN:
            if server is None:
                logger.warning("site_owner_missing", site_id=site.id, server_id=site.server_id)
                return
            alert, created = await self._store.create_alert_if_absent(Alert(
                server_id=site.server_id,
                site_id=site.id,
                type=AlertType.SERVER_DOWN,
                message=f'Site "{site.name}" ({site.url}) is not responding',
                severity=AlertSeverity.WARNING,
                created_at=self._clock(),
            ))
            if created:
                self._bus.publish(EventName.ALERT_NEW, alert)
                self._dispatcher.enqueue(alert, server)
            return

        if new_status == SiteStatus.UP and site.status == SiteStatus.DOWN:
            existing = await self._store.find_active_alert(
                site.server_id, AlertType.SERVER_DOWN, site_id=site.id,
            )
            if existing is None:
                return
            resolved = await self._store.resolve_alert(existing.id)
            self._bus.publish(EventName.ALERT_RESOLVED, resolved)
            self._dispatcher.enqueue(resolved, server, is_recovery=True)
