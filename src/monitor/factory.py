"""Convenience factory for wiring the monitoring stack."""

from __future__ import annotations

from dataclasses import dataclass

import httpx
import structlog

from src.core.config import Settings
from src.monitor.channels import NotificationChannel
from src.monitor.dispatcher import NotificationDispatcher
from src.monitor.events import EventBus
from src.monitor.liveness import LivenessMonitor
from src.monitor.prober import SiteProber
from src.store.base import FleetStore
from src.store.memory import MemoryStore

logger = structlog.get_logger(__name__)


@dataclass
class MonitorStack:
    """Every engine component, wired to one store and one bus."""

    store: FleetStore
    bus: EventBus
    dispatcher: NotificationDispatcher
    liveness: LivenessMonitor
    prober: SiteProber

    async def start(self) -> None:
        await self.liveness.start()
        await self.prober.start()

    async def stop(self) -> None:
        """Stop the loops first, then drop pending notifications and subscribers."""
        for name, component in (("liveness", self.liveness), ("prober", self.prober)):
            try:
                await component.stop()
            except Exception:
                logger.exception("component_stop_error", component=name)
        await self.dispatcher.close()
        self.bus.close()


def create_monitor_stack(
    settings: Settings,
    store: FleetStore | None = None,
    channel: NotificationChannel | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> MonitorStack:
    """Build the engine from settings.

    Args:
        settings: Root settings.
        store: Storage collaborator. Defaults to a fresh MemoryStore.
        channel: Notification sink override (tests); otherwise a webhook
            channel is created from ``settings.notifications.webhook_url``.
        http_client: httpx client override for the site prober.
    """
    store = store if store is not None else MemoryStore()
    bus = EventBus(queue_size=settings.events.subscriber_queue_size)
    dispatcher = NotificationDispatcher(
        store=store,
        config=settings.notifications,
        channel=channel,
    )
    liveness = LivenessMonitor(
        store=store,
        bus=bus,
        dispatcher=dispatcher,
        config=settings.liveness,
    )
    prober = SiteProber(
        store=store,
        bus=bus,
        dispatcher=dispatcher,
        config=settings.sites,
        http_client=http_client,
    )
    return MonitorStack(
        store=store,
        bus=bus,
        dispatcher=dispatcher,
        liveness=liveness,
        prober=prober,
    )
