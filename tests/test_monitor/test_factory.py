"""Tests for the monitor factory — wiring and stack lifecycle."""

from __future__ import annotations

from pydantic import SecretStr

from src.core.config import (
    EventsConfig,
    LivenessConfig,
    NotificationsConfig,
    Settings,
    SitesConfig,
)
from src.monitor.channels import DiscordWebhookChannel, NotificationChannel
from src.monitor.dispatcher import NotificationDispatcher
from src.monitor.events import EventBus
from src.monitor.factory import MonitorStack, create_monitor_stack
from src.monitor.liveness import LivenessMonitor
from src.monitor.prober import SiteProber
from src.monitor.types import DeliveryResult, DeliveryStatus, Embed
from src.store.memory import MemoryStore


# ── Helpers ─────────────────────────────────────────────────────


class NullChannel(NotificationChannel):
    def __init__(self) -> None:
        self.closed = False

    async def send(self, embed: Embed) -> DeliveryResult:
        return DeliveryResult(status=DeliveryStatus.DELIVERED)

    async def close(self) -> None:
        self.closed = True


def _settings(**kw: object) -> Settings:
    defaults: dict[str, object] = {}
    defaults.update(kw)
    return Settings(**defaults)  # type: ignore[arg-type]


# ── Wiring ──────────────────────────────────────────────────────


class TestFactoryWiring:
    def test_default_components(self) -> None:
        stack = create_monitor_stack(_settings())
        assert isinstance(stack, MonitorStack)
        assert isinstance(stack.store, MemoryStore)
        assert isinstance(stack.bus, EventBus)
        assert isinstance(stack.dispatcher, NotificationDispatcher)
        assert isinstance(stack.liveness, LivenessMonitor)
        assert isinstance(stack.prober, SiteProber)

    def test_shared_store_and_bus(self) -> None:
        store = MemoryStore()
        stack = create_monitor_stack(_settings(), store=store)
        assert stack.store is store
        assert stack.liveness._store is store
        assert stack.prober._store is store
        assert stack.liveness._bus is stack.bus
        assert stack.prober._bus is stack.bus
        assert stack.liveness._dispatcher is stack.dispatcher
        assert stack.prober._dispatcher is stack.dispatcher

    def test_timing_from_settings(self) -> None:
        stack = create_monitor_stack(_settings(
            liveness=LivenessConfig(heartbeat_timeout_secs=45, sweep_interval_secs=10),
            sites=SitesConfig(check_interval_secs=120),
            events=EventsConfig(subscriber_queue_size=8),
        ))
        assert stack.liveness.timeout_secs == 45
        assert stack.liveness.interval_secs == 10
        assert stack.prober._config.check_interval_secs == 120
        assert stack.bus._queue_size == 8

    def test_notifications_disabled_by_default(self) -> None:
        stack = create_monitor_stack(_settings())
        assert stack.dispatcher.enabled is False

    def test_webhook_url_enables_dispatcher(self) -> None:
        stack = create_monitor_stack(_settings(
            notifications=NotificationsConfig(
                enabled=True,
                webhook_url=SecretStr("https://discord.com/api/webhooks/x"),
            ),
        ))
        assert stack.dispatcher.enabled is True
        channel = stack.dispatcher._get_channel()
        assert isinstance(channel, DiscordWebhookChannel)
        assert channel.webhook_url == "https://discord.com/api/webhooks/x"

    def test_channel_override(self) -> None:
        channel = NullChannel()
        stack = create_monitor_stack(
            _settings(notifications=NotificationsConfig(enabled=True)),
            channel=channel,
        )
        assert stack.dispatcher.enabled is True
        assert stack.dispatcher._get_channel() is channel


# ── Lifecycle ───────────────────────────────────────────────────


class TestStackLifecycle:
    async def test_start_and_stop(self) -> None:
        channel = NullChannel()
        stack = create_monitor_stack(
            _settings(notifications=NotificationsConfig(enabled=True)),
            channel=channel,
        )
        sub = stack.bus.subscribe()
        await stack.start()
        assert stack.liveness.running
        assert stack.prober.running

        await stack.stop()
        assert not stack.liveness.running
        assert not stack.prober.running
        assert channel.closed
        assert sub.closed
        assert stack.bus.subscriber_count == 0
