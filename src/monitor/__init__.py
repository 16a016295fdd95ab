"""Liveness, site probing, notification, and live-update subsystem."""

from src.monitor.channels import DiscordWebhookChannel, NotificationChannel
from src.monitor.dispatcher import NotificationDispatcher
from src.monitor.events import EventBus, EventName, QueueSubscriber, Subscriber
from src.monitor.factory import MonitorStack, create_monitor_stack
from src.monitor.formatters import format_alert_embed, format_test_embed
from src.monitor.liveness import LivenessMonitor
from src.monitor.prober import ProbeResult, SiteProber
from src.monitor.types import (
    DeliveryResult,
    DeliveryStatus,
    Embed,
    EmbedField,
    NotificationItem,
)

__all__ = [
    "DeliveryResult",
    "DeliveryStatus",
    "DiscordWebhookChannel",
    "Embed",
    "EmbedField",
    "EventBus",
    "EventName",
    "LivenessMonitor",
    "MonitorStack",
    "NotificationChannel",
    "NotificationDispatcher",
    "NotificationItem",
    "ProbeResult",
    "QueueSubscriber",
    "SiteProber",
    "Subscriber",
    "create_monitor_stack",
    "format_alert_embed",
    "format_test_embed",
]
