"""Pure functions that render notification items into webhook embeds."""

from __future__ import annotations

import datetime

from src.core.types import AlertSeverity
from src.monitor.types import Embed, EmbedField, NotificationItem

# Embed colours keyed by severity; recoveries are always green.
SEVERITY_COLORS: dict[AlertSeverity, int] = {
    AlertSeverity.INFO: 0x3498DB,      # blue
    AlertSeverity.WARNING: 0xF39C12,   # orange
    AlertSeverity.CRITICAL: 0xE74C3C,  # red
}
RECOVERY_COLOR = 0x2ECC71  # green


def _iso(ts: float) -> str:
    dt = datetime.datetime.fromtimestamp(ts, tz=datetime.UTC)
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def alert_title(item: NotificationItem) -> str:
    if item.is_recovery:
        return "Recovered"
    return f"Alert: {item.alert.type.value.replace('_', ' ').upper()}"


def format_alert_embed(item: NotificationItem) -> Embed:
    """Convert a queued notification into the sink's embed shape."""
    alert = item.alert
    if item.is_recovery:
        color = RECOVERY_COLOR
    else:
        color = SEVERITY_COLORS.get(alert.severity, SEVERITY_COLORS[AlertSeverity.WARNING])

    server_label = (
        item.server.name if item.server is not None
        else alert.server_id or "Unknown"
    )
    status_label = "Resolved" if item.is_recovery else alert.status.value

    return Embed(
        title=alert_title(item),
        description=alert.message,
        color=color,
        fields=[
            EmbedField(name="Server", value=server_label),
            EmbedField(name="Severity", value=alert.severity.value),
            EmbedField(name="Status", value=status_label),
        ],
        timestamp=_iso(alert.created_at),
    )


def format_test_embed(now: float) -> Embed:
    """Fixed message used to verify a webhook URL."""
    return Embed(
        title="Fleet Monitor - Test",
        description="Webhook is working correctly!",
        color=RECOVERY_COLOR,
        timestamp=_iso(now),
    )
