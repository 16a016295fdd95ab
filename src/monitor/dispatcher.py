"""Notification dispatcher — ordered, rate-limited delivery to the webhook sink."""

from __future__ import annotations

import asyncio
import time
from collections import deque
from collections.abc import Awaitable, Callable

import structlog
from pydantic import SecretStr

from src.core.config import NotificationsConfig
from src.core.types import Alert, Server
from src.monitor.channels import DiscordWebhookChannel, NotificationChannel
from src.monitor.formatters import format_alert_embed, format_test_embed
from src.monitor.types import DeliveryResult, DeliveryStatus, NotificationItem
from src.store.base import FleetStore

logger = structlog.get_logger(__name__)

SleepFn = Callable[[float], Awaitable[None]]
ChannelFactory = Callable[[str], NotificationChannel]


class NotificationDispatcher:
    """FIFO queue of alert notifications drained by a single worker task.

    - At most one notification is in flight; items go out in enqueue order.
    - After each attempt the worker waits ``min_send_interval_secs``.
    - A rate-limited item goes back to the *front* of the queue and the worker
      sleeps for the sink's retry hint (default ``default_retry_after_secs``).
    - Any other failure drops the item; the queue keeps moving.
    - The worker exits when the queue is empty and ``enqueue`` restarts it.
      Nothing is persisted: pending items are lost on shutdown.
    """

    def __init__(
        self,
        store: FleetStore,
        config: NotificationsConfig | None = None,
        channel: NotificationChannel | None = None,
        channel_factory: ChannelFactory | None = None,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self._store = store
        self._config = config or NotificationsConfig()
        self._channel_factory: ChannelFactory = channel_factory or self._default_channel
        self._channel = channel
        self._sleep = sleep
        self._queue: deque[NotificationItem] = deque()
        self._task: asyncio.Task[None] | None = None
        self._sent = 0
        self._dropped = 0
        self._throttled = 0
        # Channel the worker is awaiting, and replaced channels waiting on it.
        self._sending: NotificationChannel | None = None
        self._retired: list[NotificationChannel] = []

    # ── Properties ───────────────────────────────────────────────

    @property
    def enabled(self) -> bool:
        """Whether notifications are on and a sink is configured."""
        return self._config.enabled and (
            self._channel is not None or bool(self._webhook_url)
        )

    @property
    def running(self) -> bool:
        """Whether the worker task is currently draining the queue."""
        return self._task is not None and not self._task.done()

    @property
    def pending(self) -> int:
        return len(self._queue)

    @property
    def sent_count(self) -> int:
        return self._sent

    @property
    def dropped_count(self) -> int:
        return self._dropped

    @property
    def throttled_count(self) -> int:
        return self._throttled

    @property
    def _webhook_url(self) -> str:
        return self._config.webhook_url.get_secret_value()

    # ── Public API ───────────────────────────────────────────────

    def enqueue(
        self,
        alert: Alert,
        server: Server | None = None,
        is_recovery: bool = False,
    ) -> bool:
        """Queue a notification. Returns False when notifications are off."""
        if not self.enabled:
            return False
        self._queue.append(
            NotificationItem(alert=alert, server=server, is_recovery=is_recovery)
        )
        logger.debug(
            "notification_enqueued",
            alert_id=alert.id,
            recovery=is_recovery,
            pending=len(self._queue),
        )
        if not self.running:
            self._task = asyncio.create_task(self._drain())
        return True

    async def configure(
        self,
        enabled: bool | None = None,
        webhook_url: str | None = None,
    ) -> None:
        """Apply a settings change; a new URL replaces the current channel."""
        update: dict[str, object] = {}
        if enabled is not None:
            update["enabled"] = enabled
        if webhook_url is not None and webhook_url != self._webhook_url:
            update["webhook_url"] = SecretStr(webhook_url)
            if self._channel is not None:
                old, self._channel = self._channel, None
                if old is self._sending:
                    self._retired.append(old)
                else:
                    await old.close()
        self._config = self._config.model_copy(update=update)
        logger.info(
            "notifications_configured",
            enabled=self._config.enabled,
            has_url=bool(self._webhook_url),
        )

    async def send_test(self, url: str) -> bool:
        """Post a fixed test message to *url*, outside the queue."""
        channel = self._channel_factory(url)
        try:
            result = await channel.send(format_test_embed(time.time()))
        finally:
            await channel.close()
        return result.ok

    # ── Worker ───────────────────────────────────────────────────

    async def _drain(self) -> None:
        while self._queue:
            item = self._queue.popleft()
            result = await self._deliver(item)

            if result.status == DeliveryStatus.RATE_LIMITED:
                delay = result.retry_after
                if delay is None:
                    delay = self._config.default_retry_after_secs
                self._queue.appendleft(item)
                self._throttled += 1
                logger.warning(
                    "notification_rate_limited",
                    alert_id=item.alert.id,
                    retry_after=delay,
                    pending=len(self._queue),
                )
                await self._sleep(delay)
                continue

            if result.ok:
                self._sent += 1
                await self._mark_notified(item)
            else:
                self._dropped += 1
                logger.error(
                    "notification_dropped",
                    alert_id=item.alert.id,
                    http_status=result.http_status,
                    detail=result.detail,
                )

            await self._sleep(self._config.min_send_interval_secs)

    async def _deliver(self, item: NotificationItem) -> DeliveryResult:
        channel = self._get_channel()
        if channel is None:
            return DeliveryResult(status=DeliveryStatus.FAILED, detail="no sink configured")
        self._sending = channel
        try:
            return await channel.send(format_alert_embed(item))
        except Exception as exc:
            logger.exception("notification_send_error", alert_id=item.alert.id)
            return DeliveryResult(status=DeliveryStatus.FAILED, detail=repr(exc))
        finally:
            self._sending = None
            await self._close_retired()

    async def _mark_notified(self, item: NotificationItem) -> None:
        try:
            await self._store.mark_notified(item.alert.id)
        except Exception:
            logger.exception("mark_notified_error", alert_id=item.alert.id)

    def _get_channel(self) -> NotificationChannel | None:
        if self._channel is None and self._webhook_url:
            self._channel = self._channel_factory(self._webhook_url)
        return self._channel

    def _default_channel(self, url: str) -> NotificationChannel:
        return DiscordWebhookChannel(url, timeout_secs=self._config.request_timeout_secs)

    async def _close_retired(self) -> None:
        while self._retired:
            channel = self._retired.pop()
            try:
                await channel.close()
            except Exception:
                logger.exception("channel_close_error", channel=type(channel).__name__)

    # ── Lifecycle ────────────────────────────────────────────────

    async def stop(self) -> None:
        """Cancel the worker and discard anything still queued."""
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        if self._queue:
            logger.info("notifications_discarded", count=len(self._queue))
            self._queue.clear()

    async def close(self) -> None:
        await self.stop()
        await self._close_retired()
        if self._channel is not None:
            try:
                await self._channel.close()
            except Exception:
                logger.exception("channel_close_error", channel=type(self._channel).__name__)
            self._channel = None
