"""Tests for NotificationDispatcher — ordering, spacing, throttling, drops."""

from __future__ import annotations

import asyncio

from pydantic import SecretStr

from src.core.config import NotificationsConfig
from src.core.types import Alert, AlertType, Server
from src.monitor.channels import NotificationChannel
from src.monitor.dispatcher import NotificationDispatcher
from src.monitor.types import DeliveryResult, DeliveryStatus, Embed
from src.store.memory import MemoryStore


# ── Helpers ─────────────────────────────────────────────────────

DELIVERED = DeliveryResult(status=DeliveryStatus.DELIVERED, http_status=204)
FAILED = DeliveryResult(status=DeliveryStatus.FAILED, http_status=500)


def _throttled(retry_after: float | None = None) -> DeliveryResult:
    return DeliveryResult(
        status=DeliveryStatus.RATE_LIMITED, http_status=429, retry_after=retry_after,
    )


class FakeChannel(NotificationChannel):
    """Records embeds and replays scripted results (DELIVERED once exhausted)."""

    def __init__(self, timeline: list[tuple[str, object]], results: list[DeliveryResult] | None = None) -> None:
        self.timeline = timeline
        self.results = list(results or [])
        self.sent: list[Embed] = []
        self.closed = False

    async def send(self, embed: Embed) -> DeliveryResult:
        self.sent.append(embed)
        self.timeline.append(("send", embed.description))
        if self.results:
            return self.results.pop(0)
        return DELIVERED

    async def close(self) -> None:
        self.closed = True


def _config(**kw: object) -> NotificationsConfig:
    defaults: dict[str, object] = {
        "enabled": True,
        "webhook_url": SecretStr("https://discord.com/api/webhooks/fake"),
    }
    defaults.update(kw)
    return NotificationsConfig(**defaults)  # type: ignore[arg-type]


def _make(
    results: list[DeliveryResult] | None = None,
    **config_kw: object,
) -> tuple[NotificationDispatcher, FakeChannel, list[tuple[str, object]], MemoryStore]:
    timeline: list[tuple[str, object]] = []
    channel = FakeChannel(timeline, results)

    async def fake_sleep(secs: float) -> None:
        timeline.append(("sleep", secs))
        await asyncio.sleep(0)

    store = MemoryStore()
    dispatcher = NotificationDispatcher(
        store=store,
        config=_config(**config_kw),
        channel=channel,
        sleep=fake_sleep,
    )
    return dispatcher, channel, timeline, store


async def _alert(store: MemoryStore, message: str) -> Alert:
    return await store.create_alert(
        Alert(server_id="s1", type=AlertType.SERVER_DOWN, message=message)
    )


async def _wait_idle(dispatcher: NotificationDispatcher) -> None:
    while dispatcher.running:
        await asyncio.sleep(0)


def _sends(timeline: list[tuple[str, object]]) -> list[object]:
    return [v for kind, v in timeline if kind == "send"]


# ── Enqueue gating ─────────────────────────────────────────────


class TestEnqueueGating:
    async def test_disabled_is_noop(self) -> None:
        store = MemoryStore()
        dispatcher = NotificationDispatcher(store, _config(enabled=False))
        alert = await _alert(store, "a")
        assert dispatcher.enqueue(alert) is False
        assert dispatcher.pending == 0
        assert not dispatcher.running

    async def test_missing_url_is_noop(self) -> None:
        store = MemoryStore()
        dispatcher = NotificationDispatcher(store, _config(webhook_url=SecretStr("")))
        alert = await _alert(store, "a")
        assert dispatcher.enabled is False
        assert dispatcher.enqueue(alert) is False

    async def test_enqueue_starts_worker(self) -> None:
        dispatcher, channel, _, store = _make()
        assert dispatcher.enqueue(await _alert(store, "a")) is True
        assert dispatcher.running
        await _wait_idle(dispatcher)
        assert len(channel.sent) == 1


# ── Ordering & spacing ─────────────────────────────────────────


class TestOrdering:
    async def test_fifo_with_min_spacing(self) -> None:
        dispatcher, _, timeline, store = _make()
        for msg in ("a", "b", "c"):
            dispatcher.enqueue(await _alert(store, msg))
        await _wait_idle(dispatcher)

        assert _sends(timeline) == ["a", "b", "c"]
        # Every send is followed by the minimum inter-send delay.
        assert timeline == [
            ("send", "a"), ("sleep", 2.0),
            ("send", "b"), ("sleep", 2.0),
            ("send", "c"), ("sleep", 2.0),
        ]

    async def test_single_worker_in_flight(self) -> None:
        dispatcher, _, _, store = _make()
        dispatcher.enqueue(await _alert(store, "a"))
        task = dispatcher._task
        dispatcher.enqueue(await _alert(store, "b"))
        assert dispatcher._task is task
        await _wait_idle(dispatcher)

    async def test_worker_restarts_after_idle(self) -> None:
        dispatcher, channel, _, store = _make()
        dispatcher.enqueue(await _alert(store, "a"))
        await _wait_idle(dispatcher)
        assert not dispatcher.running

        dispatcher.enqueue(await _alert(store, "b"))
        assert dispatcher.running
        await _wait_idle(dispatcher)
        assert [e.description for e in channel.sent] == ["a", "b"]

    async def test_marks_alert_notified(self) -> None:
        dispatcher, _, _, store = _make()
        alert = await _alert(store, "a")
        dispatcher.enqueue(alert)
        await _wait_idle(dispatcher)
        stored = await store.list_alerts()
        assert stored[0].notified is True
        assert dispatcher.sent_count == 1


# ── Throttling ──────────────────────────────────────────────────


class TestThrottling:
    async def test_throttled_item_retried_before_later_items(self) -> None:
        dispatcher, _, timeline, store = _make(results=[_throttled(3.0)])
        for msg in ("a", "b"):
            dispatcher.enqueue(await _alert(store, msg))
        await _wait_idle(dispatcher)

        assert timeline == [
            ("send", "a"), ("sleep", 3.0),
            ("send", "a"), ("sleep", 2.0),
            ("send", "b"), ("sleep", 2.0),
        ]
        assert dispatcher.throttled_count == 1
        assert dispatcher.sent_count == 2

    async def test_default_retry_after(self) -> None:
        dispatcher, _, timeline, store = _make(results=[_throttled(None)])
        dispatcher.enqueue(await _alert(store, "a"))
        await _wait_idle(dispatcher)
        assert timeline[1] == ("sleep", 5.0)

    async def test_configured_default_retry_after(self) -> None:
        dispatcher, _, timeline, store = _make(
            results=[_throttled(None)], default_retry_after_secs=7.0,
        )
        dispatcher.enqueue(await _alert(store, "a"))
        await _wait_idle(dispatcher)
        assert timeline[1] == ("sleep", 7.0)

    async def test_repeated_throttling_never_loses_item(self) -> None:
        dispatcher, _, timeline, store = _make(
            results=[_throttled(1.0), _throttled(1.0), _throttled(1.0)],
        )
        dispatcher.enqueue(await _alert(store, "a"))
        await _wait_idle(dispatcher)
        assert _sends(timeline) == ["a", "a", "a", "a"]
        assert dispatcher.sent_count == 1
        assert dispatcher.dropped_count == 0

    async def test_item_enqueued_during_backoff_waits_its_turn(self) -> None:
        dispatcher, _, timeline, store = _make(results=[_throttled(1.0)])
        dispatcher.enqueue(await _alert(store, "a"))
        await asyncio.sleep(0)  # worker sends "a", gets throttled
        dispatcher.enqueue(await _alert(store, "b"))
        await _wait_idle(dispatcher)
        assert _sends(timeline) == ["a", "a", "b"]


# ── Hard failures ──────────────────────────────────────────────


class TestFailures:
    async def test_failed_item_dropped_queue_continues(self) -> None:
        dispatcher, _, timeline, store = _make(results=[FAILED])
        a = await _alert(store, "a")
        b = await _alert(store, "b")
        dispatcher.enqueue(a)
        dispatcher.enqueue(b)
        await _wait_idle(dispatcher)

        assert _sends(timeline) == ["a", "b"]
        assert dispatcher.dropped_count == 1
        notified = {x.id: x.notified for x in await store.list_alerts()}
        assert notified == {a.id: False, b.id: True}

    async def test_channel_exception_treated_as_failure(self) -> None:
        dispatcher, channel, _, store = _make()

        async def boom(embed: Embed) -> DeliveryResult:
            raise RuntimeError("boom")

        channel.send = boom  # type: ignore[method-assign]
        dispatcher.enqueue(await _alert(store, "a"))
        await _wait_idle(dispatcher)
        assert dispatcher.dropped_count == 1
        assert dispatcher.pending == 0

    async def test_mark_notified_error_does_not_stop_queue(self) -> None:
        dispatcher, channel, _, _ = _make()
        orphan = Alert(id=999, server_id="s1", type=AlertType.SERVER_DOWN, message="x")
        dispatcher.enqueue(orphan)  # store has no alert 999
        dispatcher.enqueue(orphan.model_copy(update={"message": "y"}))
        await _wait_idle(dispatcher)
        assert [e.description for e in channel.sent] == ["x", "y"]


# ── Recovery notices ───────────────────────────────────────────


class TestRecovery:
    async def test_recovery_rendered_as_recovered(self) -> None:
        dispatcher, channel, _, store = _make()
        alert = await _alert(store, "a")
        dispatcher.enqueue(alert, Server(id="s1", name="web-1"), is_recovery=True)
        await _wait_idle(dispatcher)
        assert channel.sent[0].title == "Recovered"


# ── Configuration & lifecycle ──────────────────────────────────


class TestLifecycle:
    async def test_stop_discards_pending(self) -> None:
        gate = asyncio.Event()
        store = MemoryStore()

        async def blocking_sleep(secs: float) -> None:
            await gate.wait()

        dispatcher = NotificationDispatcher(
            store, _config(), channel=FakeChannel([]), sleep=blocking_sleep,
        )
        for msg in ("a", "b", "c"):
            dispatcher.enqueue(await _alert(store, msg))
        await asyncio.sleep(0)
        await dispatcher.stop()
        assert dispatcher.pending == 0
        assert not dispatcher.running

    async def test_close_closes_channel(self) -> None:
        dispatcher, channel, _, _ = _make()
        await dispatcher.close()
        assert channel.closed

    async def test_configure_disable(self) -> None:
        dispatcher, _, _, store = _make()
        await dispatcher.configure(enabled=False)
        assert dispatcher.enqueue(await _alert(store, "a")) is False

    async def test_configure_new_url_replaces_channel(self) -> None:
        created: list[FakeChannel] = []

        def factory(url: str) -> NotificationChannel:
            ch = FakeChannel([])
            created.append(ch)
            return ch

        store = MemoryStore()
        original = FakeChannel([])
        dispatcher = NotificationDispatcher(
            store, _config(), channel=original, channel_factory=factory,
            sleep=lambda s: asyncio.sleep(0),
        )
        await dispatcher.configure(webhook_url="https://discord.com/api/webhooks/new")
        assert original.closed

        dispatcher.enqueue(await _alert(store, "a"))
        await _wait_idle(dispatcher)
        assert len(created) == 1
        assert len(created[0].sent) == 1

    async def test_url_change_mid_send_keeps_in_flight_delivery(self) -> None:
        gate = asyncio.Event()

        class SlowChannel(FakeChannel):
            async def send(self, embed: Embed) -> DeliveryResult:
                await gate.wait()
                if self.closed:
                    return FAILED
                return await super().send(embed)

        store = MemoryStore()
        old = SlowChannel([])
        new = FakeChannel([])
        dispatcher = NotificationDispatcher(
            store, _config(), channel=old, channel_factory=lambda url: new,
            sleep=lambda s: asyncio.sleep(0),
        )
        dispatcher.enqueue(await _alert(store, "a"))
        dispatcher.enqueue(await _alert(store, "b"))
        await asyncio.sleep(0)  # worker is now awaiting old.send

        await dispatcher.configure(webhook_url="https://discord.com/api/webhooks/new")
        assert not old.closed

        gate.set()
        await _wait_idle(dispatcher)
        assert old.closed
        assert [e.description for e in old.sent] == ["a"]
        assert [e.description for e in new.sent] == ["b"]
        assert dispatcher.dropped_count == 0
        assert dispatcher.sent_count == 2

    async def test_send_test_uses_throwaway_channel(self) -> None:
        created: list[FakeChannel] = []

        def factory(url: str) -> NotificationChannel:
            ch = FakeChannel([])
            created.append(ch)
            return ch

        dispatcher = NotificationDispatcher(MemoryStore(), _config(), channel_factory=factory)
        assert await dispatcher.send_test("https://example.com/hook") is True
        assert created[0].closed
        assert "Test" in created[0].sent[0].title

    async def test_send_test_reports_failure(self) -> None:
        dispatcher = NotificationDispatcher(
            MemoryStore(),
            _config(),
            channel_factory=lambda url: FakeChannel([], [FAILED]),
        )
        assert await dispatcher.send_test("https://example.com/hook") is False
