"""In-memory event bus — fans out domain events to live-update subscribers.

``publish`` never awaits: each subscriber gets a single non-blocking write
attempt, and a subscriber that cannot take the frame is dropped. Viewers are
expected to reconcile via a periodic full refresh.
"""

from __future__ import annotations

import abc
import asyncio
import json
from enum import Enum, StrEnum
from typing import Any

import structlog
from pydantic import BaseModel

logger = structlog.get_logger(__name__)


class EventName(StrEnum):
    """Event catalogue shared by the engine and the ingestion/CRUD layers."""

    SERVER_UPDATE = "server:update"
    ALERT_NEW = "alert:new"
    ALERT_RESOLVED = "alert:resolved"
    SITE_UPDATE = "site:update"
    METRICS_UPDATE = "metrics:update"
    CONTAINER_UPDATE = "container:update"
    NODE_UPDATE = "node:update"
    COMMAND_UPDATE = "command:update"


class SubscriberClosedError(Exception):
    """Write attempted on a subscriber that has already been closed."""


def _json_default(obj: Any) -> Any:
    if isinstance(obj, BaseModel):
        return obj.model_dump(mode="json")
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, (set, frozenset)):
        return sorted(obj)
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def format_frame(event: str, payload: Any) -> str:
    """Serialize one event as an event-stream frame."""
    data = json.dumps(payload, default=_json_default, separators=(",", ":"))
    return f"event: {event}\ndata: {data}\n\n"


class Subscriber(abc.ABC):
    """One connected live-update client."""

    @property
    @abc.abstractmethod
    def closed(self) -> bool:
        """Whether the subscriber can no longer accept frames."""

    @abc.abstractmethod
    def write(self, frame: str) -> None:
        """Hand a frame to the subscriber without blocking.

        Raises on any failure; the bus drops the subscriber in that case.
        """

    @abc.abstractmethod
    def close(self) -> None:
        """Release the subscriber. Must be safe to call more than once."""


class QueueSubscriber(Subscriber):
    """Subscriber backed by a bounded queue drained by the transport.

    A full queue counts as a failed write, so a stalled client is dropped
    instead of growing without bound.
    """

    def __init__(self, maxsize: int = 256) -> None:
        self._queue: asyncio.Queue[str] = asyncio.Queue(maxsize=maxsize)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def write(self, frame: str) -> None:
        if self._closed:
            raise SubscriberClosedError
        self._queue.put_nowait(frame)

    def close(self) -> None:
        self._closed = True

    async def next_frame(self, timeout: float | None = None) -> str | None:
        """Wait for the next frame; None on timeout (time for a keepalive)."""
        try:
            return await asyncio.wait_for(self._queue.get(), timeout=timeout)
        except asyncio.TimeoutError:
            return None


class EventBus:
    """Publish/subscribe hub for live updates.

    Usage::

        bus = EventBus()
        sub = bus.subscribe()
        bus.publish(EventName.SERVER_UPDATE, server)
        frame = await sub.next_frame(timeout=15)
        bus.unsubscribe(sub)
    """

    def __init__(self, queue_size: int = 256) -> None:
        self._queue_size = queue_size
        self._subscribers: list[Subscriber] = []
        self._published = 0

    @property
    def queue_size(self) -> int:
        """Capacity given to default subscribers."""
        return self._queue_size

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    @property
    def published_count(self) -> int:
        return self._published

    def subscribe(self, subscriber: Subscriber | None = None) -> Subscriber:
        """Register a subscriber (a fresh QueueSubscriber if none given)."""
        sub = subscriber if subscriber is not None else QueueSubscriber(self._queue_size)
        self._subscribers.append(sub)
        logger.debug("subscriber_added", subscribers=len(self._subscribers))
        return sub

    def unsubscribe(self, subscriber: Subscriber) -> None:
        """Remove and close a subscriber. Unknown subscribers are ignored."""
        if subscriber in self._subscribers:
            self._subscribers.remove(subscriber)
            logger.debug("subscriber_removed", subscribers=len(self._subscribers))
        subscriber.close()

    def publish(self, event: str, payload: Any) -> int:
        """Deliver an event to every subscriber. Returns how many received it."""
        frame = format_frame(str(event), payload)
        self._published += 1
        delivered = 0
        dropped: list[Subscriber] = []

        for sub in list(self._subscribers):
            if sub.closed:
                dropped.append(sub)
                continue
            try:
                sub.write(frame)
            except Exception:
                dropped.append(sub)
                continue
            delivered += 1

        for sub in dropped:
            self.unsubscribe(sub)
        if dropped:
            logger.info(
                "subscribers_dropped",
                event=str(event),
                dropped=len(dropped),
                remaining=len(self._subscribers),
            )
        return delivered

    def close(self) -> None:
        """Close every subscriber (shutdown)."""
        for sub in list(self._subscribers):
            self.unsubscribe(sub)
