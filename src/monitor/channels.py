"""Notification channels — webhook delivery of rendered embeds."""

from __future__ import annotations

import abc

import aiohttp
import structlog

from src.monitor.types import DeliveryResult, DeliveryStatus, Embed

logger = structlog.get_logger(__name__)


def parse_retry_after(header: str | None, body: object = None) -> float | None:
    """Extract the sink's retry hint in seconds.

    Prefers the ``Retry-After`` header; falls back to a JSON body carrying
    ``retry_after`` (Discord reports both). Returns None if neither parses.
    """
    if header:
        try:
            value = float(header)
        except ValueError:
            value = -1.0
        if value >= 0:
            return value
    if isinstance(body, dict):
        raw = body.get("retry_after")
        if isinstance(raw, (int, float)) and not isinstance(raw, bool) and raw >= 0:
            return float(raw)
    return None


class NotificationChannel(abc.ABC):
    """Base class for notification sinks."""

    @abc.abstractmethod
    async def send(self, embed: Embed) -> DeliveryResult:
        """Deliver one embed and report the outcome. Must not raise."""

    @abc.abstractmethod
    async def close(self) -> None:
        """Release resources (HTTP sessions, etc.)."""


class DiscordWebhookChannel(NotificationChannel):
    """Delivers colour-coded embeds to a Discord-compatible webhook."""

    def __init__(self, webhook_url: str, timeout_secs: float = 10.0) -> None:
        self._webhook_url = webhook_url
        self._timeout = aiohttp.ClientTimeout(total=timeout_secs)
        self._session: aiohttp.ClientSession | None = None

    @property
    def webhook_url(self) -> str:
        return self._webhook_url

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
        return self._session

    async def send(self, embed: Embed) -> DeliveryResult:
        payload = {"embeds": [embed.model_dump(exclude_none=True)]}

        try:
            session = self._get_session()
            async with session.post(self._webhook_url, json=payload) as resp:
                if resp.status in (200, 204):
                    return DeliveryResult(
                        status=DeliveryStatus.DELIVERED, http_status=resp.status,
                    )
                if resp.status == 429:
                    try:
                        body = await resp.json(content_type=None)
                    except Exception:
                        body = None
                    return DeliveryResult(
                        status=DeliveryStatus.RATE_LIMITED,
                        http_status=429,
                        retry_after=parse_retry_after(
                            resp.headers.get("Retry-After"), body,
                        ),
                    )
                text = await resp.text()
                logger.warning(
                    "webhook_send_failed",
                    status=resp.status,
                    body=text[:200],
                )
                return DeliveryResult(
                    status=DeliveryStatus.FAILED,
                    http_status=resp.status,
                    detail=text[:200],
                )
        except Exception as exc:
            logger.exception("webhook_send_error")
            return DeliveryResult(status=DeliveryStatus.FAILED, detail=repr(exc))

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None
