"""Domain types for the notification subsystem."""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, Field

from src.core.types import Alert, Server


class DeliveryStatus(StrEnum):
    """Outcome of handing one notification to the sink."""

    DELIVERED = "delivered"
    RATE_LIMITED = "rate_limited"
    FAILED = "failed"


class DeliveryResult(BaseModel):
    """What the sink said about one delivery attempt."""

    status: DeliveryStatus
    http_status: int | None = None
    retry_after: float | None = None  # seconds, only for RATE_LIMITED
    detail: str = ""

    @property
    def ok(self) -> bool:
        return self.status == DeliveryStatus.DELIVERED


class EmbedField(BaseModel):
    name: str
    value: str
    inline: bool = True


class Embed(BaseModel):
    """Rich message in the webhook sink's embed shape."""

    title: str
    description: str = ""
    color: int
    fields: list[EmbedField] = Field(default_factory=list)
    timestamp: str | None = None


class NotificationItem(BaseModel):
    """Queue entry: an alert (or its resolution) plus its server context."""

    alert: Alert
    server: Server | None = None
    is_recovery: bool = False
