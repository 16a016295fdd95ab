"""HTTP surface for the engine — live-update stream plus ingestion glue.

Runs as an ``aiohttp`` web server alongside the monitor loops.
Exposes:
- ``GET  /api/sse``                       → event stream fed by the EventBus
- ``POST /api/metrics``                   → heartbeat ingestion (recovery + liveness)
- ``GET  /api/alerts``                    → alert listing (``?status=``)
- ``PUT  /api/alerts/{id}/acknowledge``   → operator acknowledgment
- ``PUT  /api/settings``                  → apply timing / webhook settings
- ``POST /api/settings/test-webhook``     → one-off webhook check
- ``GET  /api/health``                    → engine counters
"""

from __future__ import annotations

from typing import Any

import structlog
from aiohttp import web
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from src.core.types import AlertStatus
from src.monitor.events import EventName, QueueSubscriber
from src.monitor.factory import MonitorStack
from src.store.exceptions import AlertNotFoundError

logger = structlog.get_logger(__name__)

STACK_KEY = web.AppKey("stack", MonitorStack)
KEEPALIVE_KEY = web.AppKey("keepalive_secs", float)

_SSE_HEADERS = {
    "Content-Type": "text/event-stream",
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


class HeartbeatPayload(BaseModel):
    """The part of an agent metrics payload the engine cares about.

    Agents stamp payloads with epoch milliseconds.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    server_id: str = Field(alias="serverId", min_length=1)
    timestamp: float | None = Field(default=None, ge=0)

    @property
    def timestamp_secs(self) -> float | None:
        return None if self.timestamp is None else self.timestamp / 1000


class SettingUpdate(BaseModel):
    key: str
    value: str


class WebhookTest(BaseModel):
    url: str = Field(min_length=1)


async def _read_model(request: web.Request, model: type[BaseModel]) -> Any:
    try:
        data = await request.json()
    except ValueError:
        raise web.HTTPBadRequest(text="invalid JSON body")
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        raise web.HTTPBadRequest(text=exc.json(), content_type="application/json")


# ── Handlers ────────────────────────────────────────────────────


async def _handle_sse(request: web.Request) -> web.StreamResponse:
    stack = request.app[STACK_KEY]
    keepalive = request.app[KEEPALIVE_KEY]

    resp = web.StreamResponse(headers=_SSE_HEADERS)
    await resp.prepare(request)

    sub = QueueSubscriber(stack.bus.queue_size)
    stack.bus.subscribe(sub)
    logger.info("sse_client_connected", subscribers=stack.bus.subscriber_count)
    try:
        await resp.write(b": connected\n\n")
        while not sub.closed:
            frame = await sub.next_frame(timeout=keepalive)
            chunk = ": keepalive\n\n" if frame is None else frame
            await resp.write(chunk.encode("utf-8"))
    except ConnectionResetError:
        pass
    finally:
        stack.bus.unsubscribe(sub)
        logger.info("sse_client_disconnected", subscribers=stack.bus.subscriber_count)
    return resp


async def _handle_heartbeat(request: web.Request) -> web.Response:
    stack = request.app[STACK_KEY]
    payload: HeartbeatPayload = await _read_model(request, HeartbeatPayload)
    server = await stack.liveness.handle_heartbeat(payload.server_id, payload.timestamp_secs)
    if server is None:
        return web.json_response({"error": "Server not found"}, status=404)
    return web.json_response({"ok": True})


async def _handle_alerts(request: web.Request) -> web.Response:
    stack = request.app[STACK_KEY]
    raw_status = request.query.get("status")
    status: AlertStatus | None = None
    if raw_status:
        try:
            status = AlertStatus(raw_status)
        except ValueError:
            raise web.HTTPBadRequest(text=f"unknown status {raw_status!r}")
    alerts = await stack.store.list_alerts(status)
    return web.json_response({"alerts": [a.model_dump(mode="json") for a in alerts]})


async def _handle_acknowledge(request: web.Request) -> web.Response:
    stack = request.app[STACK_KEY]
    try:
        alert_id = int(request.match_info["id"])
    except ValueError:
        raise web.HTTPBadRequest(text="alert id must be an integer")
    try:
        alert = await stack.store.acknowledge_alert(alert_id)
    except AlertNotFoundError:
        raise web.HTTPNotFound(text="alert not found")
    stack.bus.publish(
        EventName.ALERT_RESOLVED,
        {"id": alert.id, "status": alert.status.value},
    )
    return web.json_response({"ok": True})


async def _handle_settings(request: web.Request) -> web.Response:
    stack = request.app[STACK_KEY]
    update: SettingUpdate = await _read_model(request, SettingUpdate)

    try:
        if update.key == "heartbeat_timeout_seconds":
            await stack.liveness.restart(timeout_secs=_positive(update.value))
        elif update.key == "check_interval_seconds":
            await stack.liveness.restart(interval_secs=_positive(update.value))
        elif update.key == "discord_enabled":
            await stack.dispatcher.configure(enabled=update.value == "true")
        elif update.key == "discord_webhook_url":
            await stack.dispatcher.configure(webhook_url=update.value)
        else:
            raise web.HTTPBadRequest(text=f"unsupported setting {update.key!r}")
    except ValueError as exc:
        raise web.HTTPBadRequest(text=str(exc))

    logger.info("setting_applied", key=update.key)
    return web.json_response({"ok": True})


async def _handle_test_webhook(request: web.Request) -> web.Response:
    stack = request.app[STACK_KEY]
    body: WebhookTest = await _read_model(request, WebhookTest)
    success = await stack.dispatcher.send_test(body.url)
    return web.json_response({"success": success})


async def _handle_health(request: web.Request) -> web.Response:
    stack = request.app[STACK_KEY]
    return web.json_response({
        "liveness": {
            "running": stack.liveness.running,
            "sweeps": stack.liveness.sweep_count,
            "timeout_secs": stack.liveness.timeout_secs,
        },
        "sites": {
            "running": stack.prober.running,
            "sweeps": stack.prober.sweep_count,
        },
        "notifications": {
            "enabled": stack.dispatcher.enabled,
            "pending": stack.dispatcher.pending,
            "sent": stack.dispatcher.sent_count,
            "dropped": stack.dispatcher.dropped_count,
        },
        "subscribers": stack.bus.subscriber_count,
    })


def _positive(value: str) -> float:
    number = float(value)
    if number <= 0:
        raise ValueError(f"expected a positive number, got {value!r}")
    return number


# ── App ─────────────────────────────────────────────────────────


def create_web_app(stack: MonitorStack, keepalive_secs: float = 15.0) -> web.Application:
    """Create the aiohttp web application."""
    app = web.Application()
    app[STACK_KEY] = stack
    app[KEEPALIVE_KEY] = keepalive_secs
    app.router.add_get("/api/sse", _handle_sse)
    app.router.add_post("/api/metrics", _handle_heartbeat)
    app.router.add_get("/api/alerts", _handle_alerts)
    app.router.add_put("/api/alerts/{id}/acknowledge", _handle_acknowledge)
    app.router.add_put("/api/settings", _handle_settings)
    app.router.add_post("/api/settings/test-webhook", _handle_test_webhook)
    app.router.add_get("/api/health", _handle_health)
    return app


async def start_web_server(
    stack: MonitorStack,
    host: str = "0.0.0.0",
    port: int = 3000,
    keepalive_secs: float = 15.0,
) -> web.AppRunner:
    """Start the HTTP server. Returns the runner for cleanup."""
    app = create_web_app(stack, keepalive_secs=keepalive_secs)
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, host, port)
    await site.start()
    logger.info("web_server_started", host=host, port=port)
    return runner
