#!/usr/bin/env python3
"""Engine entrypoint — wires the monitor stack and serves the live-update API.

Usage::

    # Run with default config
    python scripts/run.py

    # Custom config file and a seed inventory for the in-memory store
    python scripts/run.py --config config/settings.yaml --seed config/fleet.yaml

    # Override log level / listener
    python scripts/run.py --log-level DEBUG --port 8080
"""

from __future__ import annotations

import argparse
import asyncio
import signal
import sys
from pathlib import Path
from typing import Any

import structlog
import yaml

from src.core.config import load_settings
from src.core.logging import setup_logging
from src.core.types import Server, Site
from src.monitor.factory import create_monitor_stack
from src.monitor.web import start_web_server
from src.store.memory import MemoryStore

logger = structlog.get_logger(__name__)


async def load_seed(store: MemoryStore, path: str | Path) -> tuple[int, int]:
    """Populate the store from a YAML inventory of ``servers`` and ``sites``.

    Returns:
        (server_count, site_count)
    """
    with open(path) as f:
        raw: Any = yaml.safe_load(f) or {}
    if not isinstance(raw, dict):
        raise ValueError(f"seed file {path} must contain a mapping")

    servers = [Server.model_validate(s) for s in raw.get("servers", [])]
    sites = [Site.model_validate(s) for s in raw.get("sites", [])]
    for server in servers:
        await store.add_server(server)
    for site in sites:
        await store.add_site(site)
    return len(servers), len(sites)


async def run(args: argparse.Namespace) -> int:
    """Start all components and run until interrupted."""
    settings = load_settings(args.config)
    setup_logging(level=args.log_level)

    store = MemoryStore()
    if args.seed:
        try:
            servers, sites = await load_seed(store, args.seed)
        except (OSError, ValueError) as exc:
            logger.error("seed_load_failed", path=args.seed, error=str(exc))
            print(f"Could not load seed file: {exc}", file=sys.stderr)
            return 1
        logger.info("seed_loaded", servers=servers, sites=sites)

    stack = create_monitor_stack(settings, store=store)

    logger.info(
        "engine_starting",
        heartbeat_timeout_secs=settings.liveness.heartbeat_timeout_secs,
        sweep_interval_secs=settings.liveness.sweep_interval_secs,
        site_interval_secs=settings.sites.check_interval_secs,
        notifications=stack.dispatcher.enabled,
    )

    # ── Start everything ─────────────────────────────────────────
    await stack.start()
    runner = await start_web_server(
        stack,
        host=args.host or settings.server.host,
        port=args.port or settings.server.port,
        keepalive_secs=settings.events.keepalive_secs,
    )

    # ── Wait for shutdown signal ─────────────────────────────────
    stop_event = asyncio.Event()

    def _signal_handler() -> None:
        logger.info("shutdown_signal_received")
        stop_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _signal_handler)
        except NotImplementedError:
            # Windows: signal handlers not supported on ProactorEventLoop
            pass

    try:
        await stop_event.wait()
    except KeyboardInterrupt:
        logger.info("keyboard_interrupt")

    # ── Graceful shutdown ────────────────────────────────────────
    logger.info("engine_shutting_down")
    await stack.stop()
    await runner.cleanup()

    logger.info(
        "engine_stopped",
        sweeps=stack.liveness.sweep_count,
        site_sweeps=stack.prober.sweep_count,
        notifications_sent=stack.dispatcher.sent_count,
        notifications_dropped=stack.dispatcher.dropped_count,
    )
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Run the fleet liveness and alerting engine.",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to settings YAML (default: config/settings.yaml)",
    )
    parser.add_argument(
        "--seed",
        default=None,
        help="YAML inventory of servers and sites to load into the in-memory store",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Override log level (DEBUG, INFO, WARNING, ERROR)",
    )
    parser.add_argument("--host", default=None, help="Listen address override")
    parser.add_argument("--port", type=int, default=None, help="Listen port override")
    args = parser.parse_args()
    sys.exit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
