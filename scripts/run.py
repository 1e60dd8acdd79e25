#!/usr/bin/env python3
"""Service entrypoint — wires all components and runs the compliance stack.

Usage::

    # Run with default config
    python scripts/run.py

    # Custom config file
    python scripts/run.py --config config/settings.yaml

    # Override log level
    python scripts/run.py --log-level DEBUG

    # Keep an alert audit trail
    python scripts/run.py --alert-log logs/alerts.jsonl
"""

from __future__ import annotations

import argparse
import asyncio
import signal
import sys

import structlog

from complywatch.core.config import load_settings
from complywatch.core.logging import setup_logging
from complywatch.factory import create_system

logger = structlog.get_logger(__name__)


async def run(args: argparse.Namespace) -> int:
    """Start all subsystems and run until interrupted."""
    settings = load_settings(args.config)
    setup_logging(level=args.log_level, alert_log_path=args.alert_log)

    system = create_system(settings)

    if not system.router.channel_names:
        logger.error("no_channels_enabled")
        print(
            "No notification channels enabled. Enable at least one channel in "
            "config/settings.yaml (notify.console.enabled, notify.email.enabled, ...).",
            file=sys.stderr,
        )
        return 1

    logger.info(
        "service_starting",
        channels=system.router.channel_names,
        escalation_levels=len(settings.escalation.levels),
        alert_rules=len(settings.alerts.rules),
        summary=settings.summary.enabled,
    )

    await system.start()

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
    logger.info("service_shutting_down")
    status = await system.get_status()
    await system.stop()

    logger.info(
        "service_stopped",
        active_alerts=status.active_alerts,
        compliance_score=status.compliance_score,
        agents_coordinated=status.agents_coordinated,
        uptime_secs=round(status.uptime_secs, 1),
        deliveries=system.router.delivery_stats(),
    )
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Run the compliance alerting and agent coordination service.",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to settings YAML (default: config/settings.yaml)",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Log level override: DEBUG, INFO, WARNING, ERROR",
    )
    parser.add_argument(
        "--alert-log",
        default=None,
        help="Append alert state transitions as JSON lines to this file",
    )
    args = parser.parse_args()

    code = asyncio.run(run(args))
    sys.exit(code)


if __name__ == "__main__":
    main()
