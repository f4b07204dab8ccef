#!/usr/bin/env python3
"""
Background worker entrypoint.
Starts the gas monitor that keeps the operational Base wallet funded.
"""

import asyncio
import logging
import signal
from contextlib import suppress
from typing import Optional

from core.services.gas_funding import (
    GasMonitor,
    init_funding_dependencies,
    shutdown_funding_dependencies,
)
from infrastructure.config.settings import settings
from infrastructure.logging.logger import setup_logging


async def _start_gas_monitor() -> Optional[GasMonitor]:
    """Start the gas monitor if enabled."""
    if not settings.funding.monitor_enabled:
        logging.getLogger(__name__).warning("⚠️ Gas monitor disabled (MONITOR_ENABLED=false)")
        return None

    dependencies = await init_funding_dependencies(settings)
    monitor = GasMonitor(
        dependencies.orchestrator,
        dependencies.wallet,
        interval_seconds=settings.funding.monitor_interval_seconds,
    )
    await monitor.start()
    logging.getLogger(__name__).info("✅ Gas monitor launched")
    return monitor


async def _run_workers() -> None:
    """Bootstraps the worker services and keeps them alive."""
    setup_logging(__name__)
    logger = logging.getLogger(__name__)

    logger.info(f"🚀 Starting {settings.name} v{settings.version} ({settings.environment})")

    try:
        gas_monitor = await _start_gas_monitor()
    except ValueError as e:
        logger.error(f"❌ Gas funding is misconfigured: {e}")
        return

    stop_event = asyncio.Event()

    def _request_shutdown() -> None:
        logger.info("⚠️ Shutdown signal received")
        stop_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with suppress(NotImplementedError):
            loop.add_signal_handler(sig, _request_shutdown)

    try:
        logger.info("✅ Worker services running")
        await stop_event.wait()
    finally:
        logger.info("🛑 Stopping worker services")

        # Waits for an in-flight funding cycle to reach its terminal state
        if gas_monitor:
            await gas_monitor.stop()

        await shutdown_funding_dependencies()


def main() -> None:
    """Launch the async worker runner."""
    asyncio.run(_run_workers())


if __name__ == "__main__":
    main()
