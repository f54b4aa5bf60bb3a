"""LocalLink service entry point: HTTP/WebSocket API plus the recovery worker."""
from __future__ import annotations

import asyncio
import logging
import signal
import sys

from aiohttp import web

from locallink.api.server import create_app
from locallink.core.config import Settings, load_settings
from locallink.core.exceptions import ConfigurationException
from locallink.core.logging_setup import setup_logging
from locallink.core.notifications import NotificationService
from locallink.core.sentry_integration import init_sentry
from locallink.infra.store import create_store
from locallink.services.container import ServiceContainer
from locallink.worker import AcceptanceRecoveryWorker

logger = logging.getLogger(__name__)


def build_services(settings: Settings) -> ServiceContainer:
    store = create_store(settings.store_backend, settings.redis_url, prefix=settings.key_prefix)
    notifications = NotificationService.from_url(
        settings.redis_url if settings.store_backend == "redis" else None,
        prefix=settings.key_prefix,
    )
    return ServiceContainer.build(settings, store, notifications)


async def main(settings: Settings) -> None:
    logger.info("=" * 50)
    logger.info("Starting LocalLink")
    logger.info("Store backend: %s", settings.store_backend)
    logger.info("Assistant: %s", "enabled" if settings.assistant.enabled else "disabled (no API key)")
    logger.info("=" * 50)

    services = build_services(settings)
    app = create_app(services)
    worker = AcceptanceRecoveryWorker(
        services.lifecycle,
        interval=settings.recovery_interval_seconds,
        stale_after=settings.recovery_stale_after,
    )

    shutdown_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, shutdown_event.set)
        except NotImplementedError:
            # not available on Windows event loops
            pass

    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, settings.host, settings.port)
    await site.start()
    worker.start()
    logger.info("LocalLink listening on %s:%s", settings.host, settings.port)

    try:
        await shutdown_event.wait()
    finally:
        logger.info("Shutting down...")
        await worker.stop()
        await runner.cleanup()
        await services.close()
        logger.info("LocalLink stopped")


def run() -> None:
    try:
        settings = load_settings()
    except ConfigurationException as e:
        print(f"Configuration error: {e.message}", file=sys.stderr)
        sys.exit(2)

    setup_logging(settings.log_level)
    init_sentry(environment=settings.sentry_environment)

    try:
        asyncio.run(main(settings))
    except KeyboardInterrupt:
        logger.info("Stopped by user")


if __name__ == "__main__":
    run()
