"""Sentry integration for error tracking and monitoring."""
from __future__ import annotations

import logging
import os
from typing import Any

import sentry_sdk
from sentry_sdk.integrations.aiohttp import AioHttpIntegration
from sentry_sdk.integrations.logging import LoggingIntegration

from locallink import __version__

logger = logging.getLogger(__name__)

_initialized = False


def init_sentry(environment: str = "production", traces_sample_rate: float = 0.1) -> bool:
    """Initialize Sentry error tracking.

    Returns:
        True if Sentry was initialized, False when SENTRY_DSN is not set
    """
    global _initialized

    sentry_dsn = os.getenv("SENTRY_DSN")
    if not sentry_dsn:
        logger.info("SENTRY_DSN not set - error tracking disabled")
        return False

    try:
        sentry_sdk.init(
            dsn=sentry_dsn,
            environment=environment,
            traces_sample_rate=traces_sample_rate,
            integrations=[
                AioHttpIntegration(),
                LoggingIntegration(level=logging.INFO, event_level=logging.ERROR),
            ],
            send_default_pii=False,
            release=f"locallink@{__version__}",
        )
    except Exception as e:
        logger.error("Failed to initialize Sentry: %s", e)
        return False

    _initialized = True
    logger.info("Sentry initialized for %s environment", environment)
    return True


def capture_exception(error: BaseException, **extra: Any) -> None:
    """Capture exception with additional context when Sentry is active."""
    if not _initialized:
        return

    with sentry_sdk.new_scope() as scope:
        for key, value in extra.items():
            scope.set_extra(key, value)
        sentry_sdk.capture_exception(error)
