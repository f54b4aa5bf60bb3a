"""Background worker that finishes offer acceptances left in flight."""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime, timedelta

from locallink.core.exceptions import LocalLinkException
from locallink.core.sentry_integration import capture_exception
from locallink.domain.entities import Order, utcnow
from locallink.services.order_lifecycle import OrderLifecycleController

logger = logging.getLogger(__name__)


class AcceptanceRecoveryWorker:
    """Periodically resumes acceptance sagas that stopped half-way.

    An order still marked `in_flight` after `stale_after` means the process
    that accepted it crashed or gave up on a store error; every remaining step
    is idempotent, so the worker simply runs them again. Ratings recorded on
    an order but never counted in the profile aggregate are finished the same
    way.
    """

    def __init__(
        self,
        lifecycle: OrderLifecycleController,
        *,
        interval: float = 30,
        stale_after: timedelta = timedelta(seconds=15),
        clock: Callable[[], datetime] = utcnow,
    ):
        self.lifecycle = lifecycle
        self.interval = interval
        self.stale_after = stale_after
        self._clock = clock
        self._task: asyncio.Task | None = None

    async def stale_orders(self) -> list[Order]:
        cutoff = self._clock() - self.stale_after
        orders = await self.lifecycle.repos.orders.in_flight()
        return [o for o in orders if o.created_at <= cutoff]

    async def run_once(self) -> int:
        """Resume stale acceptances and pending ratings. Returns how many were finished."""
        recovered = 0
        for order in await self.stale_orders():
            try:
                result = await self.lifecycle.resume_acceptance(order.id)
            except LocalLinkException as e:
                logger.error("Recovery of order %s failed: %s", order.id, e.message)
                capture_exception(e, order_id=order.id)
                continue
            if result.order.is_committed:
                recovered += 1
        if recovered:
            logger.info("Recovered %d in-flight acceptance(s)", recovered)
        return recovered + await self._finish_ratings()

    async def _finish_ratings(self) -> int:
        finished = 0
        for order, target in await self.lifecycle.repos.orders.pending_ratings():
            try:
                result = await self.lifecycle.resume_rating(order.id, target)
            except LocalLinkException as e:
                logger.error("Finishing %s rating of order %s failed: %s", target.value, order.id, e.message)
                capture_exception(e, order_id=order.id)
                continue
            if result is not None:
                finished += 1
        if finished:
            logger.info("Counted %d pending rating(s)", finished)
        return finished

    async def _loop(self) -> None:
        while True:
            try:
                await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error("Acceptance recovery pass failed: %s", e, exc_info=True)
                capture_exception(e)
            await asyncio.sleep(self.interval)

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._loop(), name="acceptance-recovery")
            logger.info("Acceptance recovery worker started (every %ss)", self.interval)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
