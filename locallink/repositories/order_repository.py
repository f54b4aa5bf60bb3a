"""Order repository."""
from __future__ import annotations

from locallink.core.exceptions import OrderNotFound
from locallink.domain.entities import Order
from locallink.domain.value_objects import AcceptanceState, Collection, RatingTarget

from .base import BaseRepository


class OrderRepository(BaseRepository[Order]):
    collection = Collection.ORDERS
    model = Order
    not_found = OrderNotFound

    async def in_flight(self) -> list[Order]:
        return [o for o in await self.list_all() if o.acceptance == AcceptanceState.IN_FLIGHT]

    async def pending_ratings(self) -> list[tuple[Order, RatingTarget]]:
        """Ratings recorded on an order but not yet counted in the rated profile."""
        return [
            (order, target)
            for order in await self.list_all()
            for target in RatingTarget
            if order.rating_pending(target)
        ]
