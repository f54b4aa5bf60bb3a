"""Repository layer for data access abstraction."""
from __future__ import annotations

import asyncio
from datetime import datetime

from locallink.domain.entities import utcnow
from locallink.domain.snapshot import MarketSnapshot
from locallink.infra.store import DocumentStore

from .base import BaseRepository
from .offer_repository import OfferRepository
from .order_repository import OrderRepository
from .request_repository import RequestRepository
from .update_repository import UpdateRepository
from .user_repository import UserRepository


class Repositories:
    """All collection repositories over one store."""

    def __init__(self, store: DocumentStore) -> None:
        self.store = store
        self.users = UserRepository(store)
        self.requests = RequestRepository(store)
        self.offers = OfferRepository(store)
        self.orders = OrderRepository(store)
        self.updates = UpdateRepository(store)

    async def load_snapshot(self, now: datetime | None = None) -> MarketSnapshot:
        """Point-in-time market view; collections that fail to load read as empty."""
        requests, offers, orders, updates = await asyncio.gather(
            self.requests.list_all(),
            self.offers.list_all(),
            self.orders.list_all(),
            self.updates.active(now or utcnow()),
        )

        def newest_first(items):
            return tuple(sorted(items, key=lambda item: item.created_at, reverse=True))

        return MarketSnapshot(
            requests=newest_first(requests),
            offers=newest_first(offers),
            orders=newest_first(orders),
            updates=tuple(updates),
        )


__all__ = [
    "BaseRepository",
    "OfferRepository",
    "OrderRepository",
    "Repositories",
    "RequestRepository",
    "UpdateRepository",
    "UserRepository",
]
