"""
Market synchronization engine.

Subscribes to the requests, offers, orders and updates collections, merges the
independent per-collection batches into one snapshot and derives "new relevant
event" signals for the session's actor.
"""
from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from locallink.core.exceptions import TransientStoreError
from locallink.core.metrics import metrics, track_store_error
from locallink.domain.entities import ActorBase, ShopProfile, utcnow
from locallink.domain.request_rules import is_lead_for_shop
from locallink.domain.snapshot import MarketSnapshot
from locallink.domain.value_objects import (
    MARKET_COLLECTIONS,
    Collection,
    OfferStatus,
    OrderStatus,
)
from locallink.infra.store import Document, Subscription
from locallink.repositories import Repositories
from locallink.repositories.update_repository import active_feed

logger = logging.getLogger(__name__)


class MarketEventKind(str, Enum):
    NEW_QUOTE = "new_quote"
    NEW_LEAD = "new_lead"
    OFFER_LOST = "offer_lost"
    ORDER_CONFIRMED = "order_confirmed"
    ORDER_RECEIVED = "order_received"
    JOB_AVAILABLE = "job_available"


@dataclass(frozen=True)
class MarketEvent:
    """A change in the market that the session's actor should hear about."""

    kind: MarketEventKind
    actor_id: str
    entity_id: str
    text: str
    data: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class SessionContext:
    """Who is watching the market, and since when."""

    actor: ActorBase
    started_at: datetime = field(default_factory=utcnow)


SnapshotHandler = Callable[[MarketSnapshot], Awaitable[None]]
EventHandler = Callable[[list[MarketEvent]], Awaitable[None]]


def _newest_first(items: Sequence[Any]) -> tuple[Any, ...]:
    return tuple(sorted(items, key=lambda item: item.created_at, reverse=True))


def _is_new(item: Any, previous_ids: set[str], session: SessionContext) -> bool:
    return item.created_at > session.started_at and item.id not in previous_ids


def detect_events(
    previous: MarketSnapshot, current: MarketSnapshot, session: SessionContext
) -> list[MarketEvent]:
    """Events for `session.actor` between two consecutive snapshots."""
    actor = session.actor
    events: list[MarketEvent] = []

    if isinstance(actor, ShopProfile):
        seen = {r.id for r in previous.requests}
        for request in current.requests:
            if _is_new(request, seen, session) and is_lead_for_shop(request, actor):
                events.append(
                    MarketEvent(
                        MarketEventKind.NEW_LEAD,
                        actor.id,
                        request.id,
                        f"Town Broadcast: New lead for {request.category}!",
                        {"request_id": request.id, "category": request.category},
                    )
                )

    seen = {o.id for o in previous.offers}
    for offer in current.offers:
        if offer.customer_id == actor.id and _is_new(offer, seen, session):
            events.append(
                MarketEvent(
                    MarketEventKind.NEW_QUOTE,
                    actor.id,
                    offer.id,
                    f"New quote from {offer.shop_name}!",
                    {"offer_id": offer.id, "request_id": offer.request_id, "price": offer.price},
                )
            )
        if offer.shop_id == actor.id and offer.status == OfferStatus.REJECTED:
            before = previous.offer(offer.id)
            if before is not None and before.status != OfferStatus.REJECTED:
                events.append(
                    MarketEvent(
                        MarketEventKind.OFFER_LOST,
                        actor.id,
                        offer.id,
                        "Update: Customer chose another shop for their request.",
                        {"offer_id": offer.id, "request_id": offer.request_id},
                    )
                )

    seen = {o.id for o in previous.orders}
    for order in current.orders:
        if not _is_new(order, seen, session):
            continue
        data = {"order_id": order.id, "request_id": order.request_id}
        if order.customer_id == actor.id:
            events.append(
                MarketEvent(
                    MarketEventKind.ORDER_CONFIRMED,
                    actor.id,
                    order.id,
                    "Order confirmed! Assignment in progress...",
                    data,
                )
            )
        elif order.shop_id == actor.id:
            events.append(
                MarketEvent(
                    MarketEventKind.ORDER_RECEIVED,
                    actor.id,
                    order.id,
                    "Business Update: New order received!",
                    data,
                )
            )
        elif (
            actor.is_delivery_partner
            and order.status == OrderStatus.PENDING_ASSIGNMENT
            and order.city.strip().lower() == actor.city.strip().lower()
        ):
            events.append(
                MarketEvent(
                    MarketEventKind.JOB_AVAILABLE,
                    actor.id,
                    order.id,
                    "New Job: Delivery job available nearby!",
                    data,
                )
            )

    return events


class SyncSubscription:
    """Handle for a running engine subscription."""

    def __init__(self, engine: "MarketSyncEngine"):
        self._engine = engine

    @property
    def closed(self) -> bool:
        return self._engine.closed

    def unsubscribe(self) -> None:
        self._engine.close()


class MarketSyncEngine:
    """Keeps one merged MarketSnapshot live for one session.

    The first snapshot is delivered only once every collection has reported.
    Events are computed only from batches that arrive after that, so nothing
    that existed before warm-up is announced.
    """

    def __init__(
        self,
        repositories: Repositories,
        session: SessionContext,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._repos = repositories
        self.session = session
        self._clock = clock
        self._lists: dict[Collection, tuple[Any, ...]] = {}
        self._snapshot: MarketSnapshot | None = None
        self._subscriptions: list[Subscription] = []
        self._on_snapshot: SnapshotHandler | None = None
        self._on_event: EventHandler | None = None
        self._closed = False

    @property
    def snapshot(self) -> MarketSnapshot | None:
        """Last complete snapshot (kept when the store connection drops)."""
        return self._snapshot

    @property
    def closed(self) -> bool:
        return self._closed

    async def subscribe(
        self, on_snapshot: SnapshotHandler, on_event: EventHandler | None = None
    ) -> SyncSubscription:
        if self._subscriptions or self._closed:
            raise RuntimeError("MarketSyncEngine.subscribe can only be called once")
        self._on_snapshot = on_snapshot
        self._on_event = on_event

        try:
            for collection in MARKET_COLLECTIONS:
                sub = await self._repos.store.subscribe(collection, self._handler_for(collection))
                self._subscriptions.append(sub)
        except TransientStoreError:
            track_store_error("subscribe")
            self.close()
            raise

        logger.debug("Market sync started for %s", self.session.actor.id)
        return SyncSubscription(self)

    def _handler_for(self, collection: Collection) -> Callable[[list[Document]], Awaitable[None]]:
        async def on_change(docs: list[Document]) -> None:
            await self._on_batch(collection, docs)

        return on_change

    def _parse(self, collection: Collection, docs: list[Document]) -> tuple[Any, ...]:
        if collection == Collection.REQUESTS:
            items = self._repos.requests.parse_many(docs)
        elif collection == Collection.OFFERS:
            items = self._repos.offers.parse_many(docs)
        elif collection == Collection.ORDERS:
            items = self._repos.orders.parse_many(docs)
        else:
            return tuple(active_feed(self._repos.updates.parse_many(docs), self._clock()))
        return _newest_first(items)

    def _merge(self) -> MarketSnapshot:
        return MarketSnapshot(
            requests=self._lists[Collection.REQUESTS],
            offers=self._lists[Collection.OFFERS],
            orders=self._lists[Collection.ORDERS],
            updates=self._lists[Collection.UPDATES],
        )

    async def _on_batch(self, collection: Collection, docs: list[Document]) -> None:
        if self._closed:
            return

        self._lists[collection] = self._parse(collection, docs)
        if len(self._lists) < len(MARKET_COLLECTIONS):
            return

        previous = self._snapshot
        current = self._merge()
        self._snapshot = current
        metrics.snapshots_total.inc()

        events = detect_events(previous, current, self.session) if previous is not None else []

        if self._on_snapshot is not None and not self._closed:
            await self._on_snapshot(current)
        if events and self._on_event is not None and not self._closed:
            await self._on_event(events)

    def close(self) -> None:
        """Detach from every collection. Safe to call repeatedly or mid-delivery."""
        if self._closed:
            return
        self._closed = True
        for sub in self._subscriptions:
            sub.close()
        self._subscriptions.clear()
        logger.debug("Market sync stopped for %s", self.session.actor.id)
