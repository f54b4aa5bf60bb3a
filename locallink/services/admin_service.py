"""Admin console: dead-lead rescue, Town Hub orders, marketplace analytics, verification."""
from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any

from locallink.core.config import TownHubConfig
from locallink.core.exceptions import ValidationException
from locallink.domain.entities import Actor, Offer, Order, ProductRequest, ShopProfile, utcnow
from locallink.domain.pipeline import (
    DEAD_LEAD_GRACE,
    FunnelStage,
    Interaction,
    MarketplaceStats,
    RequestStage,
    classify_all,
    conversion_funnel,
    find_dead_leads,
    interaction_feed,
    marketplace_stats,
)
from locallink.domain.snapshot import MarketSnapshot
from locallink.domain.value_objects import OTHER_CATEGORY
from locallink.repositories import Repositories
from locallink.services.marketplace import MarketplaceService

logger = logging.getLogger(__name__)


class AdminService:
    def __init__(
        self,
        repositories: Repositories,
        marketplace: MarketplaceService,
        *,
        town_hub: TownHubConfig | None = None,
        dead_lead_grace: timedelta = DEAD_LEAD_GRACE,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.repos = repositories
        self.marketplace = marketplace
        self.town_hub = town_hub or TownHubConfig()
        self.dead_lead_grace = dead_lead_grace
        self._clock = clock

    async def _snapshot(self, snapshot: MarketSnapshot | None) -> MarketSnapshot:
        return snapshot if snapshot is not None else await self.repos.load_snapshot(self._clock())

    async def dead_leads(
        self, snapshot: MarketSnapshot | None = None, now: datetime | None = None
    ) -> list[ProductRequest]:
        """Broadcast requests past the grace period without a single offer."""
        snapshot = await self._snapshot(snapshot)
        return find_dead_leads(snapshot, now or self._clock(), self.dead_lead_grace)

    async def _town_hub_profile(self, request: ProductRequest) -> Actor:
        hub = await self.repos.users.get(self.town_hub.actor_id)
        if hub is not None:
            return hub
        logger.info("Creating Town Hub profile %s", self.town_hub.actor_id)
        return await self.repos.users.save(
            ShopProfile(
                id=self.town_hub.actor_id,
                name=self.town_hub.name,
                shop_name=self.town_hub.name,
                category=OTHER_CATEGORY,
                city=request.city,
                pin_code=request.pin_code,
                is_verified=True,
            )
        )

    async def rescue_dead_lead(
        self, request_id: str, price: Any, message: str | None = None
    ) -> Offer:
        """Quote an unanswered request as the Town Hub.

        The quote then goes through the normal acceptance path; orders created
        from it are flagged as Town Hub orders.
        """
        request = await self.repos.requests.get_or_raise(request_id)
        hub = await self._town_hub_profile(request)
        offer = await self.marketplace.submit_offer(
            hub, request.id, price, message or f"{self.town_hub.name} can source this for you."
        )
        logger.info("Dead lead %s rescued by %s with offer %s", request.id, hub.id, offer.id)
        return offer

    async def finalize_town_hub_pickup(self, order_id: str) -> Order:
        order = await self.repos.orders.get_or_raise(order_id)
        if not order.is_town_hub_order:
            raise ValidationException(f"Order {order.id} is not a Town Hub order")
        if order.town_hub_pickup_finalized:
            return order
        order = await self.repos.orders.update(order.id, {"town_hub_pickup_finalized": True})
        logger.info("Town Hub pickup finalized for order %s", order.id)
        return order

    async def marketplace_stats(self, snapshot: MarketSnapshot | None = None) -> MarketplaceStats:
        snapshot = await self._snapshot(snapshot)
        users = await self.repos.users.list_all()
        return marketplace_stats(snapshot, users)

    async def conversion_funnel(self, snapshot: MarketSnapshot | None = None) -> list[FunnelStage]:
        return conversion_funnel(await self._snapshot(snapshot))

    async def interaction_feed(self, snapshot: MarketSnapshot | None = None) -> list[Interaction]:
        return interaction_feed(await self._snapshot(snapshot))

    async def active_conversations(self, snapshot: MarketSnapshot | None = None) -> list[Offer]:
        snapshot = await self._snapshot(snapshot)
        return [o for o in snapshot.offers if o.chat_history]

    async def classify_requests(
        self, snapshot: MarketSnapshot | None = None, now: datetime | None = None
    ) -> dict[str, RequestStage]:
        snapshot = await self._snapshot(snapshot)
        return classify_all(snapshot, now or self._clock(), self.dead_lead_grace)

    async def set_verified(self, actor_id: str, verified: bool) -> Actor:
        await self.repos.users.get_or_raise(actor_id)
        actor = await self.repos.users.update(actor_id, {"is_verified": bool(verified)})
        logger.info("Actor %s verification set to %s", actor_id, verified)
        return actor
