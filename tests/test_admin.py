"""Tests for the admin console: dead leads, Town Hub rescue, analytics."""
from __future__ import annotations

from datetime import timedelta

import pytest

from locallink.core.exceptions import ActorNotFound, ValidationException
from locallink.domain.entities import ShopProfile, utcnow
from locallink.domain.pipeline import RequestStage, classify_request, is_dead_lead
from locallink.domain.value_objects import OrderStatus
from tests.helpers import delivered_order, draft_for, quote_request


class TestDeadLeads:
    """Tests for dead-lead detection and rescue."""

    @pytest.mark.asyncio
    async def test_unanswered_request_turns_dead_after_grace(self, admin, marketplace, market):
        request = await marketplace.broadcast_request(market.customer, "Kerosene stove", "Hardware")

        assert await admin.dead_leads(now=request.created_at + timedelta(minutes=9)) == []
        leads = await admin.dead_leads(now=request.created_at + timedelta(minutes=11))
        assert [r.id for r in leads] == [request.id]

    @pytest.mark.asyncio
    async def test_quoted_or_cancelled_requests_are_not_dead(self, admin, marketplace, market):
        quoted, _, _ = await quote_request(marketplace, market)
        cancelled = await marketplace.broadcast_request(market.customer, "Umbrella", "Other")
        await marketplace.cancel_request(cancelled.id, "cust-1")

        later = utcnow() + timedelta(hours=1)
        assert await admin.dead_leads(now=later) == []

    @pytest.mark.asyncio
    async def test_rescue_creates_town_hub_offer(self, repos, admin, marketplace, lifecycle, market):
        request = await marketplace.broadcast_request(market.customer, "Kerosene stove", "Hardware")

        offer = await admin.rescue_dead_lead(request.id, 899)

        assert offer.shop_id == "town-hub"
        assert offer.shop_name == "Town Hub"
        assert offer.price == 899
        hub = await repos.users.get("town-hub")
        assert isinstance(hub, ShopProfile)
        assert hub.is_verified
        assert hub.city == "Pune"
        assert await admin.dead_leads(now=request.created_at + timedelta(minutes=11)) == []

        order = (await lifecycle.accept_offer(draft_for(offer))).order
        assert order.is_town_hub_order
        assert order.shop_id == "town-hub"

        finalized = await admin.finalize_town_hub_pickup(order.id)
        assert finalized.town_hub_pickup_finalized
        again = await admin.finalize_town_hub_pickup(order.id)
        assert again.town_hub_pickup_finalized

    @pytest.mark.asyncio
    async def test_second_rescue_reuses_hub_profile(self, repos, admin, marketplace, market):
        first = await marketplace.broadcast_request(market.customer, "Stove", "Hardware")
        second = await marketplace.broadcast_request(market.customer, "Lantern", "Hardware")
        await admin.rescue_dead_lead(first.id, 899)
        await admin.rescue_dead_lead(second.id, 250, "Can get it by tomorrow")

        offers = await repos.offers.for_request(second.id)
        assert offers[0].message == "Can get it by tomorrow"
        hubs = [u for u in await repos.users.list_all() if u.id == "town-hub"]
        assert len(hubs) == 1

    @pytest.mark.asyncio
    async def test_only_town_hub_orders_are_finalized(self, admin, marketplace, lifecycle, market):
        _, offer_a, _ = await quote_request(marketplace, market)
        order = (await lifecycle.accept_offer(draft_for(offer_a))).order
        with pytest.raises(ValidationException):
            await admin.finalize_town_hub_pickup(order.id)


class TestAnalytics:
    """Tests for stats, funnel and request stages."""

    @pytest.mark.asyncio
    async def test_marketplace_stats(self, admin, marketplace, lifecycle, market):
        await delivered_order(marketplace, lifecycle, market)
        await marketplace.broadcast_request(market.customer, "Bat", "Sports")

        stats = await admin.marketplace_stats()

        assert stats.total_users == 1
        assert stats.total_shops == 2
        assert stats.total_requests == 2
        assert stats.total_orders == 1
        assert stats.conversion_rate == 50.0
        assert stats.active_categories == {"Grocery": 1, "Sports": 1}
        assert stats.gmv == 450
        assert stats.delivered_orders == 1

    @pytest.mark.asyncio
    async def test_empty_market_stats(self, admin):
        stats = await admin.marketplace_stats()
        assert stats.total_requests == 0
        assert stats.conversion_rate == 0.0

    @pytest.mark.asyncio
    async def test_conversion_funnel(self, admin, marketplace, lifecycle, market):
        _, offer_a, _ = await quote_request(marketplace, market)
        await lifecycle.accept_offer(draft_for(offer_a))

        funnel = await admin.conversion_funnel()

        assert [(s.label, s.count) for s in funnel] == [
            ("Broadcasts", 1),
            ("Quotes Provided", 2),
            ("Orders Won", 1),
            ("Delivered", 0),
        ]

    @pytest.mark.asyncio
    async def test_classify_requests(self, admin, marketplace, lifecycle, market):
        ordered, offer_a, _ = await quote_request(marketplace, market)
        await lifecycle.accept_offer(draft_for(offer_a))
        quoted = await marketplace.broadcast_request(market.customer, "Sugar", "Grocery")
        await marketplace.submit_offer(market.shop_b, quoted.id, 45)
        dead = await marketplace.broadcast_request(market.customer, "Telescope", "Other")
        cancelled = await marketplace.broadcast_request(market.customer, "Kite", "Other")
        await marketplace.cancel_request(cancelled.id, "cust-1")

        stages = await admin.classify_requests(now=utcnow() + timedelta(minutes=30))

        assert stages[ordered.id] == RequestStage.ORDERED
        assert stages[quoted.id] == RequestStage.QUOTED
        assert stages[dead.id] == RequestStage.DEAD_LEAD
        assert stages[cancelled.id] == RequestStage.CANCELLED

    @pytest.mark.asyncio
    async def test_interactions_and_conversations(self, admin, marketplace, market):
        request, offer_a, _ = await quote_request(marketplace, market)
        await marketplace.send_message(offer_a.id, "cust-1", "Delivery by 6?")

        feed = await admin.interaction_feed()
        assert {e.kind for e in feed} == {"request", "offer"}
        assert len(feed) == 3
        assert feed == sorted(feed, key=lambda e: e.at, reverse=True)

        conversations = await admin.active_conversations()
        assert [o.id for o in conversations] == [offer_a.id]

    @pytest.mark.asyncio
    async def test_set_verified(self, admin, market):
        shop = await admin.set_verified("shop-a", True)
        assert shop.is_verified
        with pytest.raises(ActorNotFound):
            await admin.set_verified("ghost", True)


class TestPipelineRules:
    """Tests for the pure request-stage rules."""

    @pytest.mark.asyncio
    async def test_stage_follows_the_order(self, repos, marketplace, lifecycle, market):
        order = await delivered_order(marketplace, lifecycle, market)
        snapshot = await repos.load_snapshot()
        request = snapshot.request(order.request_id)

        stage = classify_request(request, snapshot.offers, snapshot.orders, utcnow())
        assert stage == RequestStage.DELIVERED
        assert snapshot.order(order.id).status == OrderStatus.DELIVERED

    @pytest.mark.asyncio
    async def test_grace_boundary_is_exclusive(self, marketplace, market):
        request = await marketplace.broadcast_request(market.customer, "Rope", "Hardware")
        assert not is_dead_lead(request, [], request.created_at + timedelta(minutes=10))
        assert is_dead_lead(request, [], request.created_at + timedelta(minutes=10, seconds=1))
