"""Tests for the market sync engine and event detection."""
from __future__ import annotations

from datetime import timedelta

import pytest

from locallink.core.exceptions import TransientStoreError
from locallink.domain.entities import DailyUpdate, ProductRequest, ShopProfile, utcnow
from locallink.domain.request_rules import is_request_visible_to_shop
from locallink.services.market_sync import MarketEventKind, MarketSyncEngine, SessionContext
from tests.helpers import draft_for, quote_request


class Recorder:
    """Collects what an engine delivers."""

    def __init__(self):
        self.snapshots = []
        self.events = []

    async def on_snapshot(self, snapshot):
        self.snapshots.append(snapshot)

    async def on_event(self, events):
        self.events.extend(events)

    def kinds(self):
        return [e.kind for e in self.events]


async def _watch(store, repos, actor):
    """Start an engine for `actor` and wait for its first snapshot."""
    session = SessionContext(actor, started_at=utcnow() - timedelta(seconds=1))
    engine = MarketSyncEngine(repos, session)
    recorder = Recorder()
    subscription = await engine.subscribe(recorder.on_snapshot, recorder.on_event)
    await store.flush()
    return engine, subscription, recorder


class TestSnapshots:
    """Tests for snapshot merging."""

    @pytest.mark.asyncio
    async def test_first_snapshot_waits_for_every_collection(self, store, repos, market):
        engine, _, recorder = await _watch(store, repos, market.customer)

        assert len(recorder.snapshots) == 1
        assert engine.snapshot is recorder.snapshots[0]
        assert engine.snapshot.requests == ()
        engine.close()

    @pytest.mark.asyncio
    async def test_snapshot_follows_writes(self, store, repos, marketplace, market):
        engine, _, recorder = await _watch(store, repos, market.customer)

        request, offer_a, offer_b = await quote_request(marketplace, market)
        await store.flush()

        snapshot = recorder.snapshots[-1]
        assert [r.id for r in snapshot.requests] == [request.id]
        assert {o.id for o in snapshot.offers} == {offer_a.id, offer_b.id}
        engine.close()

    @pytest.mark.asyncio
    async def test_expired_updates_are_filtered(self, store, repos, marketplace, market):
        now = utcnow()
        expired = DailyUpdate.create("shop-a", "Ravi Kirana", "Yesterday's offer", now=now - timedelta(days=2))
        await repos.updates.save(expired)
        engine, _, recorder = await _watch(store, repos, market.customer)

        fresh = await marketplace.post_daily_update(market.shop_a, "Fresh paneer")
        await store.flush()

        assert [u.id for u in recorder.snapshots[-1].updates] == [fresh.id]
        engine.close()

    @pytest.mark.asyncio
    async def test_update_feed_keeps_the_newest_twenty(self, store, repos, market):
        now = utcnow()
        for minutes in range(22):
            await repos.updates.save(
                DailyUpdate.create("shop-a", "Ravi Kirana", f"Deal {minutes}", now=now - timedelta(minutes=minutes))
            )
        engine, _, recorder = await _watch(store, repos, market.customer)

        updates = recorder.snapshots[-1].updates
        assert [u.text for u in updates] == [f"Deal {m}" for m in range(20)]
        assert [u.text for u in (await repos.load_snapshot()).updates] == [u.text for u in updates]
        engine.close()

    @pytest.mark.asyncio
    async def test_invalid_documents_do_not_break_the_view(self, store, repos, market):
        engine, _, recorder = await _watch(store, repos, market.customer)
        await store.write("offers", "broken", {"id": "broken", "price": "lots"})
        await store.flush()
        assert recorder.snapshots[-1].offers == ()
        engine.close()


class TestEvents:
    """Tests for per-role event detection."""

    @pytest.mark.asyncio
    async def test_nothing_announced_at_warm_up(self, store, repos, marketplace, market):
        await quote_request(marketplace, market)
        engine, _, recorder = await _watch(store, repos, market.shop_a)

        assert recorder.events == []
        engine.close()

    @pytest.mark.asyncio
    async def test_shop_hears_matching_leads_only(self, store, repos, marketplace, market):
        gadgets = await repos.users.save(
            ShopProfile(id="shop-e", name="Vik", shop_name="Vik Electronics", category="Electronics", city="Pune")
        )
        grocer_engine, _, grocer = await _watch(store, repos, market.shop_a)
        gadget_engine, _, gadget = await _watch(store, repos, gadgets)

        request = await marketplace.broadcast_request(market.customer, "Atta 10kg", "Grocery")
        await store.flush()

        assert grocer.kinds() == [MarketEventKind.NEW_LEAD]
        assert grocer.events[0].entity_id == request.id
        assert grocer.events[0].text == "Town Broadcast: New lead for Grocery!"
        assert gadget.events == []
        grocer_engine.close()
        gadget_engine.close()

    @pytest.mark.asyncio
    async def test_postal_code_match_alone_raises_no_lead(self, store, repos, marketplace, market):
        """A shop in another city sharing the postal code can quote, but hears no lead alert."""
        neighbour = await repos.users.save(
            ShopProfile(
                id="shop-n", name="Anil", shop_name="Anil Provisions", category="Grocery", city="PCMC", pin_code="411001"
            )
        )
        engine, _, recorder = await _watch(store, repos, neighbour)

        request = await marketplace.broadcast_request(market.customer, "Atta 10kg", "Grocery")
        await store.flush()

        assert recorder.events == []
        assert is_request_visible_to_shop(request, neighbour)
        engine.close()

    @pytest.mark.asyncio
    async def test_old_documents_are_not_new(self, store, repos, market):
        engine, _, recorder = await _watch(store, repos, market.shop_a)

        backdated = ProductRequest(
            customer_id="cust-1",
            city="Pune",
            category="Grocery",
            description="Imported from the old system",
            created_at=utcnow() - timedelta(days=1),
        )
        await repos.requests.save(backdated)
        await store.flush()

        assert recorder.events == []
        engine.close()

    @pytest.mark.asyncio
    async def test_customer_hears_new_quotes(self, store, repos, marketplace, market):
        request = await marketplace.broadcast_request(market.customer, "Atta 10kg", "Grocery")
        engine, _, recorder = await _watch(store, repos, market.customer)

        offer = await marketplace.submit_offer(market.shop_a, request.id, 420)
        await store.flush()

        assert recorder.kinds() == [MarketEventKind.NEW_QUOTE]
        assert recorder.events[0].text == "New quote from Ravi Kirana!"
        assert recorder.events[0].data["offer_id"] == offer.id
        engine.close()

    @pytest.mark.asyncio
    async def test_acceptance_events_per_role(self, store, repos, marketplace, lifecycle, market):
        _, offer_a, offer_b = await quote_request(marketplace, market)
        watchers = {}
        for actor in (market.customer, market.shop_a, market.shop_b, market.partner_2):
            watchers[actor.id] = await _watch(store, repos, actor)

        order = (await lifecycle.accept_offer(draft_for(offer_a))).order
        await store.flush()

        def kinds(actor_id):
            return watchers[actor_id][2].kinds()

        assert kinds("cust-1") == [MarketEventKind.ORDER_CONFIRMED]
        assert kinds("shop-a") == [MarketEventKind.ORDER_RECEIVED]
        assert kinds("shop-b") == [MarketEventKind.OFFER_LOST]
        assert kinds("partner-2") == [MarketEventKind.JOB_AVAILABLE]
        assert watchers["partner-2"][2].events[0].entity_id == order.id
        assert watchers["shop-b"][2].events[0].entity_id == offer_b.id

        # later lifecycle writes on the same order announce nothing new
        await lifecycle.claim_delivery(order.id, market.partner_1)
        await store.flush()
        assert kinds("partner-2") == [MarketEventKind.JOB_AVAILABLE]

        for engine, _, _ in watchers.values():
            engine.close()


class TestSubscriptionLifecycle:
    """Tests for subscribe / unsubscribe."""

    @pytest.mark.asyncio
    async def test_unsubscribe_stops_delivery(self, store, repos, marketplace, market):
        engine, subscription, recorder = await _watch(store, repos, market.shop_a)

        subscription.unsubscribe()
        subscription.unsubscribe()
        assert subscription.closed

        await marketplace.broadcast_request(market.customer, "Atta", "Grocery")
        await store.flush()
        assert len(recorder.snapshots) == 1
        assert recorder.events == []

    @pytest.mark.asyncio
    async def test_unsubscribe_from_inside_the_callback(self, store, repos, marketplace, market):
        engine = MarketSyncEngine(repos, SessionContext(market.shop_a))
        delivered = []
        holder = {}

        async def on_snapshot(snapshot):
            delivered.append(snapshot)
            holder["sub"].unsubscribe()

        holder["sub"] = await engine.subscribe(on_snapshot)
        await store.flush()
        await marketplace.broadcast_request(market.customer, "Atta", "Grocery")
        await store.flush()

        assert len(delivered) == 1
        assert engine.closed

    @pytest.mark.asyncio
    async def test_subscribe_only_once(self, store, repos, market):
        engine, _, recorder = await _watch(store, repos, market.customer)
        with pytest.raises(RuntimeError):
            await engine.subscribe(recorder.on_snapshot)
        engine.close()

    @pytest.mark.asyncio
    async def test_subscribe_failure_closes_engine(self, store, repos, market):
        store.fail_next("subscribe", collection="orders")
        engine = MarketSyncEngine(repos, SessionContext(market.customer))
        recorder = Recorder()

        with pytest.raises(TransientStoreError):
            await engine.subscribe(recorder.on_snapshot)

        assert engine.closed
        await store.flush()
        assert recorder.snapshots == []
