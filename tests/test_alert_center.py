"""Tests for the alert inbox and notification fan-out."""
from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, Mock, patch

import pytest

from locallink.core.notifications import (
    InMemoryPubSub,
    Notification,
    NotificationService,
    NotificationType,
    RedisPubSub,
)
from locallink.services.alert_center import (
    MAX_INBOX_ENTRIES,
    AlertCenter,
    InboxEntry,
    notification_for,
)
from locallink.services.market_sync import MarketEvent, MarketEventKind


def _event(kind=MarketEventKind.NEW_QUOTE, actor_id="cust-1", entity_id="o1"):
    return MarketEvent(kind, actor_id, entity_id, "New quote from Ravi Kirana!", {"offer_id": entity_id})


class TestAlertCenter:
    """Tests for AlertCenter."""

    @pytest.mark.asyncio
    async def test_inbox_is_newest_first_and_capped(self):
        alerts = AlertCenter()
        for i in range(MAX_INBOX_ENTRIES + 5):
            await alerts.push(Notification(NotificationType.SYSTEM, "cust-1", f"alert {i}"))

        inbox = alerts.inbox("cust-1")
        assert len(inbox) == MAX_INBOX_ENTRIES
        assert inbox[0].notification.text == f"alert {MAX_INBOX_ENTRIES + 4}"
        assert inbox[-1].notification.text == "alert 5"

    @pytest.mark.asyncio
    async def test_read_and_clear(self):
        alerts = AlertCenter()
        await alerts.handle_events([_event(entity_id="o1"), _event(entity_id="o2")])
        assert alerts.unread_count("cust-1") == 2

        alerts.mark_all_read("cust-1")
        assert alerts.unread_count("cust-1") == 0
        assert all(entry.is_read for entry in alerts.inbox("cust-1"))

        alerts.clear("cust-1")
        assert alerts.inbox("cust-1") == []

    @pytest.mark.asyncio
    async def test_inboxes_are_per_actor(self):
        alerts = AlertCenter()
        await alerts.handle_events([_event(actor_id="cust-1"), _event(MarketEventKind.NEW_LEAD, "shop-a", "r1")])
        assert alerts.unread_count("cust-1") == 1
        assert alerts.inbox("shop-a")[0].notification.type == NotificationType.LEAD

    @pytest.mark.asyncio
    async def test_events_are_published_to_actor_channel(self):
        notifications = NotificationService(InMemoryPubSub())
        received = []

        async def handler(notification):
            received.append(notification)

        await notifications.subscribe_actor("cust-1", handler)
        alerts = AlertCenter(notifications)

        await alerts.handle_events([_event()])

        assert len(received) == 1
        assert received[0].type == NotificationType.OFFER
        assert received[0].data == {"kind": "new_quote", "offer_id": "o1"}

    @pytest.mark.asyncio
    async def test_delivery_failure_keeps_inbox_entry(self):
        notifications = Mock()
        notifications.notify_actor = AsyncMock(side_effect=ConnectionError("redis down"))
        alerts = AlertCenter(notifications)

        entry = await alerts.push(Notification(NotificationType.ORDER, "shop-a", "New order"))

        assert alerts.inbox("shop-a") == [entry]
        notifications.notify_actor.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_welcome_is_silent(self, market):
        alerts = AlertCenter()
        entry = await alerts.welcome(market.customer)
        assert entry.notification.silent
        assert entry.notification.text == "Market Link active for Asha."

    def test_notification_types(self):
        assert notification_for(_event(MarketEventKind.OFFER_LOST)).type == NotificationType.SYSTEM
        assert notification_for(_event(MarketEventKind.JOB_AVAILABLE)).type == NotificationType.ORDER

    def test_entry_serialization(self):
        notification = Notification(NotificationType.CHAT, "cust-1", "Hi", {"offer_id": "o1"})
        entry = InboxEntry(notification)
        data = entry.to_dict()
        assert data["is_read"] is False
        assert data["type"] == "chat"
        assert len(data["id"]) == 9
        assert Notification.from_dict(data).text == "Hi"


class TestInMemoryPubSub:
    """Tests for the in-memory notification backend."""

    @pytest.mark.asyncio
    async def test_unsubscribe(self):
        pubsub = InMemoryPubSub()
        handler = AsyncMock()
        await pubsub.subscribe("actor:a", handler)
        await pubsub.unsubscribe("actor:a", handler)
        await pubsub.publish("actor:a", Notification(NotificationType.SYSTEM, "a", "x"))
        handler.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failing_handler_does_not_block_others(self):
        pubsub = InMemoryPubSub()
        good = AsyncMock()
        bad = AsyncMock(side_effect=RuntimeError("boom"))
        await pubsub.subscribe("actor:a", bad)
        await pubsub.subscribe("actor:a", good)
        await pubsub.publish("actor:a", Notification(NotificationType.SYSTEM, "a", "x"))
        good.assert_awaited_once()


class TestRedisPubSub:
    """Tests for the Redis notification backend with a mocked client."""

    @pytest.mark.asyncio
    async def test_prefixed_channels_and_malformed_payloads(self):
        hello = Notification(NotificationType.SYSTEM, "a", "hello")
        pubsub = Mock()
        pubsub.subscribe = AsyncMock()
        pubsub.unsubscribe = AsyncMock()
        pubsub.aclose = AsyncMock()
        pubsub.get_message = AsyncMock(
            side_effect=[
                {"type": "message", "channel": "ll:notify:actor:a", "data": "not json"},
                {"type": "message", "channel": "ll:notify:actor:a", "data": hello.to_json()},
            ]
        )
        client = Mock()
        client.pubsub.return_value = pubsub
        client.publish = AsyncMock()
        client.aclose = AsyncMock()

        backend = RedisPubSub("redis://localhost:6379", prefix="ll")
        received = []

        async def handler(notification):
            received.append(notification)
            # the listener stops once no handler is left
            await backend.unsubscribe("actor:a", handler)

        with patch("locallink.core.notifications.aioredis.from_url", return_value=client):
            await backend.subscribe("actor:a", handler)
            await backend.publish("actor:a", hello)
            await asyncio.wait_for(backend._listener, timeout=2)
            await backend.close()

        pubsub.subscribe.assert_awaited_once_with("ll:notify:actor:a")
        pubsub.unsubscribe.assert_awaited_once_with("ll:notify:actor:a")
        client.publish.assert_awaited_once_with("ll:notify:actor:a", hello.to_json())
        assert [n.text for n in received] == ["hello"]
        client.aclose.assert_awaited_once()
