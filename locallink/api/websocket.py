"""
WebSocket handler for live market views.

Every connected actor gets one MarketSyncEngine shared by all of their
connections. Snapshots are pushed to the actor's sockets; relevant events go
through the AlertCenter, which publishes them on the actor's notification
channel that each socket listens to.
"""
from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime

from aiohttp import WSMsgType, web
from aiohttp.client_exceptions import ClientConnectionResetError

from locallink.core.exceptions import TransientStoreError
from locallink.core.metrics import metrics
from locallink.core.notifications import Notification, NotificationService
from locallink.domain.entities import ActorBase, utcnow
from locallink.domain.snapshot import MarketSnapshot
from locallink.repositories import Repositories
from locallink.services.alert_center import AlertCenter
from locallink.services.market_sync import (
    MarketEvent,
    MarketSyncEngine,
    SessionContext,
    SyncSubscription,
)

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class WebSocketClient:
    """Represents a connected WebSocket client."""

    ws: web.WebSocketResponse
    actor_id: str
    connected_at: datetime = field(default_factory=utcnow)

    async def send(self, data: dict) -> bool:
        try:
            if not self.ws.closed:
                await self.ws.send_json(data)
                return True
        except (ConnectionError, RuntimeError, ClientConnectionResetError) as e:
            logger.warning("Failed to send to WebSocket of %s: %s", self.actor_id, e)
        return False

    async def send_notification(self, notification: Notification) -> bool:
        return await self.send({"type": "event", "payload": notification.to_dict()})


@dataclass(eq=False)
class ActorSession:
    engine: MarketSyncEngine
    clients: set[WebSocketClient] = field(default_factory=set)
    subscription: SyncSubscription | None = None


class WebSocketManager:
    """Tracks sockets per actor and the sync engine feeding them."""

    def __init__(
        self,
        repositories: Repositories,
        alerts: AlertCenter,
        notifications: NotificationService,
    ):
        self._repos = repositories
        self._alerts = alerts
        self._notifications = notifications
        self._sessions: dict[str, ActorSession] = {}
        self._lock = asyncio.Lock()

    async def connect(self, ws: web.WebSocketResponse, actor: ActorBase) -> WebSocketClient:
        client = WebSocketClient(ws=ws, actor_id=actor.id)

        async with self._lock:
            session = self._sessions.get(actor.id)
            if session is None:
                session = await self._start_session(actor)
            session.clients.add(client)

        await self._notifications.subscribe_actor(actor.id, client.send_notification)
        metrics.ws_connections.inc()
        logger.info("WebSocket connected: actor=%s", actor.id)

        await client.send(
            {
                "type": "connected",
                "payload": {"actor_id": actor.id, "timestamp": client.connected_at.isoformat()},
            }
        )
        if session.engine.snapshot is not None:
            await client.send({"type": "snapshot", "payload": session.engine.snapshot.to_dict()})
        return client

    async def _start_session(self, actor: ActorBase) -> ActorSession:
        engine = MarketSyncEngine(self._repos, SessionContext(actor))
        session = ActorSession(engine)
        self._sessions[actor.id] = session

        async def on_snapshot(snapshot: MarketSnapshot) -> None:
            frame = {"type": "snapshot", "payload": snapshot.to_dict()}
            for client in list(session.clients):
                await client.send(frame)

        async def on_event(events: list[MarketEvent]) -> None:
            await self._alerts.handle_events(events)

        try:
            session.subscription = await engine.subscribe(on_snapshot, on_event)
        except TransientStoreError:
            del self._sessions[actor.id]
            raise
        await self._alerts.welcome(actor)
        return session

    async def disconnect(self, client: WebSocketClient) -> None:
        async with self._lock:
            session = self._sessions.get(client.actor_id)
            if session is not None and client in session.clients:
                session.clients.discard(client)
                metrics.ws_connections.dec()
                if not session.clients:
                    session.engine.close()
                    del self._sessions[client.actor_id]

        await self._notifications.unsubscribe_actor(client.actor_id, client.send_notification)
        if not client.ws.closed:
            await client.ws.close()
        logger.info("WebSocket disconnected: actor=%s", client.actor_id)

    async def stop(self) -> None:
        """Close every connection and sync engine."""
        for session in list(self._sessions.values()):
            for client in list(session.clients):
                await self.disconnect(client)
        logger.info("WebSocketManager stopped")

    def get_connection_count(self) -> int:
        return sum(len(s.clients) for s in self._sessions.values())

    def get_stats(self) -> dict:
        return {
            "total_connections": self.get_connection_count(),
            "unique_actors": len(self._sessions),
            "actors": list(self._sessions),
        }


async def handle_client_message(
    client: WebSocketClient, alerts: AlertCenter, data: dict
) -> None:
    msg_type = data.get("type")

    if msg_type == "ping":
        await client.send({"type": "pong", "timestamp": utcnow().isoformat()})
    elif msg_type == "mark_read":
        alerts.mark_all_read(client.actor_id)
        await client.send({"type": "unread", "count": 0})
    elif msg_type == "clear_alerts":
        alerts.clear(client.actor_id)
        await client.send({"type": "unread", "count": 0})
    else:
        await client.send({"type": "error", "message": f"Unknown message type: {msg_type}"})


async def serve_websocket(
    request: web.Request,
    manager: WebSocketManager,
    alerts: AlertCenter,
    actor: ActorBase,
) -> web.WebSocketResponse:
    """Run one socket until the client goes away.

    Client messages: ping, mark_read, clear_alerts.
    Server messages: connected, snapshot, event, pong, unread, error.
    """
    ws = web.WebSocketResponse(heartbeat=30)
    try:
        await ws.prepare(request)
    except ClientConnectionResetError:
        return ws

    client = await manager.connect(ws, actor)
    try:
        async for msg in ws:
            if msg.type == WSMsgType.TEXT:
                try:
                    data = json.loads(msg.data)
                except json.JSONDecodeError:
                    await client.send({"type": "error", "message": "Invalid JSON"})
                    continue
                if isinstance(data, dict):
                    await handle_client_message(client, alerts, data)
                else:
                    await client.send({"type": "error", "message": "Expected a JSON object"})
            elif msg.type == WSMsgType.ERROR:
                logger.error("WebSocket error: %s", ws.exception())
                break
    finally:
        try:
            await manager.disconnect(client)
        except ClientConnectionResetError:
            pass

    return ws
