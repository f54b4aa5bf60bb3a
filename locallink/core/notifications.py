"""
Per-actor notification channels.

Alerts are published on `actor:{id}`; every open socket of that actor
subscribes a handler. The in-memory backend serves a single process, the
Redis backend fans out across instances.
"""
from __future__ import annotations

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

import redis.asyncio as aioredis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)


class NotificationType(str, Enum):
    """Types of notifications (mirrors the alert center badges)."""

    OFFER = "offer"
    ORDER = "order"
    CHAT = "chat"
    SYSTEM = "system"
    LEAD = "lead"


@dataclass
class Notification:
    """Notification payload."""

    type: NotificationType
    recipient_id: str
    text: str
    data: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    silent: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "recipient_id": self.recipient_id,
            "text": self.text,
            "data": self.data,
            "created_at": self.created_at.isoformat(),
            "silent": self.silent,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Notification":
        return cls(
            type=NotificationType(data["type"]),
            recipient_id=data["recipient_id"],
            text=data["text"],
            data=data.get("data", {}),
            created_at=datetime.fromisoformat(data["created_at"]),
            silent=data.get("silent", False),
        )


NotificationHandler = Callable[[Notification], Awaitable[None]]


async def _dispatch(channel: str, handlers: set[NotificationHandler], notification: Notification) -> None:
    # one failing socket must not starve the others
    for handler in list(handlers):
        try:
            await handler(notification)
        except Exception:
            logger.exception("Notification handler on %s failed", channel)


class PubSubBackend(ABC):
    @abstractmethod
    async def publish(self, channel: str, notification: Notification) -> None: ...

    @abstractmethod
    async def subscribe(self, channel: str, handler: NotificationHandler) -> None: ...

    @abstractmethod
    async def unsubscribe(self, channel: str, handler: NotificationHandler) -> None: ...

    @abstractmethod
    async def close(self) -> None: ...


class InMemoryPubSub(PubSubBackend):
    """Single-process fan-out; publish awaits every handler."""

    def __init__(self):
        self._handlers: dict[str, set[NotificationHandler]] = {}

    async def publish(self, channel: str, notification: Notification) -> None:
        await _dispatch(channel, self._handlers.get(channel, set()), notification)

    async def subscribe(self, channel: str, handler: NotificationHandler) -> None:
        self._handlers.setdefault(channel, set()).add(handler)
        logger.debug("Subscribed to %s (%d handlers)", channel, len(self._handlers[channel]))

    async def unsubscribe(self, channel: str, handler: NotificationHandler) -> None:
        handlers = self._handlers.get(channel)
        if handlers is None:
            return
        handlers.discard(handler)
        if not handlers:
            del self._handlers[channel]

    async def close(self) -> None:
        self._handlers.clear()


class RedisPubSub(PubSubBackend):
    """Fan-out across service instances over Redis channels.

    Channels are namespaced with the same prefix as the document store so
    several deployments can share one Redis.
    """

    def __init__(self, redis_url: str, prefix: str = "locallink"):
        self._redis_url = redis_url
        self._prefix = prefix
        self._client: aioredis.Redis | None = None
        self._pubsub: Any = None
        self._handlers: dict[str, set[NotificationHandler]] = {}
        self._listener: asyncio.Task | None = None

    def _key(self, channel: str) -> str:
        return f"{self._prefix}:notify:{channel}"

    async def _connect(self) -> aioredis.Redis:
        if self._client is None:
            self._client = aioredis.from_url(self._redis_url, decode_responses=True)
            self._pubsub = self._client.pubsub()
        return self._client

    def _start_listener(self) -> None:
        if self._listener is None or self._listener.done():
            self._listener = asyncio.create_task(self._listen(), name="notification-listener")

    async def _listen(self) -> None:
        marker = f"{self._prefix}:notify:"
        while self._handlers:
            try:
                message = await self._pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
            except RedisError as e:
                logger.warning("Notification feed interrupted: %s", e)
                await asyncio.sleep(1)
                continue
            if not message or message.get("type") != "message":
                continue

            channel = message["channel"].removeprefix(marker)
            try:
                notification = Notification.from_dict(json.loads(message["data"]))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("Dropping malformed notification on %s: %s", channel, e)
                continue
            await _dispatch(channel, self._handlers.get(channel, set()), notification)

    async def publish(self, channel: str, notification: Notification) -> None:
        client = await self._connect()
        await client.publish(self._key(channel), notification.to_json())

    async def subscribe(self, channel: str, handler: NotificationHandler) -> None:
        await self._connect()
        if channel not in self._handlers:
            await self._pubsub.subscribe(self._key(channel))
            self._handlers[channel] = set()
        self._handlers[channel].add(handler)
        self._start_listener()

    async def unsubscribe(self, channel: str, handler: NotificationHandler) -> None:
        handlers = self._handlers.get(channel)
        if handlers is None:
            return
        handlers.discard(handler)
        if not handlers:
            del self._handlers[channel]
            await self._pubsub.unsubscribe(self._key(channel))

    async def close(self) -> None:
        self._handlers.clear()
        if self._listener is not None:
            self._listener.cancel()
            await asyncio.gather(self._listener, return_exceptions=True)
        if self._pubsub is not None:
            await self._pubsub.aclose()
        if self._client is not None:
            await self._client.aclose()


class NotificationService:
    """Routes notifications to per-actor channels on the configured backend."""

    def __init__(self, backend: PubSubBackend | None = None):
        self._backend = backend or InMemoryPubSub()

    @classmethod
    def from_url(cls, redis_url: str | None, prefix: str = "locallink") -> "NotificationService":
        return cls(RedisPubSub(redis_url, prefix) if redis_url else InMemoryPubSub())

    @staticmethod
    def actor_channel(actor_id: str) -> str:
        return f"actor:{actor_id}"

    async def subscribe_actor(self, actor_id: str, handler: NotificationHandler) -> None:
        await self._backend.subscribe(self.actor_channel(actor_id), handler)

    async def unsubscribe_actor(self, actor_id: str, handler: NotificationHandler) -> None:
        await self._backend.unsubscribe(self.actor_channel(actor_id), handler)

    async def notify_actor(self, notification: Notification) -> None:
        await self._backend.publish(self.actor_channel(notification.recipient_id), notification)

    async def close(self) -> None:
        await self._backend.close()
