"""Redis-backed document store (one hash per collection, pub/sub change feed)."""
from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Mapping
from enum import Enum
from typing import Any

import redis.asyncio as aioredis
from redis.exceptions import RedisError, WatchError

from locallink.core.exceptions import TransientStoreError
from locallink.infra.store.base import (
    ChangeHandler,
    Document,
    DocumentStore,
    Subscription,
    check_expected,
    collection_name,
    merge_document,
    strip_unset,
)

logger = logging.getLogger(__name__)


def _decode(raw: Any) -> Document | None:
    if raw is None:
        return None
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8")
    try:
        value = json.loads(raw)
    except (TypeError, ValueError):
        return None
    return value if isinstance(value, dict) else None


class _RedisSubscription(Subscription):
    def __init__(self, store: "RedisDocumentStore", collection: str, handler: ChangeHandler):
        self._store = store
        self._collection = collection
        self._handler = handler
        self._closed = False
        self.task: asyncio.Task | None = None

    @property
    def closed(self) -> bool:
        return self._closed

    def start(self) -> None:
        self.task = asyncio.create_task(self._listen(), name=f"redis-sub:{self._collection}")

    async def _deliver(self) -> None:
        try:
            docs = await self._store.load_all(self._collection)
        except TransientStoreError as e:
            # subscribers keep their last good state
            logger.warning("Reload of %s failed: %s", self._collection, e)
            return
        if self._closed:
            return
        try:
            await self._handler(docs)
        except Exception:
            logger.exception("Subscriber for %s failed", self._collection)

    async def _listen(self) -> None:
        pubsub = self._store.client.pubsub()
        subscribed = False
        try:
            while not self._closed:
                try:
                    if not subscribed:
                        await pubsub.subscribe(self._store.channel(self._collection))
                        subscribed = True
                        await self._deliver()
                        continue
                    message = await pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
                    if message is None:
                        continue
                    # coalesce whatever else is already queued
                    while await pubsub.get_message(ignore_subscribe_messages=True, timeout=0):
                        pass
                    if not self._closed:
                        await self._deliver()
                except RedisError as e:
                    logger.warning("Change feed for %s interrupted: %s", self._collection, e)
                    await asyncio.sleep(self._store.resubscribe_delay)
        finally:
            try:
                await pubsub.unsubscribe()
                await pubsub.aclose()
            except RedisError as e:
                logger.debug("Pub/sub cleanup for %s failed: %s", self._collection, e)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._store._detach(self)
        # a handler closing its own subscription lets the loop exit on the flag
        if self.task is not None and self.task is not asyncio.current_task():
            self.task.cancel()


class RedisDocumentStore(DocumentStore):
    """Documents live as JSON values in `{prefix}:{collection}` hashes.

    Writes run in WATCH/MULTI transactions so merge and conditional writes are
    atomic across processes; each write publishes on `{prefix}:changes:{collection}`.
    """

    def __init__(
        self,
        client: aioredis.Redis,
        prefix: str = "locallink",
        max_watch_retries: int = 10,
        resubscribe_delay: float = 1.0,
    ):
        self.client = client
        self._prefix = prefix
        self._max_watch_retries = max_watch_retries
        self.resubscribe_delay = resubscribe_delay
        self._subscriptions: list[_RedisSubscription] = []

    @classmethod
    def from_url(cls, url: str, prefix: str = "locallink") -> "RedisDocumentStore":
        client = aioredis.from_url(
            url, decode_responses=True, socket_connect_timeout=5, socket_timeout=5
        )
        return cls(client, prefix=prefix)

    def key(self, collection: str) -> str:
        return f"{self._prefix}:{collection}"

    def channel(self, collection: str) -> str:
        return f"{self._prefix}:changes:{collection}"

    async def load_all(self, collection: Enum | str) -> list[Document]:
        name = collection_name(collection)
        try:
            raw = await self.client.hgetall(self.key(name))
        except RedisError as e:
            raise TransientStoreError("load_all", name, e) from e

        docs = []
        for doc_id, value in raw.items():
            doc = _decode(value)
            if doc is None:
                logger.warning("Skipping undecodable document %s/%s", name, doc_id)
                continue
            docs.append(doc)
        return docs

    async def get(self, collection: Enum | str, doc_id: str) -> Document | None:
        name = collection_name(collection)
        try:
            raw = await self.client.hget(self.key(name), doc_id)
        except RedisError as e:
            raise TransientStoreError("get", name, e) from e
        return _decode(raw)

    async def write(
        self,
        collection: Enum | str,
        doc_id: str,
        data: Mapping[str, Any],
        *,
        merge: bool = True,
        expected: Mapping[str, Any] | None = None,
    ) -> Document:
        name = collection_name(collection)
        key = self.key(name)
        payload = strip_unset(dict(data))

        for _ in range(self._max_watch_retries):
            try:
                async with self.client.pipeline(transaction=True) as pipe:
                    await pipe.watch(key)
                    current = _decode(await pipe.hget(key, doc_id))
                    check_expected(name, doc_id, current, expected)
                    stored = merge_document(current, payload) if merge else payload
                    pipe.multi()
                    pipe.hset(key, doc_id, json.dumps(stored))
                    pipe.publish(self.channel(name), doc_id)
                    await pipe.execute()
                    return stored
            except WatchError:
                logger.debug("Write contention on %s/%s, retrying", name, doc_id)
                continue
            except RedisError as e:
                raise TransientStoreError("write", name, e) from e

        raise TransientStoreError("write", name, RuntimeError("too much write contention"))

    async def subscribe(self, collection: Enum | str, on_change: ChangeHandler) -> Subscription:
        sub = _RedisSubscription(self, collection_name(collection), on_change)
        sub.start()
        self._subscriptions.append(sub)
        return sub

    def _detach(self, subscription: _RedisSubscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

    async def close(self) -> None:
        subscriptions = list(self._subscriptions)
        for sub in subscriptions:
            sub.close()
        tasks = [sub.task for sub in subscriptions if sub.task is not None]
        await asyncio.gather(*tasks, return_exceptions=True)
        await self.client.aclose()
