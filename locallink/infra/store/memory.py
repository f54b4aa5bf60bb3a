"""Process-local document store used for tests and single-node runs."""
from __future__ import annotations

import asyncio
import copy
import logging
from collections.abc import Mapping
from enum import Enum
from typing import Any

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


class _MemorySubscription(Subscription):
    """Pushes the latest collection state whenever it is marked dirty.

    Several writes landing before the pump wakes up coalesce into one delivery.
    """

    def __init__(self, store: "InMemoryDocumentStore", collection: str, handler: ChangeHandler):
        self._store = store
        self._collection = collection
        self._handler = handler
        self._closed = False
        self._dirty = asyncio.Event()
        self._idle = asyncio.Event()
        self._task = asyncio.create_task(self._pump(), name=f"store-sub:{collection}")

    @property
    def closed(self) -> bool:
        return self._closed

    def notify(self) -> None:
        if self._closed:
            return
        self._idle.clear()
        self._dirty.set()

    async def wait_idle(self) -> None:
        await self._idle.wait()

    async def _pump(self) -> None:
        try:
            while not self._closed:
                await self._dirty.wait()
                self._dirty.clear()
                if self._closed:
                    break
                docs = self._store._documents(self._collection)
                try:
                    await self._handler(docs)
                except Exception:
                    logger.exception("Subscriber for %s failed", self._collection)
                if not self._dirty.is_set():
                    self._idle.set()
        finally:
            self._idle.set()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._store._detach(self._collection, self)
        # wake the pump so it exits; an in-flight handler call is allowed to finish
        self._dirty.set()


class InMemoryDocumentStore(DocumentStore):
    """Dict-backed store with merge writes, conditions and live subscriptions.

    There is no await between the condition check and the write, so
    conditional writes are atomic on the event loop.
    """

    def __init__(self) -> None:
        self._collections: dict[str, dict[str, Document]] = {}
        self._subscriptions: dict[str, list[_MemorySubscription]] = {}
        self._failures: dict[str, list[str | None]] = {}

    def fail_next(self, operation: str, count: int = 1, collection: Enum | str | None = None) -> None:
        """Make the next `count` calls of `operation` raise TransientStoreError."""
        target = collection_name(collection) if collection is not None else None
        self._failures.setdefault(operation, []).extend([target] * count)

    def _maybe_fail(self, operation: str, collection: str) -> None:
        pending = self._failures.get(operation)
        if not pending:
            return
        for i, target in enumerate(pending):
            if target is None or target == collection:
                del pending[i]
                raise TransientStoreError(operation, collection, ConnectionError("injected failure"))

    def _documents(self, collection: str) -> list[Document]:
        return [copy.deepcopy(d) for d in self._collections.get(collection, {}).values()]

    def _detach(self, collection: str, subscription: _MemorySubscription) -> None:
        subs = self._subscriptions.get(collection, [])
        if subscription in subs:
            subs.remove(subscription)

    def _notify(self, collection: str) -> None:
        for sub in list(self._subscriptions.get(collection, [])):
            sub.notify()

    async def load_all(self, collection: Enum | str) -> list[Document]:
        name = collection_name(collection)
        self._maybe_fail("load_all", name)
        return self._documents(name)

    async def get(self, collection: Enum | str, doc_id: str) -> Document | None:
        name = collection_name(collection)
        self._maybe_fail("get", name)
        doc = self._collections.get(name, {}).get(doc_id)
        return copy.deepcopy(doc) if doc is not None else None

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
        self._maybe_fail("write", name)
        payload = strip_unset(dict(data))

        docs = self._collections.setdefault(name, {})
        current = docs.get(doc_id)
        check_expected(name, doc_id, current, expected)
        stored = merge_document(current, payload) if merge else payload
        docs[doc_id] = copy.deepcopy(stored)

        self._notify(name)
        return copy.deepcopy(stored)

    async def subscribe(self, collection: Enum | str, on_change: ChangeHandler) -> Subscription:
        name = collection_name(collection)
        self._maybe_fail("subscribe", name)
        sub = _MemorySubscription(self, name, on_change)
        self._subscriptions.setdefault(name, []).append(sub)
        sub.notify()
        return sub

    async def flush(self) -> None:
        """Wait until every live subscriber has observed the latest state."""
        while True:
            pending = [
                sub
                for subs in self._subscriptions.values()
                for sub in subs
                if not sub._idle.is_set()
            ]
            if not pending:
                return
            await asyncio.gather(*(sub.wait_idle() for sub in pending))

    async def close(self) -> None:
        for subs in list(self._subscriptions.values()):
            for sub in list(subs):
                sub.close()
        await asyncio.sleep(0)
