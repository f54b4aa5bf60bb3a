"""Document store adapter interface.

The store is an external replicated document database: per-collection
point-in-time reads, field-level merge writes, optional compare-and-set
conditions, and continuous per-collection change subscriptions.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Mapping
from enum import Enum
from typing import Any

from locallink.core.exceptions import ConditionFailed

Document = dict[str, Any]
ChangeHandler = Callable[[list[Document]], Awaitable[None]]


def collection_name(collection: Enum | str) -> str:
    return collection.value if isinstance(collection, Enum) else str(collection)


def strip_unset(value: Any) -> Any:
    """Drop None values recursively; the store rejects unset fields."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Mapping):
        return {k: strip_unset(v) for k, v in value.items() if v is not None}
    if isinstance(value, (list, tuple)):
        return [strip_unset(v) for v in value]
    return value


def merge_document(current: Mapping[str, Any] | None, changes: Mapping[str, Any]) -> Document:
    """Field-level merge: only the given fields are overwritten, nested maps merge too."""
    merged: Document = dict(current or {})
    for key, value in changes.items():
        existing = merged.get(key)
        if isinstance(value, Mapping) and isinstance(existing, Mapping):
            merged[key] = merge_document(existing, value)
        else:
            merged[key] = value
    return merged


def check_expected(
    collection: str,
    doc_id: str,
    current: Mapping[str, Any] | None,
    expected: Mapping[str, Any] | None,
) -> None:
    """Raise ConditionFailed unless every expected field holds its value.

    A missing document or field compares equal to None.
    """
    if not expected:
        return
    doc = current or {}
    for field, wanted in expected.items():
        wanted = strip_unset(wanted)
        actual = doc.get(field)
        if actual != wanted:
            raise ConditionFailed(collection, doc_id, field, wanted, actual)


class Subscription(ABC):
    """Handle returned by DocumentStore.subscribe."""

    @abstractmethod
    def close(self) -> None:
        """Stop delivery. Idempotent, safe to call from inside the handler."""

    @property
    @abstractmethod
    def closed(self) -> bool:
        """Whether close() was called."""


class DocumentStore(ABC):
    """Abstract document store backend."""

    @abstractmethod
    async def load_all(self, collection: Enum | str) -> list[Document]:
        """Point-in-time read of every document in a collection."""

    @abstractmethod
    async def get(self, collection: Enum | str, doc_id: str) -> Document | None:
        """Authoritative read of one document."""

    @abstractmethod
    async def write(
        self,
        collection: Enum | str,
        doc_id: str,
        data: Mapping[str, Any],
        *,
        merge: bool = True,
        expected: Mapping[str, Any] | None = None,
    ) -> Document:
        """Write a document and return the stored result.

        Args:
            collection: Target collection
            doc_id: Document id
            data: Full or partial document; None values are stripped
            merge: Overwrite only the given fields instead of replacing
            expected: Field -> value that must currently hold, else
                ConditionFailed is raised and nothing is written
        """

    @abstractmethod
    async def subscribe(self, collection: Enum | str, on_change: ChangeHandler) -> Subscription:
        """Deliver the full collection now and after every change (coalescing allowed)."""

    async def close(self) -> None:
        """Release backend resources."""
