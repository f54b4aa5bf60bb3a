"""Document store adapter and backends."""

from .base import (
    ChangeHandler,
    Document,
    DocumentStore,
    Subscription,
    check_expected,
    merge_document,
    strip_unset,
)
from .memory import InMemoryDocumentStore
from .redis_store import RedisDocumentStore


def create_store(backend: str, redis_url: str | None = None, prefix: str = "locallink") -> DocumentStore:
    """Build the configured store backend."""
    if backend == "redis":
        if not redis_url:
            raise ValueError("redis store backend requires a URL")
        return RedisDocumentStore.from_url(redis_url, prefix=prefix)
    return InMemoryDocumentStore()


__all__ = [
    "ChangeHandler",
    "Document",
    "DocumentStore",
    "InMemoryDocumentStore",
    "RedisDocumentStore",
    "Subscription",
    "check_expected",
    "create_store",
    "merge_document",
    "strip_unset",
]
