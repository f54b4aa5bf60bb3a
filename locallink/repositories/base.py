"""Base repository: typed access to one document store collection."""
from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any, Generic, TypeVar

from pydantic import ValidationError

from locallink.core.exceptions import NotFoundException, TransientStoreError
from locallink.core.metrics import track_store_error
from locallink.domain.entities import EntityModel
from locallink.domain.value_objects import Collection
from locallink.infra.store import Document, DocumentStore

logger = logging.getLogger(__name__)

E = TypeVar("E")


class BaseRepository(Generic[E]):
    """Validates documents at the store boundary.

    List reads degrade to an empty result on transient store failures;
    point reads propagate them so multi-step transitions can abort.
    """

    collection: Collection
    model: type[EntityModel]
    not_found: type[NotFoundException] = NotFoundException

    def __init__(self, store: DocumentStore) -> None:
        self.store = store

    def parse(self, doc: Mapping[str, Any]) -> E | None:
        """Validate one document; invalid shapes are logged and dropped."""
        try:
            return self.model.model_validate(doc)  # type: ignore[return-value]
        except ValidationError as e:
            logger.warning(
                "Skipping invalid %s document %s: %s",
                self.collection.value,
                doc.get("id", "?"),
                e.errors()[0]["msg"] if e.errors() else e,
            )
            return None

    def parse_many(self, docs: list[Document]) -> list[E]:
        parsed = (self.parse(doc) for doc in docs)
        return [entity for entity in parsed if entity is not None]

    async def list_all(self) -> list[E]:
        try:
            docs = await self.store.load_all(self.collection)
        except TransientStoreError as e:
            track_store_error("load_all")
            logger.warning("Could not load %s: %s", self.collection.value, e)
            return []
        return self.parse_many(docs)

    async def get(self, entity_id: str) -> E | None:
        try:
            doc = await self.store.get(self.collection, entity_id)
        except TransientStoreError:
            track_store_error("get")
            raise
        return self.parse(doc) if doc is not None else None

    async def get_or_raise(self, entity_id: str) -> E:
        entity = await self.get(entity_id)
        if entity is None:
            raise self.not_found(entity_id)
        return entity

    async def save(
        self, entity: EntityModel, *, expected: Mapping[str, Any] | None = None
    ) -> E:
        return await self.update(entity.id, entity.to_document(), expected=expected)  # type: ignore[attr-defined]

    async def update(
        self,
        entity_id: str,
        changes: Mapping[str, Any],
        *,
        expected: Mapping[str, Any] | None = None,
    ) -> E:
        """Merge `changes` into the stored document and return the result."""
        try:
            stored = await self.store.write(self.collection, entity_id, changes, expected=expected)
        except TransientStoreError:
            track_store_error("write")
            raise
        entity = self.parse(stored)
        if entity is None:
            raise TransientStoreError(
                "write", self.collection.value, ValueError(f"stored {entity_id} is invalid")
            )
        return entity
