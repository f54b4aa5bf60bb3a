"""Actor profile repository."""
from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from pydantic import ValidationError

from locallink.core.exceptions import ActorNotFound, ConditionFailed, TransientStoreError
from locallink.domain.entities import Actor, ActorBase, parse_actor
from locallink.domain.value_objects import Collection

from .base import BaseRepository

logger = logging.getLogger(__name__)


class UserRepository(BaseRepository[Actor]):
    """Profiles are a tagged union on `role`; parsing picks the variant."""

    collection = Collection.USERS
    model = ActorBase
    not_found = ActorNotFound

    def parse(self, doc: Mapping[str, Any]) -> Actor | None:
        try:
            return parse_actor(dict(doc))
        except ValidationError as e:
            logger.warning("Skipping invalid profile %s: %s", doc.get("id", "?"), e.error_count())
            return None

    async def add_rating(
        self, actor_id: str, stars: int, key: str | None = None, attempts: int = 5
    ) -> Actor:
        """Average `stars` into the actor's aggregate rating.

        Compare-and-set on the stored rating fields, so concurrent raters
        never overwrite each other. With a `key`, a rating that was already
        counted is not counted again. Raises ActorNotFound for a missing
        profile and TransientStoreError when the aggregate kept changing for
        `attempts` rounds.
        """
        for _ in range(attempts):
            doc = await self.store.get(self.collection, actor_id)
            actor = self.parse(doc) if doc is not None else None
            if actor is None:
                raise ActorNotFound(actor_id)
            if key is not None and key in actor.rating_keys:
                return actor

            rating, total = actor.rating_after(stars)
            changes: dict[str, Any] = {"rating": rating, "total_ratings": total}
            if key is not None:
                changes["rating_keys"] = [*actor.rating_keys, key]
            try:
                return await self.update(
                    actor_id,
                    changes,
                    expected={"rating": doc.get("rating"), "total_ratings": doc.get("total_ratings")},
                )
            except ConditionFailed:
                logger.debug("Rating of %s changed concurrently, retrying", actor_id)

        raise TransientStoreError(
            "write", self.collection.value, RuntimeError(f"rating of {actor_id} kept changing")
        )
