"""Offer repository."""
from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from locallink.core.exceptions import ConditionFailed, OfferNotFound
from locallink.domain.entities import Offer
from locallink.domain.value_objects import Collection

from .base import BaseRepository


class OfferRepository(BaseRepository[Offer]):
    collection = Collection.OFFERS
    model = Offer
    not_found = OfferNotFound

    async def for_request(self, request_id: str, *, strict: bool = False) -> list[Offer]:
        """All offers quoting `request_id`.

        With `strict`, a store failure propagates instead of reading as empty;
        the acceptance saga must not mistake an outage for "no rivals".
        """
        if strict:
            docs = await self.store.load_all(self.collection)
            offers = self.parse_many(docs)
        else:
            offers = await self.list_all()
        return [o for o in offers if o.request_id == request_id]

    async def append_message(
        self, offer_id: str, message: Mapping[str, Any], attempts: int = 5
    ) -> Offer | None:
        """Append to the chat with compare-and-set on the whole history."""
        for _ in range(attempts):
            doc = await self.store.get(self.collection, offer_id)
            if doc is None:
                return None
            history = list(doc.get("chat_history") or [])
            try:
                return await self.update(
                    offer_id,
                    {"chat_history": history + [dict(message)]},
                    expected={"chat_history": doc.get("chat_history")},
                )
            except ConditionFailed:
                continue
        return None
