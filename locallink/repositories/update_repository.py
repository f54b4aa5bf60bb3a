"""Daily update repository."""
from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime

from locallink.domain.entities import DailyUpdate
from locallink.domain.value_objects import Collection

from .base import BaseRepository

# the feed only ever looks at this many of the newest updates
FEED_LIMIT = 20


def active_feed(
    updates: Iterable[DailyUpdate], now: datetime, limit: int = FEED_LIMIT
) -> list[DailyUpdate]:
    """The newest `limit` updates, newest first, minus those already expired."""
    newest = sorted(updates, key=lambda u: u.created_at, reverse=True)[:limit]
    return [u for u in newest if u.is_active(now)]


class UpdateRepository(BaseRepository[DailyUpdate]):
    collection = Collection.UPDATES
    model = DailyUpdate

    async def active(self, now: datetime, limit: int = FEED_LIMIT) -> list[DailyUpdate]:
        return active_feed(await self.list_all(), now, limit)
