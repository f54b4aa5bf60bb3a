"""Daily update (shop promotional broadcast) entity model."""
from __future__ import annotations

from datetime import datetime, timedelta

from pydantic import Field

from locallink.domain.entities.base import EntityModel, UtcDatetime, new_id, utcnow

DEFAULT_TTL = timedelta(hours=24)


class DailyUpdate(EntityModel):
    id: str = Field(default_factory=new_id)
    shop_id: str
    shop_name: str
    text: str = Field(..., min_length=1)
    image: str | None = None
    created_at: UtcDatetime = Field(default_factory=utcnow)
    expires_at: UtcDatetime

    def is_active(self, now: datetime) -> bool:
        return self.expires_at > now

    @classmethod
    def create(
        cls,
        shop_id: str,
        shop_name: str,
        text: str,
        image: str | None = None,
        *,
        ttl: timedelta = DEFAULT_TTL,
        now: datetime | None = None,
    ) -> "DailyUpdate":
        created = now or utcnow()
        return cls(
            shop_id=shop_id,
            shop_name=shop_name,
            text=text,
            image=image,
            created_at=created,
            expires_at=created + ttl,
        )
