"""Offer entity model."""
from __future__ import annotations

from pydantic import BaseModel, Field

from locallink.domain.entities.base import EntityModel, UtcDatetime, new_id, utcnow
from locallink.domain.value_objects import OfferStatus


class DirectMessage(BaseModel):
    """One chat message between a customer and a shop on an offer."""

    sender_id: str
    text: str = ""
    timestamp: UtcDatetime = Field(default_factory=utcnow)
    image: str | None = None


class Offer(EntityModel):
    """A shop's quoted response to a request."""

    id: str = Field(default_factory=new_id)
    request_id: str
    customer_id: str
    shop_id: str
    shop_name: str
    shop_rating: float = 0.0
    price: float = Field(..., gt=0, description="Quoted price")
    product_image: str | None = None
    message: str | None = None
    chat_history: list[DirectMessage] = Field(default_factory=list)
    status: OfferStatus = OfferStatus.PENDING
    created_at: UtcDatetime = Field(default_factory=utcnow)

    @property
    def is_final(self) -> bool:
        return self.status in (OfferStatus.ACCEPTED, OfferStatus.REJECTED)
