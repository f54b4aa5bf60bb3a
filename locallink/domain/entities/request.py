"""Product request entity model."""
from __future__ import annotations

from typing import Any

from pydantic import Field, field_validator

from locallink.domain.entities.base import EntityModel, UtcDatetime, new_id, utcnow
from locallink.domain.value_objects import RequestStatus, normalize_category


class ProductRequest(EntityModel):
    """A customer's stated need, broadcast to matching shops."""

    id: str = Field(default_factory=new_id)
    customer_id: str
    customer_name: str = ""
    pin_code: str = ""
    city: str = ""
    locality: str | None = None
    category: str = "Other"
    description: str = Field(..., min_length=1)
    status: RequestStatus = RequestStatus.BROADCASTED
    created_at: UtcDatetime = Field(default_factory=utcnow)
    image: str | None = None
    accepted_offer_id: str | None = None

    @field_validator("category", mode="before")
    @classmethod
    def _normalize_category(cls, v: Any) -> str:
        return normalize_category(v)

    @property
    def is_open(self) -> bool:
        """Still taking quotes: broadcast and not claimed by an acceptance."""
        return self.status == RequestStatus.BROADCASTED and self.accepted_offer_id is None

    @property
    def state(self) -> str:
        if self.status == RequestStatus.BROADCASTED and self.accepted_offer_id is not None:
            return "accepting"
        return self.status.value
