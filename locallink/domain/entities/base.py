"""Shared helpers for entity models."""
from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Annotated, Any, TypeVar

from pydantic import AfterValidator, BaseModel, ConfigDict

_ID_NAMESPACE = uuid.uuid5(uuid.NAMESPACE_URL, "locallink")

E = TypeVar("E", bound="EntityModel")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


UtcDatetime = Annotated[datetime, AfterValidator(_as_utc)]


def new_id() -> str:
    return uuid.uuid4().hex


def offer_id_for(request_id: str, shop_id: str) -> str:
    """One offer per shop per request: the id is derived from both."""
    return uuid.uuid5(_ID_NAMESPACE, f"offer:{request_id}:{shop_id}").hex


def order_id_for(offer_id: str) -> str:
    """At most one order per offer: the id is derived from the offer."""
    return uuid.uuid5(_ID_NAMESPACE, f"order:{offer_id}").hex


class EntityModel(BaseModel):
    """Base for persisted documents."""

    model_config = ConfigDict(extra="ignore", validate_assignment=True)

    def to_document(self) -> dict[str, Any]:
        """Serialize for the document store (unset fields stripped)."""
        return self.model_dump(mode="json", exclude_none=True)

    @classmethod
    def from_document(cls: type[E], data: dict[str, Any]) -> E:
        return cls.model_validate(data)
