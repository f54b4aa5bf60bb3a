"""Actor (user / shop profile) entity models."""
from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import Field, TypeAdapter, field_validator

from locallink.domain.entities.base import EntityModel
from locallink.domain.value_objects import UserRole, normalize_category


class ActorBase(EntityModel):
    """Fields shared by every authenticated participant."""

    id: str = Field(..., min_length=1)
    role: str
    name: str = Field(..., min_length=1)
    phone_number: str = ""
    address: str | None = None
    pin_code: str = ""
    city: str = ""
    locality: str | None = None
    rating: float = Field(0.0, ge=0, le=5)
    total_ratings: int = Field(0, ge=0)
    # order ratings already averaged in, as "{order_id}:{target}"
    rating_keys: list[str] = Field(default_factory=list)
    is_verified: bool = False

    @property
    def is_shop(self) -> bool:
        return self.role == UserRole.SHOP_OWNER

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    @property
    def is_delivery_partner(self) -> bool:
        return self.role == UserRole.DELIVERY_PARTNER

    @property
    def display_name(self) -> str:
        return self.name

    def rating_after(self, stars: int) -> tuple[float, int]:
        """Aggregate rating once `stars` is averaged in."""
        total = self.total_ratings + 1
        average = (self.rating * self.total_ratings + stars) / total
        return round(average, 2), total


class CustomerProfile(ActorBase):
    role: Literal["customer"] = "customer"


class ShopProfile(ActorBase):
    role: Literal["shop_owner"] = "shop_owner"
    shop_name: str = Field(..., min_length=1)
    category: str = "Other"
    shop_image: str | None = None
    description: str | None = None
    promo_banner: str | None = None

    @field_validator("category", mode="before")
    @classmethod
    def _normalize_category(cls, v: Any) -> str:
        return normalize_category(v)

    @property
    def display_name(self) -> str:
        return self.shop_name


class DeliveryPartnerProfile(ActorBase):
    role: Literal["delivery_partner"] = "delivery_partner"
    vehicle_type: str | None = None


class AdminProfile(ActorBase):
    role: Literal["admin"] = "admin"


Actor = Annotated[
    Union[CustomerProfile, ShopProfile, DeliveryPartnerProfile, AdminProfile],
    Field(discriminator="role"),
]

ActorAdapter: TypeAdapter[Actor] = TypeAdapter(Actor)


def parse_actor(data: dict[str, Any]) -> Actor:
    """Validate an untyped profile document into its role-specific model."""
    return ActorAdapter.validate_python(data)
