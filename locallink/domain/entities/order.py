"""Order entity model."""
from __future__ import annotations

from pydantic import Field

from locallink.domain.entities.base import EntityModel, UtcDatetime, utcnow
from locallink.domain.value_objects import AcceptanceState, OrderStatus, RatingTarget


class Order(EntityModel):
    """Fulfilment record created when an offer is accepted.

    Shop/customer contact details and the request description are copied in
    at acceptance time so the order stays a fixed record of what was agreed.
    """

    id: str
    request_id: str
    offer_id: str
    customer_id: str
    customer_name: str | None = None
    customer_phone: str | None = None
    shop_id: str
    shop_name: str
    shop_address: str | None = None
    shop_phone: str | None = None
    category: str | None = None
    item_description: str | None = None
    delivery_address: str = ""
    amount_to_collect: float = Field(..., ge=0)
    pin_code: str = ""
    city: str = ""
    status: OrderStatus = OrderStatus.PENDING_ASSIGNMENT
    delivery_partner_id: str | None = None
    delivery_partner_name: str | None = None
    delivery_partner_phone: str | None = None
    delivery_partner_vehicle: str | None = None
    customer_rated: bool = False
    shop_rated: bool = False
    # stars recorded with the rated flag; *_applied once counted in the aggregate
    customer_stars: int | None = Field(None, ge=1, le=5)
    shop_stars: int | None = Field(None, ge=1, le=5)
    customer_rating_applied: bool = False
    shop_rating_applied: bool = False
    created_at: UtcDatetime = Field(default_factory=utcnow)
    revision: int = 0
    acceptance: AcceptanceState = AcceptanceState.IN_FLIGHT
    is_town_hub_order: bool = False
    town_hub_pickup_finalized: bool = False

    @property
    def is_committed(self) -> bool:
        return self.acceptance == AcceptanceState.COMMITTED

    def is_rated(self, target: RatingTarget) -> bool:
        return self.shop_rated if target == RatingTarget.SHOP else self.customer_rated

    def party_for(self, target: RatingTarget) -> str:
        return self.shop_id if target == RatingTarget.SHOP else self.customer_id

    def stars_for(self, target: RatingTarget) -> int | None:
        return self.shop_stars if target == RatingTarget.SHOP else self.customer_stars

    def rating_applied(self, target: RatingTarget) -> bool:
        if target == RatingTarget.SHOP:
            return self.shop_rating_applied
        return self.customer_rating_applied

    def rating_pending(self, target: RatingTarget) -> bool:
        """Rated and stars recorded, but not yet counted in the aggregate."""
        return (
            self.is_rated(target)
            and self.stars_for(target) is not None
            and not self.rating_applied(target)
        )

    def rating_key(self, target: RatingTarget) -> str:
        return f"{self.id}:{target.value}"
