"""Domain entities."""

from .actor import (
    Actor,
    ActorAdapter,
    ActorBase,
    AdminProfile,
    CustomerProfile,
    DeliveryPartnerProfile,
    ShopProfile,
    parse_actor,
)
from .base import EntityModel, new_id, offer_id_for, order_id_for, utcnow
from .daily_update import DailyUpdate
from .offer import DirectMessage, Offer
from .order import Order
from .request import ProductRequest

__all__ = [
    "Actor",
    "ActorAdapter",
    "ActorBase",
    "AdminProfile",
    "CustomerProfile",
    "DailyUpdate",
    "DeliveryPartnerProfile",
    "DirectMessage",
    "EntityModel",
    "Offer",
    "Order",
    "ProductRequest",
    "ShopProfile",
    "new_id",
    "offer_id_for",
    "order_id_for",
    "parse_actor",
    "utcnow",
]
