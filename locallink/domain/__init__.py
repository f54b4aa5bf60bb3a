"""Domain package."""

from .entities import (
    Actor,
    AdminProfile,
    CustomerProfile,
    DailyUpdate,
    DeliveryPartnerProfile,
    DirectMessage,
    Offer,
    Order,
    ProductRequest,
    ShopProfile,
)
from .snapshot import MarketSnapshot
from .value_objects import (
    CATEGORIES,
    AcceptanceState,
    Collection,
    OfferStatus,
    OrderStatus,
    RatingTarget,
    RequestStatus,
    UserRole,
)

__all__ = [
    # Entities
    "Actor",
    "AdminProfile",
    "CustomerProfile",
    "DailyUpdate",
    "DeliveryPartnerProfile",
    "DirectMessage",
    "MarketSnapshot",
    "Offer",
    "Order",
    "ProductRequest",
    "ShopProfile",
    # Value Objects
    "CATEGORIES",
    "AcceptanceState",
    "Collection",
    "OfferStatus",
    "OrderStatus",
    "RatingTarget",
    "RequestStatus",
    "UserRole",
]
