"""Value Objects for domain model."""
from __future__ import annotations

from enum import Enum


class UserRole(str, Enum):
    """Actor roles."""

    CUSTOMER = "customer"
    SHOP_OWNER = "shop_owner"
    DELIVERY_PARTNER = "delivery_partner"
    ADMIN = "admin"


class RequestStatus(str, Enum):
    """Product request status."""

    DRAFTING = "drafting"
    SUMMARIZED = "summarized"
    BROADCASTED = "broadcasted"
    FULFILLED = "fulfilled"
    CANCELLED = "cancelled"


class OfferStatus(str, Enum):
    """Offer status. Accepted and rejected are final."""

    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class OrderStatus(str, Enum):
    """Order delivery stages, strictly in this order."""

    PENDING_ASSIGNMENT = "pending_assignment"
    ASSIGNED = "assigned"
    COLLECTED = "collected"
    DELIVERED = "delivered"


class AcceptanceState(str, Enum):
    """Progress marker of the offer acceptance saga stored on the order."""

    IN_FLIGHT = "in_flight"
    COMMITTED = "committed"


class RatingTarget(str, Enum):
    """Which party of an order is being rated."""

    SHOP = "shop"
    CUSTOMER = "customer"


class Collection(str, Enum):
    """Document store collections."""

    USERS = "users"
    REQUESTS = "requests"
    OFFERS = "offers"
    ORDERS = "orders"
    UPDATES = "updates"


CATEGORIES: tuple[str, ...] = (
    "Sports",
    "Grocery",
    "Electronics",
    "Pharmacy",
    "Fashion & Apparel",
    "Food & Bakery",
    "Books & Stationery",
    "Hardware",
    "Home Decor",
    "Other",
)

OTHER_CATEGORY = "Other"


def normalize_category(category: str | None) -> str:
    """Match a category case-insensitively, falling back to "Other"."""
    cleaned = (category or "").strip().lower()
    for known in CATEGORIES:
        if known.lower() == cleaned:
            return known
    return OTHER_CATEGORY


MARKET_COLLECTIONS: tuple[Collection, ...] = (
    Collection.REQUESTS,
    Collection.OFFERS,
    Collection.ORDERS,
    Collection.UPDATES,
)
