"""In-memory merged view of the live marketplace collections."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from locallink.domain.entities import DailyUpdate, Offer, Order, ProductRequest


@dataclass(frozen=True)
class MarketSnapshot:
    """Requests, offers, orders and active updates, each newest-first."""

    requests: tuple[ProductRequest, ...] = field(default_factory=tuple)
    offers: tuple[Offer, ...] = field(default_factory=tuple)
    orders: tuple[Order, ...] = field(default_factory=tuple)
    updates: tuple[DailyUpdate, ...] = field(default_factory=tuple)

    def request(self, request_id: str) -> ProductRequest | None:
        return next((r for r in self.requests if r.id == request_id), None)

    def offer(self, offer_id: str) -> Offer | None:
        return next((o for o in self.offers if o.id == offer_id), None)

    def order(self, order_id: str) -> Order | None:
        return next((o for o in self.orders if o.id == order_id), None)

    def offers_for(self, request_id: str) -> list[Offer]:
        return [o for o in self.offers if o.request_id == request_id]

    def orders_for(self, request_id: str) -> list[Order]:
        return [o for o in self.orders if o.request_id == request_id]

    def to_dict(self) -> dict[str, Any]:
        return {
            "requests": [r.to_document() for r in self.requests],
            "offers": [o.to_document() for o in self.offers],
            "orders": [o.to_document() for o in self.orders],
            "updates": [u.to_document() for u in self.updates],
        }
