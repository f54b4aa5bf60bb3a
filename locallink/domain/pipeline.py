"""Derived marketplace views: request pipeline stages, dead leads, funnel stats."""
from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Iterable

from locallink.domain.entities import ActorBase, Offer, Order, ProductRequest
from locallink.domain.snapshot import MarketSnapshot
from locallink.domain.value_objects import OrderStatus, RequestStatus, UserRole

DEAD_LEAD_GRACE = timedelta(minutes=10)


class RequestStage(str, Enum):
    DRAFTING = "drafting"
    AWAITING_OFFERS = "awaiting_offers"
    DEAD_LEAD = "dead_lead"
    QUOTED = "quoted"
    ORDERED = "ordered"
    IN_DELIVERY = "in_delivery"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


def is_dead_lead(
    request: ProductRequest,
    offers: Iterable[Offer],
    now: datetime,
    grace: timedelta = DEAD_LEAD_GRACE,
) -> bool:
    """Broadcast for longer than `grace` without a single offer."""
    if request.status != RequestStatus.BROADCASTED:
        return False
    if now - request.created_at <= grace:
        return False
    return not any(o.request_id == request.id for o in offers)


def find_dead_leads(
    snapshot: MarketSnapshot, now: datetime, grace: timedelta = DEAD_LEAD_GRACE
) -> list[ProductRequest]:
    with_offers = {o.request_id for o in snapshot.offers}
    return [
        r
        for r in snapshot.requests
        if r.id not in with_offers and is_dead_lead(r, (), now, grace)
    ]


def classify_request(
    request: ProductRequest,
    offers: Iterable[Offer],
    orders: Iterable[Order],
    now: datetime,
    grace: timedelta = DEAD_LEAD_GRACE,
) -> RequestStage:
    if request.status == RequestStatus.CANCELLED:
        return RequestStage.CANCELLED
    if request.status in (RequestStatus.DRAFTING, RequestStatus.SUMMARIZED):
        return RequestStage.DRAFTING

    order = next((o for o in orders if o.request_id == request.id), None)
    if order is not None:
        if order.status == OrderStatus.DELIVERED:
            return RequestStage.DELIVERED
        if order.status == OrderStatus.PENDING_ASSIGNMENT:
            return RequestStage.ORDERED
        return RequestStage.IN_DELIVERY

    request_offers = [o for o in offers if o.request_id == request.id]
    if request_offers:
        return RequestStage.QUOTED
    if is_dead_lead(request, request_offers, now, grace):
        return RequestStage.DEAD_LEAD
    return RequestStage.AWAITING_OFFERS


def classify_all(
    snapshot: MarketSnapshot, now: datetime, grace: timedelta = DEAD_LEAD_GRACE
) -> dict[str, RequestStage]:
    return {
        r.id: classify_request(
            r, snapshot.offers_for(r.id), snapshot.orders_for(r.id), now, grace
        )
        for r in snapshot.requests
    }


@dataclass
class MarketplaceStats:
    total_users: int
    total_shops: int
    total_requests: int
    total_orders: int
    conversion_rate: float
    active_categories: dict[str, int] = field(default_factory=dict)
    gmv: float = 0.0
    delivered_orders: int = 0


@dataclass(frozen=True)
class FunnelStage:
    label: str
    count: int


def marketplace_stats(snapshot: MarketSnapshot, users: Iterable[ActorBase]) -> MarketplaceStats:
    users = list(users)
    total_requests = len(snapshot.requests)
    total_orders = len(snapshot.orders)
    return MarketplaceStats(
        total_users=sum(1 for u in users if u.role == UserRole.CUSTOMER),
        total_shops=sum(1 for u in users if u.role == UserRole.SHOP_OWNER),
        total_requests=total_requests,
        total_orders=total_orders,
        conversion_rate=(total_orders / total_requests * 100) if total_requests else 0.0,
        active_categories=dict(Counter(r.category for r in snapshot.requests)),
        gmv=sum(o.amount_to_collect for o in snapshot.orders),
        delivered_orders=sum(1 for o in snapshot.orders if o.status == OrderStatus.DELIVERED),
    )


def conversion_funnel(snapshot: MarketSnapshot) -> list[FunnelStage]:
    return [
        FunnelStage("Broadcasts", len(snapshot.requests)),
        FunnelStage("Quotes Provided", len(snapshot.offers)),
        FunnelStage("Orders Won", len(snapshot.orders)),
        FunnelStage(
            "Delivered", sum(1 for o in snapshot.orders if o.status == OrderStatus.DELIVERED)
        ),
    ]


@dataclass(frozen=True)
class Interaction:
    kind: str
    entity_id: str
    at: datetime


def interaction_feed(snapshot: MarketSnapshot) -> list[Interaction]:
    """Requests, offers and orders merged into one newest-first timeline."""
    events = [Interaction("request", r.id, r.created_at) for r in snapshot.requests]
    events += [Interaction("offer", o.id, o.created_at) for o in snapshot.offers]
    events += [Interaction("order", o.id, o.created_at) for o in snapshot.orders]
    return sorted(events, key=lambda e: e.at, reverse=True)
