"""Scenario builders shared by the test modules."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from locallink.domain.entities import (
    AdminProfile,
    CustomerProfile,
    DeliveryPartnerProfile,
    Offer,
    Order,
    ProductRequest,
    ShopProfile,
    utcnow,
)
from locallink.domain.value_objects import OrderStatus
from locallink.repositories import Repositories
from locallink.services.marketplace import MarketplaceService
from locallink.services.order_lifecycle import AcceptOfferDraft, OrderLifecycleController


@dataclass
class Market:
    customer: CustomerProfile
    shop_a: ShopProfile
    shop_b: ShopProfile
    partner_1: DeliveryPartnerProfile
    partner_2: DeliveryPartnerProfile
    admin: AdminProfile


async def seed_market(repos: Repositories) -> Market:
    """One customer, two grocery shops and two delivery partners in Pune."""
    return Market(
        customer=await repos.users.save(
            CustomerProfile(
                id="cust-1",
                name="Asha",
                phone_number="9800000001",
                address="12 MG Road",
                pin_code="411001",
                city="Pune",
            )
        ),
        shop_a=await repos.users.save(
            ShopProfile(
                id="shop-a",
                name="Ravi",
                shop_name="Ravi Kirana",
                category="Grocery",
                phone_number="9800000002",
                address="4 FC Road",
                pin_code="411004",
                city="Pune",
            )
        ),
        shop_b=await repos.users.save(
            ShopProfile(
                id="shop-b",
                name="Meena",
                shop_name="Meena Stores",
                category="Grocery",
                pin_code="411001",
                city="Pune",
            )
        ),
        partner_1=await repos.users.save(
            DeliveryPartnerProfile(
                id="partner-1", name="Dev", phone_number="9800000003", city="Pune", vehicle_type="bike"
            )
        ),
        partner_2=await repos.users.save(
            DeliveryPartnerProfile(id="partner-2", name="Kiran", city="pune")
        ),
        admin=await repos.users.save(AdminProfile(id="admin-1", name="Ops")),
    )


async def quote_request(
    marketplace: MarketplaceService, market: Market
) -> tuple[ProductRequest, Offer, Offer]:
    """Broadcast a grocery request and have both shops quote it."""
    request = await marketplace.broadcast_request(market.customer, "5kg basmati rice", "Grocery")
    offer_a = await marketplace.submit_offer(market.shop_a, request.id, 450, "India Gate, in stock")
    offer_b = await marketplace.submit_offer(market.shop_b, request.id, 480)
    return request, offer_a, offer_b


def draft_for(offer: Offer, delivery_address: str | None = None) -> AcceptOfferDraft:
    return AcceptOfferDraft(
        offer_id=offer.id,
        request_id=offer.request_id,
        shop_id=offer.shop_id,
        customer_id=offer.customer_id,
        delivery_address=delivery_address,
    )


async def delivered_order(
    marketplace: MarketplaceService, lifecycle: OrderLifecycleController, market: Market
) -> Order:
    """Walk one order from broadcast to delivered."""
    _, offer_a, _ = await quote_request(marketplace, market)
    result = await lifecycle.accept_offer(draft_for(offer_a))
    order = await lifecycle.claim_delivery(result.order.id, market.partner_1)
    await lifecycle.advance_status(order.id, market.partner_1.id, OrderStatus.COLLECTED)
    return await lifecycle.advance_status(order.id, market.partner_1.id, OrderStatus.DELIVERED)


class FakeClock:
    """Returns `start`, advancing by `step` on every call."""

    def __init__(self, start: datetime | None = None, step: timedelta = timedelta(seconds=1)):
        self.now = start or utcnow()
        self.step = step

    def __call__(self) -> datetime:
        current = self.now
        self.now += self.step
        return current

    def advance(self, delta: timedelta) -> None:
        self.now += delta
