"""Marketplace operations outside the order lifecycle: profiles, requests, offers, chat, updates."""
from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from datetime import datetime, timedelta
from typing import Any

from pydantic import ValidationError

from locallink.core.exceptions import (
    AuthorizationException,
    ConditionFailed,
    OfferNotAvailable,
    OfferNotFound,
    RequestNotOpen,
    ValidationException,
)
from locallink.domain.entities import (
    Actor,
    ActorBase,
    DailyUpdate,
    DirectMessage,
    Offer,
    Order,
    ProductRequest,
    ShopProfile,
    offer_id_for,
    parse_actor,
    utcnow,
)
from locallink.domain.entities.daily_update import DEFAULT_TTL
from locallink.domain.request_rules import is_request_visible_to_shop
from locallink.domain.snapshot import MarketSnapshot
from locallink.domain.value_objects import OfferStatus, OrderStatus, RequestStatus, UserRole
from locallink.repositories import Repositories

logger = logging.getLogger(__name__)

# profile fields only the rating flow may write
PROTECTED_PROFILE_FIELDS = frozenset({"id", "role", "rating", "total_ratings", "rating_keys"})


def _first_error(error: ValidationError) -> str:
    errors = error.errors()
    if not errors:
        return str(error)
    first = errors[0]
    location = ".".join(str(part) for part in first.get("loc", ()))
    return f"{location}: {first['msg']}" if location else first["msg"]


class MarketplaceService:
    def __init__(
        self,
        repositories: Repositories,
        *,
        town_hub_id: str = "town-hub",
        update_ttl: timedelta = DEFAULT_TTL,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.repos = repositories
        self.town_hub_id = town_hub_id
        self.update_ttl = update_ttl
        self._clock = clock

    # profiles

    async def register_actor(self, profile: Mapping[str, Any] | ActorBase) -> Actor:
        """Create the profile or merge the given fields into an existing one.

        Fields the caller did not send are left as stored, so logging in again
        never resets a reputation.
        """
        try:
            actor = parse_actor(
                profile.model_dump() if isinstance(profile, ActorBase) else dict(profile)
            )
        except ValidationError as e:
            raise ValidationException(f"Invalid profile: {_first_error(e)}") from e

        existing = await self.repos.users.get(actor.id)
        if existing is not None and existing.role != actor.role:
            raise ValidationException(f"Actor {actor.id} is already registered as {existing.role}")

        changes = actor.model_dump(mode="json", exclude_unset=True, exclude_none=True)
        changes["role"] = actor.role
        stored = await self.repos.users.update(actor.id, changes)
        logger.info("Actor %s registered as %s", stored.id, stored.role)
        return stored

    async def update_profile(self, actor_id: str, changes: Mapping[str, Any]) -> Actor:
        protected = PROTECTED_PROFILE_FIELDS.intersection(changes)
        if protected:
            raise ValidationException(f"Cannot change {', '.join(sorted(protected))}")

        current = await self.repos.users.get_or_raise(actor_id)
        try:
            parse_actor({**current.model_dump(), **dict(changes)})
        except ValidationError as e:
            raise ValidationException(f"Invalid profile: {_first_error(e)}") from e

        return await self.repos.users.update(actor_id, dict(changes))

    # requests

    async def broadcast_request(
        self,
        customer: ActorBase,
        description: str,
        category: str | None,
        image: str | None = None,
    ) -> ProductRequest:
        """Broadcast a need to the shops around the customer."""
        if customer.role != UserRole.CUSTOMER:
            raise ValidationException("Only customers can broadcast requests")
        if not (description or "").strip():
            raise ValidationException("Describe what you are looking for")

        request = ProductRequest(
            customer_id=customer.id,
            customer_name=customer.name,
            pin_code=customer.pin_code,
            city=customer.city,
            locality=customer.locality,
            category=category,
            description=description.strip(),
            image=image,
            status=RequestStatus.BROADCASTED,
            created_at=self._clock(),
        )
        request = await self.repos.requests.save(request, expected={"id": None})
        logger.info(
            "Request %s broadcast in %s (%s) for %s",
            request.id,
            request.city or request.pin_code,
            request.category,
            customer.id,
        )
        return request

    async def cancel_request(self, request_id: str, customer_id: str) -> ProductRequest:
        request = await self.repos.requests.get_or_raise(request_id)
        if request.customer_id != customer_id:
            raise AuthorizationException(f"Request {request.id} belongs to another customer")
        if request.status == RequestStatus.CANCELLED:
            return request
        if not request.is_open:
            raise RequestNotOpen(request.id, request.state)

        try:
            request = await self.repos.requests.update(
                request.id,
                {"status": RequestStatus.CANCELLED},
                expected={"status": RequestStatus.BROADCASTED, "accepted_offer_id": None},
            )
        except ConditionFailed:
            current = await self.repos.requests.get_or_raise(request_id)
            raise RequestNotOpen(request_id, current.state) from None

        for offer in await self.repos.offers.for_request(request.id):
            if offer.status == OfferStatus.PENDING:
                await self.repos.offers.update(offer.id, {"status": OfferStatus.REJECTED})

        logger.info("Request %s cancelled by %s", request.id, customer_id)
        return request

    # offers

    async def submit_offer(
        self,
        shop: ActorBase,
        request_id: str,
        price: Any,
        message: str | None = None,
        product_image: str | None = None,
    ) -> Offer:
        """Quote a broadcast request. One quote per shop per request."""
        is_town_hub = shop.id == self.town_hub_id
        if not is_town_hub and not isinstance(shop, ShopProfile):
            raise ValidationException("Only shops can submit offers")
        try:
            amount = float(price)
        except (TypeError, ValueError):
            raise ValidationException("Please enter a price for your offer") from None
        if amount <= 0:
            raise ValidationException("Offer price must be greater than zero")

        request = await self.repos.requests.get_or_raise(request_id)
        if not request.is_open:
            raise RequestNotOpen(request.id, request.state)
        if request.customer_id == shop.id:
            raise ValidationException("Cannot quote your own request")
        if not is_town_hub and not is_request_visible_to_shop(request, shop):
            raise AuthorizationException(f"Request {request.id} is not open to {shop.id}")

        offer = Offer(
            id=offer_id_for(request.id, shop.id),
            request_id=request.id,
            customer_id=request.customer_id,
            shop_id=shop.id,
            shop_name=shop.display_name,
            shop_rating=shop.rating,
            price=amount,
            message=(message or "").strip() or None,
            product_image=product_image,
            created_at=self._clock(),
        )
        try:
            offer = await self.repos.offers.save(offer, expected={"id": None})
        except ConditionFailed:
            raise OfferNotAvailable("You already sent a quote for this request") from None

        # the request may have closed or been claimed while the quote was being written
        current = await self.repos.requests.get_or_raise(request.id)
        if not current.is_open:
            await self.repos.offers.update(offer.id, {"status": OfferStatus.REJECTED})
            raise RequestNotOpen(current.id, current.state)

        logger.info("Offer %s from %s on request %s: %.2f", offer.id, shop.id, request.id, amount)
        return offer

    async def send_message(
        self,
        offer_id: str,
        sender_id: str,
        text: str,
        image: str | None = None,
    ) -> Offer:
        text = (text or "").strip()
        if not text and not image:
            raise ValidationException("Message is empty")

        offer = await self.repos.offers.get_or_raise(offer_id)
        if sender_id not in (offer.customer_id, offer.shop_id):
            raise AuthorizationException(f"{sender_id} is not part of this chat")
        if offer.status == OfferStatus.REJECTED:
            raise ValidationException("This quote is closed")

        message = DirectMessage(sender_id=sender_id, text=text, image=image, timestamp=self._clock())
        updated = await self.repos.offers.append_message(offer.id, message.model_dump(mode="json"))
        if updated is None:
            raise OfferNotFound(offer_id)
        return updated

    # daily updates

    async def post_daily_update(
        self, shop: ActorBase, text: str, image: str | None = None
    ) -> DailyUpdate:
        if not isinstance(shop, ShopProfile):
            raise ValidationException("Only shops can post town updates")
        if not (text or "").strip():
            raise ValidationException("Update text is empty")

        update = DailyUpdate.create(
            shop.id,
            shop.shop_name,
            text.strip(),
            image,
            ttl=self.update_ttl,
            now=self._clock(),
        )
        update = await self.repos.updates.save(update, expected={"id": None})
        logger.info("Daily update %s posted by %s", update.id, shop.id)
        return update

    # derived lists

    @staticmethod
    def visible_requests(shop: ShopProfile, requests: Iterable[ProductRequest]) -> list[ProductRequest]:
        return [r for r in requests if is_request_visible_to_shop(r, shop)]

    @staticmethod
    def customer_offers(customer: ActorBase, snapshot: MarketSnapshot) -> list[Offer]:
        """Quotes the customer can still act on."""
        my_requests = {r.id for r in snapshot.requests if r.customer_id == customer.id}
        ordered = {o.offer_id for o in snapshot.orders if o.customer_id == customer.id}
        return [
            o
            for o in snapshot.offers
            if (o.customer_id == customer.id or o.request_id in my_requests)
            and o.status != OfferStatus.REJECTED
            and o.id not in ordered
        ]

    @staticmethod
    def available_jobs(partner: ActorBase, orders: Iterable[Order]) -> list[Order]:
        city = partner.city.strip().lower()
        return [
            o
            for o in orders
            if o.status == OrderStatus.PENDING_ASSIGNMENT and o.city.strip().lower() == city
        ]

    @staticmethod
    def partner_jobs(partner: ActorBase, orders: Iterable[Order]) -> tuple[list[Order], list[Order]]:
        """(active, history) of the partner's own deliveries."""
        mine = [o for o in orders if o.delivery_partner_id == partner.id]
        active = [o for o in mine if o.status != OrderStatus.DELIVERED]
        history = [o for o in mine if o.status == OrderStatus.DELIVERED]
        return active, history
