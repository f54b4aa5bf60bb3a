"""
Order lifecycle controller.

Four transitions over the shared store, none of which holds a lock:

- accept_offer: claim the request for one offer, create the order, reject the
  rival offers, mark the offer accepted and the request fulfilled
- claim_delivery: exactly one partner moves a pending order to assigned
- advance_status: the assigned partner moves the order strictly forward
- rate: each party rates the other at most once per order; the stars are
  recorded with the rated flag and counted into the aggregate afterwards

Acceptance is a resumable saga. The order is written first with
`acceptance=in_flight`; every later step is idempotent, and the marker flips
to `committed` only after all of them succeeded.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field

from locallink.core.exceptions import (
    AlreadyClaimed,
    AlreadyRated,
    AuthorizationException,
    ConcurrentModification,
    ConditionFailed,
    InvalidTransition,
    OfferNotAvailable,
    TransientStoreError,
    ValidationException,
)
from locallink.core.metrics import track_transition
from locallink.core.retry import async_retry
from locallink.domain.entities import ActorBase, Offer, Order, ProductRequest, order_id_for
from locallink.domain.order_fsm import PARTNER_DRIVEN_STATUSES, validate_order_transition
from locallink.domain.value_objects import (
    AcceptanceState,
    OfferStatus,
    OrderStatus,
    RatingTarget,
    RequestStatus,
)
from locallink.repositories import Repositories

logger = logging.getLogger(__name__)


@dataclass
class AcceptOfferDraft:
    """What the customer picked. Everything else is copied from the store."""

    offer_id: str
    request_id: str
    shop_id: str
    customer_id: str
    delivery_address: str | None = None


@dataclass
class AcceptanceResult:
    order: Order
    rejected_offer_ids: list[str] = field(default_factory=list)
    resumed: bool = False


@dataclass
class RatingResult:
    order: Order
    rated_actor_id: str
    rating: float | None = None
    total_ratings: int | None = None


class OrderLifecycleController:
    def __init__(self, repositories: Repositories, town_hub_id: str = "town-hub"):
        self.repos = repositories
        self.town_hub_id = town_hub_id

    # ------------------------------------------------------------------
    # accept
    # ------------------------------------------------------------------

    async def accept_offer(self, draft: AcceptOfferDraft) -> AcceptanceResult:
        """Turn the chosen offer into an order.

        The first offer accepted for a request wins; accepting a different
        offer afterwards raises OfferNotAvailable. Accepting the same offer
        again resumes an unfinished acceptance.
        """
        offer = await self.repos.offers.get_or_raise(draft.offer_id)
        if (
            offer.request_id != draft.request_id
            or offer.shop_id != draft.shop_id
            or offer.customer_id != draft.customer_id
        ):
            raise ValidationException(f"Offer {offer.id} does not match the order draft")
        if offer.status == OfferStatus.REJECTED:
            track_transition("accept", "rejected_offer")
            raise OfferNotAvailable(f"Offer {offer.id} was already rejected")

        request = await self.repos.requests.get_or_raise(draft.request_id)
        if request.customer_id != draft.customer_id:
            raise AuthorizationException(f"Request {request.id} belongs to another customer")

        await self._claim_request(request, offer)

        order = await self._create_order(draft, offer, request)
        if order.is_committed:
            logger.info("Offer %s was already accepted as order %s", offer.id, order.id)
            track_transition("accept", "noop")
            return AcceptanceResult(order, resumed=True)

        return await self._complete_acceptance(order)

    async def resume_acceptance(self, order_id: str) -> AcceptanceResult:
        """Re-run the idempotent acceptance steps of an in-flight order."""
        order = await self.repos.orders.get_or_raise(order_id)
        if order.is_committed:
            return AcceptanceResult(order, resumed=True)
        logger.info("Resuming acceptance of order %s", order.id)
        result = await self._complete_acceptance(order)
        result.resumed = True
        return result

    async def _claim_request(self, request: ProductRequest, offer: Offer) -> None:
        if request.accepted_offer_id == offer.id:
            return
        if request.accepted_offer_id is not None:
            track_transition("accept", "conflict")
            raise OfferNotAvailable("Another offer was already accepted for this request")
        if request.status != RequestStatus.BROADCASTED:
            track_transition("accept", "conflict")
            raise OfferNotAvailable(f"Request {request.id} is {request.status.value}")

        try:
            await self.repos.requests.update(
                request.id,
                {"accepted_offer_id": offer.id},
                expected={"accepted_offer_id": None, "status": RequestStatus.BROADCASTED},
            )
        except ConditionFailed:
            current = await self.repos.requests.get_or_raise(request.id)
            if current.accepted_offer_id != offer.id:
                track_transition("accept", "conflict")
                logger.warning(
                    "Acceptance of offer %s lost the race on request %s", offer.id, request.id
                )
                raise OfferNotAvailable(
                    "Another offer was already accepted for this request"
                ) from None

    async def _create_order(
        self, draft: AcceptOfferDraft, offer: Offer, request: ProductRequest
    ) -> Order:
        order_id = order_id_for(offer.id)
        existing = await self.repos.orders.get(order_id)
        if existing is not None:
            return existing

        shop = await self.repos.users.get(offer.shop_id)
        customer = await self.repos.users.get(offer.customer_id)

        order = Order(
            id=order_id,
            request_id=request.id,
            offer_id=offer.id,
            customer_id=offer.customer_id,
            customer_name=customer.name if customer else request.customer_name or None,
            customer_phone=customer.phone_number if customer else None,
            shop_id=offer.shop_id,
            shop_name=offer.shop_name,
            shop_address=shop.address if shop else None,
            shop_phone=shop.phone_number if shop else None,
            category=request.category,
            item_description=request.description,
            delivery_address=draft.delivery_address or (customer.address if customer else "") or "",
            amount_to_collect=offer.price,
            pin_code=request.pin_code,
            city=request.city,
            status=OrderStatus.PENDING_ASSIGNMENT,
            acceptance=AcceptanceState.IN_FLIGHT,
            is_town_hub_order=offer.shop_id == self.town_hub_id,
        )
        try:
            order = await self.repos.orders.save(order, expected={"id": None})
        except ConditionFailed:
            # concurrent accept of the same offer created it first
            return await self.repos.orders.get_or_raise(order_id)

        logger.info("Order %s created for offer %s (request %s)", order.id, offer.id, request.id)
        return order

    async def _complete_acceptance(self, order: Order) -> AcceptanceResult:
        rejected: list[str] = []
        try:
            await self._reject_rivals(order, rejected)
            await self._mark_offer_accepted(order.offer_id)
            await self._mark_request_fulfilled(order.request_id, order.offer_id)
            # quotes written between the first scan and the fulfilment
            await self._reject_rivals(order, rejected)
            order = await self._commit(order)
        except Exception:
            track_transition("accept", "aborted")
            logger.error(
                "Acceptance of order %s aborted after rejecting %d rival offer(s)",
                order.id,
                len(rejected),
                exc_info=True,
            )
            raise

        track_transition("accept", "ok")
        logger.info(
            "Order %s accepted: offer %s won, %d rival offer(s) rejected",
            order.id,
            order.offer_id,
            len(rejected),
        )
        return AcceptanceResult(order, rejected)

    async def _reject_rivals(self, order: Order, rejected: list[str]) -> None:
        rivals = await self.repos.offers.for_request(order.request_id, strict=True)
        for rival in rivals:
            if rival.id == order.offer_id or rival.status == OfferStatus.REJECTED:
                continue
            if rival.status == OfferStatus.ACCEPTED:
                logger.warning(
                    "Rival offer %s on request %s is already accepted; leaving it",
                    rival.id,
                    order.request_id,
                )
                continue
            await self._reject_offer(rival.id)
            rejected.append(rival.id)

    @async_retry()
    async def _reject_offer(self, offer_id: str) -> None:
        await self.repos.offers.update(offer_id, {"status": OfferStatus.REJECTED})

    @async_retry()
    async def _mark_offer_accepted(self, offer_id: str) -> None:
        await self.repos.offers.update(offer_id, {"status": OfferStatus.ACCEPTED})

    @async_retry()
    async def _mark_request_fulfilled(self, request_id: str, offer_id: str) -> None:
        await self.repos.requests.update(
            request_id,
            {"status": RequestStatus.FULFILLED},
            expected={"accepted_offer_id": offer_id},
        )

    @async_retry()
    async def _commit(self, order: Order) -> Order:
        return await self.repos.orders.update(
            order.id, {"acceptance": AcceptanceState.COMMITTED}
        )

    # ------------------------------------------------------------------
    # delivery
    # ------------------------------------------------------------------

    async def claim_delivery(self, order_id: str, partner: ActorBase) -> Order:
        """Assign `partner` to a pending order, or raise AlreadyClaimed."""
        if not partner.is_delivery_partner:
            raise ValidationException("Only delivery partners can claim delivery jobs")

        # authoritative re-read; the caller's snapshot may be stale
        order = await self.repos.orders.get_or_raise(order_id)
        if order.status != OrderStatus.PENDING_ASSIGNMENT:
            track_transition("claim", "already_claimed")
            logger.info("Claim of order %s by %s refused: %s", order.id, partner.id, order.status.value)
            raise AlreadyClaimed(order.id)

        try:
            order = await self.repos.orders.update(
                order.id,
                {
                    "delivery_partner_id": partner.id,
                    "delivery_partner_name": partner.name,
                    "delivery_partner_phone": partner.phone_number or None,
                    "delivery_partner_vehicle": getattr(partner, "vehicle_type", None),
                    "status": OrderStatus.ASSIGNED,
                    "revision": order.revision + 1,
                },
                expected={"status": OrderStatus.PENDING_ASSIGNMENT, "revision": order.revision},
            )
        except ConditionFailed:
            track_transition("claim", "already_claimed")
            logger.warning("Claim of order %s by %s lost the race", order_id, partner.id)
            raise AlreadyClaimed(order_id) from None

        track_transition("claim", "ok")
        logger.info("Order %s assigned to delivery partner %s", order.id, partner.id)
        return order

    async def advance_status(
        self, order_id: str, partner_id: str, next_status: OrderStatus | str
    ) -> Order:
        """Move the order to the stage that directly follows its current one."""
        try:
            target = OrderStatus(next_status)
        except ValueError:
            raise ValidationException(f"Unknown order status: {next_status}") from None

        order = await self.repos.orders.get_or_raise(order_id)
        if order.delivery_partner_id != partner_id:
            raise AuthorizationException(f"Order {order.id} is not assigned to {partner_id}")

        result = validate_order_transition(current_status=order.status, target_status=target)
        if result.noop:
            logger.info("STATUS_UPDATE no-op (already %s): %s", target.value, order.id)
            return order
        if not result.allowed or target not in PARTNER_DRIVEN_STATUSES:
            track_transition("advance", "invalid")
            raise InvalidTransition(order.id, order.status.value, target.value, result.reason)

        try:
            order = await self.repos.orders.update(
                order.id,
                {"status": target, "revision": order.revision + 1},
                expected={"status": order.status, "revision": order.revision},
            )
        except ConditionFailed:
            track_transition("advance", "conflict")
            raise ConcurrentModification(order_id) from None

        track_transition("advance", "ok")
        logger.info("Order %s moved to %s", order.id, target.value)
        return order

    # ------------------------------------------------------------------
    # rating
    # ------------------------------------------------------------------

    async def rate(
        self,
        order_id: str,
        target: RatingTarget | str,
        stars: int,
        *,
        rater_id: str | None = None,
    ) -> RatingResult:
        """Rate the shop or the customer of a delivered order, once."""
        try:
            target = RatingTarget(target)
        except ValueError:
            raise ValidationException(f"Unknown rating target: {target}") from None
        if isinstance(stars, bool) or not isinstance(stars, int) or not 1 <= stars <= 5:
            raise ValidationException("Rating must be a whole number of stars from 1 to 5")

        order = await self.repos.orders.get_or_raise(order_id)
        if rater_id is not None:
            rater_party = order.customer_id if target == RatingTarget.SHOP else order.shop_id
            if rater_id != rater_party:
                raise AuthorizationException(f"{rater_id} cannot rate the {target.value} of {order.id}")
        if order.status != OrderStatus.DELIVERED:
            raise InvalidTransition(
                order.id, order.status.value, "rated", "Only delivered orders can be rated"
            )
        if order.rating_pending(target):
            # an earlier attempt recorded the stars but never counted them
            logger.info("Finishing pending %s rating of order %s", target.value, order.id)
            return await self._apply_rating(order, target)
        if order.is_rated(target):
            track_transition("rate", "already_rated")
            raise AlreadyRated(order.id, target.value)

        flag = "shop_rated" if target == RatingTarget.SHOP else "customer_rated"
        stars_field = "shop_stars" if target == RatingTarget.SHOP else "customer_stars"
        try:
            order = await self.repos.orders.update(
                order.id, {flag: True, stars_field: stars}, expected={flag: False}
            )
        except ConditionFailed:
            track_transition("rate", "already_rated")
            raise AlreadyRated(order.id, target.value) from None

        return await self._apply_rating(order, target)

    async def resume_rating(self, order_id: str, target: RatingTarget | str) -> RatingResult | None:
        """Count a recorded rating that never reached the aggregate. None if nothing is pending."""
        target = RatingTarget(target)
        order = await self.repos.orders.get_or_raise(order_id)
        if not order.rating_pending(target):
            return None
        return await self._apply_rating(order, target)

    async def _apply_rating(self, order: Order, target: RatingTarget) -> RatingResult:
        """Average the recorded stars in, keyed by order so a retry never counts twice.

        A store failure here leaves the rating pending; `rate` or the recovery
        worker finishes it later.
        """
        party_id = order.party_for(target)
        stars = order.stars_for(target)
        try:
            actor = await self.repos.users.add_rating(party_id, stars, key=order.rating_key(target))
        except TransientStoreError:
            track_transition("rate", "aggregate_pending")
            logger.warning(
                "Rating of %s by order %s recorded but not yet counted", party_id, order.id
            )
            raise

        applied = "shop_rating_applied" if target == RatingTarget.SHOP else "customer_rating_applied"
        order = await self.repos.orders.update(order.id, {applied: True})

        logger.info(
            "Actor %s rated %d, now %.2f over %d rating(s)",
            party_id,
            stars,
            actor.rating,
            actor.total_ratings,
        )
        track_transition("rate", "ok")
        return RatingResult(order, party_id, actor.rating, actor.total_ratings)
