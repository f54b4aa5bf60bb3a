"""Who may see and quote a product request."""
from __future__ import annotations

from locallink.domain.entities import ActorBase, ProductRequest, ShopProfile
from locallink.domain.value_objects import OTHER_CATEGORY, RequestStatus


def _norm(value: str | None) -> str:
    return (value or "").strip().lower()


def same_city(request: ProductRequest, actor: ActorBase) -> bool:
    return bool(_norm(request.city)) and _norm(request.city) == _norm(actor.city)


def same_area(request: ProductRequest, actor: ActorBase) -> bool:
    """Same city, or same postal code."""
    same_pin = bool(_norm(request.pin_code)) and _norm(request.pin_code) == _norm(actor.pin_code)
    return same_city(request, actor) or same_pin


def category_matches(request: ProductRequest, shop: ShopProfile) -> bool:
    request_category = _norm(request.category) or _norm(OTHER_CATEGORY)
    shop_category = _norm(shop.category) or _norm(OTHER_CATEGORY)
    return request_category == shop_category or request_category == _norm(OTHER_CATEGORY)


def is_request_visible_to_shop(request: ProductRequest, shop: ShopProfile) -> bool:
    """Broadcast requests in the shop's area and category ("Other" matches every shop)."""
    if request.status != RequestStatus.BROADCASTED:
        return False
    return same_area(request, shop) and category_matches(request, shop)


def is_lead_for_shop(request: ProductRequest, shop: ShopProfile) -> bool:
    """Requests that raise a new-lead alert: same city only, a postal code match is not enough."""
    if request.status != RequestStatus.BROADCASTED:
        return False
    return same_city(request, shop) and category_matches(request, shop)
