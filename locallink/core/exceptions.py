"""Custom exceptions for LocalLink."""
from __future__ import annotations

from typing import Any


class LocalLinkException(Exception):
    """Base exception for all LocalLink errors."""

    def __init__(self, message: str, *args: object) -> None:
        super().__init__(message, *args)
        self.message = message


class ConfigurationException(LocalLinkException):
    """Configuration errors."""

    pass


class StoreException(LocalLinkException):
    """Document store errors."""

    pass


class TransientStoreError(StoreException):
    """Read/write/subscribe failed (network, auth, serialization)."""

    def __init__(self, operation: str, collection: str, cause: BaseException | None = None) -> None:
        detail = f": {cause}" if cause else ""
        super().__init__(f"Store {operation} on '{collection}' failed{detail}")
        self.operation = operation
        self.collection = collection
        self.cause = cause


class ConditionFailed(StoreException):
    """A conditional write observed a different current value."""

    def __init__(self, collection: str, doc_id: str, field: str, expected: Any, actual: Any) -> None:
        super().__init__(
            f"Condition failed on {collection}/{doc_id}: "
            f"{field} expected {expected!r}, found {actual!r}"
        )
        self.collection = collection
        self.doc_id = doc_id
        self.field = field
        self.expected = expected
        self.actual = actual


class NotFoundException(LocalLinkException):
    """Entity not found in the store."""

    entity = "Entity"

    def __init__(self, entity_id: str) -> None:
        super().__init__(f"{self.entity} with ID {entity_id} not found")
        self.entity_id = entity_id


class ActorNotFound(NotFoundException):
    entity = "Actor"


class RequestNotFound(NotFoundException):
    entity = "Request"


class OfferNotFound(NotFoundException):
    entity = "Offer"


class OrderNotFound(NotFoundException):
    entity = "Order"


class ValidationException(LocalLinkException):
    """Input validation errors."""

    pass


class AuthorizationException(LocalLinkException):
    """Actor is not a party to the entity it tries to change."""

    pass


class LifecycleException(LocalLinkException):
    """Order lifecycle transition refused."""

    pass


class AlreadyClaimed(LifecycleException):
    """Delivery claim lost the race."""

    def __init__(self, order_id: str) -> None:
        super().__init__("This delivery job was already taken by someone else.")
        self.order_id = order_id


class InvalidTransition(LifecycleException):
    """Requested status does not follow the current one."""

    def __init__(self, order_id: str, current: str | None, target: str, reason: str | None = None) -> None:
        super().__init__(reason or f"Transition '{current} -> {target}' is not allowed")
        self.order_id = order_id
        self.current = current
        self.target = target


class AlreadyRated(LifecycleException):
    """Counterparty was already rated for this order."""

    def __init__(self, order_id: str, target: str) -> None:
        super().__init__(f"The {target} of order {order_id} was already rated")
        self.order_id = order_id
        self.target = target


class OfferNotAvailable(LifecycleException):
    """Offer cannot be submitted or accepted in its current state."""

    pass


class ConcurrentModification(LifecycleException):
    """Order changed between read and conditional write."""

    def __init__(self, order_id: str) -> None:
        super().__init__(f"Order {order_id} was modified concurrently, reload and retry")
        self.order_id = order_id


class AssistantUnavailable(LocalLinkException):
    """Upstream generation service failed."""

    pass


class RequestNotOpen(LifecycleException):
    """Request no longer takes quotes (accepting, fulfilled or cancelled)."""

    def __init__(self, request_id: str, status: str) -> None:
        super().__init__(f"Request {request_id} is {status} and no longer takes offers")
        self.request_id = request_id
        self.status = status
