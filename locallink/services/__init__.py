"""Application services."""

from .admin_service import AdminService
from .alert_center import AlertCenter, InboxEntry
from .market_sync import (
    MarketEvent,
    MarketEventKind,
    MarketSyncEngine,
    SessionContext,
    SyncSubscription,
    detect_events,
)
from .marketplace import MarketplaceService
from .order_lifecycle import (
    AcceptanceResult,
    AcceptOfferDraft,
    OrderLifecycleController,
    RatingResult,
)

__all__ = [
    "AcceptOfferDraft",
    "AcceptanceResult",
    "AdminService",
    "AlertCenter",
    "InboxEntry",
    "MarketEvent",
    "MarketEventKind",
    "MarketSyncEngine",
    "MarketplaceService",
    "OrderLifecycleController",
    "RatingResult",
    "SessionContext",
    "SyncSubscription",
    "detect_events",
]
