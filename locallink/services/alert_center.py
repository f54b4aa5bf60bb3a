"""Per-actor alert inbox fed by market sync events."""
from __future__ import annotations

import logging
import uuid
from collections import deque
from dataclasses import dataclass, field

from locallink.core.notifications import Notification, NotificationService, NotificationType
from locallink.domain.entities import ActorBase
from locallink.services.market_sync import MarketEvent, MarketEventKind

logger = logging.getLogger(__name__)

MAX_INBOX_ENTRIES = 50

EVENT_NOTIFICATION_TYPES = {
    MarketEventKind.NEW_QUOTE: NotificationType.OFFER,
    MarketEventKind.NEW_LEAD: NotificationType.LEAD,
    MarketEventKind.OFFER_LOST: NotificationType.SYSTEM,
    MarketEventKind.ORDER_CONFIRMED: NotificationType.ORDER,
    MarketEventKind.ORDER_RECEIVED: NotificationType.ORDER,
    MarketEventKind.JOB_AVAILABLE: NotificationType.ORDER,
}


@dataclass
class InboxEntry:
    notification: Notification
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:9])
    is_read: bool = False

    def to_dict(self) -> dict:
        return {"id": self.id, "is_read": self.is_read, **self.notification.to_dict()}


def notification_for(event: MarketEvent) -> Notification:
    return Notification(
        type=EVENT_NOTIFICATION_TYPES[event.kind],
        recipient_id=event.actor_id,
        text=event.text,
        data={"kind": event.kind.value, **event.data},
    )


class AlertCenter:
    """Keeps the newest alerts per actor and publishes each one."""

    def __init__(
        self,
        notifications: NotificationService | None = None,
        max_entries: int = MAX_INBOX_ENTRIES,
    ):
        self._notifications = notifications
        self._max_entries = max_entries
        self._inboxes: dict[str, deque[InboxEntry]] = {}

    def _inbox(self, actor_id: str) -> deque[InboxEntry]:
        return self._inboxes.setdefault(actor_id, deque(maxlen=self._max_entries))

    async def push(self, notification: Notification) -> InboxEntry:
        entry = InboxEntry(notification)
        self._inbox(notification.recipient_id).appendleft(entry)
        if self._notifications is not None:
            try:
                await self._notifications.notify_actor(notification)
            except Exception as e:
                # the inbox entry stands even if live delivery fails
                logger.warning("Notification delivery to %s failed: %s", notification.recipient_id, e)
        return entry

    async def handle_events(self, events: list[MarketEvent]) -> list[InboxEntry]:
        return [await self.push(notification_for(event)) for event in events]

    async def welcome(self, actor: ActorBase) -> InboxEntry:
        return await self.push(
            Notification(
                type=NotificationType.SYSTEM,
                recipient_id=actor.id,
                text=f"Market Link active for {actor.name}.",
                silent=True,
            )
        )

    def inbox(self, actor_id: str) -> list[InboxEntry]:
        """Newest first."""
        return list(self._inboxes.get(actor_id, ()))

    def unread_count(self, actor_id: str) -> int:
        return sum(1 for entry in self._inboxes.get(actor_id, ()) if not entry.is_read)

    def mark_all_read(self, actor_id: str) -> None:
        for entry in self._inboxes.get(actor_id, ()):
            entry.is_read = True

    def clear(self, actor_id: str) -> None:
        self._inboxes.pop(actor_id, None)
