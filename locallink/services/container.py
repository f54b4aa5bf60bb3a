"""Wires repositories and services over one store."""
from __future__ import annotations

from dataclasses import dataclass

from locallink.core.config import Settings
from locallink.core.notifications import NotificationService
from locallink.infra.store import DocumentStore
from locallink.integrations.assistant import AssistantClient, TranscriptionClient
from locallink.repositories import Repositories
from locallink.services.admin_service import AdminService
from locallink.services.alert_center import AlertCenter
from locallink.services.marketplace import MarketplaceService
from locallink.services.order_lifecycle import OrderLifecycleController


@dataclass
class ServiceContainer:
    settings: Settings
    store: DocumentStore
    repositories: Repositories
    lifecycle: OrderLifecycleController
    marketplace: MarketplaceService
    admin: AdminService
    notifications: NotificationService
    alerts: AlertCenter
    assistant: AssistantClient
    transcriber: TranscriptionClient

    @classmethod
    def build(
        cls,
        settings: Settings,
        store: DocumentStore,
        notifications: NotificationService | None = None,
    ) -> "ServiceContainer":
        repositories = Repositories(store)
        notifications = notifications or NotificationService()
        marketplace = MarketplaceService(
            repositories,
            town_hub_id=settings.town_hub.actor_id,
            update_ttl=settings.daily_update_ttl,
        )
        return cls(
            settings=settings,
            store=store,
            repositories=repositories,
            lifecycle=OrderLifecycleController(repositories, town_hub_id=settings.town_hub.actor_id),
            marketplace=marketplace,
            admin=AdminService(
                repositories,
                marketplace,
                town_hub=settings.town_hub,
                dead_lead_grace=settings.dead_lead_grace,
            ),
            notifications=notifications,
            alerts=AlertCenter(notifications),
            assistant=AssistantClient(settings.assistant),
            transcriber=TranscriptionClient(settings.assistant),
        )

    async def close(self) -> None:
        await self.assistant.close()
        await self.transcriber.close()
        await self.notifications.close()
        await self.store.close()
