"""Shared pytest fixtures: an in-memory store seeded with a small Pune market."""
from __future__ import annotations

import pytest
import pytest_asyncio

from locallink.core.config import Settings
from locallink.infra.store import InMemoryDocumentStore
from locallink.repositories import Repositories
from locallink.services.admin_service import AdminService
from locallink.services.container import ServiceContainer
from locallink.services.marketplace import MarketplaceService
from locallink.services.order_lifecycle import OrderLifecycleController
from tests.helpers import Market, seed_market


@pytest_asyncio.fixture
async def store():
    store = InMemoryDocumentStore()
    try:
        yield store
    finally:
        await store.close()


@pytest.fixture()
def repos(store) -> Repositories:
    return Repositories(store)


@pytest.fixture()
def lifecycle(repos) -> OrderLifecycleController:
    return OrderLifecycleController(repos)


@pytest.fixture()
def marketplace(repos) -> MarketplaceService:
    return MarketplaceService(repos)


@pytest.fixture()
def admin(repos, marketplace) -> AdminService:
    return AdminService(repos, marketplace)


@pytest_asyncio.fixture
async def market(repos) -> Market:
    return await seed_market(repos)


@pytest_asyncio.fixture
async def services(store) -> ServiceContainer:
    container = ServiceContainer.build(Settings(), store)
    await seed_market(container.repositories)
    return container


@pytest_asyncio.fixture
async def aiohttp_client():
    """Minimal aiohttp_client fixture to avoid pytest-aiohttp dependency."""
    clients: list[object] = []

    async def _make_client(app):
        from aiohttp.test_utils import TestClient, TestServer

        server = TestServer(app)
        client = TestClient(server)
        await client.start_server()
        clients.append(client)
        return client

    try:
        yield _make_client
    finally:
        for client in clients:
            await client.close()
