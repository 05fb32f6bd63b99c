import os

# must be set before app modules read settings
os.environ.setdefault("STORE_BACKEND", "memory")
os.environ.setdefault("OTEL_ENABLED", "false")
os.environ.setdefault("WEBHOOK_BACKOFF_BASE_SECONDS", "0.001")
os.environ.setdefault("WEBHOOK_BACKOFF_CAP_SECONDS", "0.01")

import httpx
import pytest
import pytest_asyncio

from app.api.deps import get_services
from app.main import app
from app.repositories.memory import InMemoryCourierStore, InMemoryDeliveryStore, InMemorySubscriptionStore
from app.services.container import build_services

from fixtures_seed import WebhookSink, new_courier


@pytest.fixture
def deliveries():
    return InMemoryDeliveryStore()


@pytest.fixture
def couriers():
    return InMemoryCourierStore()


@pytest.fixture
def subscriptions():
    return InMemorySubscriptionStore()


@pytest.fixture
def sink():
    return WebhookSink()


@pytest_asyncio.fixture
async def courier(couriers):
    return await couriers.create(new_courier("Ana"))


@pytest_asyncio.fixture
async def services(deliveries, couriers, subscriptions, sink):
    svc = build_services(
        deliveries=deliveries,
        couriers=couriers,
        subscriptions=subscriptions,
        transport=sink.transport,
    )
    await svc.start()
    try:
        yield svc
    finally:
        await svc.aclose()


@pytest_asyncio.fixture
async def client(services):
    """
    HTTP client bound to the in-memory services via dependency override.
    """
    app.dependency_overrides[get_services] = lambda: services

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
