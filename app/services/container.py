from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx

from app.core.config import settings
from app.repositories.base import CourierStore, DeliveryStore, SubscriptionStore
from app.services.assignment import CourierAssignmentManager
from app.services.courier_directory import CourierDirectory
from app.services.delivery_state import DeliveryStateMachine
from app.services.http_client import WebhookHttpClient
from app.services.lifecycle import DeliveryLifecycle
from app.services.locks import KeyedLocks
from app.services.route_sequencer import RouteSequencer
from app.services.webhook_dispatcher import EventDispatcher


log = logging.getLogger(__name__)


@dataclass
class Services:
    deliveries: DeliveryStore
    couriers: CourierStore
    subscriptions: SubscriptionStore
    sequencer: RouteSequencer
    assignment: CourierAssignmentManager
    lifecycle: DeliveryLifecycle
    directory: CourierDirectory
    dispatcher: EventDispatcher
    http: WebhookHttpClient

    async def start(self) -> None:
        await self.dispatcher.start()

    async def aclose(self) -> None:
        await self.dispatcher.stop()
        await self.http.aclose()


def build_stores(backend: str) -> tuple[DeliveryStore, CourierStore, SubscriptionStore]:
    if backend == "memory":
        from app.repositories.memory import InMemoryCourierStore, InMemoryDeliveryStore, InMemorySubscriptionStore

        return InMemoryDeliveryStore(), InMemoryCourierStore(), InMemorySubscriptionStore()
    if backend == "sql":
        from app.core.db import SessionLocal
        from app.repositories.sql import SqlCourierStore, SqlDeliveryStore, SqlSubscriptionStore

        return SqlDeliveryStore(SessionLocal), SqlCourierStore(SessionLocal), SqlSubscriptionStore(SessionLocal)
    raise ValueError(f"Unknown store backend: {backend}")


def build_services(
    *,
    deliveries: DeliveryStore | None = None,
    couriers: CourierStore | None = None,
    subscriptions: SubscriptionStore | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> Services:
    if deliveries is None or couriers is None or subscriptions is None:
        d, c, s = build_stores(settings.store_backend)
        deliveries = deliveries or d
        couriers = couriers or c
        subscriptions = subscriptions or s

    state = DeliveryStateMachine()
    sequencer = RouteSequencer(deliveries, KeyedLocks())
    http = WebhookHttpClient(user_agent=settings.webhook_user_agent, transport=transport)
    dispatcher = EventDispatcher(
        subscriptions,
        http,
        concurrency=settings.webhook_concurrency,
        queue_size=settings.webhook_queue_size,
        backoff_base_seconds=settings.webhook_backoff_base_seconds,
        backoff_cap_seconds=settings.webhook_backoff_cap_seconds,
    )
    log.info("services built backend=%s", settings.store_backend)
    return Services(
        deliveries=deliveries,
        couriers=couriers,
        subscriptions=subscriptions,
        sequencer=sequencer,
        assignment=CourierAssignmentManager(deliveries, couriers, sequencer, state),
        lifecycle=DeliveryLifecycle(deliveries, sequencer, dispatcher, state),
        directory=CourierDirectory(couriers, ttl_seconds=settings.courier_cache_ttl_seconds),
        dispatcher=dispatcher,
        http=http,
    )
