from __future__ import annotations

import asyncio
from datetime import datetime

from app.core.errors import ConcurrentUpdate, InvalidRecord
from app.core.ids import utcnow
from app.domain.courier import Courier
from app.domain.delivery import Delivery
from app.domain.webhook import EventType, WebhookAttempt, WebhookSubscription


class InMemoryDeliveryStore:
    """
    Dict-backed store. Entities are deep-copied on the way in and out so
    callers never share mutable state with the store.
    """

    def __init__(self, deliveries: list[Delivery] | None = None):
        self._rows: dict[str, Delivery] = {}
        self._lock = asyncio.Lock()
        for d in deliveries or []:
            self._rows[d.id] = d.model_copy(deep=True)

    async def get(self, delivery_id: str) -> Delivery | None:
        row = self._rows.get(delivery_id)
        return row.model_copy(deep=True) if row else None

    async def list_by_courier(self, courier_id: str) -> list[Delivery]:
        rows = [r for r in self._rows.values() if r.courier_id == courier_id or r.held_by_courier_id == courier_id]
        rows.sort(key=lambda r: r.created_at)
        return [r.model_copy(deep=True) for r in rows]

    async def list_all(self) -> list[Delivery]:
        return [r.model_copy(deep=True) for r in self._rows.values()]

    async def create(self, delivery: Delivery) -> Delivery:
        async with self._lock:
            if delivery.id in self._rows:
                raise InvalidRecord(f"delivery '{delivery.id}' already exists")
            stored = delivery.model_copy(deep=True)
            self._rows[stored.id] = stored
            return stored.model_copy(deep=True)

    async def update(self, delivery: Delivery, *, expected_version: int) -> Delivery:
        async with self._lock:
            current = self._rows.get(delivery.id)
            if current is None or current.version != expected_version:
                raise ConcurrentUpdate("delivery", delivery.id, expected_version)
            stored = delivery.model_copy(deep=True, update={"version": expected_version + 1, "updated_at": utcnow()})
            self._rows[stored.id] = stored
            return stored.model_copy(deep=True)

    async def delete(self, delivery_id: str) -> bool:
        async with self._lock:
            return self._rows.pop(delivery_id, None) is not None


class InMemoryCourierStore:
    def __init__(self, couriers: list[Courier] | None = None):
        self._rows: dict[str, Courier] = {c.id: c.model_copy(deep=True) for c in couriers or []}

    async def get(self, courier_id: str) -> Courier | None:
        row = self._rows.get(courier_id)
        return row.model_copy(deep=True) if row else None

    async def list_active(self) -> list[Courier]:
        rows = sorted((r for r in self._rows.values() if r.is_active), key=lambda r: r.name)
        return [r.model_copy(deep=True) for r in rows]

    async def create(self, courier: Courier) -> Courier:
        if courier.id in self._rows:
            raise InvalidRecord(f"courier '{courier.id}' already exists")
        self._rows[courier.id] = courier.model_copy(deep=True)
        return courier.model_copy(deep=True)

    async def update(self, courier: Courier) -> Courier:
        self._rows[courier.id] = courier.model_copy(deep=True)
        return courier.model_copy(deep=True)

    async def delete(self, courier_id: str) -> bool:
        return self._rows.pop(courier_id, None) is not None


class InMemorySubscriptionStore:
    def __init__(self, subscriptions: list[WebhookSubscription] | None = None):
        self._rows: dict[str, WebhookSubscription] = {s.id: s.model_copy(deep=True) for s in subscriptions or []}
        self.attempts: list[WebhookAttempt] = []

    def add(self, subscription: WebhookSubscription) -> WebhookSubscription:
        self._rows[subscription.id] = subscription.model_copy(deep=True)
        return subscription

    async def get(self, subscription_id: str) -> WebhookSubscription | None:
        row = self._rows.get(subscription_id)
        return row.model_copy(deep=True) if row else None

    async def list_active_by_event(self, event_type: EventType) -> list[WebhookSubscription]:
        return [r.model_copy(deep=True) for r in self._rows.values() if r.matches(event_type)]

    async def record_execution(self, subscription_id: str, *, executed_at: datetime, status_code: int) -> None:
        row = self._rows.get(subscription_id)
        if row is None:
            return
        row.last_execution_at = executed_at
        row.last_status_code = status_code

    async def add_attempts(self, attempts: list[WebhookAttempt]) -> None:
        self.attempts.extend(a.model_copy() for a in attempts)
