from __future__ import annotations

from datetime import datetime
from typing import Protocol, runtime_checkable

from app.domain.courier import Courier
from app.domain.delivery import Delivery
from app.domain.webhook import EventType, WebhookAttempt, WebhookSubscription


@runtime_checkable
class DeliveryStore(Protocol):
    """
    Persistence port for deliveries.

    `update` is an optimistic write: it must raise ConcurrentUpdate when the
    stored version differs from `expected_version`, and returns the stored
    entity with its version bumped.
    """

    async def get(self, delivery_id: str) -> Delivery | None:
        ...

    async def list_by_courier(self, courier_id: str) -> list[Delivery]:
        ...

    async def create(self, delivery: Delivery) -> Delivery:
        ...

    async def update(self, delivery: Delivery, *, expected_version: int) -> Delivery:
        ...

    async def delete(self, delivery_id: str) -> bool:
        ...


@runtime_checkable
class TransactionalPositions(Protocol):
    """
    Optional capability: apply many route positions in one transaction.
    Either every position lands or none does.
    """

    async def apply_positions(self, courier_id: str, positions: dict[str, int]) -> list[Delivery]:
        ...


@runtime_checkable
class CourierStore(Protocol):
    async def get(self, courier_id: str) -> Courier | None:
        ...

    async def list_active(self) -> list[Courier]:
        ...

    async def create(self, courier: Courier) -> Courier:
        ...

    async def update(self, courier: Courier) -> Courier:
        ...

    async def delete(self, courier_id: str) -> bool:
        ...


@runtime_checkable
class SubscriptionStore(Protocol):
    async def get(self, subscription_id: str) -> WebhookSubscription | None:
        ...

    async def list_active_by_event(self, event_type: EventType) -> list[WebhookSubscription]:
        ...

    async def record_execution(
        self,
        subscription_id: str,
        *,
        executed_at: datetime,
        status_code: int,
    ) -> None:
        ...

    async def add_attempts(self, attempts: list[WebhookAttempt]) -> None:
        ...
