from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import delete, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.sql import func

from app.core.errors import ConcurrentUpdate, InvalidRecord
from app.domain.courier import Courier, CourierStatus
from app.domain.delivery import Delivery
from app.domain.webhook import EventType, WebhookAttempt, WebhookSubscription
from app.models.courier import CourierRow
from app.models.delivery import DeliveryRow
from app.models.webhook import WebhookAttemptRow, WebhookSubscriptionRow


log = logging.getLogger(__name__)


def _delivery_from_row(r: DeliveryRow) -> Delivery:
    return Delivery.model_validate({
        "id": r.id,
        "order_number": r.order_number,
        "created_at": r.created_at,
        "updated_at": r.updated_at,
        "delivered_at": r.delivered_at,
        "deadline": r.deadline,
        "status": r.status,
        "customer_name": r.customer_name,
        "customer_phone": r.customer_phone,
        "address": r.address,
        "courier_id": r.courier_id,
        "courier_name": r.courier_name,
        "route_position": r.route_position,
        "held_by_courier_id": r.held_by_courier_id,
        "held_by_courier_name": r.held_by_courier_name,
        "payment": r.payment,
        "items": r.items or [],
        "signature": r.signature,
        "photos": r.photos or [],
        "notes": r.notes,
        "version": r.version,
    })


def _delivery_values(d: Delivery) -> dict:
    # JSON-safe columns; timestamps stay as datetimes
    data = d.model_dump(mode="json", exclude={"id", "created_at", "updated_at", "delivered_at", "deadline", "version"})
    data["delivered_at"] = d.delivered_at
    data["deadline"] = d.deadline
    return data


class SqlDeliveryStore:
    """
    Deliveries over SQLAlchemy async. One session per call; optimistic
    writes are `UPDATE ... WHERE id = :id AND version = :expected`.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def get(self, delivery_id: str) -> Delivery | None:
        async with self._session_factory() as db:
            row = (await db.execute(select(DeliveryRow).where(DeliveryRow.id == delivery_id))).scalar_one_or_none()
            return _delivery_from_row(row) if row else None

    async def list_by_courier(self, courier_id: str) -> list[Delivery]:
        async with self._session_factory() as db:
            stmt = (
                select(DeliveryRow)
                .where(or_(DeliveryRow.courier_id == courier_id, DeliveryRow.held_by_courier_id == courier_id))
                .order_by(DeliveryRow.created_at.asc())
            )
            rows = (await db.execute(stmt)).scalars().all()
            return [_delivery_from_row(r) for r in rows]

    async def create(self, delivery: Delivery) -> Delivery:
        async with self._session_factory() as db:
            row = DeliveryRow(
                id=delivery.id,
                created_at=delivery.created_at,
                updated_at=delivery.updated_at,
                version=delivery.version,
                **_delivery_values(delivery),
            )
            db.add(row)
            try:
                await db.commit()
            except IntegrityError as e:
                await db.rollback()
                raise InvalidRecord(f"delivery '{delivery.id}' already exists") from e
            await db.refresh(row)
            return _delivery_from_row(row)

    async def update(self, delivery: Delivery, *, expected_version: int) -> Delivery:
        async with self._session_factory() as db:
            result = await db.execute(
                update(DeliveryRow)
                .where(DeliveryRow.id == delivery.id, DeliveryRow.version == expected_version)
                .values(**_delivery_values(delivery), version=expected_version + 1, updated_at=func.now())
            )
            if int(result.rowcount or 0) == 0:
                await db.rollback()
                raise ConcurrentUpdate("delivery", delivery.id, expected_version)
            await db.commit()
            row = (await db.execute(select(DeliveryRow).where(DeliveryRow.id == delivery.id))).scalar_one()
            return _delivery_from_row(row)

    async def apply_positions(self, courier_id: str, positions: dict[str, int]) -> list[Delivery]:
        async with self._session_factory() as db:
            async with db.begin():
                for delivery_id, position in positions.items():
                    result = await db.execute(
                        update(DeliveryRow)
                        .where(DeliveryRow.id == delivery_id, DeliveryRow.courier_id == courier_id)
                        .values(route_position=position, version=DeliveryRow.version + 1, updated_at=func.now())
                    )
                    if int(result.rowcount or 0) == 0:
                        # raising inside begin() rolls every position back
                        raise InvalidRecord(f"delivery '{delivery_id}' is not on the route of courier '{courier_id}'")
            rows = (await db.execute(select(DeliveryRow).where(DeliveryRow.id.in_(list(positions))))).scalars().all()
            log.info("positions applied atomically courier=%s count=%d", courier_id, len(rows))
            return [_delivery_from_row(r) for r in rows]

    async def delete(self, delivery_id: str) -> bool:
        async with self._session_factory() as db:
            result = await db.execute(delete(DeliveryRow).where(DeliveryRow.id == delivery_id))
            await db.commit()
            return int(result.rowcount or 0) > 0


def _courier_from_row(r: CourierRow) -> Courier:
    return Courier.model_validate({
        "id": r.id,
        "name": r.name,
        "phone": r.phone,
        "status": r.status,
        "vehicle": r.vehicle,
        "plate": r.plate,
        "last_known_position": r.last_known_position,
    })


class SqlCourierStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def get(self, courier_id: str) -> Courier | None:
        async with self._session_factory() as db:
            row = (await db.execute(select(CourierRow).where(CourierRow.id == courier_id))).scalar_one_or_none()
            return _courier_from_row(row) if row else None

    async def list_active(self) -> list[Courier]:
        async with self._session_factory() as db:
            stmt = select(CourierRow).where(CourierRow.status == CourierStatus.ACTIVE.value).order_by(CourierRow.name.asc())
            return [_courier_from_row(r) for r in (await db.execute(stmt)).scalars().all()]

    async def create(self, courier: Courier) -> Courier:
        async with self._session_factory() as db:
            db.add(CourierRow(**courier.model_dump(mode="json")))
            await db.commit()
            return courier

    async def update(self, courier: Courier) -> Courier:
        async with self._session_factory() as db:
            values = courier.model_dump(mode="json", exclude={"id"})
            await db.execute(update(CourierRow).where(CourierRow.id == courier.id).values(**values))
            await db.commit()
            return courier

    async def delete(self, courier_id: str) -> bool:
        async with self._session_factory() as db:
            result = await db.execute(delete(CourierRow).where(CourierRow.id == courier_id))
            await db.commit()
            return int(result.rowcount or 0) > 0


def _subscription_from_row(r: WebhookSubscriptionRow) -> WebhookSubscription:
    return WebhookSubscription.model_validate({
        "id": r.id,
        "name": r.name,
        "target_url": r.target_url,
        "events": r.events or [],
        "active": r.active,
        "timeout_ms": r.timeout_ms,
        "max_retries": r.max_retries,
        "headers": r.headers or {},
        "secret": r.secret,
        "last_execution_at": r.last_execution_at,
        "last_status_code": r.last_status_code,
    })


class SqlSubscriptionStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def get(self, subscription_id: str) -> WebhookSubscription | None:
        async with self._session_factory() as db:
            stmt = select(WebhookSubscriptionRow).where(WebhookSubscriptionRow.id == subscription_id)
            row = (await db.execute(stmt)).scalar_one_or_none()
            return _subscription_from_row(row) if row else None

    async def list_active_by_event(self, event_type: EventType) -> list[WebhookSubscription]:
        async with self._session_factory() as db:
            stmt = select(WebhookSubscriptionRow).where(
                WebhookSubscriptionRow.active.is_(True),
                WebhookSubscriptionRow.events.contains([event_type.value]),
            )
            rows = (await db.execute(stmt)).scalars().all()
            return [_subscription_from_row(r) for r in rows]

    async def record_execution(self, subscription_id: str, *, executed_at: datetime, status_code: int) -> None:
        async with self._session_factory() as db:
            await db.execute(
                update(WebhookSubscriptionRow)
                .where(WebhookSubscriptionRow.id == subscription_id)
                .values(last_execution_at=executed_at, last_status_code=status_code)
            )
            await db.commit()

    async def add_attempts(self, attempts: list[WebhookAttempt]) -> None:
        if not attempts:
            return
        async with self._session_factory() as db:
            db.add_all([
                WebhookAttemptRow(
                    id=a.id,
                    subscription_id=a.subscription_id,
                    event_type=a.event_type.value,
                    attempt=a.attempt,
                    ok=a.ok,
                    status_code=a.status_code,
                    error_code=a.error_code,
                    error_message=a.error_message,
                    elapsed_ms=a.elapsed_ms,
                    created_at=a.created_at,
                )
                for a in attempts
            ])
            await db.commit()
