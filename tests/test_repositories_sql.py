import os

import pytest
import pytest_asyncio

from app.core.errors import ConcurrentUpdate, InvalidRecord
from app.domain.delivery import DeliveryStatus
from app.domain.webhook import EventType, WebhookAttempt

from fixtures_seed import new_courier, new_delivery, routed


pytestmark = pytest.mark.skipif(not os.getenv("DATABASE_URL_TEST"), reason="DATABASE_URL_TEST is not set")


@pytest_asyncio.fixture
async def session_factory():
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

    # Import Base + all models so metadata is complete
    from app.models import Base

    engine = create_async_engine(os.environ["DATABASE_URL_TEST"], pool_pre_ping=True)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)
    finally:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)
        await engine.dispose()


@pytest_asyncio.fixture
async def stores(session_factory):
    from app.repositories.sql import SqlCourierStore, SqlDeliveryStore, SqlSubscriptionStore

    return SqlDeliveryStore(session_factory), SqlCourierStore(session_factory), SqlSubscriptionStore(session_factory)


@pytest.mark.asyncio
async def test_delivery_roundtrip_and_optimistic_update(stores):
    deliveries, _, _ = stores
    created = await deliveries.create(new_delivery(1))
    assert created.version == 0

    updated = await deliveries.update(routed(created), expected_version=0)
    assert updated.version == 1
    assert updated.status == DeliveryStatus.ASSIGNED
    assert updated.address.city == "Sao Paulo"

    with pytest.raises(ConcurrentUpdate):
        await deliveries.update(routed(created, position=2), expected_version=0)

    with pytest.raises(InvalidRecord):
        await deliveries.create(created)


@pytest.mark.asyncio
async def test_list_by_courier_includes_held_deliveries(stores):
    deliveries, _, _ = stores
    a = await deliveries.create(routed(new_delivery(1), courier_id="cou_a"))
    held = await deliveries.create(
        new_delivery(2, status=DeliveryStatus.PROBLEM, held_by_courier_id="cou_a", held_by_courier_name="Ana")
    )
    await deliveries.create(routed(new_delivery(3), courier_id="cou_b"))

    assert [d.id for d in await deliveries.list_by_courier("cou_a")] == [a.id, held.id]


@pytest.mark.asyncio
async def test_apply_positions_is_all_or_nothing(stores):
    deliveries, _, _ = stores
    a = await deliveries.create(routed(new_delivery(1), courier_id="cou_a", position=1))
    b = await deliveries.create(routed(new_delivery(2), courier_id="cou_a", position=2))
    other = await deliveries.create(routed(new_delivery(3), courier_id="cou_b", position=1))

    with pytest.raises(InvalidRecord):
        await deliveries.apply_positions("cou_a", {b.id: 1, a.id: 2, other.id: 3})
    assert (await deliveries.get(a.id)).route_position == 1

    out = await deliveries.apply_positions("cou_a", {b.id: 1, a.id: 2})
    assert {d.id: d.route_position for d in out} == {b.id: 1, a.id: 2}


@pytest.mark.asyncio
async def test_couriers_and_subscriptions(stores):
    _, couriers, subscriptions = stores
    await couriers.create(new_courier("Ana"))
    await couriers.create(new_courier("Bia", active=False))
    assert [c.name for c in await couriers.list_active()] == ["Ana"]

    from app.models.webhook import WebhookSubscriptionRow
    from fixtures_seed import new_subscription

    sub = new_subscription("https://erp.test/h", EventType.ENTREGA_EM_ROTA)
    async with subscriptions._session_factory() as db:
        db.add(WebhookSubscriptionRow(
            id=sub.id,
            name=sub.name,
            target_url=sub.target_url,
            events=[e.value for e in sub.events],
            active=True,
            timeout_ms=sub.timeout_ms,
            max_retries=sub.max_retries,
            headers={},
        ))
        await db.commit()

    assert [s.id for s in await subscriptions.list_active_by_event(EventType.ENTREGA_EM_ROTA)] == [sub.id]
    assert await subscriptions.list_active_by_event(EventType.ENTREGA_ENTREGUE) == []

    from app.core.ids import utcnow

    await subscriptions.record_execution(sub.id, executed_at=utcnow(), status_code=0)
    await subscriptions.add_attempts([
        WebhookAttempt(subscription_id=sub.id, event_type=EventType.ENTREGA_EM_ROTA, attempt=1, ok=False, error_code="TIMEOUT")
    ])
    assert (await subscriptions.get(sub.id)).last_status_code == 0
