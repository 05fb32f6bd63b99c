import pytest

from app.core.errors import NotFound
from app.services.courier_directory import CourierDirectory

from fixtures_seed import new_courier


class Clock:
    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now


@pytest.mark.asyncio
async def test_active_list_is_cached_until_ttl_or_refresh(couriers):
    clock = Clock()
    directory = CourierDirectory(couriers, ttl_seconds=30, clock=clock)
    await couriers.create(new_courier("Ana"))
    await couriers.create(new_courier("Bia", active=False))

    assert [c.name for c in await directory.list_active()] == ["Ana"]

    await couriers.create(new_courier("Caio"))
    clock.now += 10
    assert [c.name for c in await directory.list_active()] == ["Ana"]
    assert [c.name for c in await directory.list_active(refresh=True)] == ["Ana", "Caio"]

    await couriers.create(new_courier("Duda"))
    clock.now += 31
    assert [c.name for c in await directory.list_active()] == ["Ana", "Caio", "Duda"]


@pytest.mark.asyncio
async def test_get_reads_through(couriers):
    directory = CourierDirectory(couriers)
    c = await couriers.create(new_courier("Ana"))
    assert (await directory.get(c.id)).name == "Ana"
    with pytest.raises(NotFound):
        await directory.get("cou_missing")
