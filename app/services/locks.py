from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import AsyncExitStack, asynccontextmanager

from app.core.errors import ConcurrentUpdate, NotFound
from app.domain.delivery import Delivery
from app.repositories.base import DeliveryStore


class KeyedLocks:
    """
    One asyncio.Lock per key, dropped once nobody holds or waits on it.
    Serializes writers of the same entity inside this process; writers in
    other processes are caught by the store's version check.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)


def delivery_key(delivery_id: str) -> str:
    return f"delivery:{delivery_id}"


def route_key(courier_id: str) -> str:
    return f"route:{courier_id}"


def _custodian(d: Delivery) -> str | None:
    return d.courier_id or d.held_by_courier_id


@asynccontextmanager
async def hold_delivery(
    locks: KeyedLocks,
    deliveries: DeliveryStore,
    delivery_id: str,
    *,
    also_route: str | None = None,
) -> AsyncIterator[Delivery]:
    """
    Lock the route of whoever holds the delivery (plus `also_route`), then
    the delivery itself, and yield a fresh copy read under those locks.
    Route locks are taken in sorted order, always before the delivery lock.
    """
    first = await deliveries.get(delivery_id)
    if first is None:
        raise NotFound("delivery", delivery_id)
    courier_id = _custodian(first)

    routes = sorted({c for c in (courier_id, also_route) if c})
    async with AsyncExitStack() as stack:
        for c in routes:
            await stack.enter_async_context(locks.hold(route_key(c)))
        await stack.enter_async_context(locks.hold(delivery_key(delivery_id)))

        fresh = await deliveries.get(delivery_id)
        if fresh is None:
            raise NotFound("delivery", delivery_id)
        if _custodian(fresh) != courier_id:
            # moved to another courier while we waited for the locks
            raise ConcurrentUpdate("delivery", delivery_id, first.version)
        yield fresh
