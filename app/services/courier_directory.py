from __future__ import annotations

import logging
import time
from collections.abc import Callable

from app.core.errors import NotFound
from app.domain.courier import Courier
from app.repositories.base import CourierStore


log = logging.getLogger(__name__)


class CourierDirectory:
    """Active couriers with a time-boxed cache. `get` always reads through."""

    def __init__(
        self,
        couriers: CourierStore,
        *,
        ttl_seconds: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._couriers = couriers
        self._ttl = ttl_seconds
        self._clock = clock
        self._cached: tuple[list[Courier], float] | None = None  # (value, cached_at)

    async def list_active(self, refresh: bool = False) -> list[Courier]:
        now = self._clock()
        if not refresh and self._cached is not None:
            value, cached_at = self._cached
            if now - cached_at < self._ttl:
                return [c.model_copy(deep=True) for c in value]

        value = await self._couriers.list_active()
        self._cached = (value, now)
        log.debug("courier directory refreshed active=%d", len(value))
        return [c.model_copy(deep=True) for c in value]

    async def get(self, courier_id: str) -> Courier:
        courier = await self._couriers.get(courier_id)
        if courier is None:
            raise NotFound("courier", courier_id)
        return courier

    def invalidate(self) -> None:
        self._cached = None
