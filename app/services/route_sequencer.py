from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field

from app.core.errors import InvalidRecord, NotFound, ReorderPartialFailure
from app.domain.courier import GeoPosition
from app.domain.delivery import ROUTED_STATUSES, Delivery
from app.repositories.base import DeliveryStore, TransactionalPositions
from app.services.locks import KeyedLocks, route_key
from app.services.route_optimizers import get_optimizer


log = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReorderResult:
    courier_id: str
    order: list[str]
    succeeded: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)  # delivery_id -> reason

    @property
    def ok(self) -> bool:
        return not self.failed

    def raise_for_failures(self) -> "ReorderResult":
        if self.failed:
            raise ReorderPartialFailure(self.courier_id, self.succeeded, self.failed)
        return self


def route_order_key(d: Delivery):
    # positioned stops first, then creation time for anything unranked
    return (d.route_position is None, d.route_position or 0, d.created_at, d.id)


class RouteSequencer:
    """
    Keeps each courier's active stops (ASSIGNED / IN_TRANSIT) ranked 1..N.

    Public methods take the courier's route lock. Callers that already hold
    it (the lifecycle service) use `next_position` / `compact_locked`.
    """

    def __init__(self, deliveries: DeliveryStore, locks: KeyedLocks | None = None):
        self._deliveries = deliveries
        self.locks = locks if locks is not None else KeyedLocks()

    async def active_route(self, courier_id: str) -> list[Delivery]:
        rows = await self._deliveries.list_by_courier(courier_id)
        active = [d for d in rows if d.courier_id == courier_id and d.status in ROUTED_STATUSES]
        return sorted(active, key=route_order_key)

    async def current_order(self, courier_id: str) -> list[str]:
        return [d.id for d in await self.active_route(courier_id)]

    async def next_position(self, courier_id: str, *, excluding: str | None = None) -> int:
        positions = [
            d.route_position
            for d in await self.active_route(courier_id)
            if d.route_position is not None and d.id != excluding
        ]
        return max(positions, default=0) + 1

    async def append(self, courier_id: str, delivery_id: str) -> Delivery:
        async with self.locks.hold(route_key(courier_id)):
            d = await self._deliveries.get(delivery_id)
            if d is None:
                raise NotFound("delivery", delivery_id)
            if d.courier_id != courier_id or d.status not in ROUTED_STATUSES:
                raise InvalidRecord(f"delivery '{delivery_id}' is not an active stop of courier '{courier_id}'")
            if d.route_position is not None:
                # already ranked: move to the end and renumber the rest
                order = [k for k in await self.current_order(courier_id) if k != delivery_id] + [delivery_id]
                (await self._reorder_locked(courier_id, order)).raise_for_failures()
                log.info("route append courier=%s delivery=%s position=%d", courier_id, delivery_id, len(order))
                return await self._deliveries.get(delivery_id)
            position = await self.next_position(courier_id, excluding=delivery_id)
            updated = await self._deliveries.update(
                d.model_copy(update={"route_position": position}), expected_version=d.version
            )
            log.info("route append courier=%s delivery=%s position=%d", courier_id, delivery_id, position)
            return updated

    async def reorder(self, courier_id: str, ordered_delivery_ids: list[str]) -> ReorderResult:
        """
        `ordered_delivery_ids` must be exactly the courier's active stops.
        Positions become index + 1. Per-delivery failures are reported in the
        result instead of aborting; what succeeded stays committed.
        """
        async with self.locks.hold(route_key(courier_id)):
            return await self._reorder_locked(courier_id, list(ordered_delivery_ids))

    async def move_up(self, courier_id: str, delivery_id: str) -> ReorderResult:
        return await self._move(courier_id, delivery_id, -1)

    async def move_down(self, courier_id: str, delivery_id: str) -> ReorderResult:
        return await self._move(courier_id, delivery_id, +1)

    async def compact_locked(self, courier_id: str) -> ReorderResult:
        """Close gaps left by a stop leaving the route. Caller holds the route lock."""
        return await self._reorder_locked(courier_id, await self.current_order(courier_id))

    async def optimize(
        self,
        courier_id: str,
        *,
        strategy: str = "keep",
        origin: GeoPosition | None = None,
        apply: bool = False,
    ) -> tuple[list[str], ReorderResult | None]:
        route = await self.active_route(courier_id)
        proposed = get_optimizer(strategy).propose(route, origin=origin)
        if sorted(proposed) != sorted(d.id for d in route):
            raise InvalidRecord(f"optimizer '{strategy}' did not return a permutation of the route")
        log.info("route optimize courier=%s strategy=%s stops=%d apply=%s", courier_id, strategy, len(route), apply)
        if not apply:
            return proposed, None
        return proposed, await self.reorder(courier_id, proposed)

    async def _move(self, courier_id: str, delivery_id: str, step: int) -> ReorderResult:
        async with self.locks.hold(route_key(courier_id)):
            order = await self.current_order(courier_id)
            if delivery_id not in order:
                raise NotFound("route stop", delivery_id)
            i = order.index(delivery_id)
            j = i + step
            if j < 0 or j >= len(order):
                # already first / last
                return ReorderResult(courier_id=courier_id, order=order)
            order[i], order[j] = order[j], order[i]
            return await self._reorder_locked(courier_id, order)

    async def _reorder_locked(self, courier_id: str, order: list[str]) -> ReorderResult:
        route = await self.active_route(courier_id)
        by_id = {d.id: d for d in route}
        _validate_order(courier_id, order, set(by_id))

        positions = {delivery_id: i + 1 for i, delivery_id in enumerate(order)}

        if isinstance(self._deliveries, TransactionalPositions):
            try:
                await self._deliveries.apply_positions(courier_id, positions)
            except Exception as e:
                log.warning("route reorder courier=%s rolled back: %s", courier_id, e)
                reason = f"{type(e).__name__}: {e}"
                return ReorderResult(courier_id=courier_id, order=order, failed={k: reason for k in order})
            log.info("route reorder courier=%s stops=%d (atomic)", courier_id, len(order))
            return ReorderResult(courier_id=courier_id, order=order, succeeded=list(order))

        succeeded: list[str] = []
        failed: dict[str, str] = {}
        for delivery_id in order:
            d = by_id[delivery_id]
            try:
                await self._deliveries.update(
                    d.model_copy(update={"route_position": positions[delivery_id]}), expected_version=d.version
                )
                succeeded.append(delivery_id)
            except Exception as e:
                failed[delivery_id] = f"{type(e).__name__}: {e}"
                log.warning("route reorder courier=%s delivery=%s failed: %s", courier_id, delivery_id, e)

        log.info("route reorder courier=%s applied=%d failed=%d", courier_id, len(succeeded), len(failed))
        return ReorderResult(courier_id=courier_id, order=order, succeeded=succeeded, failed=failed)


def _validate_order(courier_id: str, order: list[str], active_ids: set[str]) -> None:
    duplicates = sorted(k for k, n in Counter(order).items() if n > 1)
    missing = sorted(active_ids - set(order))
    unexpected = sorted(set(order) - active_ids)
    if duplicates or missing or unexpected:
        raise InvalidRecord(
            f"route order for courier '{courier_id}' must list each active stop exactly once",
            details=[{"duplicates": duplicates}, {"missing": missing}, {"unexpected": unexpected}],
        )
