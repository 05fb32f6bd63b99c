from __future__ import annotations

import logging

from app.core.errors import InvalidRecord, InvalidTransition, NotFound
from app.domain.delivery import Delivery, DeliveryStatus
from app.repositories.base import CourierStore, DeliveryStore
from app.services.delivery_state import CourierRef, DeliveryStateMachine
from app.services.lifecycle import TransitionOutcome
from app.services.locks import hold_delivery
from app.services.route_sequencer import RouteSequencer


log = logging.getLogger(__name__)


class CourierAssignmentManager:
    """
    Puts pending deliveries on a courier's route and takes them back off.
    The route position is computed under the courier's route lock and
    written together with the status change.
    """

    def __init__(
        self,
        deliveries: DeliveryStore,
        couriers: CourierStore,
        sequencer: RouteSequencer,
        state: DeliveryStateMachine | None = None,
    ):
        self._deliveries = deliveries
        self._couriers = couriers
        self._sequencer = sequencer
        self._state = state or DeliveryStateMachine()
        self._locks = sequencer.locks

    async def assign(self, delivery_id: str, courier_id: str) -> Delivery:
        courier = await self._couriers.get(courier_id)
        if courier is None:
            raise NotFound("courier", courier_id)

        async with hold_delivery(self._locks, self._deliveries, delivery_id, also_route=courier_id) as d:
            if d.status != DeliveryStatus.PENDING:
                raise InvalidTransition(d.id, d.status.value, DeliveryStatus.ASSIGNED.value, "only pending deliveries can be assigned")
            if not courier.is_active:
                raise InvalidRecord(
                    f"courier '{courier_id}' is not active",
                    details=[{"courier_id": courier_id, "status": courier.status.value}],
                )
            position = await self._sequencer.next_position(courier_id)
            assigned = self._state.transition(
                d,
                DeliveryStatus.ASSIGNED,
                courier=CourierRef(id=courier.id, name=courier.name),
                route_position=position,
            )
            saved = await self._deliveries.update(assigned, expected_version=d.version)

        log.info("assigned delivery=%s courier=%s position=%d", saved.id, courier_id, position)
        return saved

    async def unassign(self, delivery_id: str) -> TransitionOutcome:
        """
        Return an assigned / in-transit delivery to the pool. `route` on the
        outcome says which of the courier's remaining stops were renumbered.
        """
        async with hold_delivery(self._locks, self._deliveries, delivery_id) as d:
            released = self._state.release(d)
            saved = await self._deliveries.update(released, expected_version=d.version)
            route = None
            if d.courier_id:
                route = await self._sequencer.compact_locked(d.courier_id)
                if not route.ok:
                    log.warning("route compaction after unassign left failures courier=%s failed=%s", d.courier_id, route.failed)

        log.info("unassigned delivery=%s from courier=%s", saved.id, d.courier_id)
        return TransitionOutcome(delivery=saved, previous=d, route=route)
