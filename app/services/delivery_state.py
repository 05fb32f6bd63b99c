"""
Delivery lifecycle state machine.

    PENDING -> ASSIGNED                      (assignment only)
    ASSIGNED -> IN_TRANSIT | CANCELLED
    IN_TRANSIT -> DELIVERED | CANCELLED | PROBLEM
    PROBLEM -> IN_TRANSIT | CANCELLED
    DELIVERED, CANCELLED                     (terminal)

Transitions never mutate the delivery they are given: they validate first and
then return an updated copy, so a rejected transition leaves the caller's
record exactly as it was.
"""
from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from app.core.errors import InvalidRecord, InvalidTransition, MissingEvidence
from app.core.ids import utcnow
from app.domain.delivery import (
    ROUTED_STATUSES,
    Delivery,
    DeliveryStatus,
    routing_invariant_violations,
)
from app.domain.webhook import EventType


log = logging.getLogger(__name__)


_VALID_TRANSITIONS: dict[DeliveryStatus, frozenset[DeliveryStatus]] = {
    DeliveryStatus.PENDING: frozenset({DeliveryStatus.ASSIGNED}),
    DeliveryStatus.ASSIGNED: frozenset({DeliveryStatus.IN_TRANSIT, DeliveryStatus.CANCELLED}),
    DeliveryStatus.IN_TRANSIT: frozenset({DeliveryStatus.DELIVERED, DeliveryStatus.CANCELLED, DeliveryStatus.PROBLEM}),
    DeliveryStatus.PROBLEM: frozenset({DeliveryStatus.IN_TRANSIT, DeliveryStatus.CANCELLED}),
    DeliveryStatus.DELIVERED: frozenset(),  # terminal
    DeliveryStatus.CANCELLED: frozenset(),  # terminal
}

_TRANSITION_EVENTS: dict[tuple[DeliveryStatus, DeliveryStatus], EventType] = {
    (DeliveryStatus.ASSIGNED, DeliveryStatus.IN_TRANSIT): EventType.ENTREGA_EM_ROTA,
    (DeliveryStatus.IN_TRANSIT, DeliveryStatus.DELIVERED): EventType.ENTREGA_ENTREGUE,
    (DeliveryStatus.IN_TRANSIT, DeliveryStatus.PROBLEM): EventType.ENTREGA_PROBLEMA,
    (DeliveryStatus.ASSIGNED, DeliveryStatus.CANCELLED): EventType.ENTREGA_CANCELADA,
    (DeliveryStatus.IN_TRANSIT, DeliveryStatus.CANCELLED): EventType.ENTREGA_CANCELADA,
    (DeliveryStatus.PROBLEM, DeliveryStatus.CANCELLED): EventType.ENTREGA_CANCELADA,
}


@dataclass(frozen=True)
class CourierRef:
    id: str
    name: str


def allowed_targets(current: DeliveryStatus) -> frozenset[DeliveryStatus]:
    return _VALID_TRANSITIONS.get(current, frozenset())


def event_for(current: DeliveryStatus, target: DeliveryStatus) -> EventType | None:
    return _TRANSITION_EVENTS.get((current, target))


class DeliveryStateMachine:
    def __init__(self, clock: Callable[[], datetime] = utcnow):
        self._clock = clock

    def can_transition(self, current: DeliveryStatus, target: DeliveryStatus) -> bool:
        return target in allowed_targets(current)

    def transition(
        self,
        delivery: Delivery,
        target: DeliveryStatus,
        *,
        courier: CourierRef | None = None,
        route_position: int | None = None,
    ) -> Delivery:
        """
        Validate and apply `delivery.status -> target`.

        PENDING -> ASSIGNED needs `courier` and `route_position` (supplied by
        the assignment manager). PROBLEM -> IN_TRANSIT needs `route_position`;
        the courier comes back from the delivery's custody fields.
        """
        current = delivery.status
        if not self.can_transition(current, target):
            raise InvalidTransition(delivery.id, current.value, target.value)

        updates: dict = {"status": target}

        if target == DeliveryStatus.ASSIGNED:
            if courier is None or route_position is None:
                raise InvalidTransition(delivery.id, current.value, target.value, "assignment requires a courier and a route position")
            updates.update(courier_id=courier.id, courier_name=courier.name, route_position=route_position)

        elif target == DeliveryStatus.IN_TRANSIT and current == DeliveryStatus.PROBLEM:
            if delivery.held_by_courier_id is None:
                raise InvalidTransition(delivery.id, current.value, target.value, "no courier holds this delivery")
            if route_position is None:
                raise InvalidTransition(delivery.id, current.value, target.value, "resuming requires a route position")
            updates.update(
                courier_id=delivery.held_by_courier_id,
                courier_name=delivery.held_by_courier_name,
                route_position=route_position,
                held_by_courier_id=None,
                held_by_courier_name=None,
            )

        elif target == DeliveryStatus.DELIVERED:
            if delivery.requires_signature and not delivery.signature:
                raise MissingEvidence(delivery.id, "signature")
            updates.update(delivered_at=self._clock(), **_cleared_route())

        elif target == DeliveryStatus.CANCELLED:
            updates.update(**_cleared_route())

        elif target == DeliveryStatus.PROBLEM:
            updates.update(
                held_by_courier_id=delivery.courier_id,
                held_by_courier_name=delivery.courier_name,
                courier_id=None,
                courier_name=None,
                route_position=None,
            )

        updated = delivery.model_copy(deep=True, update=updates)
        _assert_consistent(updated)
        log.info("delivery %s: %s -> %s", delivery.id, current.value, target.value)
        return updated

    def release(self, delivery: Delivery) -> Delivery:
        """Return an ASSIGNED / IN_TRANSIT delivery to the unassigned pool."""
        if delivery.status not in ROUTED_STATUSES:
            raise InvalidTransition(
                delivery.id,
                delivery.status.value,
                DeliveryStatus.PENDING.value,
                "only assigned or in-transit deliveries can return to the pool",
            )
        updated = delivery.model_copy(deep=True, update={"status": DeliveryStatus.PENDING, **_cleared_route()})
        _assert_consistent(updated)
        log.info("delivery %s: %s -> pending (released)", delivery.id, delivery.status.value)
        return updated


def _cleared_route() -> dict:
    return {
        "courier_id": None,
        "courier_name": None,
        "route_position": None,
        "held_by_courier_id": None,
        "held_by_courier_name": None,
    }


def _assert_consistent(delivery: Delivery) -> None:
    problems = routing_invariant_violations(delivery)
    if problems:
        raise InvalidRecord(f"delivery '{delivery.id}' would be inconsistent: {'; '.join(problems)}")
