from __future__ import annotations

import logging
from dataclasses import dataclass

from app.core.errors import InvalidRecord, InvalidTransition, NotFound
from app.domain.delivery import Delivery, DeliveryStatus, PaymentMethod, payment_method_of, routing_invariant_violations
from app.domain.webhook import Event, EventType
from app.repositories.base import DeliveryStore
from app.services.delivery_state import DeliveryStateMachine, event_for
from app.services.events import delivery_event_payload
from app.services.locks import hold_delivery
from app.services.next_delivery import select_next_delivery
from app.services.route_sequencer import ReorderResult, RouteSequencer
from app.services.webhook_dispatcher import EventDispatcher


log = logging.getLogger(__name__)


@dataclass(frozen=True)
class TransitionOutcome:
    delivery: Delivery
    previous: Delivery  # snapshot before the write; what a caller restores an optimistic view to
    event: Event | None = None
    route: ReorderResult | None = None  # compaction of the courier's remaining stops, when this one left the route


class DeliveryLifecycle:
    def __init__(
        self,
        deliveries: DeliveryStore,
        sequencer: RouteSequencer,
        dispatcher: EventDispatcher | None = None,
        state: DeliveryStateMachine | None = None,
    ):
        self._deliveries = deliveries
        self._sequencer = sequencer
        self._dispatcher = dispatcher
        self._state = state or DeliveryStateMachine()
        self._locks = sequencer.locks

    async def create(self, delivery: Delivery) -> Delivery:
        if delivery.status != DeliveryStatus.PENDING:
            raise InvalidRecord(f"new deliveries start as pending, got {delivery.status.value}")
        problems = routing_invariant_violations(delivery)
        if problems or delivery.held_by_courier_id is not None:
            raise InvalidRecord("new deliveries cannot carry a courier or route position", details=[{"problems": problems}])
        saved = await self._deliveries.create(delivery)
        log.info("created delivery=%s order=%s", saved.id, saved.order_number)
        return saved

    async def get(self, delivery_id: str) -> Delivery:
        d = await self._deliveries.get(delivery_id)
        if d is None:
            raise NotFound("delivery", delivery_id)
        return d

    async def transition(self, delivery_id: str, target: DeliveryStatus) -> TransitionOutcome:
        """
        Validate, persist, then schedule the transition's webhook event.
        Nothing is written when validation fails. The event is scheduled only
        after the write, and a scheduling problem never fails the transition.
        """
        async with hold_delivery(self._locks, self._deliveries, delivery_id) as d:
            if target == DeliveryStatus.ASSIGNED:
                raise InvalidTransition(d.id, d.status.value, target.value, "assignment goes through the assignment manager")

            route = None
            route_position = None
            if d.status == DeliveryStatus.PROBLEM and target == DeliveryStatus.IN_TRANSIT and d.held_by_courier_id:
                # back on the road, at the end of the courier's route
                route_position = await self._sequencer.next_position(d.held_by_courier_id)

            updated = self._state.transition(d, target, route_position=route_position)
            saved = await self._deliveries.update(updated, expected_version=d.version)

            if d.courier_id and not saved.is_routed:
                route = await self._sequencer.compact_locked(d.courier_id)
                if not route.ok:
                    log.warning("route compaction left failures courier=%s failed=%s", d.courier_id, route.failed)

        event = None
        event_type = event_for(d.status, target)
        if event_type is not None:
            event = self._notify(event_type, saved, previous=d)
        return TransitionOutcome(delivery=saved, previous=d, event=event, route=route)

    async def attach_evidence(
        self,
        delivery_id: str,
        *,
        signature: str | None = None,
        photos: list[str] | None = None,
    ) -> Delivery:
        async with hold_delivery(self._locks, self._deliveries, delivery_id) as d:
            if d.is_terminal:
                raise InvalidRecord(f"delivery '{d.id}' is {d.status.value}; evidence can no longer change")
            updates: dict = {}
            if signature is not None:
                updates["signature"] = signature
            if photos:
                updates["photos"] = [*d.photos, *[p for p in photos if p not in d.photos]]
            if not updates:
                return d
            saved = await self._deliveries.update(d.model_copy(deep=True, update=updates), expected_version=d.version)
        log.info("evidence attached delivery=%s signature=%s photos=%d", saved.id, bool(saved.signature), len(saved.photos))
        return saved

    async def mark_payment_received(self, delivery_id: str) -> Delivery:
        async with hold_delivery(self._locks, self._deliveries, delivery_id) as d:
            if payment_method_of(d) == PaymentMethod.NONE:
                raise InvalidRecord(f"delivery '{d.id}' has no payment method; nothing to receive")
            payment = d.payment.model_copy(update={"received": True})
            saved = await self._deliveries.update(d.model_copy(deep=True, update={"payment": payment}), expected_version=d.version)
        log.info("payment received delivery=%s method=%s", saved.id, saved.payment.method.value)
        return saved

    async def select_next(self, courier_id: str, after_delivery_id: str) -> Delivery | None:
        completed = await self.get(after_delivery_id)
        candidates = await self._deliveries.list_by_courier(courier_id)
        return select_next_delivery(completed, candidates)

    def _notify(self, event_type: EventType, delivery: Delivery, *, previous: Delivery) -> Event | None:
        if self._dispatcher is None:
            return None
        try:
            payload = delivery_event_payload(delivery, previous=previous, updated_at=delivery.updated_at)
            return self._dispatcher.dispatch(event_type, payload)
        except Exception:
            # the transition is committed; notification trouble is only logged
            log.exception("failed to schedule event=%s delivery=%s", event_type.value, delivery.id)
            return None
