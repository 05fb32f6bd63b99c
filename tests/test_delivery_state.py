from datetime import timedelta

import pytest

from app.core.errors import InvalidTransition, MissingEvidence
from app.domain.delivery import DeliveryStatus, PaymentMethod, routing_invariant_violations
from app.domain.webhook import EventType
from app.services.delivery_state import CourierRef, DeliveryStateMachine, allowed_targets, event_for

from fixtures_seed import T0, new_delivery, routed


S = DeliveryStatus

ALLOWED = {
    (S.PENDING, S.ASSIGNED),
    (S.ASSIGNED, S.IN_TRANSIT),
    (S.ASSIGNED, S.CANCELLED),
    (S.IN_TRANSIT, S.DELIVERED),
    (S.IN_TRANSIT, S.CANCELLED),
    (S.IN_TRANSIT, S.PROBLEM),
    (S.PROBLEM, S.IN_TRANSIT),
    (S.PROBLEM, S.CANCELLED),
}


@pytest.fixture
def machine():
    return DeliveryStateMachine(clock=lambda: T0 + timedelta(hours=3))


@pytest.mark.parametrize("current", list(S))
@pytest.mark.parametrize("target", list(S))
def test_transition_table(machine, current, target):
    assert machine.can_transition(current, target) == ((current, target) in ALLOWED)


@pytest.mark.parametrize("terminal", [S.DELIVERED, S.CANCELLED])
def test_terminal_states_have_no_way_out(machine, terminal):
    d = new_delivery(status=terminal)
    before = d.model_dump()
    assert allowed_targets(terminal) == frozenset()
    for target in S:
        with pytest.raises(InvalidTransition):
            machine.transition(d, target)
    assert d.model_dump() == before


def test_assignment_sets_courier_and_position(machine):
    d = new_delivery()
    out = machine.transition(d, S.ASSIGNED, courier=CourierRef(id="cou_1", name="Ana"), route_position=1)

    assert out.status == S.ASSIGNED
    assert (out.courier_id, out.courier_name, out.route_position) == ("cou_1", "Ana", 1)
    assert routing_invariant_violations(out) == []
    # caller's copy untouched
    assert d.status == S.PENDING and d.courier_id is None


def test_assignment_without_courier_is_rejected(machine):
    with pytest.raises(InvalidTransition):
        machine.transition(new_delivery(), S.ASSIGNED)


def test_delivered_with_payment_requires_signature(machine):
    d = routed(new_delivery(payment_method=PaymentMethod.CREDIT), status=S.IN_TRANSIT)

    with pytest.raises(MissingEvidence) as exc:
        machine.transition(d, S.DELIVERED)
    assert exc.value.evidence == "signature"
    assert d.status == S.IN_TRANSIT and d.route_position == 1

    signed = d.model_copy(update={"signature": "blob://sig/1"})
    out = machine.transition(signed, S.DELIVERED)
    assert out.status == S.DELIVERED
    assert out.delivered_at == T0 + timedelta(hours=3)
    assert out.courier_id is None and out.route_position is None


def test_delivered_without_payment_needs_no_signature(machine):
    d = routed(new_delivery(), status=S.IN_TRANSIT)
    out = machine.transition(d, S.DELIVERED)
    assert out.status == S.DELIVERED
    assert out.courier_id is None and out.courier_name is None and out.route_position is None


def test_explicit_no_payment_method_needs_no_signature(machine):
    d = routed(new_delivery(payment_method=PaymentMethod.NONE), status=S.IN_TRANSIT)
    assert machine.transition(d, S.DELIVERED).status == S.DELIVERED


def test_cancel_clears_route(machine):
    out = machine.transition(routed(new_delivery()), S.CANCELLED)
    assert out.status == S.CANCELLED
    assert out.courier_id is None and out.route_position is None


def test_problem_parks_courier_and_resume_restores_it(machine):
    d = routed(new_delivery(), status=S.IN_TRANSIT, position=2)

    parked = machine.transition(d, S.PROBLEM)
    assert parked.courier_id is None and parked.route_position is None
    assert parked.held_by_courier_id == "cou_1"
    assert routing_invariant_violations(parked) == []

    with pytest.raises(InvalidTransition):
        machine.transition(parked, S.IN_TRANSIT)

    resumed = machine.transition(parked, S.IN_TRANSIT, route_position=5)
    assert resumed.status == S.IN_TRANSIT
    assert (resumed.courier_id, resumed.route_position) == ("cou_1", 5)
    assert resumed.held_by_courier_id is None


def test_problem_can_be_cancelled(machine):
    parked = machine.transition(routed(new_delivery(), status=S.IN_TRANSIT), S.PROBLEM)
    out = machine.transition(parked, S.CANCELLED)
    assert out.status == S.CANCELLED
    assert out.held_by_courier_id is None


def test_release_returns_routed_delivery_to_pool(machine):
    out = machine.release(routed(new_delivery(), status=S.IN_TRANSIT))
    assert out.status == S.PENDING
    assert out.courier_id is None and out.route_position is None


@pytest.mark.parametrize("status", [S.PENDING, S.DELIVERED, S.CANCELLED, S.PROBLEM])
def test_release_rejects_unrouted(machine, status):
    with pytest.raises(InvalidTransition):
        machine.release(new_delivery(status=status))


def test_events_per_transition():
    assert event_for(S.ASSIGNED, S.IN_TRANSIT) == EventType.ENTREGA_EM_ROTA
    assert event_for(S.IN_TRANSIT, S.DELIVERED) == EventType.ENTREGA_ENTREGUE
    assert event_for(S.IN_TRANSIT, S.PROBLEM) == EventType.ENTREGA_PROBLEMA
    assert event_for(S.PROBLEM, S.CANCELLED) == EventType.ENTREGA_CANCELADA
    assert event_for(S.PROBLEM, S.IN_TRANSIT) is None
    assert event_for(S.PENDING, S.ASSIGNED) is None
