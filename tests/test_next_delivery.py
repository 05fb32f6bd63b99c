import random
from datetime import timedelta

from app.domain.delivery import DeliveryStatus
from app.services.next_delivery import select_next_delivery

from fixtures_seed import T0, new_delivery, routed


S = DeliveryStatus


def test_positioned_stops_come_first_in_order():
    done = new_delivery(0, status=S.DELIVERED)
    a = routed(new_delivery(1), position=3)
    b = routed(new_delivery(2), position=2)
    c = new_delivery(3, status=S.PROBLEM, held_by_courier_id="cou_1", held_by_courier_name="Ana")

    assert select_next_delivery(done, [a, b, c]).id == b.id


def test_unpositioned_in_transit_beats_other_statuses():
    done = new_delivery(0, status=S.DELIVERED)
    older_problem = new_delivery(1, status=S.PROBLEM)
    in_transit = new_delivery(5, status=S.IN_TRANSIT)

    assert select_next_delivery(done, [older_problem, in_transit]).id == in_transit.id


def test_created_at_breaks_ties():
    done = new_delivery(0, status=S.DELIVERED)
    late = new_delivery(1, status=S.PROBLEM, created_at=T0 + timedelta(hours=2))
    early = new_delivery(2, status=S.PROBLEM, created_at=T0 + timedelta(hours=1))

    assert select_next_delivery(done, [late, early]).id == early.id


def test_ignores_terminal_and_the_completed_delivery():
    done = routed(new_delivery(0), status=S.IN_TRANSIT, position=1)
    cancelled = new_delivery(1, status=S.CANCELLED)
    delivered = new_delivery(2, status=S.DELIVERED)

    assert select_next_delivery(done, [done, cancelled, delivered]) is None
    assert select_next_delivery(done, []) is None


def test_deterministic_regardless_of_input_order():
    done = new_delivery(0, status=S.DELIVERED)
    pool = [routed(new_delivery(i), position=i) for i in range(1, 6)] + [new_delivery(9, status=S.PROBLEM)]
    ids_before = [d.id for d in pool]
    expected = select_next_delivery(done, pool).id

    rng = random.Random(7)
    for _ in range(10):
        shuffled = pool[:]
        rng.shuffle(shuffled)
        assert select_next_delivery(done, shuffled).id == expected
    assert [d.id for d in pool] == ids_before
