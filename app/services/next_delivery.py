from __future__ import annotations

from app.domain.delivery import TERMINAL_STATUSES, Delivery, DeliveryStatus


def next_stop_key(d: Delivery) -> tuple:
    """
    Ranked stops by position. Unranked stops come after every ranked one,
    in-transit before the rest, then oldest first.
    """
    if d.route_position is not None:
        return (0, d.route_position, 0, d.created_at, d.id)
    return (1, 0, 0 if d.status == DeliveryStatus.IN_TRANSIT else 1, d.created_at, d.id)


def select_next_delivery(completed: Delivery, candidates: list[Delivery]) -> Delivery | None:
    """
    Pick the stop a courier should head to after finishing `completed`.
    `candidates` are the courier's deliveries; terminal ones and `completed`
    itself are ignored. Pure: reads nothing, writes nothing.
    """
    pool = [d for d in candidates if d.id != completed.id and d.status not in TERMINAL_STATUSES]
    if not pool:
        return None
    return min(pool, key=next_stop_key)
