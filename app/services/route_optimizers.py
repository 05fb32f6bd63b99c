from __future__ import annotations

import math
from typing import Protocol

from app.core.errors import InvalidRecord
from app.domain.courier import GeoPosition
from app.domain.delivery import Delivery


EARTH_RADIUS_KM = 6371.0


class RouteOptimizer(Protocol):
    """
    Proposes an order for a courier's active stops. Never writes anything;
    the sequencer applies the proposal through a normal reorder.
    """

    name: str

    def propose(self, route: list[Delivery], *, origin: GeoPosition | None = None) -> list[str]:
        ...


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    p1, p2 = math.radians(lat1), math.radians(lat2)
    dp = p2 - p1
    dl = math.radians(lon2 - lon1)
    a = math.sin(dp / 2) ** 2 + math.cos(p1) * math.cos(p2) * math.sin(dl / 2) ** 2
    return 2 * EARTH_RADIUS_KM * math.asin(math.sqrt(a))


class KeepCurrentOrder:
    name = "keep"

    def propose(self, route: list[Delivery], *, origin: GeoPosition | None = None) -> list[str]:
        return [d.id for d in route]


class NearestNeighbor:
    """
    Greedy nearest-stop ordering starting from `origin` (or the first
    geocoded stop). Stops without coordinates keep their relative order at
    the tail.
    """

    name = "nearest_neighbor"

    def propose(self, route: list[Delivery], *, origin: GeoPosition | None = None) -> list[str]:
        located = [d for d in route if d.address.has_coordinates]
        unlocated = [d.id for d in route if not d.address.has_coordinates]
        if not located:
            return [d.id for d in route]

        if origin is not None:
            here = (origin.latitude, origin.longitude)
        else:
            here = (located[0].address.latitude, located[0].address.longitude)

        ordered: list[str] = []
        remaining = list(located)
        while remaining:
            # min() keeps the earlier stop on ties, so equal distances stay stable
            nxt = min(remaining, key=lambda d: haversine_km(here[0], here[1], d.address.latitude, d.address.longitude))
            ordered.append(nxt.id)
            remaining.remove(nxt)
            here = (nxt.address.latitude, nxt.address.longitude)

        return ordered + unlocated


_OPTIMIZERS: dict[str, RouteOptimizer] = {
    KeepCurrentOrder.name: KeepCurrentOrder(),
    NearestNeighbor.name: NearestNeighbor(),
}


def register(optimizer: RouteOptimizer) -> None:
    _OPTIMIZERS[optimizer.name.lower().strip()] = optimizer


def get_optimizer(strategy: str) -> RouteOptimizer:
    key = strategy.lower().strip()
    if key not in _OPTIMIZERS:
        raise InvalidRecord(
            f"unknown route strategy '{strategy}'",
            details=[{"supported": supported_strategies()}],
        )
    return _OPTIMIZERS[key]


def supported_strategies() -> list[str]:
    return sorted(_OPTIMIZERS.keys())
