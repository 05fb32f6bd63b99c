from datetime import datetime, timedelta, timezone

import httpx

from app.domain.courier import Courier, CourierStatus, GeoPosition
from app.domain.delivery import Address, Delivery, DeliveryStatus, OrderItem, Payment, PaymentMethod
from app.domain.webhook import EventType, WebhookSubscription


T0 = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


def new_address(**kw) -> Address:
    data = {"street": "Rua das Flores, 100", "city": "Sao Paulo", "zip": "01000-000"}
    data.update(kw)
    return Address(**data)


def new_delivery(n: int = 1, *, payment_method: PaymentMethod | None = None, **kw) -> Delivery:
    data = {
        "order_number": f"PED-{n:04d}",
        "customer_name": f"Cliente {n}",
        "customer_phone": "(11) 90000-0000",
        "address": new_address(),
        "created_at": T0 + timedelta(minutes=n),
        "items": [OrderItem(name="Caixa", code="CX-1", quantity=1, unit_price=10.0)],
    }
    if payment_method is not None:
        data["payment"] = Payment(method=payment_method, amount=50.0)
    data.update(kw)
    return Delivery(**data)


def routed(d: Delivery, *, status: DeliveryStatus = DeliveryStatus.ASSIGNED, courier_id: str = "cou_1", position: int | None = 1) -> Delivery:
    return d.model_copy(update={
        "status": status,
        "courier_id": courier_id,
        "courier_name": "Ana",
        "route_position": position,
    })


def new_courier(name: str = "Ana", *, active: bool = True, position: GeoPosition | None = None, **kw) -> Courier:
    return Courier(
        name=name,
        phone="(11) 98888-0000",
        status=CourierStatus.ACTIVE if active else CourierStatus.INACTIVE,
        vehicle="Moto",
        plate="ABC1D23",
        last_known_position=position,
        **kw,
    )


def new_subscription(url: str = "https://hooks.test/entregas", *events: EventType, **kw) -> WebhookSubscription:
    return WebhookSubscription(
        name=kw.pop("name", "ERP"),
        target_url=url,
        events=set(events or (EventType.ENTREGA_ENTREGUE,)),
        **kw,
    )


class WebhookSink:
    """
    Fake webhook receivers behind an httpx.MockTransport.
    Unknown URLs answer 200; `script` queues per-URL outcomes
    (an int status or an exception class) consumed in order.
    """

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self._scripts: dict[str, list] = {}
        self._defaults: dict[str, object] = {}
        self.transport = httpx.MockTransport(self._handle)

    def always(self, url: str, outcome) -> None:
        self._defaults[url] = outcome

    def script(self, url: str, *outcomes) -> None:
        self._scripts.setdefault(url, []).extend(outcomes)

    def to(self, url: str) -> list[httpx.Request]:
        return [r for r in self.requests if str(r.url) == url]

    def _handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        url = str(request.url)
        queued = self._scripts.get(url)
        outcome = queued.pop(0) if queued else self._defaults.get(url, 200)
        if isinstance(outcome, type) and issubclass(outcome, Exception):
            raise outcome("simulated failure", request=request)
        return httpx.Response(outcome, json={"received": True})
