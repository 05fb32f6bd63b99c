from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field, field_validator, model_validator

from app.core.ids import gen_id, utcnow


class DeliveryStatus(str, Enum):
    PENDING = "pending"
    ASSIGNED = "assigned"
    IN_TRANSIT = "in_transit"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    PROBLEM = "problem"


# Statuses that carry a courier and a live route position.
ROUTED_STATUSES = frozenset({DeliveryStatus.ASSIGNED, DeliveryStatus.IN_TRANSIT})
TERMINAL_STATUSES = frozenset({DeliveryStatus.DELIVERED, DeliveryStatus.CANCELLED})


class PaymentMethod(str, Enum):
    CASH = "dinheiro"
    CREDIT = "credito"
    DEBIT = "debito"
    PIX = "pix"
    BOLETO = "boleto"
    NONE = "sem_pagamento"


class Address(BaseModel):
    street: str = Field(min_length=1, max_length=300)
    city: str = Field(min_length=1, max_length=120)
    zip: str = Field(min_length=1, max_length=20)
    complement: str | None = Field(default=None, max_length=200)

    # filled by the geocoding collaborator, if at all
    latitude: float | None = None
    longitude: float | None = None

    @field_validator("latitude")
    @classmethod
    def validate_latitude(cls, v: float | None) -> float | None:
        if v is not None and not -90.0 <= v <= 90.0:
            raise ValueError("latitude must be between -90 and 90")
        return v

    @field_validator("longitude")
    @classmethod
    def validate_longitude(cls, v: float | None) -> float | None:
        if v is not None and not -180.0 <= v <= 180.0:
            raise ValueError("longitude must be between -180 and 180")
        return v

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None

    def one_line(self) -> str:
        parts = [self.street]
        if self.complement:
            parts.append(self.complement)
        return ", ".join(parts)


class Payment(BaseModel):
    method: PaymentMethod = PaymentMethod.NONE
    amount: float = Field(default=0, ge=0)
    received: bool = False
    change_for: float | None = Field(default=None, ge=0)
    installments: int | None = Field(default=None, ge=1)

    @model_validator(mode="after")
    def validate_received(self) -> "Payment":
        if self.received and self.method == PaymentMethod.NONE:
            raise ValueError("payment cannot be received without a payment method")
        return self


class OrderItem(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    code: str = Field(min_length=1, max_length=80)
    quantity: int = Field(ge=1)
    unit_price: float = Field(ge=0)


class Delivery(BaseModel):
    id: str = Field(default_factory=lambda: gen_id("dlv"))
    order_number: str = Field(min_length=1, max_length=80)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    delivered_at: datetime | None = None
    deadline: datetime | None = None

    status: DeliveryStatus = DeliveryStatus.PENDING

    customer_name: str = Field(min_length=1, max_length=200)
    customer_phone: str = Field(default="", max_length=40)
    address: Address

    courier_id: str | None = None
    courier_name: str | None = None
    route_position: int | None = Field(default=None, ge=1)

    # courier custody while the delivery sits in PROBLEM (no live route position)
    held_by_courier_id: str | None = None
    held_by_courier_name: str | None = None

    payment: Payment | None = None
    items: list[OrderItem] = Field(default_factory=list)

    signature: str | None = None
    photos: list[str] = Field(default_factory=list)
    notes: str | None = Field(default=None, max_length=2000)

    version: int = 0

    @property
    def requires_signature(self) -> bool:
        return payment_method_of(self) != PaymentMethod.NONE

    @property
    def is_routed(self) -> bool:
        return self.status in ROUTED_STATUSES

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


def payment_method_of(delivery: Delivery) -> PaymentMethod:
    if delivery.payment is None:
        return PaymentMethod.NONE
    return delivery.payment.method


def routing_invariant_violations(delivery: Delivery) -> list[str]:
    """
    courier_id set <=> route_position set <=> status in {ASSIGNED, IN_TRANSIT}.
    Returns a list of human readable violations (empty when consistent).
    """
    problems: list[str] = []
    routed = delivery.status in ROUTED_STATUSES
    if routed and delivery.courier_id is None:
        problems.append(f"status {delivery.status.value} requires a courier")
    if routed and delivery.route_position is None:
        problems.append(f"status {delivery.status.value} requires a route position")
    if not routed and delivery.courier_id is not None:
        problems.append(f"status {delivery.status.value} cannot carry a courier")
    if not routed and delivery.route_position is not None:
        problems.append(f"status {delivery.status.value} cannot carry a route position")
    if (delivery.courier_id is None) != (delivery.courier_name is None):
        problems.append("courier_id and courier_name must be set together")
    if delivery.held_by_courier_id is not None and delivery.status != DeliveryStatus.PROBLEM:
        problems.append("only deliveries in problem may be held by a courier")
    return problems
