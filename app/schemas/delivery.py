from datetime import datetime

from pydantic import BaseModel, Field

from app.domain.delivery import Address, Delivery, DeliveryStatus, OrderItem, Payment
from app.schemas.courier import ReorderOut


class DeliveryCreate(BaseModel):
    order_number: str = Field(min_length=1, max_length=80)
    customer_name: str = Field(min_length=1, max_length=200)
    customer_phone: str = Field(default="", max_length=40)
    address: Address
    deadline: datetime | None = None
    payment: Payment | None = None
    items: list[OrderItem] = Field(default_factory=list)
    notes: str | None = Field(default=None, max_length=2000)

    def to_domain(self) -> Delivery:
        return Delivery(**self.model_dump())


class TransitionIn(BaseModel):
    status: DeliveryStatus


class TransitionOut(BaseModel):
    delivery: Delivery
    previous_status: DeliveryStatus
    event: str | None = None
    route: ReorderOut | None = None


class AssignIn(BaseModel):
    courier_id: str = Field(min_length=1)


class EvidenceIn(BaseModel):
    signature: str | None = Field(default=None, min_length=1)
    photos: list[str] = Field(default_factory=list)
