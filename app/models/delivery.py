from sqlalchemy import Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import DateTime

from app.core.ids import gen_id
from app.models.base import Base, TimestampMixin


class DeliveryRow(TimestampMixin, Base):
    __tablename__ = "deliveries"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: gen_id("dlv"))
    order_number: Mapped[str] = mapped_column(String(80), nullable=False)
    status: Mapped[str] = mapped_column(String(30), nullable=False, default="pending")

    delivered_at: Mapped[str | None] = mapped_column(DateTime(timezone=True), nullable=True)
    deadline: Mapped[str | None] = mapped_column(DateTime(timezone=True), nullable=True)

    customer_name: Mapped[str] = mapped_column(String(200), nullable=False)
    customer_phone: Mapped[str] = mapped_column(String(40), nullable=False, default="")
    address: Mapped[dict] = mapped_column(JSONB, nullable=False, default=dict)  # street/city/zip/complement/lat/lng

    courier_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    courier_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    route_position: Mapped[int | None] = mapped_column(Integer, nullable=True)
    held_by_courier_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    held_by_courier_name: Mapped[str | None] = mapped_column(String(200), nullable=True)

    payment: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    items: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)

    signature: Mapped[str | None] = mapped_column(Text, nullable=True)  # blob reference, not the blob
    photos: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
