from sqlalchemy import String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from app.core.ids import gen_id
from app.models.base import Base, TimestampMixin


class CourierRow(TimestampMixin, Base):
    __tablename__ = "couriers"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: gen_id("cou"))
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    phone: Mapped[str] = mapped_column(String(40), nullable=False, default="")
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active")  # active/inactive
    vehicle: Mapped[str] = mapped_column(String(120), nullable=False, default="")
    plate: Mapped[str] = mapped_column(String(20), nullable=False, default="")
    last_known_position: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
