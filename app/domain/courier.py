from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from app.core.ids import gen_id


class CourierStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class GeoPosition(BaseModel):
    latitude: float = Field(ge=-90.0, le=90.0)
    longitude: float = Field(ge=-180.0, le=180.0)
    updated_at: datetime | None = None


class Courier(BaseModel):
    """Read-only from this service's point of view; owned by the fleet collaborator."""

    id: str = Field(default_factory=lambda: gen_id("cou"))
    name: str = Field(min_length=1, max_length=200)
    phone: str = Field(default="", max_length=40)
    status: CourierStatus = CourierStatus.ACTIVE
    vehicle: str = Field(default="", max_length=120)
    plate: str = Field(default="", max_length=20)
    last_known_position: GeoPosition | None = None

    @property
    def is_active(self) -> bool:
        return self.status == CourierStatus.ACTIVE
