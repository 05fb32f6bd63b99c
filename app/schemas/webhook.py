from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from app.domain.webhook import EventType


class EventIn(BaseModel):
    event_type: EventType
    payload: dict[str, Any] = Field(default_factory=dict)


class EventAcceptedOut(BaseModel):
    event_type: EventType
    timestamp: datetime


class DispatchReportOut(BaseModel):
    subscription_id: str
    event_type: EventType
    ok: bool
    attempts: int
    status_code: int
    error_code: str | None = None
    error_message: str | None = None
