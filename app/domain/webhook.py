from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.core.ids import gen_id, utcnow


# Recorded as last_status_code when no HTTP response was ever received.
NO_RESPONSE_STATUS = 0


class EventType(str, Enum):
    ENTREGA_EM_ROTA = "ENTREGA_EM_ROTA"
    ENTREGA_ENTREGUE = "ENTREGA_ENTREGUE"
    ENTREGA_ATRASADA = "ENTREGA_ATRASADA"
    ENTREGA_CANCELADA = "ENTREGA_CANCELADA"
    ENTREGA_PROBLEMA = "ENTREGA_PROBLEMA"


class WebhookSubscription(BaseModel):
    id: str = Field(default_factory=lambda: gen_id("whk"))
    name: str = Field(min_length=1, max_length=200)
    target_url: str = Field(min_length=1, max_length=2000)
    events: set[EventType] = Field(default_factory=set)
    active: bool = True
    timeout_ms: int = Field(default=5000, ge=1)
    max_retries: int = Field(default=3, ge=0)

    headers: dict[str, str] = Field(default_factory=dict)
    secret: str | None = None

    last_execution_at: datetime | None = None
    last_status_code: int | None = None

    @field_validator("target_url")
    @classmethod
    def validate_target_url(cls, v: str) -> str:
        v2 = v.strip()
        if not (v2.startswith("http://") or v2.startswith("https://")):
            raise ValueError("target_url must be an http(s) URL")
        return v2

    def matches(self, event_type: EventType) -> bool:
        return self.active and event_type in self.events


class Event(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: EventType
    timestamp: datetime = Field(default_factory=utcnow)
    payload: dict[str, Any] = Field(default_factory=dict)

    def wire_body(self) -> dict[str, Any]:
        return {
            "evento": self.type.value,
            "timestamp": self.timestamp.isoformat(),
            "dados": self.payload,
        }


class WebhookAttempt(BaseModel):
    id: str = Field(default_factory=lambda: gen_id("wha"))
    subscription_id: str
    event_type: EventType
    attempt: int = Field(ge=1)
    ok: bool
    status_code: int | None = None
    error_code: str | None = None
    error_message: str | None = None
    elapsed_ms: int | None = None
    created_at: datetime = Field(default_factory=utcnow)
