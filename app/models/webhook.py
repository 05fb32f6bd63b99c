from sqlalchemy import Boolean, ForeignKey, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func
from sqlalchemy.types import DateTime

from app.core.ids import gen_id
from app.models.base import Base, TimestampMixin


class WebhookSubscriptionRow(TimestampMixin, Base):
    __tablename__ = "webhook_subscriptions"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: gen_id("whk"))
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    target_url: Mapped[str] = mapped_column(Text, nullable=False)
    events: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)  # ["ENTREGA_EM_ROTA", ...]
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    timeout_ms: Mapped[int] = mapped_column(Integer, nullable=False, default=5000)
    max_retries: Mapped[int] = mapped_column(Integer, nullable=False, default=3)

    headers: Mapped[dict] = mapped_column(JSONB, nullable=False, default=dict)
    secret: Mapped[str | None] = mapped_column(Text, nullable=True)

    last_execution_at: Mapped[str | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_status_code: Mapped[int | None] = mapped_column(Integer, nullable=True)


class WebhookAttemptRow(Base):
    __tablename__ = "webhook_attempts"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: gen_id("wha"))
    subscription_id: Mapped[str] = mapped_column(String, ForeignKey("webhook_subscriptions.id"), nullable=False, index=True)
    event_type: Mapped[str] = mapped_column(String(60), nullable=False)
    attempt: Mapped[int] = mapped_column(Integer, nullable=False)

    ok: Mapped[bool] = mapped_column(Boolean, nullable=False)
    status_code: Mapped[int | None] = mapped_column(Integer, nullable=True)
    error_code: Mapped[str | None] = mapped_column(String(80), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    elapsed_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)

    created_at: Mapped[str] = mapped_column(DateTime(timezone=True), server_default=func.now())
