from __future__ import annotations
"""SQLAlchemy model journaling payment-processor webhook deliveries."""
from datetime import datetime
from sqlalchemy import Integer, String, DateTime, Enum, Text
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func
from adplatform.database import Base
from .enums import WebhookEventStatus


class WebhookEvent(Base):
    __tablename__ = "webhook_events"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    stripe_event_id: Mapped[str] = mapped_column(String, unique=True, nullable=False)
    event_type: Mapped[str] = mapped_column(String, nullable=False, index=True)
    status: Mapped[WebhookEventStatus] = mapped_column(Enum(WebhookEventStatus), default=WebhookEventStatus.RECEIVED, index=True)
    # Incremented on every delivery of the same event id (processor retries, replays)
    attempt_count: Mapped[int] = mapped_column(Integer, default=0)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    received_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
