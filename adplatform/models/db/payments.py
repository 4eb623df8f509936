from __future__ import annotations
"""SQLAlchemy model for payment ledger rows (one per campaign per checkout)."""
from typing import TYPE_CHECKING
from datetime import datetime
from decimal import Decimal
from sqlalchemy import Integer, String, DateTime, Enum, ForeignKey, Numeric, Text, CheckConstraint, UniqueConstraint
from sqlalchemy.orm import relationship, Mapped, mapped_column

if TYPE_CHECKING:  # pragma: no cover
    from .users import User
    from .campaigns import CampaignRequest
from sqlalchemy.sql import func
from adplatform.database import Base
from .enums import PaymentStatus


class Payment(Base):
    __tablename__ = "payments"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    campaign_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("campaign_requests.id", ondelete="SET NULL"), nullable=True, index=True
    )

    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    vat_rate: Mapped[Decimal] = mapped_column(Numeric(5, 4), nullable=False)
    vat_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    total_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="eur")

    status: Mapped[PaymentStatus] = mapped_column(Enum(PaymentStatus), default=PaymentStatus.PENDING, index=True)
    stripe_session_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    stripe_payment_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    refunded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    invoice_number: Mapped[str | None] = mapped_column(String, nullable=True)
    invoice_url: Mapped[str | None] = mapped_column(String, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    user: Mapped["User"] = relationship("User", back_populates="payments")
    campaign: Mapped["CampaignRequest | None"] = relationship("CampaignRequest", back_populates="payments")

    __table_args__ = (
        UniqueConstraint("stripe_session_id", "campaign_id", name="one_payment_per_campaign_per_session"),
        CheckConstraint("total_cents = amount_cents + vat_cents", name="payment_total_is_amount_plus_vat"),
        CheckConstraint("amount_cents >= 0 AND vat_cents >= 0", name="payment_amounts_non_negative"),
    )
