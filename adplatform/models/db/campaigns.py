from __future__ import annotations
"""SQLAlchemy model for campaign requests submitted by clients."""
from typing import TYPE_CHECKING, Any
from datetime import datetime
from sqlalchemy import Integer, String, DateTime, Enum, ForeignKey, JSON
from sqlalchemy.orm import relationship, Mapped, mapped_column

if TYPE_CHECKING:  # pragma: no cover
    from .client_accounts import ClientAccount
    from .payments import Payment
from sqlalchemy.sql import func
from adplatform.database import Base
from .enums import CampaignStatus


class CampaignRequest(Base):
    __tablename__ = "campaign_requests"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    client_account_id: Mapped[int] = mapped_column(Integer, ForeignKey("client_accounts.id"), nullable=False, index=True)

    clip_url: Mapped[str] = mapped_column(String, nullable=False)
    clip_title: Mapped[str] = mapped_column(String, nullable=False, index=True)
    artists_list: Mapped[str] = mapped_column(String, default="")
    countries: Mapped[list[str]] = mapped_column(JSON, default=list)
    targeting_config: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)
    # {"daily_budget_eur": ..., "total_budget_eur": ...}; frozen once the campaign leaves DRAFT
    budget_config: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    duration_days: Mapped[int] = mapped_column(Integer, nullable=False)

    status: Mapped[CampaignStatus] = mapped_column(Enum(CampaignStatus), default=CampaignStatus.DRAFT, index=True)
    starts_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    ends_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    actual_started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    actual_ended_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Filled in by the provisioning job once the ad platform side exists
    google_campaign_id: Mapped[str | None] = mapped_column(String, nullable=True)
    google_ad_group_id: Mapped[str | None] = mapped_column(String, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    client_account: Mapped["ClientAccount"] = relationship("ClientAccount", back_populates="campaigns")
    payments: Mapped[list["Payment"]] = relationship("Payment", back_populates="campaign", passive_deletes=True)
