from __future__ import annotations
"""SQLAlchemy model for a client's link to the external ad account."""
from typing import TYPE_CHECKING
from datetime import datetime
from sqlalchemy import Integer, String, DateTime, Enum, ForeignKey
from sqlalchemy.orm import relationship, Mapped, mapped_column

if TYPE_CHECKING:  # pragma: no cover
    from .users import User
    from .campaigns import CampaignRequest
from sqlalchemy.sql import func
from adplatform.database import Base
from .enums import LinkStatus


class ClientAccount(Base):
    __tablename__ = "client_accounts"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False, unique=True, index=True)

    # Written only by the link-request flow and the link status reconciler
    google_customer_id: Mapped[str | None] = mapped_column(String(10), nullable=True, index=True)
    link_status: Mapped[LinkStatus] = mapped_column(Enum(LinkStatus), default=LinkStatus.PENDING, index=True)
    resource_name: Mapped[str | None] = mapped_column(String, nullable=True)
    link_requested_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    linked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_sync_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Campaigns currently owned; changed only by conditional UPDATEs on create and delete
    campaign_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    user: Mapped["User"] = relationship("User", back_populates="client_account")
    campaigns: Mapped[list["CampaignRequest"]] = relationship("CampaignRequest", back_populates="client_account")
