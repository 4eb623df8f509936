from __future__ import annotations
"""SQLAlchemy model for platform users."""
from typing import TYPE_CHECKING
from sqlalchemy import Integer, String, DateTime, Boolean, Enum
from sqlalchemy.orm import relationship, Mapped, mapped_column

if TYPE_CHECKING:  # pragma: no cover
    from .client_accounts import ClientAccount
    from .payments import Payment
from sqlalchemy.sql import func
from adplatform.database import Base
from .enums import UserRole


class User(Base):
    __tablename__ = "users"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    email: Mapped[str] = mapped_column(String, unique=True, index=True)
    first_name: Mapped[str | None] = mapped_column(String, nullable=True)
    last_name: Mapped[str | None] = mapped_column(String, nullable=True)
    api_key: Mapped[str | None] = mapped_column(String, unique=True, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    role: Mapped[UserRole] = mapped_column(Enum(UserRole), default=UserRole.CLIENT, index=True)
    created_at: Mapped[DateTime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    client_account: Mapped["ClientAccount | None"] = relationship("ClientAccount", back_populates="user", uselist=False)
    payments: Mapped[list["Payment"]] = relationship("Payment", back_populates="user")
