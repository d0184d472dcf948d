"""SQLAlchemy models for issued passes and the memberships they represent."""
from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import Integer, String, DateTime, JSON, BigInteger
from sqlalchemy.orm import relationship, Mapped, mapped_column
from sqlalchemy.sql import func

if TYPE_CHECKING:  # pragma: no cover
    from .registrations import WalletRegistration
from walletsync.database import Base


class Pass(Base):
    __tablename__ = "passes"
    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    serial_number: Mapped[str] = mapped_column(String(128), unique=True, index=True, nullable=False)
    pass_type: Mapped[str] = mapped_column(String(32), default="storeCard")
    # Design data: colours, labels, google object id, etc.
    pass_data: Mapped[dict] = mapped_column(JSON, default=dict)
    authentication_token: Mapped[str] = mapped_column(String(128), nullable=False)
    apple_pass_url: Mapped[str | None] = mapped_column(String, nullable=True)
    # Epoch seconds of the last regeneration (passesUpdatedSince tag)
    update_tag: Mapped[int] = mapped_column(BigInteger, default=0, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    registrations: Mapped[list["WalletRegistration"]] = relationship("WalletRegistration", back_populates="wallet_pass")

    @property
    def google_object_id(self) -> str | None:
        data = self.pass_data or {}
        return data.get("googleObjectId") or data.get("google_object_id")


class CustomerProgram(Base):
    __tablename__ = "customer_programs"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    customer_name: Mapped[str] = mapped_column(String, nullable=False)
    points: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    tier: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    registrations: Mapped[list["WalletRegistration"]] = relationship("WalletRegistration", back_populates="customer_program")
