"""SQLAlchemy model for the registration ledger (which wallet holds which pass)."""
from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import Integer, String, DateTime, ForeignKey
from sqlalchemy.orm import relationship, Mapped, mapped_column
from sqlalchemy.sql import func

if TYPE_CHECKING:  # pragma: no cover
    from .passes import Pass, CustomerProgram
from walletsync.database import Base


class WalletRegistration(Base):
    __tablename__ = "wallet_registrations"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    pass_id: Mapped[str] = mapped_column(String(64), ForeignKey("passes.id"), nullable=False, index=True)
    customer_program_id: Mapped[int] = mapped_column(Integer, ForeignKey("customer_programs.id"), nullable=False, index=True)
    wallet_type: Mapped[str] = mapped_column(String(16), nullable=False)
    google_object_id: Mapped[str | None] = mapped_column(String, nullable=True)
    apple_serial_number: Mapped[str | None] = mapped_column(String(128), nullable=True, index=True)
    # Push token may arrive later through the device handshake
    apple_device_token: Mapped[str | None] = mapped_column(String, nullable=True)
    device_library_id: Mapped[str | None] = mapped_column(String(128), nullable=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    wallet_pass: Mapped["Pass"] = relationship("Pass", back_populates="registrations")
    customer_program: Mapped["CustomerProgram"] = relationship("CustomerProgram", back_populates="registrations")
