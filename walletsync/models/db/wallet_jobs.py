"""SQLAlchemy model for durable wallet sync jobs."""
from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import Integer, String, DateTime, JSON, Text, Index
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from walletsync.database import Base
from .enums import WalletJobStatus


def _new_job_id() -> str:
    return str(uuid.uuid4())


class WalletJob(Base):
    __tablename__ = "wallet_push_jobs"
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_job_id)
    # Plain string so rows with unknown/future types can still be loaded and closed out
    job_type: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False)

    status: Mapped[str] = mapped_column(String(32), nullable=False, default=WalletJobStatus.PENDING.value, index=True)
    outcome: Mapped[str | None] = mapped_column(String(32), nullable=True)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=5)
    next_attempt_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    # Claim / lease bookkeeping
    claimed_by: Mapped[str | None] = mapped_column(String(128), nullable=True)
    lease_expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Diagnostics of the last failed attempt
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_error_kind: Mapped[str | None] = mapped_column(String(32), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_attempt_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_wallet_push_jobs_due", "status", "next_attempt_at"),
    )

    def __repr__(self) -> str:  # pragma: no cover
        return f"<WalletJob {self.id} {self.job_type} {self.status} attempts={self.attempts}/{self.max_attempts}>"
