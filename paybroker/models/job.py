"""
SQLAlchemy model for jobs (the booking read model).

This engine only reads pricing and assignment data from a job; the only
columns it writes are the payment flags, each of which flips exactly once
via a conditional update (see ``SqlJobRepository``).
"""

import uuid
from datetime import date, datetime
from typing import Optional

from sqlalchemy import BigInteger, Boolean, Date, DateTime, String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, TimestampMixin, UUIDPrimaryKeyMixin


class Job(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "jobs"

    # Pricing (integer cents)
    price_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)
    original_price_cents: Mapped[Optional[int]] = mapped_column(
        BigInteger, nullable=True
    )
    discount_applied: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )

    # Scheduling
    scheduled_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    # Payment lifecycle
    requester_ref: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    payment_intent_id: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True, index=True
    )
    payment_captured: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    payment_capture_failed: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    authorization_released: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    captured_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Completion / cancellation
    completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    cancelled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Ordered list of provider UUID strings
    assigned_provider_ids: Mapped[list] = mapped_column(
        JSONB, nullable=False, default=list
    )

    @property
    def provider_ids(self) -> list[uuid.UUID]:
        return [uuid.UUID(str(pid)) for pid in (self.assigned_provider_ids or [])]

    def __repr__(self) -> str:
        return (
            f"<Job(id={self.id}, price={self.price_cents}, "
            f"captured={self.payment_captured}, completed={self.completed})>"
        )
