"""
SQLAlchemy model for payouts.

At most one row per (job_id, provider_id), enforced by a unique constraint.
Amounts are fixed when the row is created.  The one exception is a
reservation (``pending`` or ``held``) made while fewer providers were
assigned: ``provider_count`` records the split it was made with, and the
ledger re-splits it before it is paid.  Status changes only through ``services.payoutStateManager`` transitions.
"""

import enum
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    DateTime,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, TimestampMixin, UUIDPrimaryKeyMixin


class PayoutStatus(str, enum.Enum):
    PENDING = "pending"          # reserved, payment not yet captured
    HELD = "held"                # payment captured, awaiting job completion
    PROCESSING = "processing"    # transfer requested
    COMPLETED = "completed"      # transfer confirmed
    FAILED = "failed"            # transfer failed (retryable)


class Payout(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "payouts"
    __table_args__ = (
        UniqueConstraint("job_id", "provider_id", name="uq_payouts_job_provider"),
        CheckConstraint(
            "gross_amount = platform_fee + net_amount",
            name="ck_payouts_split_exact",
        ),
    )

    job_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), nullable=False, index=True
    )
    provider_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), nullable=False, index=True
    )

    gross_amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    platform_fee: Mapped[int] = mapped_column(BigInteger, nullable=False)
    net_amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    provider_count: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PayoutStatus.PENDING.value
    )
    external_transfer_id: Mapped[Optional[str]] = mapped_column(
        String(255), unique=True, nullable=True
    )
    failure_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    attempt_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    payment_captured_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    transfer_initiated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    @property
    def payout_status(self) -> PayoutStatus:
        return PayoutStatus(self.status)

    def __repr__(self) -> str:
        return (
            f"<Payout(id={self.id}, job={self.job_id}, provider={self.provider_id}, "
            f"net={self.net_amount}, status={self.status})>"
        )
