"""
SQLAlchemy model for provider connected accounts.

One row per provider.  Created by an explicit onboarding request, then
updated only by the webhook reconciler or an explicit status poll.
"""

import enum
import uuid
from typing import Optional

from sqlalchemy import Boolean, String
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, TimestampMixin, UUIDPrimaryKeyMixin


class AccountStatus(str, enum.Enum):
    PENDING = "pending"          # account created, onboarding not started
    ONBOARDING = "onboarding"    # requirements outstanding
    RESTRICTED = "restricted"    # details submitted, awaiting verification
    ACTIVE = "active"            # can receive transfers
    DISABLED = "disabled"


class ProviderAccount(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "provider_accounts"

    provider_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), unique=True, nullable=False
    )
    external_account_id: Mapped[Optional[str]] = mapped_column(
        String(255), unique=True, nullable=True
    )

    # Mirrored from the processor
    payouts_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    charges_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    details_submitted: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    pending_requirements: Mapped[list] = mapped_column(
        JSONB, nullable=False, default=list
    )

    # Derived
    account_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=AccountStatus.PENDING.value
    )
    onboarding_complete: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )

    @property
    def status(self) -> AccountStatus:
        return AccountStatus(self.account_status)

    def __repr__(self) -> str:
        return (
            f"<ProviderAccount(provider={self.provider_id}, "
            f"account={self.external_account_id}, status={self.account_status})>"
        )
