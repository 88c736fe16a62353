"""
Repository interfaces used by the services.

Every state-changing method is a conditional update: it only applies when
the row is still in the expected prior state and returns whether this
caller won.  ``PayoutRepository.create_if_absent`` must be safe under
concurrent callers for the same ``(job_id, provider_id)``.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Iterable, Protocol, Sequence

from paybroker.models import Job, Payout, PayoutStatus, ProviderAccount


class JobRepository(Protocol):
    async def get(self, job_id: uuid.UUID) -> Job | None: ...

    async def list_awaiting_capture(self) -> Sequence[Job]:
        """Authorized, uncaptured, uncancelled jobs with a scheduled date."""
        ...

    async def set_payment_intent(self, job_id: uuid.UUID, payment_intent_id: str) -> bool: ...

    async def mark_captured(self, job_id: uuid.UUID, at: datetime) -> bool: ...

    async def mark_capture_failed(self, job_id: uuid.UUID) -> bool: ...

    async def mark_authorization_released(self, job_id: uuid.UUID) -> bool: ...

    async def mark_cancelled(self, job_id: uuid.UUID, at: datetime) -> bool: ...


class ProviderAccountRepository(Protocol):
    async def get_by_provider(self, provider_id: uuid.UUID) -> ProviderAccount | None: ...

    async def get_by_external_id(self, external_account_id: str) -> ProviderAccount | None: ...

    async def get_or_create(self, provider_id: uuid.UUID) -> ProviderAccount: ...

    async def set_external_account(
        self, provider_id: uuid.UUID, external_account_id: str
    ) -> bool: ...

    async def update_flags(
        self,
        account_id: uuid.UUID,
        *,
        payouts_enabled: bool,
        charges_enabled: bool,
        details_submitted: bool,
        pending_requirements: list[str],
        account_status: str,
        onboarding_complete: bool,
    ) -> ProviderAccount: ...


class PayoutRepository(Protocol):
    async def get(self, payout_id: uuid.UUID) -> Payout | None: ...

    async def get_for(self, job_id: uuid.UUID, provider_id: uuid.UUID) -> Payout | None: ...

    async def get_by_transfer_id(self, transfer_id: str) -> Payout | None: ...

    async def create_if_absent(
        self,
        job_id: uuid.UUID,
        provider_id: uuid.UUID,
        *,
        gross_amount: int,
        platform_fee: int,
        net_amount: int,
        provider_count: int,
        status: PayoutStatus,
        payment_captured_at: datetime | None = None,
    ) -> tuple[Payout, bool]:
        """Return the stored row and whether this call created it."""
        ...

    async def list_for_job(self, job_id: uuid.UUID) -> Sequence[Payout]: ...

    async def list_for_provider(self, provider_id: uuid.UUID) -> Sequence[Payout]: ...

    async def list_processing(self) -> Sequence[Payout]: ...

    async def transition(
        self,
        payout_id: uuid.UUID,
        expected: Iterable[PayoutStatus],
        target: PayoutStatus,
        *,
        increment_attempt: bool = False,
        **fields,
    ) -> bool: ...

    async def record_transfer(self, payout_id: uuid.UUID, transfer_id: str) -> bool: ...
