"""
SQLAlchemy implementations of the repository interfaces.

Each repository wraps the request-scoped ``AsyncSession``.  Writes are
flushed but not committed; the ``get_db`` dependency commits at the end of
the request.  Conditional updates use ``UPDATE ... WHERE status IN
(expected)`` and report success through ``rowcount``.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Iterable, Sequence

from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from paybroker.models import Job, Payout, PayoutStatus, ProviderAccount, utcnow

logger = logging.getLogger(__name__)


def _insert_for(session: AsyncSession):
    """Dialect-specific INSERT that supports ``on_conflict_do_nothing``."""
    if session.get_bind().dialect.name == "sqlite":
        return sqlite_insert
    return pg_insert


# ---------------------------------------------------------------------------
# Jobs
# ---------------------------------------------------------------------------

class SqlJobRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, job_id: uuid.UUID) -> Job | None:
        stmt = (
            select(Job)
            .where(Job.id == job_id)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_awaiting_capture(self) -> Sequence[Job]:
        stmt = (
            select(Job)
            .where(
                Job.payment_intent_id.is_not(None),
                Job.payment_captured.is_(False),
                Job.authorization_released.is_(False),
                Job.cancelled.is_(False),
                Job.scheduled_date.is_not(None),
            )
            .order_by(Job.scheduled_date)
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def _conditional(self, job_id: uuid.UUID, *conditions, **values) -> bool:
        stmt = (
            update(Job)
            .where(Job.id == job_id, *conditions)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        await self.session.flush()
        return result.rowcount > 0

    async def set_payment_intent(self, job_id: uuid.UUID, payment_intent_id: str) -> bool:
        return await self._conditional(
            job_id,
            Job.payment_intent_id.is_(None),
            payment_intent_id=payment_intent_id,
        )

    async def mark_captured(self, job_id: uuid.UUID, at: datetime) -> bool:
        return await self._conditional(
            job_id,
            Job.payment_captured.is_(False),
            Job.payment_intent_id.is_not(None),
            payment_captured=True,
            payment_capture_failed=False,
            captured_at=at,
        )

    async def mark_capture_failed(self, job_id: uuid.UUID) -> bool:
        return await self._conditional(
            job_id,
            Job.payment_captured.is_(False),
            payment_capture_failed=True,
        )

    async def mark_authorization_released(self, job_id: uuid.UUID) -> bool:
        return await self._conditional(
            job_id,
            Job.payment_captured.is_(False),
            Job.authorization_released.is_(False),
            authorization_released=True,
        )

    async def mark_cancelled(self, job_id: uuid.UUID, at: datetime) -> bool:
        return await self._conditional(
            job_id,
            Job.cancelled.is_(False),
            Job.completed.is_(False),
            cancelled=True,
            cancelled_at=at,
        )


# ---------------------------------------------------------------------------
# Provider accounts
# ---------------------------------------------------------------------------

class SqlProviderAccountRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_by_provider(self, provider_id: uuid.UUID) -> ProviderAccount | None:
        stmt = (
            select(ProviderAccount)
            .where(ProviderAccount.provider_id == provider_id)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_external_id(self, external_account_id: str) -> ProviderAccount | None:
        if not external_account_id:
            return None
        stmt = (
            select(ProviderAccount)
            .where(ProviderAccount.external_account_id == external_account_id)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_or_create(self, provider_id: uuid.UUID) -> ProviderAccount:
        stmt = (
            _insert_for(self.session)(ProviderAccount)
            .values(
                id=uuid.uuid4(),
                provider_id=provider_id,
                pending_requirements=[],
            )
            .on_conflict_do_nothing(index_elements=["provider_id"])
        )
        await self.session.execute(stmt)
        account = await self.get_by_provider(provider_id)
        assert account is not None
        return account

    async def set_external_account(
        self, provider_id: uuid.UUID, external_account_id: str
    ) -> bool:
        stmt = (
            update(ProviderAccount)
            .where(
                ProviderAccount.provider_id == provider_id,
                ProviderAccount.external_account_id.is_(None),
            )
            .values(external_account_id=external_account_id)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        await self.session.flush()
        return result.rowcount > 0

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
    ) -> ProviderAccount:
        account = await self.session.get(ProviderAccount, account_id)
        account.payouts_enabled = payouts_enabled
        account.charges_enabled = charges_enabled
        account.details_submitted = details_submitted
        account.pending_requirements = list(pending_requirements)
        account.account_status = account_status
        account.onboarding_complete = onboarding_complete
        await self.session.flush()
        return account


# ---------------------------------------------------------------------------
# Payouts
# ---------------------------------------------------------------------------

class SqlPayoutRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def _one(self, *conditions) -> Payout | None:
        stmt = (
            select(Payout)
            .where(*conditions)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get(self, payout_id: uuid.UUID) -> Payout | None:
        return await self._one(Payout.id == payout_id)

    async def get_for(self, job_id: uuid.UUID, provider_id: uuid.UUID) -> Payout | None:
        return await self._one(Payout.job_id == job_id, Payout.provider_id == provider_id)

    async def get_by_transfer_id(self, transfer_id: str) -> Payout | None:
        if not transfer_id:
            return None
        return await self._one(Payout.external_transfer_id == transfer_id)

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
        # Losers of a concurrent insert hit the unique constraint, insert
        # nothing, and read back the winner's row.
        stmt = (
            _insert_for(self.session)(Payout)
            .values(
                id=uuid.uuid4(),
                job_id=job_id,
                provider_id=provider_id,
                gross_amount=gross_amount,
                platform_fee=platform_fee,
                net_amount=net_amount,
                provider_count=provider_count,
                status=status.value,
                attempt_count=0,
                payment_captured_at=payment_captured_at,
            )
            .on_conflict_do_nothing(index_elements=["job_id", "provider_id"])
        )
        result = await self.session.execute(stmt)
        created = result.rowcount > 0

        payout = await self.get_for(job_id, provider_id)
        assert payout is not None
        return payout, created

    async def list_for_job(self, job_id: uuid.UUID) -> Sequence[Payout]:
        stmt = select(Payout).where(Payout.job_id == job_id).order_by(Payout.created_at)
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def list_for_provider(self, provider_id: uuid.UUID) -> Sequence[Payout]:
        stmt = (
            select(Payout)
            .where(Payout.provider_id == provider_id)
            .order_by(Payout.created_at.desc())
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def list_processing(self) -> Sequence[Payout]:
        stmt = (
            select(Payout)
            .where(Payout.status == PayoutStatus.PROCESSING.value)
            .order_by(Payout.transfer_initiated_at)
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def transition(
        self,
        payout_id: uuid.UUID,
        expected: Iterable[PayoutStatus],
        target: PayoutStatus,
        *,
        increment_attempt: bool = False,
        **fields,
    ) -> bool:
        values = {"status": target.value, "updated_at": utcnow(), **fields}
        if increment_attempt:
            values["attempt_count"] = Payout.attempt_count + 1

        stmt = (
            update(Payout)
            .where(
                Payout.id == payout_id,
                Payout.status.in_([s.value for s in expected]),
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        await self.session.flush()
        won = result.rowcount > 0
        if not won:
            logger.info(
                "Payout %s not in %s; transition to %s skipped",
                payout_id,
                [s.value for s in expected],
                target.value,
            )
        return won

    async def record_transfer(self, payout_id: uuid.UUID, transfer_id: str) -> bool:
        stmt = (
            update(Payout)
            .where(
                Payout.id == payout_id,
                Payout.status == PayoutStatus.PROCESSING.value,
            )
            .values(external_transfer_id=transfer_id, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        await self.session.flush()
        return result.rowcount > 0
