"""
Shared pytest fixtures for PayBroker unit tests.

Provides in-memory repositories and a fake payment processor so the
services can be exercised without a database or network.  The fakes keep
the same contracts as the SQL repositories: conditional updates report
whether the caller won, and ``create_if_absent`` is safe under concurrent
callers for the same ``(job_id, provider_id)``.
"""

from __future__ import annotations

import asyncio
import uuid
from collections import defaultdict
from datetime import date, datetime, timedelta, timezone
from typing import Iterable

import pytest

from paybroker.core.config import Settings
from paybroker.integrations.stripe.paymentService import (
    AuthorizationResult,
    CaptureResult,
    PaymentError,
    RefundResult,
)
from paybroker.integrations.stripe.payoutService import (
    AccountSnapshot,
    ConnectedAccountResult,
    TransferResult,
    TransferStatus,
)
from paybroker.integrations.stripe.webhookHandler import clear_processed_events
from paybroker.models import (
    AccountStatus,
    Job,
    Payout,
    PayoutStatus,
    ProviderAccount,
)
from paybroker.services.context import EngineContext

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)
TODAY = NOW.date()


# ---------------------------------------------------------------------------
# In-memory repositories
# ---------------------------------------------------------------------------

class FakeJobRepository:
    def __init__(self) -> None:
        self.rows: dict[uuid.UUID, Job] = {}

    def add(self, job: Job) -> Job:
        self.rows[job.id] = job
        return job

    async def get(self, job_id):
        await asyncio.sleep(0)
        return self.rows.get(job_id)

    async def list_awaiting_capture(self):
        return sorted(
            (
                j for j in self.rows.values()
                if j.payment_intent_id
                and not j.payment_captured
                and not j.authorization_released
                and not j.cancelled
                and j.scheduled_date is not None
            ),
            key=lambda j: j.scheduled_date,
        )

    async def _conditional(self, job_id, predicate, **values) -> bool:
        await asyncio.sleep(0)
        job = self.rows.get(job_id)
        if job is None or not predicate(job):
            return False
        for key, value in values.items():
            setattr(job, key, value)
        return True

    async def set_payment_intent(self, job_id, payment_intent_id):
        return await self._conditional(
            job_id,
            lambda j: j.payment_intent_id is None,
            payment_intent_id=payment_intent_id,
        )

    async def mark_captured(self, job_id, at):
        return await self._conditional(
            job_id,
            lambda j: not j.payment_captured and j.payment_intent_id is not None,
            payment_captured=True,
            payment_capture_failed=False,
            captured_at=at,
        )

    async def mark_capture_failed(self, job_id):
        return await self._conditional(
            job_id,
            lambda j: not j.payment_captured,
            payment_capture_failed=True,
        )

    async def mark_authorization_released(self, job_id):
        return await self._conditional(
            job_id,
            lambda j: not j.payment_captured and not j.authorization_released,
            authorization_released=True,
        )

    async def mark_cancelled(self, job_id, at):
        return await self._conditional(
            job_id,
            lambda j: not j.cancelled and not j.completed,
            cancelled=True,
            cancelled_at=at,
        )


class FakeProviderAccountRepository:
    def __init__(self) -> None:
        self.rows: dict[uuid.UUID, ProviderAccount] = {}

    def add(self, account: ProviderAccount) -> ProviderAccount:
        self.rows[account.provider_id] = account
        return account

    async def get_by_provider(self, provider_id):
        return self.rows.get(provider_id)

    async def get_by_external_id(self, external_account_id):
        for account in self.rows.values():
            if account.external_account_id == external_account_id:
                return account
        return None

    async def get_or_create(self, provider_id):
        if provider_id not in self.rows:
            self.rows[provider_id] = make_account(
                provider_id, external_account_id=None, status=AccountStatus.PENDING
            )
        return self.rows[provider_id]

    async def set_external_account(self, provider_id, external_account_id):
        account = self.rows.get(provider_id)
        if account is None or account.external_account_id is not None:
            return False
        account.external_account_id = external_account_id
        return True

    async def update_flags(self, account_id, **flags):
        for account in self.rows.values():
            if account.id == account_id:
                for key, value in flags.items():
                    setattr(account, key, value)
                return account
        raise KeyError(account_id)


class FakePayoutRepository:
    def __init__(self) -> None:
        self.rows: dict[uuid.UUID, Payout] = {}
        self.insert_attempts = 0
        self._locks: dict[tuple, asyncio.Lock] = defaultdict(asyncio.Lock)

    async def get(self, payout_id):
        return self.rows.get(payout_id)

    async def get_for(self, job_id, provider_id):
        await asyncio.sleep(0)
        for payout in self.rows.values():
            if payout.job_id == job_id and payout.provider_id == provider_id:
                return payout
        return None

    async def get_by_transfer_id(self, transfer_id):
        for payout in self.rows.values():
            if payout.external_transfer_id == transfer_id:
                return payout
        return None

    async def create_if_absent(
        self,
        job_id,
        provider_id,
        *,
        gross_amount,
        platform_fee,
        net_amount,
        provider_count,
        status,
        payment_captured_at=None,
    ):
        async with self._locks[(job_id, provider_id)]:
            self.insert_attempts += 1
            existing = await self.get_for(job_id, provider_id)
            if existing is not None:
                return existing, False
            payout = make_payout(
                job_id=job_id,
                provider_id=provider_id,
                gross_amount=gross_amount,
                platform_fee=platform_fee,
                net_amount=net_amount,
                provider_count=provider_count,
                status=status,
                payment_captured_at=payment_captured_at,
            )
            self.rows[payout.id] = payout
            return payout, True

    async def list_for_job(self, job_id):
        return [p for p in self.rows.values() if p.job_id == job_id]

    async def list_for_provider(self, provider_id):
        return [p for p in self.rows.values() if p.provider_id == provider_id]

    async def list_processing(self):
        return [p for p in self.rows.values() if p.status == PayoutStatus.PROCESSING.value]

    async def transition(
        self,
        payout_id,
        expected: Iterable[PayoutStatus],
        target: PayoutStatus,
        *,
        increment_attempt=False,
        **fields,
    ):
        await asyncio.sleep(0)
        payout = self.rows.get(payout_id)
        if payout is None or payout.status not in {s.value for s in expected}:
            return False
        payout.status = target.value
        if increment_attempt:
            payout.attempt_count += 1
        for key, value in fields.items():
            setattr(payout, key, value)
        return True

    async def record_transfer(self, payout_id, transfer_id):
        payout = self.rows.get(payout_id)
        if payout is None or payout.status != PayoutStatus.PROCESSING.value:
            return False
        payout.external_transfer_id = transfer_id
        return True


# ---------------------------------------------------------------------------
# Fake processor
# ---------------------------------------------------------------------------

def declined(message: str = "Your card was declined.") -> PaymentError:
    return PaymentError(message, stripe_error_code="card_declined", stripe_error_type="card_error")


def timed_out(message: str = "Request timed out") -> PaymentError:
    return PaymentError(message, stripe_error_type="api_connection_error", ambiguous=True)


class FakeProcessor:
    """In-memory ``PaymentProcessor``.

    ``fail(method, exc)`` makes every call to ``method`` raise ``exc`` until
    ``recover(method)``; ``fail_once`` raises only on the next call.
    Transfers honour idempotency keys the way Stripe does.
    """

    def __init__(self) -> None:
        self.calls: list[tuple[str, tuple]] = []
        self.failures: dict[str, PaymentError] = {}
        self.one_shot: dict[str, list[PaymentError]] = defaultdict(list)
        self.transfers: dict[str, TransferResult] = {}
        self.transfer_metadata: dict[str, dict[str, str]] = {}
        self.transfer_states: dict[str, TransferStatus] = {}
        self.accounts: dict[str, AccountSnapshot] = {}
        self.lose_transfer_response = False
        self._counter = 0

    def fail(self, method: str, exc: PaymentError) -> None:
        self.failures[method] = exc

    def fail_once(self, method: str, exc: PaymentError) -> None:
        self.one_shot[method].append(exc)

    def recover(self, method: str) -> None:
        self.failures.pop(method, None)

    def called(self, method: str) -> list[tuple]:
        return [args for name, args in self.calls if name == method]

    def _enter(self, method: str, *args) -> None:
        self.calls.append((method, args))
        if self.one_shot[method]:
            raise self.one_shot[method].pop(0)
        if method in self.failures:
            raise self.failures[method]

    def _next_id(self, prefix: str) -> str:
        self._counter += 1
        return f"{prefix}_test_{self._counter}"

    async def create_authorization(self, amount, payer_ref=None, metadata=None):
        self._enter("create_authorization", amount, payer_ref, metadata)
        pi_id = self._next_id("pi")
        return AuthorizationResult(
            id=pi_id,
            client_secret=f"{pi_id}_secret",
            status="requires_capture",
            amount_cents=amount,
        )

    async def capture(self, payment_id, amount=None):
        self._enter("capture", payment_id, amount)
        return CaptureResult(id=payment_id, status="succeeded", amount_captured_cents=amount or 0)

    async def cancel_authorization(self, payment_id):
        self._enter("cancel_authorization", payment_id)
        return True

    async def refund(self, payment_id, amount, reason=""):
        self._enter("refund", payment_id, amount, reason)
        return RefundResult(id=self._next_id("re"), status="succeeded", amount_cents=amount)

    async def create_transfer(self, destination, amount, metadata, idempotency_key):
        self._enter("create_transfer", destination, amount, metadata, idempotency_key)
        if idempotency_key not in self.transfers:
            transfer = TransferResult(
                id=self._next_id("tr"), amount_cents=amount, destination=destination
            )
            self.transfers[idempotency_key] = transfer
            self.transfer_metadata[transfer.id] = dict(metadata)
        if self.lose_transfer_response:
            self.lose_transfer_response = False
            raise timed_out()
        return self.transfers[idempotency_key]

    async def retrieve_transfer(self, transfer_id):
        self._enter("retrieve_transfer", transfer_id)
        return self.transfer_states.get(
            transfer_id,
            TransferStatus(id=transfer_id, amount_cents=0, reversed=False, settled=False),
        )

    async def create_connected_account(self, provider_ref, email=None):
        self._enter("create_connected_account", provider_ref, email)
        return ConnectedAccountResult(account_id=self._next_id("acct"), details_submitted=False)

    async def create_account_link(self, account_id, refresh_url, return_url):
        self._enter("create_account_link", account_id, refresh_url, return_url)
        return f"https://connect.stripe.com/setup/{account_id}"

    async def retrieve_account(self, account_id):
        self._enter("retrieve_account", account_id)
        return self.accounts[account_id]

    @property
    def distinct_transfers(self) -> list[TransferResult]:
        return list(self.transfers.values())


class RecordingNotifier:
    def __init__(self, raise_error: bool = False) -> None:
        self.completed: list[uuid.UUID] = []
        self.raise_error = raise_error

    async def payout_completed(self, payout: Payout) -> None:
        if self.raise_error:
            raise RuntimeError("push service unavailable")
        self.completed.append(payout.id)


# ---------------------------------------------------------------------------
# Domain object builders
# ---------------------------------------------------------------------------

def make_job(
    *,
    price_cents: int = 10000,
    original_price_cents: int | None = None,
    discount_applied: bool = False,
    providers: list[uuid.UUID] | None = None,
    payment_intent_id: str | None = "pi_existing",
    payment_captured: bool = False,
    completed: bool = False,
    cancelled: bool = False,
    scheduled_date: date | None = None,
) -> Job:
    return Job(
        id=uuid.uuid4(),
        price_cents=price_cents,
        original_price_cents=original_price_cents,
        discount_applied=discount_applied,
        scheduled_date=scheduled_date,
        requester_ref="cus_requester",
        payment_intent_id=payment_intent_id,
        payment_captured=payment_captured,
        payment_capture_failed=False,
        authorization_released=False,
        captured_at=NOW if payment_captured else None,
        completed=completed,
        completed_at=NOW if completed else None,
        cancelled=cancelled,
        cancelled_at=None,
        assigned_provider_ids=[str(p) for p in (providers or [])],
        created_at=NOW,
        updated_at=NOW,
    )


def make_account(
    provider_id: uuid.UUID,
    *,
    external_account_id: str | None = "acct_provider",
    status: AccountStatus = AccountStatus.ACTIVE,
) -> ProviderAccount:
    active = status == AccountStatus.ACTIVE
    return ProviderAccount(
        id=uuid.uuid4(),
        provider_id=provider_id,
        external_account_id=external_account_id,
        payouts_enabled=active,
        charges_enabled=active,
        details_submitted=active,
        pending_requirements=[],
        account_status=status.value,
        onboarding_complete=active,
        created_at=NOW,
        updated_at=NOW,
    )


def make_payout(
    *,
    job_id: uuid.UUID,
    provider_id: uuid.UUID,
    gross_amount: int = 10000,
    platform_fee: int = 1000,
    net_amount: int = 9000,
    provider_count: int = 1,
    status: PayoutStatus = PayoutStatus.HELD,
    attempt_count: int = 0,
    external_transfer_id: str | None = None,
    payment_captured_at: datetime | None = None,
) -> Payout:
    return Payout(
        id=uuid.uuid4(),
        job_id=job_id,
        provider_id=provider_id,
        gross_amount=gross_amount,
        platform_fee=platform_fee,
        net_amount=net_amount,
        provider_count=provider_count,
        status=status.value,
        external_transfer_id=external_transfer_id,
        failure_reason=None,
        attempt_count=attempt_count,
        payment_captured_at=payment_captured_at,
        transfer_initiated_at=None,
        completed_at=None,
        created_at=NOW,
        updated_at=NOW,
    )


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def _reset_processed_events():
    clear_processed_events()
    yield
    clear_processed_events()


@pytest.fixture
def engine_settings() -> Settings:
    return Settings(
        _env_file=None,
        environment="test",
        stripe_connect_webhook_secret="",
        allow_unsigned_webhooks=True,
    )


@pytest.fixture
def processor() -> FakeProcessor:
    return FakeProcessor()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def ctx(processor, notifier, engine_settings) -> EngineContext:
    return EngineContext(
        jobs=FakeJobRepository(),
        accounts=FakeProviderAccountRepository(),
        payouts=FakePayoutRepository(),
        processor=processor,
        notifier=notifier,
        config=engine_settings,
        clock=lambda: NOW,
    )


@pytest.fixture
def provider_ids() -> list[uuid.UUID]:
    return [uuid.uuid4() for _ in range(3)]


def days_from_today(days: int) -> date:
    return TODAY + timedelta(days=days)
