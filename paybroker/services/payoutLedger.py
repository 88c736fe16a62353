"""
Payout Ledger
=============

Owns payout records and drives them through ``payoutStateManager``:

- ``ensure_payout``          idempotent get-or-create, amounts fixed at creation
- ``process_job_payouts``    pay every assigned provider of a completed job
- ``retry_payout``           bounded ``failed -> processing`` retry
- ``resume_pending_transfer`` re-send an attempt whose outcome was unknown
- ``mark_payout_completed``  / ``mark_payout_failed`` reconciliation outcomes
- ``hold_job_payouts``       promote reservations once payment is captured
- ``list_provider_payouts``  payout history with totals

A transfer is only ever requested by the caller that wins the conditional
``-> processing`` update, and the request carries the idempotency key
``payout-{id}-attempt-{n}``.  A payout in ``processing`` is never sent
again until its outcome is known: an accepted transfer waits for
reconciliation, a rejected one becomes ``failed``, and a timeout or other
ambiguous error leaves it ``processing``.
"""

from __future__ import annotations

import enum
import logging
import uuid
from dataclasses import dataclass, field
from decimal import Decimal

from paybroker.core.results import Err, ErrorCode, Ok, Result
from paybroker.integrations.stripe.paymentService import PaymentError
from paybroker.models import AccountStatus, Job, Payout, PayoutStatus, ProviderAccount

from .context import EngineContext
from .notifier import notify_payout_completed
from .payoutStateManager import validate_transition
from .splitCalculator import per_provider_split

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Result dataclasses
# ---------------------------------------------------------------------------

class PayoutOutcome(str, enum.Enum):
    TRANSFER_REQUESTED = "transfer_requested"
    ALREADY_COMPLETED = "already_completed"
    IN_FLIGHT = "in_flight"
    INELIGIBLE = "ineligible"
    TRANSFER_FAILED = "transfer_failed"
    TRANSFER_PENDING = "transfer_pending"
    COMPLETED = "completed"


@dataclass(frozen=True)
class PayoutResult:
    """Per-provider outcome of a payout attempt."""
    provider_id: uuid.UUID
    outcome: PayoutOutcome
    payout_id: uuid.UUID | None = None
    status: PayoutStatus | None = None
    net_amount: int = 0
    transfer_id: str | None = None
    error_code: ErrorCode | None = None
    message: str | None = None

    @property
    def failed(self) -> bool:
        return self.outcome in (PayoutOutcome.INELIGIBLE, PayoutOutcome.TRANSFER_FAILED)


@dataclass(frozen=True)
class ProviderPayoutSummary:
    """A provider's payout history and running totals (cents)."""
    provider_id: uuid.UUID
    payouts: list[Payout] = field(default_factory=list)
    total_paid_cents: int = 0
    pending_amount_cents: int = 0
    completed_count: int = 0
    pending_count: int = 0
    failed_count: int = 0
    platform_fee_percent: Decimal = Decimal("10")
    provider_percent: Decimal = Decimal("90")


_OUTSTANDING = frozenset({
    PayoutStatus.PENDING,
    PayoutStatus.HELD,
    PayoutStatus.PROCESSING,
})


def _result(payout: Payout, outcome: PayoutOutcome, **kwargs) -> PayoutResult:
    return PayoutResult(
        provider_id=payout.provider_id,
        outcome=outcome,
        payout_id=payout.id,
        status=payout.payout_status,
        net_amount=payout.net_amount,
        transfer_id=kwargs.pop("transfer_id", payout.external_transfer_id),
        **kwargs,
    )


# ---------------------------------------------------------------------------
# Creation
# ---------------------------------------------------------------------------

def _provider_count(job: Job) -> int:
    return max(len(job.provider_ids), 1)


def _job_split(ctx: EngineContext, job: Job, provider_count: int):
    return per_provider_split(
        price=job.price_cents,
        original_price=job.original_price_cents,
        discount_applied=job.discount_applied,
        provider_count=provider_count,
        schedule=ctx.schedule,
    )


async def _ensure_for_job(ctx: EngineContext, job: Job, provider_id: uuid.UUID) -> Payout:
    existing = await ctx.payouts.get_for(job.id, provider_id)
    if existing is not None:
        return existing

    provider_count = _provider_count(job)
    split = _job_split(ctx, job, provider_count)
    status = PayoutStatus.HELD if job.payment_captured else PayoutStatus.PENDING

    payout, created = await ctx.payouts.create_if_absent(
        job.id,
        provider_id,
        gross_amount=split.gross,
        platform_fee=split.platform_fee,
        net_amount=split.net_amount,
        provider_count=provider_count,
        status=status,
        payment_captured_at=job.captured_at if job.payment_captured else None,
    )
    if created:
        logger.info(
            "Payout created: id=%s, job=%s, provider=%s, gross=%d, fee=%d, net=%d, status=%s",
            payout.id,
            job.id,
            provider_id,
            payout.gross_amount,
            payout.platform_fee,
            payout.net_amount,
            payout.status,
        )
    return payout


async def ensure_payout(
    ctx: EngineContext,
    job_id: uuid.UUID,
    provider_id: uuid.UUID,
) -> Result[Payout]:
    """Return the payout for ``(job_id, provider_id)``, creating it if needed.

    An existing row is returned unchanged, even if the job's price has
    changed since it was created.  Only ``_prepare_reservation`` touches
    the amounts of an existing row.
    """
    job = await ctx.jobs.get(job_id)
    if job is None:
        return Err(ErrorCode.JOB_NOT_FOUND, f"Job {job_id} not found")
    return Ok(await _ensure_for_job(ctx, job, provider_id))


# ---------------------------------------------------------------------------
# Transfers
# ---------------------------------------------------------------------------

def _check_eligibility(account: ProviderAccount | None) -> tuple[ErrorCode, str] | None:
    if account is None or not account.external_account_id:
        return ErrorCode.NO_CONNECT_ACCOUNT, "Provider has not set up a payout account"
    if account.status != AccountStatus.ACTIVE:
        return (
            ErrorCode.ONBOARDING_INCOMPLETE,
            f"Provider payout account is '{account.account_status}', not active",
        )
    return None


async def _complete_without_transfer(ctx: EngineContext, payout: Payout) -> PayoutResult:
    """Zero-amount payouts settle immediately; there is nothing to move."""
    won = await ctx.payouts.transition(
        payout.id,
        [payout.payout_status],
        PayoutStatus.PROCESSING,
        transfer_initiated_at=ctx.now(),
    )
    if not won:
        payout = await ctx.payouts.get(payout.id)
        return _result(payout, PayoutOutcome.IN_FLIGHT)

    completed = await mark_payout_completed(ctx, payout.id)
    return _result(completed.value, PayoutOutcome.COMPLETED)


async def _request_transfer(
    ctx: EngineContext,
    payout: Payout,
    destination: str,
) -> PayoutResult:
    current = payout.payout_status
    check = validate_transition(current, PayoutStatus.PROCESSING)
    if not check.allowed:
        return _result(
            payout,
            PayoutOutcome.TRANSFER_FAILED,
            error_code=ErrorCode.INVALID_TRANSITION,
            message=check.reason,
        )

    if payout.net_amount <= 0:
        return await _complete_without_transfer(ctx, payout)

    won = await ctx.payouts.transition(
        payout.id,
        [current],
        PayoutStatus.PROCESSING,
        increment_attempt=True,
        transfer_initiated_at=ctx.now(),
        failure_reason=None,
    )
    payout = await ctx.payouts.get(payout.id)
    if not won:
        if payout.payout_status == PayoutStatus.COMPLETED:
            return _result(payout, PayoutOutcome.ALREADY_COMPLETED)
        return _result(payout, PayoutOutcome.IN_FLIGHT)

    return await _send_transfer(ctx, payout, destination)


async def _send_transfer(ctx: EngineContext, payout: Payout, destination: str) -> PayoutResult:
    """Send the transfer for the payout's current attempt.

    Only called for a payout this caller holds in ``processing``.  The
    idempotency key is derived from the attempt number, so re-sending the
    same attempt can never move funds twice.
    """
    idempotency_key = f"payout-{payout.id}-attempt-{payout.attempt_count}"
    metadata = {
        "job_id": str(payout.job_id),
        "provider_id": str(payout.provider_id),
        "payout_id": str(payout.id),
        "gross_amount": str(payout.gross_amount),
        "platform_fee": str(payout.platform_fee),
    }

    try:
        transfer = await ctx.processor.create_transfer(
            destination,
            payout.net_amount,
            metadata,
            idempotency_key,
        )
    except PaymentError as exc:
        if exc.ambiguous:
            logger.warning(
                "Transfer outcome unknown for payout %s (attempt %d): %s",
                payout.id,
                payout.attempt_count,
                exc.message,
            )
            return _result(
                payout,
                PayoutOutcome.TRANSFER_PENDING,
                error_code=ErrorCode.TRANSFER_PENDING,
                message=exc.message,
            )

        logger.error(
            "Transfer rejected for payout %s (attempt %d): %s",
            payout.id,
            payout.attempt_count,
            exc.message,
        )
        await ctx.payouts.transition(
            payout.id,
            [PayoutStatus.PROCESSING],
            PayoutStatus.FAILED,
            failure_reason=exc.message,
        )
        payout = await ctx.payouts.get(payout.id)
        return _result(
            payout,
            PayoutOutcome.TRANSFER_FAILED,
            error_code=ErrorCode.TRANSFER_FAILED,
            message=exc.message,
        )

    await ctx.payouts.record_transfer(payout.id, transfer.id)
    payout = await ctx.payouts.get(payout.id)
    logger.info(
        "Transfer requested: payout=%s, transfer=%s, destination=%s, amount=%d",
        payout.id,
        transfer.id,
        destination,
        payout.net_amount,
    )
    return _result(payout, PayoutOutcome.TRANSFER_REQUESTED, transfer_id=transfer.id)


async def _prepare_reservation(ctx: EngineContext, job: Job, payout: Payout) -> Payout:
    """Make a ``pending`` or ``held`` row ready to pay.

    A row reserved while fewer providers were assigned is re-split over the
    job's current provider set, so the job never pays out more than its
    price.  A ``pending`` row of a captured job moves to ``held``.
    """
    current = payout.payout_status
    provider_count = _provider_count(job)
    fields = {}
    if payout.provider_count != provider_count:
        split = _job_split(ctx, job, provider_count)
        fields = {
            "gross_amount": split.gross,
            "platform_fee": split.platform_fee,
            "net_amount": split.net_amount,
            "provider_count": provider_count,
        }
    if current == PayoutStatus.PENDING:
        fields["payment_captured_at"] = job.captured_at or ctx.now()
    elif not fields:
        return payout

    won = await ctx.payouts.transition(payout.id, [current], PayoutStatus.HELD, **fields)
    if won and "provider_count" in fields:
        logger.info(
            "Payout %s re-split over %d providers: gross=%d, fee=%d, net=%d",
            payout.id,
            provider_count,
            fields["gross_amount"],
            fields["platform_fee"],
            fields["net_amount"],
        )
    return await ctx.payouts.get(payout.id)


async def _pay_provider(ctx: EngineContext, job: Job, provider_id: uuid.UUID) -> PayoutResult:
    payout = await _ensure_for_job(ctx, job, provider_id)
    if payout.payout_status in (PayoutStatus.PENDING, PayoutStatus.HELD):
        payout = await _prepare_reservation(ctx, job, payout)
    status = payout.payout_status

    if status == PayoutStatus.COMPLETED:
        return _result(payout, PayoutOutcome.ALREADY_COMPLETED)
    if status == PayoutStatus.PROCESSING:
        return _result(payout, PayoutOutcome.IN_FLIGHT)

    account = await ctx.accounts.get_by_provider(provider_id)
    ineligible = _check_eligibility(account)
    if ineligible is not None:
        code, message = ineligible
        logger.warning(
            "Payout %s for provider %s skipped: %s", payout.id, provider_id, code.value
        )
        return _result(payout, PayoutOutcome.INELIGIBLE, error_code=code, message=message)

    if status == PayoutStatus.FAILED and payout.attempt_count >= ctx.config.max_payout_attempts:
        return _result(
            payout,
            PayoutOutcome.TRANSFER_FAILED,
            error_code=ErrorCode.RETRY_LIMIT_REACHED,
            message=f"Payout already attempted {payout.attempt_count} times",
        )

    return await _request_transfer(ctx, payout, account.external_account_id)


async def process_job_payouts(
    ctx: EngineContext,
    job_id: uuid.UUID,
) -> Result[list[PayoutResult]]:
    """Pay every provider assigned to a completed, captured job.

    Precondition failures are returned without touching any payout.  Once
    past them each provider is handled independently: one provider's
    missing account or rejected transfer never blocks another's payout.
    """
    job = await ctx.jobs.get(job_id)
    if job is None:
        return Err(ErrorCode.JOB_NOT_FOUND, f"Job {job_id} not found")
    if not job.completed:
        return Err(ErrorCode.JOB_NOT_COMPLETE, "Job must be completed before payouts")
    if not job.payment_captured:
        return Err(ErrorCode.PAYMENT_NOT_CAPTURED, "Payment has not been captured")
    if not job.provider_ids:
        return Err(ErrorCode.NO_PROVIDERS_ASSIGNED, "No providers assigned to job")

    results = [await _pay_provider(ctx, job, pid) for pid in job.provider_ids]

    logger.info(
        "Processed payouts for job %s: %s",
        job_id,
        ", ".join(f"{r.provider_id}={r.outcome.value}" for r in results),
    )
    return Ok(results)


async def retry_payout(ctx: EngineContext, payout_id: uuid.UUID) -> Result[PayoutResult]:
    """Send a new transfer for a failed payout, up to ``max_payout_attempts``."""
    payout = await ctx.payouts.get(payout_id)
    if payout is None:
        return Err(ErrorCode.PAYOUT_NOT_FOUND, f"Payout {payout_id} not found")
    if payout.payout_status != PayoutStatus.FAILED:
        return Err(
            ErrorCode.INVALID_TRANSITION,
            f"Only failed payouts can be retried (status is '{payout.status}')",
        )
    if payout.attempt_count >= ctx.config.max_payout_attempts:
        return Err(
            ErrorCode.RETRY_LIMIT_REACHED,
            f"Payout already attempted {payout.attempt_count} times",
        )

    account = await ctx.accounts.get_by_provider(payout.provider_id)
    ineligible = _check_eligibility(account)
    if ineligible is not None:
        return Err(*ineligible)

    result = await _request_transfer(ctx, payout, account.external_account_id)
    if result.outcome == PayoutOutcome.TRANSFER_FAILED:
        return Err(result.error_code or ErrorCode.TRANSFER_FAILED, result.message or "")
    return Ok(result)


async def resume_pending_transfer(
    ctx: EngineContext,
    payout_id: uuid.UUID,
) -> Result[PayoutResult]:
    """Re-send the current attempt of a ``processing`` payout with no transfer id.

    This happens after an ambiguous processor error.  The request reuses
    the attempt's idempotency key, so the processor either returns the
    transfer it already made or makes it now.
    """
    payout = await ctx.payouts.get(payout_id)
    if payout is None:
        return Err(ErrorCode.PAYOUT_NOT_FOUND, f"Payout {payout_id} not found")
    if payout.payout_status != PayoutStatus.PROCESSING or payout.external_transfer_id:
        return Err(
            ErrorCode.INVALID_TRANSITION,
            "Only processing payouts without a transfer can be resumed",
        )

    account = await ctx.accounts.get_by_provider(payout.provider_id)
    if account is None or not account.external_account_id:
        return Err(ErrorCode.NO_CONNECT_ACCOUNT, "Provider has not set up a payout account")

    return Ok(await _send_transfer(ctx, payout, account.external_account_id))


# ---------------------------------------------------------------------------
# Reconciliation outcomes
# ---------------------------------------------------------------------------

async def mark_payout_completed(ctx: EngineContext, payout_id: uuid.UUID) -> Result[Payout]:
    """``processing -> completed``; notifies the provider on success."""
    won = await ctx.payouts.transition(
        payout_id,
        [PayoutStatus.PROCESSING],
        PayoutStatus.COMPLETED,
        completed_at=ctx.now(),
        failure_reason=None,
    )
    payout = await ctx.payouts.get(payout_id)
    if payout is None:
        return Err(ErrorCode.PAYOUT_NOT_FOUND, f"Payout {payout_id} not found")
    if not won:
        return Err(
            ErrorCode.INVALID_TRANSITION,
            f"Payout is '{payout.status}', not processing",
        )

    logger.info("Payout %s completed (transfer=%s)", payout.id, payout.external_transfer_id)
    await notify_payout_completed(ctx.notifier, payout)
    return Ok(payout)


async def mark_payout_failed(
    ctx: EngineContext,
    payout_id: uuid.UUID,
    reason: str,
) -> Result[Payout]:
    """``processing -> failed`` with ``reason``."""
    won = await ctx.payouts.transition(
        payout_id,
        [PayoutStatus.PROCESSING],
        PayoutStatus.FAILED,
        failure_reason=reason,
    )
    payout = await ctx.payouts.get(payout_id)
    if payout is None:
        return Err(ErrorCode.PAYOUT_NOT_FOUND, f"Payout {payout_id} not found")
    if not won:
        return Err(
            ErrorCode.INVALID_TRANSITION,
            f"Payout is '{payout.status}', not processing",
        )

    logger.warning("Payout %s failed: %s", payout.id, reason)
    return Ok(payout)


async def hold_job_payouts(ctx: EngineContext, job_id: uuid.UUID) -> int:
    """Promote the job's ``pending`` payouts to ``held``; returns how many moved."""
    moved = 0
    now = ctx.now()
    for payout in await ctx.payouts.list_for_job(job_id):
        if payout.payout_status != PayoutStatus.PENDING:
            continue
        if await ctx.payouts.transition(
            payout.id,
            [PayoutStatus.PENDING],
            PayoutStatus.HELD,
            payment_captured_at=now,
        ):
            moved += 1
    if moved:
        logger.info("Held %d payout(s) for job %s", moved, job_id)
    return moved


# ---------------------------------------------------------------------------
# History
# ---------------------------------------------------------------------------

async def list_provider_payouts(
    ctx: EngineContext,
    provider_id: uuid.UUID,
) -> ProviderPayoutSummary:
    payouts = list(await ctx.payouts.list_for_provider(provider_id))

    completed = [p for p in payouts if p.payout_status == PayoutStatus.COMPLETED]
    outstanding = [p for p in payouts if p.payout_status in _OUTSTANDING]
    failed = [p for p in payouts if p.payout_status == PayoutStatus.FAILED]
    fee_percent = ctx.schedule.platform_fee_percent * 100

    return ProviderPayoutSummary(
        provider_id=provider_id,
        payouts=payouts,
        total_paid_cents=sum(p.net_amount for p in completed),
        pending_amount_cents=sum(p.net_amount for p in outstanding),
        completed_count=len(completed),
        pending_count=len(outstanding),
        failed_count=len(failed),
        platform_fee_percent=fee_percent,
        provider_percent=Decimal(100) - fee_percent,
    )
