"""
Cancellation Service
====================

Carries out what ``cancellationPolicy`` decides.  ``preview_cancellation``
and ``execute_cancellation`` both compute the breakdown with
``breakdown_for_job``, so the amounts shown to the requester are the
amounts that move.

Execution order:

1. Claim the job with the conditional ``cancelled`` update; a concurrent
   second cancellation gets ``JOB_ALREADY_CANCELLED`` and moves no money.
2. Requester side:
   - uncaptured, full refund  -> release the authorization
   - uncaptured, penalty      -> capture, then refund the requester share
   - captured                 -> refund the requester share
   A failed release or capture returns ``Err`` with no money moved.  A
   refund that fails after the capture is reported in ``refund_error``
   instead; the job stays cancelled and captured.
3. Provider side: one compensation transfer per assigned provider whose
   account is active.  Ineligible providers are reported individually and
   the others are still paid.

Payout reservations (``pending``/``held``) are left untouched; a cancelled
job never completes, so they are never processed.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import date

from paybroker.core.results import Err, ErrorCode, Ok, Result
from paybroker.integrations.stripe.paymentService import PaymentError
from paybroker.models import AccountStatus, Job

from .cancellationPolicy import CancellationBreakdown, CancellationPolicy, breakdown_for_job
from .captureController import perform_capture, release_authorization
from .context import EngineContext

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CompensationResult:
    provider_id: uuid.UUID
    amount: int
    transfer_id: str | None = None
    error_code: ErrorCode | None = None
    message: str | None = None

    @property
    def ok(self) -> bool:
        return self.error_code is None


@dataclass(frozen=True)
class CancellationOutcome:
    job_id: uuid.UUID
    breakdown: CancellationBreakdown
    authorization_released: bool = False
    captured: bool = False
    refund_id: str | None = None
    refund_error: str | None = None
    compensations: list[CompensationResult] = field(default_factory=list)


async def _load_cancellable(ctx: EngineContext, job_id: uuid.UUID) -> Result[Job]:
    job = await ctx.jobs.get(job_id)
    if job is None:
        return Err(ErrorCode.JOB_NOT_FOUND, f"Job {job_id} not found")
    if job.cancelled:
        return Err(ErrorCode.JOB_ALREADY_CANCELLED, "Job has already been cancelled")
    if job.completed:
        return Err(ErrorCode.JOB_ALREADY_COMPLETED, "Completed jobs cannot be cancelled")
    return Ok(job)


def _breakdown(ctx: EngineContext, job: Job, today: date | None) -> CancellationBreakdown:
    return breakdown_for_job(
        job,
        today or ctx.today(),
        schedule=ctx.schedule,
        window_days=ctx.config.penalty_window_days,
    )


async def preview_cancellation(
    ctx: EngineContext,
    job_id: uuid.UUID,
    today: date | None = None,
) -> Result[CancellationBreakdown]:
    loaded = await _load_cancellable(ctx, job_id)
    if not loaded.ok:
        return loaded
    return Ok(_breakdown(ctx, loaded.value, today))


async def _compensate(
    ctx: EngineContext,
    job: Job,
    provider_id: uuid.UUID,
    breakdown: CancellationBreakdown,
) -> CompensationResult:
    amount = breakdown.per_provider.net_amount
    account = await ctx.accounts.get_by_provider(provider_id)
    if account is None or not account.external_account_id:
        return CompensationResult(
            provider_id=provider_id,
            amount=amount,
            error_code=ErrorCode.NO_CONNECT_ACCOUNT,
            message="Provider has not set up a payout account",
        )
    if account.status != AccountStatus.ACTIVE:
        return CompensationResult(
            provider_id=provider_id,
            amount=amount,
            error_code=ErrorCode.ONBOARDING_INCOMPLETE,
            message=f"Provider payout account is '{account.account_status}', not active",
        )

    try:
        transfer = await ctx.processor.create_transfer(
            account.external_account_id,
            amount,
            {
                "job_id": str(job.id),
                "provider_id": str(provider_id),
                "type": f"cancellation_{breakdown.policy.value}",
                "gross_amount": str(breakdown.per_provider.gross),
                "platform_fee": str(breakdown.per_provider.platform_fee),
            },
            f"cancellation-{job.id}-{provider_id}",
        )
    except PaymentError as exc:
        code = ErrorCode.TRANSFER_PENDING if exc.ambiguous else ErrorCode.TRANSFER_FAILED
        return CompensationResult(
            provider_id=provider_id,
            amount=amount,
            error_code=code,
            message=exc.message,
        )

    logger.info(
        "Cancellation compensation sent: job=%s, provider=%s, amount=%d, transfer=%s",
        job.id,
        provider_id,
        amount,
        transfer.id,
    )
    return CompensationResult(provider_id=provider_id, amount=amount, transfer_id=transfer.id)


async def execute_cancellation(
    ctx: EngineContext,
    job_id: uuid.UUID,
    today: date | None = None,
) -> Result[CancellationOutcome]:
    loaded = await _load_cancellable(ctx, job_id)
    if not loaded.ok:
        return loaded
    job = loaded.value
    breakdown = _breakdown(ctx, job, today)

    if not await ctx.jobs.mark_cancelled(job.id, ctx.now()):
        return Err(ErrorCode.JOB_ALREADY_CANCELLED, "Job has already been cancelled")

    logger.info(
        "Cancelling job %s: policy=%s, refund=%d, compensation=%d, retention=%d",
        job.id,
        breakdown.policy.value,
        breakdown.refund_amount,
        breakdown.provider_compensation,
        breakdown.platform_retention,
    )

    released = False
    captured = job.payment_captured
    refund_id = None
    refund_error = None

    if not job.payment_intent_id:
        logger.warning("Job %s cancelled with no payment authorization; no money moved", job.id)
        return Ok(CancellationOutcome(job_id=job.id, breakdown=breakdown))

    if not captured and breakdown.policy == CancellationPolicy.FULL_REFUND:
        release = await release_authorization(ctx, job.id)
        if not release.ok:
            return release
        released = True
    else:
        if not captured:
            capture = await perform_capture(ctx, job)
            if not capture.ok:
                return capture
            captured = True

        if breakdown.refund_amount > 0:
            try:
                refund = await ctx.processor.refund(
                    job.payment_intent_id,
                    breakdown.refund_amount,
                    reason=f"cancellation_{breakdown.policy.value}",
                )
            except PaymentError as exc:
                # The capture already happened; the cancellation stands and the
                # refund is reported for follow-up.
                logger.error(
                    "Refund of %d failed for cancelled job %s (payment_intent=%s): %s",
                    breakdown.refund_amount,
                    job.id,
                    job.payment_intent_id,
                    exc.message,
                )
                refund_error = exc.message
            else:
                refund_id = refund.id

    compensations: list[CompensationResult] = []
    if breakdown.per_provider.net_amount > 0:
        for provider_id in job.provider_ids:
            compensations.append(await _compensate(ctx, job, provider_id, breakdown))

    return Ok(
        CancellationOutcome(
            job_id=job.id,
            breakdown=breakdown,
            authorization_released=released,
            captured=captured,
            refund_id=refund_id,
            refund_error=refund_error,
            compensations=compensations,
        )
    )
