"""
Capture Controller
==================

Owns the authorize -> capture transition of a job's payment.

- ``authorize_job`` reserves the job price with a manual-capture
  PaymentIntent at booking time.
- ``capture_job_payment`` converts that reservation into a charge.  It is
  safe to call any number of times: once the job is captured every further
  call is a no-op success.  A processor failure leaves the job uncaptured
  (flagged ``payment_capture_failed``) so the capture can be retried.
- ``handle_provider_assigned`` is the assignment trigger: it reserves the
  provider's payout and captures the payment.

The scheduled capture sweep in ``paybroker.jobs.captureScheduler`` calls
``capture_job_payment`` as well and counts as the same trigger.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass

from paybroker.core.results import Err, ErrorCode, Ok, Result
from paybroker.integrations.stripe.paymentService import PaymentError
from paybroker.models import Job

from .context import EngineContext
from .payoutLedger import ensure_payout, hold_job_payouts

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuthorizationOutcome:
    job_id: uuid.UUID
    payment_intent_id: str
    client_secret: str | None
    amount_cents: int


@dataclass(frozen=True)
class CaptureOutcome:
    job_id: uuid.UUID
    payment_intent_id: str
    already_captured: bool
    payouts_held: int = 0


async def authorize_job(
    ctx: EngineContext,
    job_id: uuid.UUID,
    payer_ref: str | None = None,
) -> Result[AuthorizationOutcome]:
    job = await ctx.jobs.get(job_id)
    if job is None:
        return Err(ErrorCode.JOB_NOT_FOUND, f"Job {job_id} not found")
    if job.cancelled:
        return Err(ErrorCode.JOB_ALREADY_CANCELLED, "Job has been cancelled")
    if job.payment_intent_id:
        return Err(ErrorCode.ALREADY_AUTHORIZED, "Job already has a payment authorization")

    try:
        authorization = await ctx.processor.create_authorization(
            job.price_cents,
            payer_ref=payer_ref or job.requester_ref,
            metadata={"job_id": str(job.id)},
        )
    except PaymentError as exc:
        return Err(ErrorCode.AUTHORIZATION_FAILED, exc.message)

    if not await ctx.jobs.set_payment_intent(job.id, authorization.id):
        # Another request authorized the job first; release ours.
        logger.warning(
            "Job %s authorized concurrently; releasing duplicate authorization %s",
            job.id,
            authorization.id,
        )
        try:
            await ctx.processor.cancel_authorization(authorization.id)
        except PaymentError as exc:
            logger.error(
                "Failed to release duplicate authorization %s: %s",
                authorization.id,
                exc.message,
            )
        return Err(ErrorCode.ALREADY_AUTHORIZED, "Job already has a payment authorization")

    logger.info(
        "Job %s authorized: payment_intent=%s, amount=%d",
        job.id,
        authorization.id,
        job.price_cents,
    )
    return Ok(
        AuthorizationOutcome(
            job_id=job.id,
            payment_intent_id=authorization.id,
            client_secret=authorization.client_secret,
            amount_cents=job.price_cents,
        )
    )


async def capture_job_payment(
    ctx: EngineContext,
    job_id: uuid.UUID,
) -> Result[CaptureOutcome]:
    job = await ctx.jobs.get(job_id)
    if job is None:
        return Err(ErrorCode.JOB_NOT_FOUND, f"Job {job_id} not found")
    if job.payment_captured:
        return Ok(
            CaptureOutcome(
                job_id=job.id,
                payment_intent_id=job.payment_intent_id,
                already_captured=True,
            )
        )
    if job.cancelled:
        return Err(ErrorCode.JOB_ALREADY_CANCELLED, "Job has been cancelled")
    if not job.payment_intent_id:
        return Err(ErrorCode.NO_PAYMENT_INTENT, "Job has no payment authorization")
    if job.authorization_released:
        return Err(ErrorCode.NO_PAYMENT_INTENT, "Payment authorization was released")

    return await perform_capture(ctx, job)


async def perform_capture(ctx: EngineContext, job: Job) -> Result[CaptureOutcome]:
    """Capture ``job``'s authorization without re-checking job-level guards."""
    try:
        await ctx.processor.capture(job.payment_intent_id)
    except PaymentError as exc:
        # A concurrent trigger may have captured it between our read and call.
        refreshed = await ctx.jobs.get(job.id)
        if refreshed is not None and refreshed.payment_captured:
            return Ok(
                CaptureOutcome(
                    job_id=job.id,
                    payment_intent_id=job.payment_intent_id,
                    already_captured=True,
                )
            )
        await ctx.jobs.mark_capture_failed(job.id)
        logger.error("Capture failed for job %s: %s", job.id, exc.message)
        return Err(ErrorCode.CAPTURE_FAILED, exc.message)

    won = await ctx.jobs.mark_captured(job.id, ctx.now())
    held = await hold_job_payouts(ctx, job.id)

    logger.info(
        "Payment captured for job %s (payment_intent=%s, first=%s, payouts_held=%d)",
        job.id,
        job.payment_intent_id,
        won,
        held,
    )
    return Ok(
        CaptureOutcome(
            job_id=job.id,
            payment_intent_id=job.payment_intent_id,
            already_captured=not won,
            payouts_held=held,
        )
    )


async def handle_provider_assigned(
    ctx: EngineContext,
    job_id: uuid.UUID,
    provider_id: uuid.UUID,
) -> Result[CaptureOutcome]:
    """Reserve the provider's payout, then capture the job's payment."""
    job = await ctx.jobs.get(job_id)
    if job is None:
        return Err(ErrorCode.JOB_NOT_FOUND, f"Job {job_id} not found")
    if provider_id not in job.provider_ids:
        return Err(
            ErrorCode.PROVIDER_NOT_ASSIGNED,
            f"Provider {provider_id} is not assigned to job {job_id}",
        )

    reserved = await ensure_payout(ctx, job_id, provider_id)
    if not reserved.ok:
        return reserved

    return await capture_job_payment(ctx, job_id)


async def release_authorization(ctx: EngineContext, job_id: uuid.UUID) -> Result[bool]:
    """Cancel an uncaptured authorization so the requester's funds are freed.

    Returns ``Ok(True)`` if this call released it and ``Ok(False)`` if it
    had already been released.
    """
    job = await ctx.jobs.get(job_id)
    if job is None:
        return Err(ErrorCode.JOB_NOT_FOUND, f"Job {job_id} not found")
    if not job.payment_intent_id:
        return Err(ErrorCode.NO_PAYMENT_INTENT, "Job has no payment authorization")
    if job.authorization_released:
        return Ok(False)
    if job.payment_captured:
        return Err(
            ErrorCode.INVALID_TRANSITION,
            "Payment already captured; refund it instead of releasing",
        )

    try:
        await ctx.processor.cancel_authorization(job.payment_intent_id)
    except PaymentError as exc:
        logger.error(
            "Failed to release authorization %s for job %s: %s",
            job.payment_intent_id,
            job.id,
            exc.message,
        )
        return Err(ErrorCode.REFUND_FAILED, exc.message)

    released = await ctx.jobs.mark_authorization_released(job.id)
    logger.info("Authorization %s released for job %s", job.payment_intent_id, job.id)
    return Ok(released)
