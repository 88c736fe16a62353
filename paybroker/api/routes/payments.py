"""
Payments API Routes
===================

FastAPI route handlers for the payment engine.  Handlers only translate
between HTTP and the service layer; every decision is made in
``paybroker.services``.

Job Payment Lifecycle:
  POST /payments/jobs/{job_id}/authorize            -- Place a manual-capture authorization
  POST /payments/jobs/{job_id}/capture              -- Capture (idempotent)
  POST /payments/jobs/{job_id}/provider-assigned    -- Assignment trigger
  POST /payments/jobs/{job_id}/release              -- Release an uncaptured authorization

Payouts:
  POST /payments/jobs/{job_id}/payouts              -- Pay all providers of a completed job
  POST /payments/payouts/{payout_id}/retry          -- Retry a failed payout
  GET  /payments/providers/{provider_id}/payouts    -- Provider payout history

Cancellation:
  GET  /payments/jobs/{job_id}/cancellation         -- Preview the breakdown
  POST /payments/jobs/{job_id}/cancellation         -- Cancel and move money

Provider Accounts:
  POST /payments/providers/accounts                 -- Create connected account
  POST /payments/providers/{provider_id}/onboarding-link
  POST /payments/providers/{provider_id}/refresh    -- Poll account status

Webhook:
  POST /payments/webhook                            -- Stripe Connect webhook endpoint
"""

from __future__ import annotations

import logging
import uuid

from fastapi import APIRouter, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from paybroker.api.deps import DBSession, EngineCtx
from paybroker.api.schemas.payments import (
    AuthorizationOut,
    AuthorizeJobRequest,
    CancellationBreakdownOut,
    CancellationOut,
    CaptureOut,
    CreateProviderAccountRequest,
    OnboardingLinkOut,
    OnboardingLinkRequest,
    PayoutResultOut,
    ProcessPayoutsOut,
    ProviderAccountOut,
    ProviderAssignedRequest,
    ProviderPayoutsOut,
    ReleaseOut,
    WebhookResultOut,
)
from paybroker.core.results import Err, ErrorCode
from paybroker.services import (
    cancellationService,
    captureController,
    payoutLedger,
    providerAccountService,
    webhookReconciler,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["Payments"])


# ---------------------------------------------------------------------------
# Helper: convert Err to HTTPException
# ---------------------------------------------------------------------------

_STATUS_BY_CODE: dict[ErrorCode, int] = {
    ErrorCode.JOB_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorCode.PAYOUT_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorCode.ACCOUNT_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorCode.ALREADY_AUTHORIZED: status.HTTP_409_CONFLICT,
    ErrorCode.JOB_ALREADY_CANCELLED: status.HTTP_409_CONFLICT,
    ErrorCode.JOB_ALREADY_COMPLETED: status.HTTP_409_CONFLICT,
    ErrorCode.INVALID_TRANSITION: status.HTTP_409_CONFLICT,
    ErrorCode.RETRY_LIMIT_REACHED: status.HTTP_409_CONFLICT,
    ErrorCode.TRANSFER_PENDING: status.HTTP_409_CONFLICT,
    ErrorCode.AUTHORIZATION_FAILED: status.HTTP_402_PAYMENT_REQUIRED,
    ErrorCode.CAPTURE_FAILED: status.HTTP_402_PAYMENT_REQUIRED,
    ErrorCode.TRANSFER_FAILED: status.HTTP_402_PAYMENT_REQUIRED,
    ErrorCode.REFUND_FAILED: status.HTTP_402_PAYMENT_REQUIRED,
    ErrorCode.ACCOUNT_CREATION_FAILED: status.HTTP_402_PAYMENT_REQUIRED,
    ErrorCode.ACCOUNT_RETRIEVAL_FAILED: status.HTTP_402_PAYMENT_REQUIRED,
    ErrorCode.ACCOUNT_LINK_FAILED: status.HTTP_402_PAYMENT_REQUIRED,
    ErrorCode.WEBHOOK_SECRET_MISSING: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def _err_to_http(err: Err) -> HTTPException:
    """Map an ``Err`` to an HTTP error; unlisted codes are client errors."""
    return HTTPException(
        status_code=_STATUS_BY_CODE.get(err.code, status.HTTP_400_BAD_REQUEST),
        detail={"code": err.code.value, "message": err.message},
    )


async def _fail_keeping_changes(db: AsyncSession, err: Err) -> HTTPException:
    """Commit what the service recorded before failing.

    Used where the failure itself is state worth keeping, such as a
    payout marked ``failed`` or a job flagged ``payment_capture_failed``.
    """
    await db.commit()
    return _err_to_http(err)


# ---------------------------------------------------------------------------
# POST /payments/webhook
# ---------------------------------------------------------------------------

@router.post(
    "/webhook",
    response_model=WebhookResultOut,
    summary="Stripe Connect webhook endpoint",
    description=(
        "Receives webhook events from Stripe Connect. Verifies the event "
        "signature and processes events idempotently. This endpoint must "
        "receive the raw request body (not JSON-parsed) for signature "
        "verification."
    ),
)
async def stripe_webhook_endpoint(request: Request, ctx: EngineCtx) -> WebhookResultOut:
    # Read raw body for signature verification
    payload = await request.body()
    sig_header = request.headers.get("Stripe-Signature")

    result = await webhookReconciler.handle_webhook(ctx, payload, sig_header)
    if not result.ok:
        raise _err_to_http(result)

    return WebhookResultOut(
        event_type=result.value.event_type,
        processed=result.value.processed,
        message=result.value.message,
    )


# ---------------------------------------------------------------------------
# Job payment lifecycle
# ---------------------------------------------------------------------------

@router.post(
    "/jobs/{job_id}/authorize",
    response_model=AuthorizationOut,
    status_code=status.HTTP_201_CREATED,
    summary="Authorize a job's payment",
    description=(
        "Places a manual-capture authorization for the job price. Funds are "
        "reserved on the requester's payment method but not charged."
    ),
)
async def authorize_job_endpoint(
    job_id: uuid.UUID,
    ctx: EngineCtx,
    body: AuthorizeJobRequest | None = None,
) -> AuthorizationOut:
    result = await captureController.authorize_job(
        ctx, job_id, payer_ref=body.payer_ref if body else None
    )
    if not result.ok:
        raise _err_to_http(result)
    return AuthorizationOut.model_validate(result.value)


@router.post(
    "/jobs/{job_id}/capture",
    response_model=CaptureOut,
    summary="Capture a job's payment",
    description="Captures the authorization. Calling it again after success is a no-op.",
)
async def capture_job_endpoint(job_id: uuid.UUID, ctx: EngineCtx, db: DBSession) -> CaptureOut:
    result = await captureController.capture_job_payment(ctx, job_id)
    if not result.ok:
        raise await _fail_keeping_changes(db, result)
    return CaptureOut.model_validate(result.value)


@router.post(
    "/jobs/{job_id}/provider-assigned",
    response_model=CaptureOut,
    summary="Provider assignment trigger",
    description="Reserves the provider's payout and captures the job's payment.",
)
async def provider_assigned_endpoint(
    job_id: uuid.UUID,
    body: ProviderAssignedRequest,
    ctx: EngineCtx,
    db: DBSession,
) -> CaptureOut:
    result = await captureController.handle_provider_assigned(ctx, job_id, body.provider_id)
    if not result.ok:
        raise await _fail_keeping_changes(db, result)
    return CaptureOut.model_validate(result.value)


@router.post(
    "/jobs/{job_id}/release",
    response_model=ReleaseOut,
    summary="Release an uncaptured authorization",
)
async def release_authorization_endpoint(job_id: uuid.UUID, ctx: EngineCtx) -> ReleaseOut:
    result = await captureController.release_authorization(ctx, job_id)
    if not result.ok:
        raise _err_to_http(result)
    return ReleaseOut(job_id=job_id, released=result.value)


# ---------------------------------------------------------------------------
# Payouts
# ---------------------------------------------------------------------------

@router.post(
    "/jobs/{job_id}/payouts",
    response_model=ProcessPayoutsOut,
    summary="Pay the providers of a completed job",
    description=(
        "Requests a transfer for every assigned provider. Each provider is "
        "handled independently; per-provider problems are reported in the "
        "results rather than failing the request."
    ),
)
async def process_job_payouts_endpoint(job_id: uuid.UUID, ctx: EngineCtx) -> ProcessPayoutsOut:
    result = await payoutLedger.process_job_payouts(ctx, job_id)
    if not result.ok:
        raise _err_to_http(result)
    return ProcessPayoutsOut(
        job_id=job_id,
        results=[PayoutResultOut.model_validate(r) for r in result.value],
    )


@router.post(
    "/payouts/{payout_id}/retry",
    response_model=PayoutResultOut,
    summary="Retry a failed payout",
)
async def retry_payout_endpoint(
    payout_id: uuid.UUID,
    ctx: EngineCtx,
    db: DBSession,
) -> PayoutResultOut:
    result = await payoutLedger.retry_payout(ctx, payout_id)
    if not result.ok:
        raise await _fail_keeping_changes(db, result)
    return PayoutResultOut.model_validate(result.value)


@router.get(
    "/providers/{provider_id}/payouts",
    response_model=ProviderPayoutsOut,
    summary="Provider payout history",
)
async def list_provider_payouts_endpoint(
    provider_id: uuid.UUID,
    ctx: EngineCtx,
) -> ProviderPayoutsOut:
    summary = await payoutLedger.list_provider_payouts(ctx, provider_id)
    return ProviderPayoutsOut.model_validate(summary)


# ---------------------------------------------------------------------------
# Cancellation
# ---------------------------------------------------------------------------

@router.get(
    "/jobs/{job_id}/cancellation",
    response_model=CancellationBreakdownOut,
    summary="Preview a cancellation",
    description="Shows the refund and compensation a cancellation would produce now.",
)
async def preview_cancellation_endpoint(
    job_id: uuid.UUID,
    ctx: EngineCtx,
) -> CancellationBreakdownOut:
    result = await cancellationService.preview_cancellation(ctx, job_id)
    if not result.ok:
        raise _err_to_http(result)
    return CancellationBreakdownOut.model_validate(result.value)


@router.post(
    "/jobs/{job_id}/cancellation",
    response_model=CancellationOut,
    summary="Cancel a job",
    description=(
        "Cancels the job and applies the cancellation policy: releases or "
        "refunds the requester's payment and compensates providers."
    ),
)
async def execute_cancellation_endpoint(job_id: uuid.UUID, ctx: EngineCtx) -> CancellationOut:
    result = await cancellationService.execute_cancellation(ctx, job_id)
    if not result.ok:
        raise _err_to_http(result)
    return CancellationOut.model_validate(result.value)


# ---------------------------------------------------------------------------
# Provider accounts
# ---------------------------------------------------------------------------

@router.post(
    "/providers/accounts",
    response_model=ProviderAccountOut,
    status_code=status.HTTP_201_CREATED,
    summary="Create a connected account for a provider",
    description=(
        "Creates a Stripe Express connected account for the provider, or "
        "returns the existing one."
    ),
)
async def create_provider_account_endpoint(
    body: CreateProviderAccountRequest,
    ctx: EngineCtx,
) -> ProviderAccountOut:
    result = await providerAccountService.create_provider_account(
        ctx, body.provider_id, email=body.email
    )
    if not result.ok:
        raise _err_to_http(result)
    return ProviderAccountOut.model_validate(result.value)


@router.post(
    "/providers/{provider_id}/onboarding-link",
    response_model=OnboardingLinkOut,
    summary="Generate an onboarding link",
)
async def onboarding_link_endpoint(
    provider_id: uuid.UUID,
    body: OnboardingLinkRequest,
    ctx: EngineCtx,
) -> OnboardingLinkOut:
    result = await providerAccountService.create_onboarding_link(
        ctx, provider_id, body.refresh_url, body.return_url
    )
    if not result.ok:
        raise _err_to_http(result)
    return OnboardingLinkOut.model_validate(result.value)


@router.post(
    "/providers/{provider_id}/refresh",
    response_model=ProviderAccountOut,
    summary="Refresh a provider's account status",
)
async def refresh_account_endpoint(
    provider_id: uuid.UUID,
    ctx: EngineCtx,
) -> ProviderAccountOut:
    result = await providerAccountService.refresh_account_status(ctx, provider_id)
    if not result.ok:
        raise _err_to_http(result)
    return ProviderAccountOut.model_validate(result.value)
