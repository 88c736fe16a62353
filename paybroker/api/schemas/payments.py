"""
Pydantic v2 schemas for the Payments API
========================================

Request and response schemas for:
- Authorization and capture of job payments
- Payout processing, retries and provider payout history
- Cancellation preview and execution
- Provider connected-account onboarding
- Webhook processing

All monetary amounts are represented as integers (cents).
"""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from paybroker.core.results import ErrorCode
from paybroker.models import PayoutStatus
from paybroker.services.cancellationPolicy import CancellationPolicy
from paybroker.services.payoutLedger import PayoutOutcome


# ---------------------------------------------------------------------------
# Authorization & capture schemas
# ---------------------------------------------------------------------------

class AuthorizeJobRequest(BaseModel):
    """Request body for authorizing a job's payment."""

    payer_ref: Optional[str] = Field(
        default=None,
        description="Processor customer reference; defaults to the job's requester",
    )


class AuthorizationOut(BaseModel):
    """Response after placing a manual-capture authorization."""

    model_config = ConfigDict(from_attributes=True)

    job_id: uuid.UUID
    payment_intent_id: str = Field(description="Processor PaymentIntent ID")
    client_secret: Optional[str] = Field(
        default=None,
        description="Client secret for client-side confirmation",
    )
    amount_cents: int


class ProviderAssignedRequest(BaseModel):
    """Request body for the provider-assignment capture trigger."""

    provider_id: uuid.UUID = Field(description="Provider that was assigned to the job")


class CaptureOut(BaseModel):
    """Response after capturing (or re-capturing) a job's payment."""

    model_config = ConfigDict(from_attributes=True)

    job_id: uuid.UUID
    payment_intent_id: str
    already_captured: bool = Field(
        description="True if the payment had been captured before this call",
    )
    payouts_held: int = Field(
        default=0,
        description="Number of pending payouts promoted to held",
    )


class ReleaseOut(BaseModel):
    """Response after releasing an uncaptured authorization."""

    job_id: uuid.UUID
    released: bool = Field(description="False if the authorization was already released")


# ---------------------------------------------------------------------------
# Payout schemas
# ---------------------------------------------------------------------------

class PayoutOut(BaseModel):
    """A single payout record."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    job_id: uuid.UUID
    provider_id: uuid.UUID
    gross_amount: int
    platform_fee: int
    net_amount: int
    status: str
    external_transfer_id: Optional[str] = None
    failure_reason: Optional[str] = None
    attempt_count: int = 0
    payment_captured_at: Optional[datetime] = None
    transfer_initiated_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class PayoutResultOut(BaseModel):
    """Per-provider outcome of a payout attempt."""

    model_config = ConfigDict(from_attributes=True)

    provider_id: uuid.UUID
    outcome: PayoutOutcome
    payout_id: Optional[uuid.UUID] = None
    status: Optional[PayoutStatus] = None
    net_amount: int = 0
    transfer_id: Optional[str] = None
    error_code: Optional[ErrorCode] = None
    message: Optional[str] = None


class ProcessPayoutsOut(BaseModel):
    """Response after processing a completed job's payouts."""

    job_id: uuid.UUID
    results: list[PayoutResultOut] = Field(default_factory=list)


class ProviderPayoutsOut(BaseModel):
    """A provider's payout history and running totals."""

    model_config = ConfigDict(from_attributes=True)

    provider_id: uuid.UUID
    payouts: list[PayoutOut] = Field(default_factory=list)
    total_paid_cents: int = 0
    pending_amount_cents: int = 0
    completed_count: int = 0
    pending_count: int = 0
    failed_count: int = 0
    platform_fee_percent: Decimal
    provider_percent: Decimal


# ---------------------------------------------------------------------------
# Cancellation schemas
# ---------------------------------------------------------------------------

class PayoutSplitOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    gross: int
    platform_fee: int
    net_amount: int


class CancellationBreakdownOut(BaseModel):
    """How a cancellation splits the paid price."""

    model_config = ConfigDict(from_attributes=True)

    policy: CancellationPolicy
    paid_price: int
    refund_amount: int
    provider_count: int
    per_provider: PayoutSplitOut
    provider_compensation: int = Field(description="Total net paid to providers")
    platform_fee_total: int
    platform_retention: int = Field(
        description="What the platform keeps; negative when it subsidises providers",
    )


class CompensationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    provider_id: uuid.UUID
    amount: int
    transfer_id: Optional[str] = None
    error_code: Optional[ErrorCode] = None
    message: Optional[str] = None


class CancellationOut(BaseModel):
    """Response after executing a cancellation."""

    model_config = ConfigDict(from_attributes=True)

    job_id: uuid.UUID
    breakdown: CancellationBreakdownOut
    authorization_released: bool = False
    captured: bool = False
    refund_id: Optional[str] = None
    refund_error: Optional[str] = Field(
        default=None,
        description="Set when the refund failed after the payment was captured",
    )
    compensations: list[CompensationOut] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Provider account schemas
# ---------------------------------------------------------------------------

class CreateProviderAccountRequest(BaseModel):
    """Request body for creating a provider's connected account."""

    provider_id: uuid.UUID
    email: Optional[str] = Field(default=None, description="Provider email address")


class OnboardingLinkRequest(BaseModel):
    """Request body for generating an onboarding link."""

    refresh_url: str = Field(description="URL to redirect to if the link expires")
    return_url: str = Field(description="URL to redirect to after onboarding")


class OnboardingLinkOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    account_id: str
    url: str = Field(description="Hosted onboarding URL")


class ProviderAccountOut(BaseModel):
    """Mirrored state of a provider's connected account."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    provider_id: uuid.UUID
    external_account_id: Optional[str] = None
    payouts_enabled: bool
    charges_enabled: bool
    details_submitted: bool
    pending_requirements: list[str] = Field(default_factory=list)
    account_status: str
    onboarding_complete: bool


# ---------------------------------------------------------------------------
# Webhook schemas
# ---------------------------------------------------------------------------

class WebhookResultOut(BaseModel):
    """Response after processing a webhook event."""

    event_type: str = Field(description="Processor event type")
    processed: bool = Field(description="Whether the event was applied")
    message: str = Field(description="Processing result message")
