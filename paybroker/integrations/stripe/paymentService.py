"""
Stripe Payment Service
======================

Requester-side payment operations through Stripe:
- Manual-capture PaymentIntent creation (authorization at booking)
- Capture of an existing authorization
- Cancellation of an uncaptured authorization
- Refund processing

All monetary amounts are in cents (integers) to avoid floating-point issues.
Stripe credentials come from ``paybroker.core.config.settings``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import stripe

from paybroker.core.config import settings

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Stripe SDK configuration
# ---------------------------------------------------------------------------

stripe.api_key = settings.stripe_secret_key
stripe.api_version = settings.stripe_api_version


# ---------------------------------------------------------------------------
# Custom exception
# ---------------------------------------------------------------------------

class PaymentError(Exception):
    """Raised when a Stripe operation fails.

    Attributes:
        message: Human-readable error description.
        stripe_error_code: The Stripe error code, if available.
        stripe_error_type: The Stripe error type, if available.
        decline_code: The decline code from the card issuer, if available.
        ambiguous: True when the request may or may not have taken effect
            at Stripe (network failure, timeout, 5xx). Callers must not
            assume either outcome.
    """

    def __init__(
        self,
        message: str,
        stripe_error_code: str | None = None,
        stripe_error_type: str | None = None,
        decline_code: str | None = None,
        ambiguous: bool = False,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.stripe_error_code = stripe_error_code
        self.stripe_error_type = stripe_error_type
        self.decline_code = decline_code
        self.ambiguous = ambiguous

    def __repr__(self) -> str:
        return (
            f"PaymentError(message={self.message!r}, "
            f"code={self.stripe_error_code!r}, "
            f"type={self.stripe_error_type!r}, "
            f"ambiguous={self.ambiguous!r})"
        )


# ---------------------------------------------------------------------------
# Response dataclasses
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class AuthorizationResult:
    """Result of creating a manual-capture PaymentIntent."""
    id: str
    client_secret: str | None
    status: str
    amount_cents: int


@dataclass(frozen=True)
class CaptureResult:
    """Result of capturing a PaymentIntent."""
    id: str
    status: str
    amount_captured_cents: int


@dataclass(frozen=True)
class RefundResult:
    """Result of a Stripe refund operation."""
    id: str
    status: str
    amount_cents: int


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _is_ambiguous(exc: stripe.StripeError) -> bool:
    if isinstance(exc, stripe.APIConnectionError):
        return True
    http_status = getattr(exc, "http_status", None)
    return isinstance(exc, stripe.APIError) or (
        http_status is not None and http_status >= 500
    )


def _handle_stripe_error(exc: stripe.StripeError) -> PaymentError:
    """Convert a Stripe SDK exception into a PaymentError."""
    error_body = getattr(exc, "error", None)

    code = getattr(error_body, "code", None) if error_body else None
    error_type = getattr(error_body, "type", None) if error_body else None
    decline_code = getattr(error_body, "decline_code", None) if error_body else None
    ambiguous = _is_ambiguous(exc)

    logger.error(
        "Stripe API error: %s (code=%s, type=%s, decline_code=%s, ambiguous=%s)",
        str(exc),
        code,
        error_type,
        decline_code,
        ambiguous,
    )

    return PaymentError(
        message=str(exc) or exc.__class__.__name__,
        stripe_error_code=code,
        stripe_error_type=error_type,
        decline_code=decline_code,
        ambiguous=ambiguous,
    )


# ---------------------------------------------------------------------------
# Authorization / capture
# ---------------------------------------------------------------------------

async def create_authorization(
    amount_cents: int,
    payer_ref: str | None = None,
    metadata: dict[str, str] | None = None,
    currency: str | None = None,
) -> AuthorizationResult:
    """Reserve funds on the payer's instrument without moving them.

    Args:
        amount_cents: Amount to authorize in cents.
        payer_ref: Optional Stripe customer ID.
        metadata: Extra metadata stored on the PaymentIntent (job id etc.).
        currency: Three-letter ISO currency code, defaults to the configured one.

    Raises:
        PaymentError: If the Stripe API call fails.
        ValueError: If amount_cents is non-positive.
    """
    if amount_cents <= 0:
        raise ValueError(f"Authorization amount must be positive, got {amount_cents}")

    currency = (currency or settings.currency).lower()
    params: dict = {
        "amount": amount_cents,
        "currency": currency,
        "capture_method": "manual",
        "metadata": {**(metadata or {}), "platform": "paybroker"},
        "automatic_payment_methods": {"enabled": True},
    }
    if payer_ref:
        params["customer"] = payer_ref

    try:
        intent = stripe.PaymentIntent.create(**params)
    except stripe.StripeError as exc:
        raise _handle_stripe_error(exc) from exc

    logger.info(
        "Authorization created: id=%s, amount=%d %s, customer=%s",
        intent.id,
        amount_cents,
        currency,
        payer_ref,
    )

    return AuthorizationResult(
        id=intent.id,
        client_secret=getattr(intent, "client_secret", None),
        status=intent.status,
        amount_cents=intent.amount,
    )


async def capture_payment(
    payment_intent_id: str,
    amount_cents: int | None = None,
) -> CaptureResult:
    """Capture a previously authorized PaymentIntent.

    Args:
        payment_intent_id: The Stripe PaymentIntent ID.
        amount_cents: Partial capture amount; ``None`` captures the full
            authorization.

    Raises:
        PaymentError: If the capture fails.
    """
    params: dict = {}
    if amount_cents is not None:
        params["amount_to_capture"] = amount_cents

    try:
        intent = stripe.PaymentIntent.capture(payment_intent_id, **params)
    except stripe.StripeError as exc:
        raise _handle_stripe_error(exc) from exc

    logger.info(
        "PaymentIntent captured: id=%s, amount=%s, status=%s",
        intent.id,
        intent.amount_received,
        intent.status,
    )

    return CaptureResult(
        id=intent.id,
        status=intent.status,
        amount_captured_cents=intent.amount_received,
    )


async def cancel_authorization(
    payment_intent_id: str,
    reason: str = "requested_by_customer",
) -> bool:
    """Release an uncaptured authorization.

    Returns:
        True if Stripe reports the PaymentIntent as canceled.

    Raises:
        PaymentError: If the cancellation fails (e.g., already captured).
    """
    valid_reasons = {"duplicate", "fraudulent", "requested_by_customer", "abandoned"}
    if reason not in valid_reasons:
        reason = "requested_by_customer"

    try:
        intent = stripe.PaymentIntent.cancel(
            payment_intent_id,
            cancellation_reason=reason,
        )
    except stripe.StripeError as exc:
        raise _handle_stripe_error(exc) from exc

    logger.info("PaymentIntent cancelled: id=%s, reason=%s", intent.id, reason)

    return intent.status == "canceled"


async def refund_payment(
    payment_intent_id: str,
    amount_cents: int | None = None,
    reason: str = "",
) -> RefundResult:
    """Refund a captured PaymentIntent (full or partial).

    Raises:
        PaymentError: If the refund fails.
        ValueError: If amount_cents is negative.
    """
    if amount_cents is not None and amount_cents < 0:
        raise ValueError(f"Refund amount cannot be negative, got {amount_cents}")

    params: dict = {
        "payment_intent": payment_intent_id,
        "metadata": {
            "reason": reason[:500] if reason else "",
            "platform": "paybroker",
        },
    }
    if amount_cents is not None and amount_cents > 0:
        params["amount"] = amount_cents

    try:
        refund = stripe.Refund.create(**params)
    except stripe.StripeError as exc:
        raise _handle_stripe_error(exc) from exc

    logger.info(
        "Refund created: id=%s, payment_intent=%s, amount=%d, status=%s",
        refund.id,
        payment_intent_id,
        refund.amount,
        refund.status,
    )

    return RefundResult(
        id=refund.id,
        status=refund.status,
        amount_cents=refund.amount,
    )
