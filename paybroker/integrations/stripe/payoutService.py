"""
Stripe Payout Service
=====================

Provider-facing operations via Stripe Connect:
- Connected account creation and onboarding links
- Account snapshot retrieval (the flags the status resolver consumes)
- Transfers from the platform balance to connected accounts
- Transfer status retrieval for reconciliation polling

All monetary amounts are in cents (integers).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

import stripe

from paybroker.core.config import settings

from .paymentService import _handle_stripe_error

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Response dataclasses
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ConnectedAccountResult:
    """Result of creating a Stripe Connect account."""
    account_id: str
    details_submitted: bool


@dataclass(frozen=True)
class AccountSnapshot:
    """Full snapshot of a connected account's capability flags."""
    account_id: str
    payouts_enabled: bool
    charges_enabled: bool
    details_submitted: bool
    currently_due: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class TransferResult:
    """Result of a transfer to a connected account."""
    id: str
    amount_cents: int
    destination: str


@dataclass(frozen=True)
class TransferStatus:
    """Observed state of an existing transfer."""
    id: str
    amount_cents: int
    reversed: bool
    settled: bool
    failure_message: str | None = None


# ---------------------------------------------------------------------------
# Snapshot parsing
# ---------------------------------------------------------------------------

def _field(obj, key: str, default=None):
    """Read ``key`` from a StripeObject or a plain dict payload."""
    if obj is None:
        return default
    if isinstance(obj, dict):
        return obj.get(key, default)
    return getattr(obj, key, default)


def account_snapshot_from_stripe(account) -> AccountSnapshot:
    """Build an AccountSnapshot from a Stripe Account object or event payload."""
    requirements = _field(account, "requirements")

    return AccountSnapshot(
        account_id=_field(account, "id"),
        payouts_enabled=bool(_field(account, "payouts_enabled", False)),
        charges_enabled=bool(_field(account, "charges_enabled", False)),
        details_submitted=bool(_field(account, "details_submitted", False)),
        currently_due=list(_field(requirements, "currently_due") or []),
    )


# ---------------------------------------------------------------------------
# Connected account operations
# ---------------------------------------------------------------------------

async def create_connected_account(
    provider_ref: str,
    email: str | None = None,
    country: str = "US",
) -> ConnectedAccountResult:
    """Create a Stripe Connect Express account for a provider.

    Args:
        provider_ref: The provider identifier, stored in account metadata.
        email: Provider email address, if known.
        country: Two-letter ISO country code.

    Raises:
        PaymentError: If the Stripe API call fails.
    """
    params: dict = {
        "type": "express",
        "country": country.upper(),
        "capabilities": {
            "card_payments": {"requested": True},
            "transfers": {"requested": True},
        },
        "metadata": {
            "provider_id": provider_ref,
            "platform": "paybroker",
        },
        "business_type": "individual",
    }
    if email:
        params["email"] = email

    try:
        account = stripe.Account.create(**params)
    except stripe.StripeError as exc:
        raise _handle_stripe_error(exc) from exc

    logger.info(
        "Connected account created: account_id=%s, provider_id=%s, country=%s",
        account.id,
        provider_ref,
        country,
    )

    return ConnectedAccountResult(
        account_id=account.id,
        details_submitted=bool(account.details_submitted),
    )


async def create_account_link(
    account_id: str,
    refresh_url: str,
    return_url: str,
) -> str:
    """Generate a Stripe onboarding link for a connected account.

    The link expires after a short time, so a fresh one is generated each
    time the provider needs to continue onboarding.

    Raises:
        PaymentError: If the API call fails.
    """
    try:
        link = stripe.AccountLink.create(
            account=account_id,
            refresh_url=refresh_url,
            return_url=return_url,
            type="account_onboarding",
        )
    except stripe.StripeError as exc:
        raise _handle_stripe_error(exc) from exc

    logger.info(
        "Account link created for account %s, expires at %s",
        account_id,
        link.expires_at,
    )

    return link.url


async def retrieve_account(account_id: str) -> AccountSnapshot:
    """Fetch the current capability flags of a connected account.

    Raises:
        PaymentError: If the retrieval fails.
    """
    try:
        account = stripe.Account.retrieve(account_id)
    except stripe.StripeError as exc:
        raise _handle_stripe_error(exc) from exc

    return account_snapshot_from_stripe(account)


# ---------------------------------------------------------------------------
# Transfer operations (platform -> connected account)
# ---------------------------------------------------------------------------

async def create_transfer(
    destination: str,
    amount_cents: int,
    metadata: dict[str, str],
    idempotency_key: str,
    currency: str | None = None,
) -> TransferResult:
    """Transfer funds from the platform balance to a connected account.

    ``idempotency_key`` is forwarded to Stripe so that a retried request for
    the same payout attempt can never move funds twice.

    Raises:
        PaymentError: If the transfer fails.
        ValueError: If amount_cents is non-positive.
    """
    if amount_cents <= 0:
        raise ValueError(f"Transfer amount must be positive, got {amount_cents}")

    currency = (currency or settings.currency).lower()

    try:
        transfer = stripe.Transfer.create(
            amount=amount_cents,
            currency=currency,
            destination=destination,
            metadata={**metadata, "platform": "paybroker"},
            idempotency_key=idempotency_key,
        )
    except stripe.StripeError as exc:
        raise _handle_stripe_error(exc) from exc

    logger.info(
        "Transfer created: id=%s, account=%s, amount=%d %s, key=%s",
        transfer.id,
        destination,
        amount_cents,
        currency,
        idempotency_key,
    )

    return TransferResult(
        id=transfer.id,
        amount_cents=transfer.amount,
        destination=destination,
    )


async def retrieve_transfer(transfer_id: str) -> TransferStatus:
    """Fetch the current state of a transfer.

    A transfer counts as settled once Stripe has created the matching
    payment on the destination account and it has not been reversed.

    Raises:
        PaymentError: If the retrieval fails.
    """
    try:
        transfer = stripe.Transfer.retrieve(transfer_id)
    except stripe.StripeError as exc:
        raise _handle_stripe_error(exc) from exc

    reversed_ = bool(getattr(transfer, "reversed", False))
    destination_payment = getattr(transfer, "destination_payment", None)

    return TransferStatus(
        id=transfer.id,
        amount_cents=transfer.amount,
        reversed=reversed_,
        settled=bool(destination_payment) and not reversed_,
        failure_message="Transfer reversed" if reversed_ else None,
    )
