"""
Provider connected-account lifecycle.

Accounts are created only by an explicit onboarding request.  After that
the mirrored flags change only through ``apply_account_snapshot``, which
is called by the webhook reconciler and by an explicit status refresh.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass

from paybroker.core.results import Err, ErrorCode, Ok, Result
from paybroker.integrations.stripe.paymentService import PaymentError
from paybroker.integrations.stripe.payoutService import AccountSnapshot
from paybroker.models import ProviderAccount

from .accountStatusResolver import AccountFlags, is_onboarding_complete, resolve_account_status
from .context import EngineContext

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OnboardingLink:
    account_id: str
    url: str


async def apply_account_snapshot(
    ctx: EngineContext,
    account: ProviderAccount,
    snapshot: AccountSnapshot,
) -> ProviderAccount:
    """Overwrite the mirrored flags and recompute the derived status."""
    flags = AccountFlags.from_stripe_account(snapshot)
    status = resolve_account_status(flags)
    was_complete = account.onboarding_complete
    now_complete = is_onboarding_complete(flags)

    updated = await ctx.accounts.update_flags(
        account.id,
        payouts_enabled=flags.payouts_enabled,
        charges_enabled=flags.charges_enabled,
        details_submitted=flags.details_submitted,
        pending_requirements=flags.currently_due,
        account_status=status.value,
        onboarding_complete=now_complete,
    )

    logger.info(
        "Account %s (provider %s) status=%s, payouts=%s, charges=%s",
        snapshot.account_id,
        account.provider_id,
        status.value,
        flags.payouts_enabled,
        flags.charges_enabled,
    )
    if now_complete and not was_complete:
        logger.info("Account %s onboarding completed", snapshot.account_id)
    return updated


async def create_provider_account(
    ctx: EngineContext,
    provider_id: uuid.UUID,
    email: str | None = None,
) -> Result[ProviderAccount]:
    """Get or create the provider's account and its processor counterpart."""
    account = await ctx.accounts.get_or_create(provider_id)
    if account.external_account_id:
        return Ok(account)

    try:
        created = await ctx.processor.create_connected_account(str(provider_id), email=email)
    except PaymentError as exc:
        return Err(ErrorCode.ACCOUNT_CREATION_FAILED, exc.message)

    if not await ctx.accounts.set_external_account(provider_id, created.account_id):
        logger.warning(
            "Provider %s already linked to an account; processor account %s left unused",
            provider_id,
            created.account_id,
        )
    else:
        logger.info(
            "Provider %s linked to connected account %s", provider_id, created.account_id
        )

    return Ok(await ctx.accounts.get_by_provider(provider_id))


async def create_onboarding_link(
    ctx: EngineContext,
    provider_id: uuid.UUID,
    refresh_url: str,
    return_url: str,
) -> Result[OnboardingLink]:
    account = await ctx.accounts.get_by_provider(provider_id)
    if account is None or not account.external_account_id:
        return Err(ErrorCode.ACCOUNT_NOT_FOUND, "Provider has no connected account")

    try:
        url = await ctx.processor.create_account_link(
            account.external_account_id, refresh_url, return_url
        )
    except PaymentError as exc:
        return Err(ErrorCode.ACCOUNT_LINK_FAILED, exc.message)

    return Ok(OnboardingLink(account_id=account.external_account_id, url=url))


async def refresh_account_status(
    ctx: EngineContext,
    provider_id: uuid.UUID,
) -> Result[ProviderAccount]:
    """Poll the processor for the account's current flags and mirror them."""
    account = await ctx.accounts.get_by_provider(provider_id)
    if account is None or not account.external_account_id:
        return Err(ErrorCode.ACCOUNT_NOT_FOUND, "Provider has no connected account")

    try:
        snapshot = await ctx.processor.retrieve_account(account.external_account_id)
    except PaymentError as exc:
        return Err(ErrorCode.ACCOUNT_RETRIEVAL_FAILED, exc.message)

    return Ok(await apply_account_snapshot(ctx, account, snapshot))
