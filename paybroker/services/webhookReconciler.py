"""
Webhook Reconciler
==================

Applies verified processor events to provider accounts and payouts.

Events may arrive late, out of order, or more than once, so every handler
is idempotent on its own:

- ``account.updated`` carries a full snapshot.  Re-applying it just
  rewrites the same flags (last applied wins).  Events for accounts this
  engine did not create are logged and ignored.
- ``transfer.failed`` moves a ``processing`` payout to ``failed``.  A payout
  that is already ``failed`` or ``completed`` is left alone, so a
  redelivered failure can never undo a later successful retry.

References to unknown accounts or transfers are acknowledged, never
surfaced as errors: the only meaningful answer to a webhook is a 2xx that
stops redelivery.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from paybroker.core.config import Settings
from paybroker.core.results import Ok, Result
from paybroker.integrations.stripe.webhookHandler import (
    AccountUpdated,
    TransferFailed,
    UnhandledEvent,
    WebhookEvent,
    is_event_processed,
    mark_event_processed,
    verify_and_parse,
)
from paybroker.models import PayoutStatus

from .context import EngineContext
from .payoutLedger import mark_payout_failed
from .providerAccountService import apply_account_snapshot

logger = logging.getLogger(__name__)

DEFAULT_TRANSFER_FAILURE_REASON = "Transfer failed"


@dataclass(frozen=True)
class WebhookResult:
    """Result of processing a webhook event."""
    event_type: str
    processed: bool
    message: str


# ---------------------------------------------------------------------------
# Event handlers
# ---------------------------------------------------------------------------

async def apply_account_updated(ctx: EngineContext, event: AccountUpdated) -> WebhookResult:
    snapshot = event.account
    account = await ctx.accounts.get_by_external_id(snapshot.account_id)
    if account is None:
        logger.warning("Received update for unknown account: %s", snapshot.account_id)
        return WebhookResult(
            event_type=event.event_type,
            processed=False,
            message=f"Account {snapshot.account_id} not found; ignored",
        )

    updated = await apply_account_snapshot(ctx, account, snapshot)
    return WebhookResult(
        event_type=event.event_type,
        processed=True,
        message=f"Account {snapshot.account_id} is now {updated.account_status}",
    )


async def apply_transfer_failed(ctx: EngineContext, event: TransferFailed) -> WebhookResult:
    payout = await ctx.payouts.get_by_transfer_id(event.transfer_id) if event.transfer_id else None
    if payout is None:
        logger.warning("Received failure for unknown transfer: %s", event.transfer_id)
        return WebhookResult(
            event_type=event.event_type,
            processed=False,
            message=f"Transfer {event.transfer_id} not found; ignored",
        )

    if payout.payout_status != PayoutStatus.PROCESSING:
        logger.info(
            "Transfer %s failure ignored; payout %s already %s",
            event.transfer_id,
            payout.id,
            payout.status,
        )
        return WebhookResult(
            event_type=event.event_type,
            processed=False,
            message=f"Payout {payout.id} already {payout.status}",
        )

    reason = event.failure_message or DEFAULT_TRANSFER_FAILURE_REASON
    result = await mark_payout_failed(ctx, payout.id, reason)
    if not result.ok:
        # Lost a race with another reconciliation path.
        return WebhookResult(
            event_type=event.event_type,
            processed=False,
            message=result.message,
        )

    return WebhookResult(
        event_type=event.event_type,
        processed=True,
        message=f"Payout {payout.id} marked failed: {reason}",
    )


async def _acknowledge(ctx: EngineContext, event: UnhandledEvent) -> WebhookResult:
    logger.info("Webhook event type not handled: id=%s, type=%s", event.event_id, event.event_type)
    return WebhookResult(
        event_type=event.event_type,
        processed=False,
        message=f"Event type '{event.event_type}' acknowledged but not handled",
    )


# ---------------------------------------------------------------------------
# Handler dispatch table
# ---------------------------------------------------------------------------

_EVENT_HANDLERS = {
    AccountUpdated: apply_account_updated,
    TransferFailed: apply_transfer_failed,
    UnhandledEvent: _acknowledge,
}


async def reconcile_event(ctx: EngineContext, event: WebhookEvent) -> WebhookResult:
    handler = _EVENT_HANDLERS[type(event)]
    return await handler(ctx, event)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

async def handle_webhook(
    ctx: EngineContext,
    payload: bytes,
    sig_header: str | None,
    config: Settings | None = None,
) -> Result[WebhookResult]:
    """Verify, deduplicate and apply an inbound webhook.

    Verification failures come back as ``Err``.  An exception raised while
    applying the event propagates and the event is not marked processed,
    so the processor's redelivery gets another chance.
    """
    parsed = verify_and_parse(payload, sig_header, config or ctx.config)
    if not parsed.ok:
        return parsed

    event = parsed.value
    if event.event_id and is_event_processed(event.event_id):
        logger.info(
            "Webhook event already processed, skipping: id=%s, type=%s",
            event.event_id,
            event.event_type,
        )
        return Ok(
            WebhookResult(
                event_type=event.event_type,
                processed=False,
                message=f"Event {event.event_id} already processed (idempotent skip)",
            )
        )

    result = await reconcile_event(ctx, event)
    if event.event_id:
        mark_event_processed(event.event_id)

    logger.info(
        "Webhook event handled: id=%s, type=%s, processed=%s",
        event.event_id,
        event.event_type,
        result.processed,
    )
    return Ok(result)
