"""
Stripe Webhook Handler
======================

Turns an inbound Stripe Connect webhook into a typed event:
- Signature verification using ``STRIPE_CONNECT_WEBHOOK_SECRET``
- Fail-closed behaviour when the secret is not configured
- Idempotency bookkeeping (processed event IDs kept in an in-memory LRU)

Event types mapped to typed events:
  - account.updated    -> AccountUpdated
  - transfer.failed    -> TransferFailed
  - transfer.reversed  -> TransferFailed

Every other event type becomes ``UnhandledEvent`` and is acknowledged
without being applied.  The reconciliation itself lives in
``paybroker.services.webhookReconciler``.
"""

from __future__ import annotations

import json
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass
from threading import Lock
from typing import Union

import stripe

from paybroker.core.config import Settings, settings
from paybroker.core.results import Err, ErrorCode, Ok, Result

from .payoutService import AccountSnapshot, _field, account_snapshot_from_stripe

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Idempotency store
# ---------------------------------------------------------------------------
# In-memory LRU set of processed event IDs. This only short-circuits
# redeliveries seen by this process; the reconciliation handlers are
# idempotent on their own for multi-instance deployments.

_MAX_PROCESSED_EVENTS = 10_000
_processed_events: OrderedDict[str, float] = OrderedDict()
_processed_lock = Lock()


def mark_event_processed(event_id: str) -> None:
    """Record that an event has been processed."""
    with _processed_lock:
        _processed_events[event_id] = time.time()
        while len(_processed_events) > _MAX_PROCESSED_EVENTS:
            _processed_events.popitem(last=False)


def is_event_processed(event_id: str) -> bool:
    """Check if an event has already been processed."""
    with _processed_lock:
        return event_id in _processed_events


def clear_processed_events() -> None:
    """Clear the processed events store. Useful for testing."""
    with _processed_lock:
        _processed_events.clear()


# ---------------------------------------------------------------------------
# Typed events
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class AccountUpdated:
    """Full snapshot of a connected account after a change."""
    event_id: str
    account: AccountSnapshot
    event_type: str = "account.updated"


@dataclass(frozen=True)
class TransferFailed:
    """A transfer to a connected account did not go through."""
    event_id: str
    transfer_id: str
    failure_message: str | None = None
    event_type: str = "transfer.failed"


@dataclass(frozen=True)
class UnhandledEvent:
    """Any event type this engine acknowledges without applying."""
    event_id: str
    event_type: str


WebhookEvent = Union[AccountUpdated, TransferFailed, UnhandledEvent]


def parse_event(event) -> WebhookEvent:
    """Map a verified Stripe event (or equivalent dict) to a typed event."""
    event_id = _field(event, "id") or ""
    event_type = _field(event, "type") or ""
    data_object = _field(_field(event, "data"), "object")

    object_id = _field(data_object, "id")

    # Without the object id there is no row to reconcile.
    if data_object is None or not object_id:
        return UnhandledEvent(event_id=event_id, event_type=event_type)

    if event_type == "account.updated":
        return AccountUpdated(
            event_id=event_id,
            account=account_snapshot_from_stripe(data_object),
        )

    if event_type in ("transfer.failed", "transfer.reversed"):
        message = _field(data_object, "failure_message")
        if not message and event_type == "transfer.reversed":
            message = "Transfer reversed"
        return TransferFailed(
            event_id=event_id,
            transfer_id=object_id,
            failure_message=message,
            event_type=event_type,
        )

    return UnhandledEvent(event_id=event_id, event_type=event_type)


# ---------------------------------------------------------------------------
# Verification
# ---------------------------------------------------------------------------

def verify_and_parse(
    payload: bytes,
    sig_header: str | None,
    config: Settings = settings,
) -> Result[WebhookEvent]:
    """Verify an inbound webhook and parse it into a typed event.

    With a signing secret configured the payload must carry a valid
    ``Stripe-Signature``.  Without one, unsigned payloads are only accepted
    when ``allow_unsigned_webhooks`` is set in a development or test
    environment; anywhere else the request is refused with
    ``WEBHOOK_SECRET_MISSING``.
    """
    secret = config.stripe_connect_webhook_secret

    if not secret:
        if not config.unsigned_webhooks_permitted:
            logger.error(
                "Webhook secret not configured (environment=%s); refusing event",
                config.environment,
            )
            return Err(
                ErrorCode.WEBHOOK_SECRET_MISSING,
                "Webhook secret not configured",
            )

        logger.warning("No webhook secret configured, skipping signature verification")
        try:
            raw = json.loads(payload)
        except ValueError as exc:
            logger.warning("Webhook payload parsing failed: %s", str(exc))
            return Err(ErrorCode.INVALID_PAYLOAD, "Invalid webhook payload")
        if not isinstance(raw, dict):
            return Err(ErrorCode.INVALID_PAYLOAD, "Invalid webhook payload")
        return Ok(parse_event(raw))

    if not sig_header:
        logger.warning("Webhook received without Stripe-Signature header")
        return Err(ErrorCode.INVALID_SIGNATURE, "Missing webhook signature")

    try:
        event = stripe.Webhook.construct_event(
            payload=payload,
            sig_header=sig_header,
            secret=secret,
        )
    except stripe.SignatureVerificationError as exc:
        logger.warning("Webhook signature verification failed: %s", str(exc))
        return Err(ErrorCode.INVALID_SIGNATURE, "Webhook signature verification failed")
    except ValueError as exc:
        logger.warning("Webhook payload parsing failed: %s", str(exc))
        return Err(ErrorCode.INVALID_PAYLOAD, "Invalid webhook payload")

    return Ok(parse_event(event))
