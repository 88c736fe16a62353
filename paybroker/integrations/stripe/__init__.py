"""
Stripe Integration Module
=========================

Central export point for the Stripe integration.

Usage::

    from paybroker.integrations.stripe import (
        PaymentError,
        PaymentProcessor,
        StripeProcessor,
        verify_and_parse,
    )
"""

from .paymentService import (
    AuthorizationResult,
    CaptureResult,
    PaymentError,
    RefundResult,
    cancel_authorization,
    capture_payment,
    create_authorization,
    refund_payment,
)
from .payoutService import (
    AccountSnapshot,
    ConnectedAccountResult,
    TransferResult,
    TransferStatus,
    account_snapshot_from_stripe,
    create_account_link,
    create_connected_account,
    create_transfer,
    retrieve_account,
    retrieve_transfer,
)
from .processor import PaymentProcessor, StripeProcessor
from .webhookHandler import (
    AccountUpdated,
    TransferFailed,
    UnhandledEvent,
    WebhookEvent,
    clear_processed_events,
    is_event_processed,
    mark_event_processed,
    parse_event,
    verify_and_parse,
)

__all__ = [
    # Payment Service
    "PaymentError",
    "AuthorizationResult",
    "CaptureResult",
    "RefundResult",
    "create_authorization",
    "capture_payment",
    "cancel_authorization",
    "refund_payment",
    # Payout Service
    "AccountSnapshot",
    "ConnectedAccountResult",
    "TransferResult",
    "TransferStatus",
    "account_snapshot_from_stripe",
    "create_connected_account",
    "create_account_link",
    "retrieve_account",
    "create_transfer",
    "retrieve_transfer",
    # Processor seam
    "PaymentProcessor",
    "StripeProcessor",
    # Webhook Handler
    "AccountUpdated",
    "TransferFailed",
    "UnhandledEvent",
    "WebhookEvent",
    "parse_event",
    "verify_and_parse",
    "mark_event_processed",
    "is_event_processed",
    "clear_processed_events",
]
