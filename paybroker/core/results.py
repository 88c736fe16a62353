"""
Tagged operation results.

Every stateful operation in the engine returns either ``Ok(value)`` or
``Err(code, message)``.  Callers branch on the type (or ``result.ok``),
never on the presence of an optional field.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Generic, TypeVar, Union

T = TypeVar("T")


class ErrorCode(str, enum.Enum):
    # Preconditions
    JOB_NOT_FOUND = "JOB_NOT_FOUND"
    JOB_NOT_COMPLETE = "JOB_NOT_COMPLETE"
    PAYMENT_NOT_CAPTURED = "PAYMENT_NOT_CAPTURED"
    NO_PROVIDERS_ASSIGNED = "NO_PROVIDERS_ASSIGNED"
    PROVIDER_NOT_ASSIGNED = "PROVIDER_NOT_ASSIGNED"
    NO_PAYMENT_INTENT = "NO_PAYMENT_INTENT"
    ALREADY_AUTHORIZED = "ALREADY_AUTHORIZED"
    JOB_ALREADY_CANCELLED = "JOB_ALREADY_CANCELLED"
    JOB_ALREADY_COMPLETED = "JOB_ALREADY_COMPLETED"

    # Per-provider eligibility
    NO_CONNECT_ACCOUNT = "NO_CONNECT_ACCOUNT"
    ONBOARDING_INCOMPLETE = "ONBOARDING_INCOMPLETE"

    # Processor failures
    AUTHORIZATION_FAILED = "AUTHORIZATION_FAILED"
    CAPTURE_FAILED = "CAPTURE_FAILED"
    TRANSFER_FAILED = "TRANSFER_FAILED"
    TRANSFER_PENDING = "TRANSFER_PENDING"
    REFUND_FAILED = "REFUND_FAILED"
    ACCOUNT_CREATION_FAILED = "ACCOUNT_CREATION_FAILED"
    ACCOUNT_RETRIEVAL_FAILED = "ACCOUNT_RETRIEVAL_FAILED"
    ACCOUNT_LINK_FAILED = "ACCOUNT_LINK_FAILED"

    # Payout state machine
    PAYOUT_NOT_FOUND = "PAYOUT_NOT_FOUND"
    INVALID_TRANSITION = "INVALID_TRANSITION"
    RETRY_LIMIT_REACHED = "RETRY_LIMIT_REACHED"

    # Accounts
    ACCOUNT_NOT_FOUND = "ACCOUNT_NOT_FOUND"

    # Webhooks / configuration
    WEBHOOK_SECRET_MISSING = "WEBHOOK_SECRET_MISSING"
    INVALID_SIGNATURE = "INVALID_SIGNATURE"
    INVALID_PAYLOAD = "INVALID_PAYLOAD"


@dataclass(frozen=True)
class Ok(Generic[T]):
    """Successful outcome carrying a value."""
    value: T

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Err:
    """Failed outcome with a named code and a human-readable message."""
    code: ErrorCode
    message: str

    @property
    def ok(self) -> bool:
        return False


Result = Union[Ok[T], Err]
