"""
Payment processor seam.

``PaymentProcessor`` is the contract the engine needs from an external
processor; every implementation raises ``PaymentError`` on failure.
``StripeProcessor`` binds it to the Stripe service functions in this
package.  Services receive a processor through ``EngineContext`` so tests
can substitute an in-memory fake.
"""

from __future__ import annotations

from typing import Protocol

from .paymentService import (
    AuthorizationResult,
    CaptureResult,
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
    create_account_link,
    create_connected_account,
    create_transfer,
    retrieve_account,
    retrieve_transfer,
)


class PaymentProcessor(Protocol):
    async def create_authorization(
        self,
        amount: int,
        payer_ref: str | None = None,
        metadata: dict[str, str] | None = None,
    ) -> AuthorizationResult: ...

    async def capture(
        self, payment_id: str, amount: int | None = None
    ) -> CaptureResult: ...

    async def cancel_authorization(self, payment_id: str) -> bool: ...

    async def refund(
        self, payment_id: str, amount: int, reason: str = ""
    ) -> RefundResult: ...

    async def create_transfer(
        self,
        destination: str,
        amount: int,
        metadata: dict[str, str],
        idempotency_key: str,
    ) -> TransferResult: ...

    async def retrieve_transfer(self, transfer_id: str) -> TransferStatus: ...

    async def create_connected_account(
        self, provider_ref: str, email: str | None = None
    ) -> ConnectedAccountResult: ...

    async def create_account_link(
        self, account_id: str, refresh_url: str, return_url: str
    ) -> str: ...

    async def retrieve_account(self, account_id: str) -> AccountSnapshot: ...


class StripeProcessor:
    """``PaymentProcessor`` backed by the Stripe API."""

    async def create_authorization(
        self,
        amount: int,
        payer_ref: str | None = None,
        metadata: dict[str, str] | None = None,
    ) -> AuthorizationResult:
        return await create_authorization(amount, payer_ref=payer_ref, metadata=metadata)

    async def capture(self, payment_id: str, amount: int | None = None) -> CaptureResult:
        return await capture_payment(payment_id, amount_cents=amount)

    async def cancel_authorization(self, payment_id: str) -> bool:
        return await cancel_authorization(payment_id)

    async def refund(self, payment_id: str, amount: int, reason: str = "") -> RefundResult:
        return await refund_payment(payment_id, amount_cents=amount, reason=reason)

    async def create_transfer(
        self,
        destination: str,
        amount: int,
        metadata: dict[str, str],
        idempotency_key: str,
    ) -> TransferResult:
        return await create_transfer(destination, amount, metadata, idempotency_key)

    async def retrieve_transfer(self, transfer_id: str) -> TransferStatus:
        return await retrieve_transfer(transfer_id)

    async def create_connected_account(
        self, provider_ref: str, email: str | None = None
    ) -> ConnectedAccountResult:
        return await create_connected_account(provider_ref, email=email)

    async def create_account_link(
        self, account_id: str, refresh_url: str, return_url: str
    ) -> str:
        return await create_account_link(account_id, refresh_url, return_url)

    async def retrieve_account(self, account_id: str) -> AccountSnapshot:
        return await retrieve_account(account_id)
