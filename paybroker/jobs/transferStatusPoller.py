"""
Transfer Status Poller -- Periodic Job.

Settles payouts left in ``processing``.  Webhooks only report transfer
failures, so this job is what moves a payout to ``completed``:

1. A payout with a transfer id is checked against the processor.  A
   reversed transfer fails the payout, a settled one completes it, and
   anything else is left for the next run.
2. A payout without a transfer id had its request end ambiguously.  The
   same attempt is re-sent with the same idempotency key.

Intended to run every few minutes.

Usage with a simple cron runner::

    python -m paybroker.jobs.transferStatusPoller
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

from paybroker.integrations.stripe.paymentService import PaymentError
from paybroker.models import Payout
from paybroker.services.context import EngineContext
from paybroker.services.payoutLedger import (
    PayoutOutcome,
    mark_payout_completed,
    mark_payout_failed,
    resume_pending_transfer,
)

logger = logging.getLogger(__name__)


@dataclass
class PollResult:
    """Summary of one poll over ``processing`` payouts."""
    checked: int = 0
    completed: int = 0
    failed: int = 0
    resumed: int = 0
    unchanged: int = 0
    errors: list[str] = field(default_factory=list)


async def _check_transfer(ctx: EngineContext, payout: Payout, result: PollResult) -> None:
    try:
        transfer = await ctx.processor.retrieve_transfer(payout.external_transfer_id)
    except PaymentError as exc:
        logger.warning(
            "Could not retrieve transfer %s for payout %s: %s",
            payout.external_transfer_id,
            payout.id,
            exc.message,
        )
        result.errors.append(f"{payout.id}: {exc.message}")
        return

    if transfer.reversed:
        outcome = await mark_payout_failed(
            ctx, payout.id, transfer.failure_message or "Transfer reversed"
        )
        if outcome.ok:
            result.failed += 1
        else:
            result.unchanged += 1
    elif transfer.settled:
        outcome = await mark_payout_completed(ctx, payout.id)
        if outcome.ok:
            result.completed += 1
        else:
            result.unchanged += 1
    else:
        result.unchanged += 1


async def _resume(ctx: EngineContext, payout: Payout, result: PollResult) -> None:
    outcome = await resume_pending_transfer(ctx, payout.id)
    if not outcome.ok:
        logger.warning("Could not resume payout %s: %s", payout.id, outcome.message)
        result.errors.append(f"{payout.id}: {outcome.code.value}")
        return

    payout_result = outcome.value
    if payout_result.outcome == PayoutOutcome.TRANSFER_REQUESTED:
        result.resumed += 1
    elif payout_result.outcome == PayoutOutcome.TRANSFER_FAILED:
        result.failed += 1
    else:
        result.unchanged += 1


async def poll_processing_payouts(ctx: EngineContext) -> PollResult:
    result = PollResult()

    for payout in await ctx.payouts.list_processing():
        result.checked += 1
        if payout.external_transfer_id:
            await _check_transfer(ctx, payout, result)
        else:
            await _resume(ctx, payout, result)

    logger.info(
        "Transfer poll: checked=%d, completed=%d, failed=%d, resumed=%d, errors=%d",
        result.checked,
        result.completed,
        result.failed,
        result.resumed,
        len(result.errors),
    )
    return result


# ---------------------------------------------------------------------------
# CLI entry point
# ---------------------------------------------------------------------------

async def _cli_main() -> None:
    from paybroker.api.deps import async_session_factory, build_engine_context

    async with async_session_factory() as session:
        try:
            result = await poll_processing_payouts(build_engine_context(session))
            await session.commit()
            print(f"Transfer poll completed: {result}")  # noqa: T201
        except Exception:
            await session.rollback()
            logger.exception("Transfer poll failed")
            raise
        finally:
            await session.close()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    asyncio.run(_cli_main())
