"""
Scheduled Capture Sweep -- Daily Job.

This module provides a daily job that:

1. Captures the authorization of every assigned job scheduled within the
   next ``capture_lead_days`` days, so funds are secured before the work
   starts even if the assignment trigger never ran.
2. Releases the authorization of every job still without a provider within
   ``release_unassigned_days`` days of its date, so the requester's funds
   are not held for work that will not happen.

Both sweeps go through ``capture_job_payment`` / ``release_authorization``
and are therefore safe to run repeatedly and concurrently with the
request path.

Usage with a simple cron runner::

    python -m paybroker.jobs.captureScheduler
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date

from paybroker.models import Job
from paybroker.services.captureController import capture_job_payment, release_authorization
from paybroker.services.context import EngineContext

logger = logging.getLogger(__name__)


@dataclass
class SweepResult:
    """Summary of one scheduled sweep."""
    captured: int = 0
    already_captured: int = 0
    released: int = 0
    skipped: int = 0
    errors: list[str] = field(default_factory=list)


def _days_until(job: Job, today: date) -> int | None:
    if job.scheduled_date is None:
        return None
    return (job.scheduled_date - today).days


def _is_due(job: Job, today: date, lead_days: int) -> bool:
    """Inside the lead window, or already past the scheduled date."""
    days = _days_until(job, today)
    return days is not None and days <= lead_days


# ---------------------------------------------------------------------------
# Sweeps
# ---------------------------------------------------------------------------

async def run_scheduled_captures(
    ctx: EngineContext,
    today: date | None = None,
    result: SweepResult | None = None,
) -> SweepResult:
    """Capture assigned jobs whose scheduled date is within the lead window or overdue."""
    today = today or ctx.today()
    result = result or SweepResult()

    for job in await ctx.jobs.list_awaiting_capture():
        if not job.provider_ids:
            continue
        if not _is_due(job, today, ctx.config.capture_lead_days):
            result.skipped += 1
            continue
        if _days_until(job, today) < 0:
            logger.warning("Job %s is past its scheduled date and still uncaptured", job.id)

        outcome = await capture_job_payment(ctx, job.id)
        if not outcome.ok:
            logger.error("Scheduled capture failed for job %s: %s", job.id, outcome.message)
            result.errors.append(f"{job.id}: {outcome.code.value}")
        elif outcome.value.already_captured:
            result.already_captured += 1
        else:
            result.captured += 1

    logger.info(
        "Scheduled capture sweep: captured=%d, already=%d, skipped=%d, errors=%d",
        result.captured,
        result.already_captured,
        result.skipped,
        len(result.errors),
    )
    return result


async def release_unassigned_authorizations(
    ctx: EngineContext,
    today: date | None = None,
    result: SweepResult | None = None,
) -> SweepResult:
    """Release authorizations of jobs that are close to their date with nobody assigned."""
    today = today or ctx.today()
    result = result or SweepResult()

    for job in await ctx.jobs.list_awaiting_capture():
        if job.provider_ids:
            continue
        if not _is_due(job, today, ctx.config.release_unassigned_days):
            result.skipped += 1
            continue

        outcome = await release_authorization(ctx, job.id)
        if not outcome.ok:
            logger.error(
                "Releasing authorization failed for job %s: %s", job.id, outcome.message
            )
            result.errors.append(f"{job.id}: {outcome.code.value}")
        elif outcome.value:
            logger.warning("Job %s has no provider; authorization released", job.id)
            result.released += 1

    return result


async def run_capture_sweep(ctx: EngineContext, today: date | None = None) -> SweepResult:
    """Run both sweeps and return the combined summary."""
    today = today or ctx.today()
    result = SweepResult()
    await run_scheduled_captures(ctx, today, result)
    await release_unassigned_authorizations(ctx, today, result)
    return result


# ---------------------------------------------------------------------------
# CLI entry point
# ---------------------------------------------------------------------------

async def _cli_main() -> None:
    """Entry point for running the capture sweep from the command line.

    Creates its own database session via the application session factory.
    """
    from paybroker.api.deps import async_session_factory, build_engine_context

    async with async_session_factory() as session:
        try:
            result = await run_capture_sweep(build_engine_context(session))
            await session.commit()
            print(f"Capture sweep completed: {result}")  # noqa: T201
        except Exception:
            await session.rollback()
            logger.exception("Capture sweep failed")
            raise
        finally:
            await session.close()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    asyncio.run(_cli_main())
