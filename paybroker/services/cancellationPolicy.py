"""
Cancellation Policy Engine
==========================

Pure computation of how a cancelled job's payment is divided between the
requester (refund), the assigned providers (compensation) and the platform.

Policies::

    full_refund   outside the penalty window, or nobody assigned
                  refund = paid, compensation = 0

    standard      discount_applied = False
                  refund       = round(paid * standard_refund_percent)
                  compensation = round(paid * (1 - standard_refund_percent)),
                                 split per provider through split_payout

    incentive     discount_applied = True
                  refund       = round(paid * incentive_refund_percent)
                  compensation = round(original * incentive_provider_percent),
                                 no platform fee (falls back to ``paid`` when
                                 the original price is unknown)

Platform retention is ``paid - refund - provider_net_total``.  On deep
discounts under the incentive policy it is negative, and it is reported
that way.

Both the cancellation preview and the cancellation itself go through
``breakdown_for_job`` so they can never disagree.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from .splitCalculator import (
    DEFAULT_SCHEDULE,
    FeeSchedule,
    PayoutSplit,
    divide_evenly,
    percent_of,
    split_payout,
)


class CancellationPolicy(str, enum.Enum):
    FULL_REFUND = "full_refund"
    STANDARD = "standard"
    INCENTIVE = "incentive"


@dataclass(frozen=True)
class CancellationBreakdown:
    """Money movement for one cancellation, all amounts in cents."""
    policy: CancellationPolicy
    paid_price: int
    refund_amount: int
    provider_count: int
    per_provider: PayoutSplit
    provider_compensation: int
    platform_fee_total: int
    platform_retention: int

    @property
    def provider_gross_total(self) -> int:
        return self.per_provider.gross * self.provider_count


_NO_SPLIT = PayoutSplit(gross=0, platform_fee=0, net_amount=0)


def _full_refund(paid_price: int, provider_count: int) -> CancellationBreakdown:
    return CancellationBreakdown(
        policy=CancellationPolicy.FULL_REFUND,
        paid_price=paid_price,
        refund_amount=paid_price,
        provider_count=provider_count,
        per_provider=_NO_SPLIT,
        provider_compensation=0,
        platform_fee_total=0,
        platform_retention=0,
    )


def compute_cancellation(
    paid_price: int,
    original_price: int | None,
    discount_applied: bool,
    within_penalty_window: bool,
    provider_count: int,
    schedule: FeeSchedule = DEFAULT_SCHEDULE,
) -> CancellationBreakdown:
    """Compute refund and compensation for a cancellation."""
    if not within_penalty_window or provider_count <= 0:
        return _full_refund(paid_price, max(provider_count, 0))

    if discount_applied:
        policy = CancellationPolicy.INCENTIVE
        refund = percent_of(paid_price, schedule.incentive_refund_percent)
        compensation_base = original_price if original_price is not None else paid_price
        pool = percent_of(compensation_base, schedule.incentive_provider_percent)
        share = divide_evenly(pool, provider_count)
        per_provider = PayoutSplit(gross=share, platform_fee=0, net_amount=share)
    else:
        policy = CancellationPolicy.STANDARD
        refund = percent_of(paid_price, schedule.standard_refund_percent)
        pool = percent_of(paid_price, Decimal(1) - schedule.standard_refund_percent)
        per_provider = split_payout(divide_evenly(pool, provider_count), schedule)

    provider_net_total = per_provider.net_amount * provider_count
    return CancellationBreakdown(
        policy=policy,
        paid_price=paid_price,
        refund_amount=refund,
        provider_count=provider_count,
        per_provider=per_provider,
        provider_compensation=provider_net_total,
        platform_fee_total=per_provider.platform_fee * provider_count,
        platform_retention=paid_price - refund - provider_net_total,
    )


def is_within_penalty_window(
    scheduled_date: date | None,
    today: date,
    window_days: int,
) -> bool:
    """True when the job is between ``0`` and ``window_days`` days away."""
    if scheduled_date is None:
        return False
    days_until = (scheduled_date - today).days
    return 0 <= days_until <= window_days


def breakdown_for_job(
    job,
    today: date,
    schedule: FeeSchedule = DEFAULT_SCHEDULE,
    window_days: int = 3,
) -> CancellationBreakdown:
    """Cancellation breakdown for a ``Job`` as of ``today``."""
    provider_count = len(job.provider_ids)
    within = provider_count > 0 and is_within_penalty_window(
        job.scheduled_date, today, window_days
    )
    return compute_cancellation(
        paid_price=job.price_cents,
        original_price=job.original_price_cents,
        discount_applied=job.discount_applied,
        within_penalty_window=within,
        provider_count=provider_count,
        schedule=schedule,
    )
