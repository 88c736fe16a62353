"""
Payout Split Calculator
=======================

Pure functions that divide a gross amount between the platform and a
provider.  The platform fee is ``round_half_up(gross * fee_percent)`` and the
provider's net is always the remainder, so ``fee + net == gross`` holds for
every non-negative input.

When several providers share a job the payout base price is divided per
share with the same rounding (``round(base / n)``) and each share is split
independently.  For totals that do not divide evenly the shares can differ
from the base by a cent in aggregate; that drift is kept as-is.

The fee and cancellation percentages are bundled into ``FeeSchedule`` so
this module and ``cancellationPolicy`` always read the same values.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP

from paybroker.core.config import Settings


# ---------------------------------------------------------------------------
# Fee schedule
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class FeeSchedule:
    """All percentages used by the split and cancellation calculators."""
    platform_fee_percent: Decimal = Decimal("0.10")
    standard_refund_percent: Decimal = Decimal("0.50")
    incentive_refund_percent: Decimal = Decimal("0.10")
    incentive_provider_percent: Decimal = Decimal("0.40")

    @classmethod
    def from_settings(cls, config: Settings) -> "FeeSchedule":
        return cls(
            platform_fee_percent=Decimal(config.platform_fee_percent),
            standard_refund_percent=Decimal(config.standard_refund_percent),
            incentive_refund_percent=Decimal(config.incentive_refund_percent),
            incentive_provider_percent=Decimal(config.incentive_provider_percent),
        )


DEFAULT_SCHEDULE = FeeSchedule()


# ---------------------------------------------------------------------------
# Result dataclass
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PayoutSplit:
    """Gross amount with its platform/provider division, all in cents."""
    gross: int
    platform_fee: int
    net_amount: int


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def round_half_up(value: Decimal) -> int:
    """Round to the nearest whole cent, halves away from zero."""
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def percent_of(amount: int, percent: Decimal) -> int:
    return round_half_up(Decimal(amount) * percent)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def split_payout(gross: int, schedule: FeeSchedule = DEFAULT_SCHEDULE) -> PayoutSplit:
    """Split ``gross`` cents into platform fee and provider net."""
    if gross == 0:
        return PayoutSplit(gross=0, platform_fee=0, net_amount=0)

    platform_fee = percent_of(gross, schedule.platform_fee_percent)
    return PayoutSplit(
        gross=gross,
        platform_fee=platform_fee,
        net_amount=gross - platform_fee,
    )


def divide_evenly(total: int, count: int) -> int:
    """Per-share amount of ``total`` across ``count`` shares, rounded half-up.

    Raises:
        ValueError: If count is not positive.
    """
    if count <= 0:
        raise ValueError(f"Share count must be positive, got {count}")
    return round_half_up(Decimal(total) / Decimal(count))


def payout_base_price(
    price: int,
    original_price: int | None,
    discount_applied: bool,
) -> int:
    """Amount the providers' payouts are computed from.

    Discounted bookings pay providers on the pre-discount price so the
    promotion is funded by the platform.
    """
    if discount_applied and original_price is not None:
        return original_price
    return price


def per_provider_split(
    price: int,
    original_price: int | None,
    discount_applied: bool,
    provider_count: int,
    schedule: FeeSchedule = DEFAULT_SCHEDULE,
) -> PayoutSplit:
    """Split of one provider's share of a completed job."""
    base = payout_base_price(price, original_price, discount_applied)
    return split_payout(divide_evenly(base, provider_count), schedule)
