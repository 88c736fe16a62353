"""
Derives a provider account's onboarding status from raw processor flags.

Precedence, first match wins::

    payouts_enabled and charges_enabled  -> active
    details_submitted                    -> restricted
    currently_due non-empty              -> onboarding
    otherwise                            -> pending

``restricted`` outranks ``onboarding`` so that stale requirements left on
an account whose details were already submitted do not send the provider
back into onboarding.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from paybroker.integrations.stripe.payoutService import AccountSnapshot
from paybroker.models.provider_account import AccountStatus


@dataclass(frozen=True)
class AccountFlags:
    payouts_enabled: bool = False
    charges_enabled: bool = False
    details_submitted: bool = False
    currently_due: list[str] = field(default_factory=list)

    @classmethod
    def from_stripe_account(cls, snapshot: AccountSnapshot) -> "AccountFlags":
        return cls(
            payouts_enabled=snapshot.payouts_enabled,
            charges_enabled=snapshot.charges_enabled,
            details_submitted=snapshot.details_submitted,
            currently_due=list(snapshot.currently_due),
        )


def resolve_account_status(flags: AccountFlags) -> AccountStatus:
    if flags.payouts_enabled and flags.charges_enabled:
        return AccountStatus.ACTIVE
    if flags.details_submitted:
        return AccountStatus.RESTRICTED
    if flags.currently_due:
        return AccountStatus.ONBOARDING
    return AccountStatus.PENDING


def is_onboarding_complete(flags: AccountFlags) -> bool:
    return flags.payouts_enabled and flags.details_submitted
