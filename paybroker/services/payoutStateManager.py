"""
Payout State Manager
====================

Finite state machine governing payout status transitions. Every status
change MUST go through ``validate_transition`` before being persisted.

State machine overview::

    pending --> held --> processing --> completed
                          |  ^
                          v  |
                         failed

``pending`` and ``held`` are reservations made before the job is payable.
``processing`` starts when a transfer request is sent, and a payout never
leaves it without the processor's outcome being known (response, webhook
or status poll).  ``failed`` may re-enter ``processing`` for a bounded
number of retries.  ``completed`` is terminal.
"""

from __future__ import annotations

from dataclasses import dataclass

from paybroker.models.payout import PayoutStatus


# ---------------------------------------------------------------------------
# Transition guard result
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TransitionResult:
    """Result of a transition validation attempt."""
    allowed: bool
    reason: str | None = None


# ---------------------------------------------------------------------------
# Transition definitions
# ---------------------------------------------------------------------------

VALID_TRANSITIONS: dict[PayoutStatus, set[PayoutStatus]] = {
    PayoutStatus.PENDING: {
        PayoutStatus.HELD,
    },
    PayoutStatus.HELD: {
        PayoutStatus.PROCESSING,
    },
    PayoutStatus.PROCESSING: {
        PayoutStatus.COMPLETED,
        PayoutStatus.FAILED,
    },
    PayoutStatus.FAILED: {
        PayoutStatus.PROCESSING,  # retry
    },
    PayoutStatus.COMPLETED: set(),
}


def validate_transition(
    current: PayoutStatus,
    target: PayoutStatus,
) -> TransitionResult:
    """Check whether ``current -> target`` is a legal payout transition."""
    if current == target:
        return TransitionResult(
            allowed=False,
            reason=f"Payout is already in '{current.value}' status.",
        )

    allowed_targets = VALID_TRANSITIONS.get(current, set())
    if target not in allowed_targets:
        if allowed_targets:
            options = ", ".join(s.value for s in sorted(allowed_targets, key=lambda s: s.value))
        else:
            options = "none (terminal state)"
        return TransitionResult(
            allowed=False,
            reason=(
                f"Cannot transition payout from '{current.value}' to "
                f"'{target.value}'. Allowed: {options}."
            ),
        )

    return TransitionResult(allowed=True)


def get_allowed_transitions(current: PayoutStatus) -> set[PayoutStatus]:
    """Return the set of statuses reachable from ``current``."""
    return set(VALID_TRANSITIONS.get(current, set()))


def is_terminal(status: PayoutStatus) -> bool:
    return not VALID_TRANSITIONS.get(status)
