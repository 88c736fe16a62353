"""
Outbound notification seam for payout events.

Notifications are fire-and-forget: ``notify_payout_completed`` logs and
discards any exception raised by the notifier so a delivery problem can
never undo a payment that already happened.
"""

from __future__ import annotations

import logging
from typing import Protocol

from paybroker.models import Payout

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    async def payout_completed(self, payout: Payout) -> None: ...


class LoggingNotifier:
    """Default notifier: records the event in the application log."""

    async def payout_completed(self, payout: Payout) -> None:
        logger.info(
            "Payout completed: payout=%s, provider=%s, net=%d",
            payout.id,
            payout.provider_id,
            payout.net_amount,
        )


async def notify_payout_completed(notifier: Notifier, payout: Payout) -> None:
    try:
        await notifier.payout_completed(payout)
    except Exception:
        logger.exception("Payout notification failed for payout %s", payout.id)
