"""
Collaborators shared by the engine's service functions.

Services are plain async functions that take an ``EngineContext`` as their
first argument.  The API layer builds one per request around the request's
``AsyncSession``; tests build one around in-memory fakes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Callable

from paybroker.core.config import Settings, settings as default_settings
from paybroker.integrations.stripe.processor import PaymentProcessor
from paybroker.models import utcnow
from paybroker.repositories.base import (
    JobRepository,
    PayoutRepository,
    ProviderAccountRepository,
)

from .notifier import LoggingNotifier, Notifier
from .splitCalculator import FeeSchedule


@dataclass
class EngineContext:
    jobs: JobRepository
    accounts: ProviderAccountRepository
    payouts: PayoutRepository
    processor: PaymentProcessor
    notifier: Notifier = field(default_factory=LoggingNotifier)
    config: Settings = field(default_factory=lambda: default_settings)
    clock: Callable[[], datetime] = utcnow
    schedule: FeeSchedule | None = None

    def __post_init__(self) -> None:
        if self.schedule is None:
            self.schedule = FeeSchedule.from_settings(self.config)

    def now(self) -> datetime:
        return self.clock()

    def today(self) -> date:
        return self.clock().date()
