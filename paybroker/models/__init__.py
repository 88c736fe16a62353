"""
PayBroker SQLAlchemy Models
===========================

Central import point for all ORM models. Import ``Base`` from here for
Alembic auto-generation and for the ``create_all`` convenience in tests.

Usage::

    from paybroker.models import Base, Job, Payout, ProviderAccount
"""

# -- Base & Mixins --
from .base import Base, TimestampMixin, UUIDPrimaryKeyMixin, utcnow

# -- Jobs (read model) --
from .job import Job

# -- Provider accounts --
from .provider_account import AccountStatus, ProviderAccount

# -- Payouts --
from .payout import Payout, PayoutStatus

__all__ = [
    "Base",
    "TimestampMixin",
    "UUIDPrimaryKeyMixin",
    "utcnow",
    "Job",
    "AccountStatus",
    "ProviderAccount",
    "Payout",
    "PayoutStatus",
]
