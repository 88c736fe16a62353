"""
Shared FastAPI dependencies for the PayBroker API.

Provides the async database session dependency used by all route handlers
and the ``EngineContext`` that binds the engine's services to that session
and to the Stripe processor.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from paybroker.core.config import settings
from paybroker.integrations.stripe.processor import PaymentProcessor, StripeProcessor
from paybroker.repositories.sql import (
    SqlJobRepository,
    SqlPayoutRepository,
    SqlProviderAccountRepository,
)
from paybroker.services.context import EngineContext

# ---------------------------------------------------------------------------
# Async engine & session factory
# ---------------------------------------------------------------------------
# The engine is created once at module import time.  The session factory
# produces lightweight ``AsyncSession`` instances that are scoped to a single
# request via the ``get_db`` dependency below.
# ---------------------------------------------------------------------------

engine = create_async_engine(
    settings.database_url,
    echo=settings.sql_echo,
    pool_size=settings.db_pool_size,
    max_overflow=settings.db_max_overflow,
    pool_pre_ping=True,
)

async_session_factory = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Yield an async database session that is committed when the request
    completes and rolled back if it raises.

    Repositories only flush, so every state change made while handling one
    request lands in a single transaction.
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


DBSession = Annotated[AsyncSession, Depends(get_db)]


# ---------------------------------------------------------------------------
# Engine context
# ---------------------------------------------------------------------------

_stripe_processor = StripeProcessor()


def get_processor() -> PaymentProcessor:
    """The processor used by every request; overridden in tests."""
    return _stripe_processor


def build_engine_context(
    session: AsyncSession,
    processor: PaymentProcessor | None = None,
) -> EngineContext:
    """Bind the SQL repositories for ``session`` into an ``EngineContext``.

    Also used by the scheduled jobs, which manage their own sessions.
    """
    return EngineContext(
        jobs=SqlJobRepository(session),
        accounts=SqlProviderAccountRepository(session),
        payouts=SqlPayoutRepository(session),
        processor=processor or _stripe_processor,
        config=settings,
    )


async def get_engine_context(
    db: DBSession,
    processor: Annotated[PaymentProcessor, Depends(get_processor)],
) -> EngineContext:
    return build_engine_context(db, processor)


EngineCtx = Annotated[EngineContext, Depends(get_engine_context)]
