"""
Unit of work for the sync job.

Every catalog upsert and every materialized order gets its own transaction,
so a failure rolls back exactly one unit and never the rest of the run.
Connection-level failures are translated to StoreUnavailable; the callers
then ping the store to tell a dead database from a one-off error.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator

import structlog
from sqlalchemy import text
from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shopsync.sync.errors import StoreUnavailable

logger = structlog.get_logger(__name__)


def is_connectivity_error(exc: BaseException) -> bool:
    """True when the exception means the store itself could not be used."""
    if isinstance(exc, DBAPIError) and exc.connection_invalidated:
        return True
    return isinstance(exc, (OperationalError, InterfaceError, OSError))


class UnitOfWork:
    """
    Transaction scope factory.

    Example:
        uow = UnitOfWork(session_factory)
        async with uow.transaction() as session:
            session.add(order)
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AsyncSession]:
        """Commit on success, roll back on any error."""
        session = self.session_factory()
        try:
            async with session.begin():
                yield session
        except StoreUnavailable:
            raise
        except Exception as exc:
            if is_connectivity_error(exc):
                raise StoreUnavailable(str(exc)) from exc
            raise
        finally:
            await session.close()

    async def is_reachable(self) -> bool:
        """Ping the store with a trivial query."""
        try:
            async with self.session_factory() as session:
                await session.execute(text("SELECT 1"))
            return True
        except Exception as exc:
            logger.error("Store ping failed", error=str(exc), error_type=type(exc).__name__)
            return False
