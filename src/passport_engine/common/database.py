"""Async database manager for Passport-Engine.

Every state change in the services is a conditional UPDATE whose row count
is checked, so the manager only has to provide short sessions that commit on
success and roll back on error.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy import event, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from passport_engine.common.config import PassportSettings, get_settings
from passport_engine.common.models import Base

# Import all model modules so Base.metadata is complete for create_all().
import passport_engine.identity.models  # noqa: F401
import passport_engine.auth.models  # noqa: F401
import passport_engine.evidence.models  # noqa: F401
import passport_engine.risk.models  # noqa: F401
import passport_engine.verification.models  # noqa: F401
import passport_engine.reports.models  # noqa: F401
import passport_engine.trustscore.models  # noqa: F401
import passport_engine.audit.models  # noqa: F401

logger = logging.getLogger(__name__)


class DatabaseManager:
    """Owns the async engine and hands out unit-of-work sessions."""

    def __init__(self, settings: PassportSettings | None = None):
        self._settings = settings or get_settings()
        self.engine: AsyncEngine | None = None
        self._session_factory: async_sessionmaker[AsyncSession] | None = None

    @property
    def is_sqlite(self) -> bool:
        return self._settings.db_url.startswith("sqlite")

    async def init(self) -> None:
        self.engine = create_async_engine(self._settings.db_url, echo=False)
        if self.is_sqlite:
            self._set_busy_timeout(self.engine, self._settings.db_busy_timeout_ms)
        self._session_factory = async_sessionmaker(self.engine, expire_on_commit=False)

    @staticmethod
    def _set_busy_timeout(engine: AsyncEngine, busy_timeout_ms: int) -> None:
        @event.listens_for(engine.sync_engine, "connect")
        def _on_connect(dbapi_connection, _record):
            cursor = dbapi_connection.cursor()
            cursor.execute(f"PRAGMA busy_timeout={int(busy_timeout_ms)}")
            cursor.close()

    def _require_init(self) -> None:
        if self._session_factory is None or self.engine is None:
            raise RuntimeError("DatabaseManager not initialized; call init() first")

    @asynccontextmanager
    async def get_session(self) -> AsyncGenerator[AsyncSession, None]:
        """One unit of work: commit on clean exit, roll back on any error."""
        self._require_init()
        async with self._session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def create_all(self) -> None:
        self._require_init()
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def ping(self) -> bool:
        """True when the database answers a trivial query."""
        if self.engine is None:
            return False
        try:
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
        except SQLAlchemyError:
            logger.exception("Database ping failed")
            return False
        return True

    async def close(self) -> None:
        if self.engine:
            await self.engine.dispose()
            self.engine = None
            self._session_factory = None
