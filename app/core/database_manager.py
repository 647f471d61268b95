"""
Database Management with Connection Pooling
"""

import logging
import time
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Dict, Optional

from sqlalchemy import event, text
from sqlalchemy.exc import DisconnectionError, SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import NullPool, StaticPool

from app.core.exceptions import RegistrationError
from app.core.settings import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()


class Base(DeclarativeBase):
    pass


class DatabaseManager:
    """Database manager with connection pooling and health monitoring"""

    def __init__(self, database_url: Optional[str] = None) -> None:
        self.engine: Optional[AsyncEngine] = None
        self.session_factory: Optional[async_sessionmaker[AsyncSession]] = None
        self._setup_engine(database_url)

    def _setup_engine(self, database_url: Optional[str] = None) -> None:
        """Setup database engine"""
        db_url = database_url or self._prepare_database_url()
        engine_kwargs = self._get_engine_kwargs(db_url)

        self.engine = create_async_engine(db_url, **engine_kwargs)

        self.session_factory = async_sessionmaker(
            bind=self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )

        self._setup_event_listeners()

        logger.info(f"Database engine initialized with URL: {self._mask_url(db_url)}")

    def _prepare_database_url(self) -> str:
        """Prepare database URL with appropriate async driver"""
        raw_url = settings.database.database_url

        # Handle SQLite for testing
        if settings.TESTING:
            return "sqlite+aiosqlite:///:memory:"

        if raw_url.startswith("postgresql://"):
            return raw_url.replace("postgresql://", "postgresql+asyncpg://", 1)

        return raw_url

    def _get_engine_kwargs(self, db_url: str) -> Dict[str, Any]:
        """Get engine configuration based on database type"""
        base_kwargs: Dict[str, Any] = {}
        base_kwargs["echo"] = settings.database.DB_ECHO

        if "sqlite" in db_url:
            sqlite_connect_args: Dict[str, Any] = {
                "check_same_thread": False,
                "timeout": settings.database.DB_SQLITE_BUSY_TIMEOUT,
            }
            # An in-memory database only exists on its one connection; file
            # databases get a connection per session so writers can queue on
            # the database lock.
            poolclass = StaticPool if ":memory:" in db_url else NullPool
            base_kwargs.update(
                {
                    "poolclass": poolclass,
                    "connect_args": sqlite_connect_args,
                }
            )
        else:
            postgres_server_settings: Dict[str, str] = {
                "application_name": f"{settings.PROJECT_NAME}_app",
                "statement_timeout": str(settings.database.DB_STATEMENT_TIMEOUT),
                "lock_timeout": str(settings.database.DB_LOCK_TIMEOUT),
                "idle_in_transaction_session_timeout": str(
                    settings.database.DB_IDLE_IN_TRANSACTION_TIMEOUT
                ),
            }
            postgres_connect_args: Dict[str, Any] = {
                "command_timeout": settings.database.DB_COMMAND_TIMEOUT,
                "server_settings": postgres_server_settings,
            }
            if settings.database.DB_SSL:
                postgres_connect_args["ssl"] = True
            base_kwargs.update(
                {
                    "pool_pre_ping": settings.database.DB_POOL_PRE_PING,
                    "pool_recycle": settings.database.DB_POOL_RECYCLE,
                    "pool_size": settings.database.DB_POOL_SIZE,
                    "max_overflow": settings.database.DB_MAX_OVERFLOW,
                    "pool_timeout": settings.database.DB_POOL_TIMEOUT,
                    "connect_args": postgres_connect_args,
                }
            )

        return base_kwargs

    @property
    def is_sqlite(self) -> bool:
        return bool(self.engine and self.engine.dialect.name == "sqlite")

    def _setup_event_listeners(self) -> None:
        """Setup database event listeners"""
        if not self.engine:
            return

        if self.is_sqlite and ":memory:" not in str(self.engine.url):
            # SQLite has no SELECT ... FOR UPDATE. Taking the write lock when
            # the transaction begins serialises read-then-write sequences
            # across connections instead.
            @event.listens_for(self.engine.sync_engine, "connect")  # type: ignore
            def disable_driver_begin(
                dbapi_connection: Any, connection_record: Any
            ) -> None:
                dbapi_connection.isolation_level = None

            @event.listens_for(self.engine.sync_engine, "begin")  # type: ignore
            def begin_immediate(conn: Any) -> None:
                conn.exec_driver_sql("BEGIN IMMEDIATE")

        @event.listens_for(self.engine.sync_engine, "checkout")  # type: ignore
        def receive_checkout(
            dbapi_connection: Any, connection_record: Any, connection_proxy: Any
        ) -> None:
            connection_record.info["checkout_time"] = time.time()

        @event.listens_for(self.engine.sync_engine, "checkin")  # type: ignore
        def receive_checkin(dbapi_connection: Any, connection_record: Any) -> None:
            if "checkout_time" in connection_record.info:
                checkout_duration = (
                    time.time() - connection_record.info["checkout_time"]
                )
                if checkout_duration > 30:
                    logger.warning(
                        f"Long-running database connection: {checkout_duration:.2f}s"
                    )

        @event.listens_for(self.engine.sync_engine, "invalidate")  # type: ignore
        def receive_invalidate(
            dbapi_connection: Any, connection_record: Any, exception: Any
        ) -> None:
            logger.warning(f"Database connection invalidated: {exception}")

    async def create_all(self) -> None:
        """Create all tables; migrations own the schema outside of tests"""
        if not self.engine:
            raise RuntimeError("Database not initialized")
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    @asynccontextmanager
    async def get_session(self) -> AsyncGenerator[AsyncSession, None]:
        """Get database session with proper error handling"""
        if not self.session_factory:
            raise RuntimeError("Database not initialized")

        session = self.session_factory()
        try:
            yield session
            await session.commit()
        except RegistrationError:
            # Expected rejections; the API handler logs them at warning level
            await session.rollback()
            raise
        except Exception as e:
            await session.rollback()
            logger.error(f"Database session error: {e}")
            raise
        finally:
            await session.close()

    async def health_check(self) -> dict[str, Any]:
        """Database health check"""
        if not self.engine:
            return {"status": "error", "message": "Database engine not initialized"}

        try:
            start_time = time.time()

            async with self.get_session() as session:
                result = await session.execute(text("SELECT 1 as health_check"))
                if result.scalar() != 1:
                    return {"status": "error", "message": "Health check query failed"}

            response_time = (time.time() - start_time) * 1000

            return {
                "status": "healthy",
                "response_time_ms": round(response_time, 2),
                "database_url": self._mask_url(str(self.engine.url)),
            }

        except DisconnectionError as e:
            logger.error(f"Database disconnection error: {e}")
            return {"status": "error", "message": "Database disconnected"}
        except SQLAlchemyError as e:
            logger.error(f"Database health check failed: {e}")
            return {"status": "error", "message": str(e)}

    async def close(self) -> None:
        """Close database engine and all connections"""
        if self.engine:
            await self.engine.dispose()
            logger.info("Database engine closed")

    def _mask_url(self, url: str) -> str:
        """Mask sensitive information in database URL"""
        if "@" in url:
            parts = url.split("@")
            if len(parts) == 2:
                auth_part = parts[0]
                if ":" in auth_part:
                    protocol_user = auth_part.rsplit(":", 1)[0]
                    return f"{protocol_user}:***@{parts[1]}"
        return url


# Global database manager instance
db_manager = DatabaseManager()
