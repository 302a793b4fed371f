"""
Database Connection Management for the Police Personnel Records Service

This module provides:
- An explicitly constructed session provider injected through FastAPI dependencies
- Async Unit of Work pattern for explicit transaction boundaries
- Connection pooling with bounded acquisition wait and idle-connection recycling
- Health checks with retry logic

Uses SQLAlchemy 2.0 asyncio support (asyncpg driver for PostgreSQL).
"""

import logging
from dataclasses import dataclass
from typing import Optional, List, Dict, Any

from sqlalchemy import event, text
from sqlalchemy.exc import SQLAlchemyError, OperationalError
from sqlalchemy.ext.asyncio import (
    create_async_engine,
    AsyncSession,
    async_sessionmaker,
    AsyncEngine
)
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
    before_sleep_log
)

from config_manager import ConfigManager
from errors import persistence_error_from

logger = logging.getLogger(__name__)


# ============================================
# CONFIGURATION
# ============================================

@dataclass
class DatabaseSettings:
    """Database connection and pool settings."""
    url: str = "postgresql+asyncpg://admin@localhost:5432/sistema_policial"
    pool_size: int = 10
    max_overflow: int = 0
    pool_timeout: int = 10
    pool_recycle: int = 30
    ssl: bool = False
    echo: bool = False

    @classmethod
    def from_config(cls, config: ConfigManager) -> 'DatabaseSettings':
        """Create settings from the service configuration."""
        db = config.database
        return cls(
            url=config.database_url(),
            pool_size=db.pool_size,
            max_overflow=db.max_overflow,
            pool_timeout=db.pool_timeout,
            pool_recycle=db.pool_recycle,
            ssl=db.ssl,
            echo=db.echo,
        )

    def engine_options(self) -> Dict[str, Any]:
        """Keyword arguments for create_async_engine."""
        connect_args: Dict[str, Any] = {"timeout": self.pool_timeout}
        if self.ssl:
            connect_args["ssl"] = "require"
        return {
            "echo": self.echo,
            "pool_size": self.pool_size,
            "max_overflow": self.max_overflow,
            "pool_timeout": self.pool_timeout,
            "pool_recycle": self.pool_recycle,
            "pool_pre_ping": True,
            "connect_args": connect_args,
        }


# ============================================
# RETRY LOGIC
# ============================================

db_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception_type(OperationalError),
    before_sleep=before_sleep_log(logger, logging.WARNING),
    reraise=True
)


# ============================================
# UNIT OF WORK PATTERN
# ============================================

class AsyncUnitOfWork:
    """
    Async Unit of Work pattern for explicit transaction management.

    Entering the unit checks a connection out of the pool and begins a
    transaction. Leaving it rolls back anything not committed and always
    returns the connection, whether the block succeeded, raised a
    ValidationError, or failed unexpectedly.

    Usage:
        async with provider.get_unit_of_work() as uow:
            repo = OfficerRepository(uow.session)
            officer = await repo.create(data)
            await uow.commit()
    """

    def __init__(self, session_factory: async_sessionmaker):
        self._session_factory = session_factory
        self._session: Optional[AsyncSession] = None
        self._committed = False

    async def __aenter__(self) -> 'AsyncUnitOfWork':
        self._session = self._session_factory()
        try:
            # Acquire the pooled connection now so a pool timeout surfaces here
            await self._session.connection()
        except SQLAlchemyError as e:
            await self.close()
            raise persistence_error_from(e, "Error al conectar a la base de datos") from e
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        try:
            if exc_type is not None or not self._committed:
                await self.rollback()
        finally:
            await self.close()

    @property
    def session(self) -> AsyncSession:
        """Get the current session."""
        if self._session is None:
            raise RuntimeError("AsyncUnitOfWork not started. Use as context manager.")
        return self._session

    async def commit(self) -> None:
        """Explicitly commit the transaction."""
        if self._session:
            await self._session.commit()
            self._committed = True

    async def rollback(self) -> None:
        """Rollback the transaction."""
        if self._session:
            try:
                await self._session.rollback()
            except SQLAlchemyError as e:
                logger.error("Rollback failed: %s", e)

    async def close(self) -> None:
        """Close the session, returning its connection to the pool."""
        if self._session:
            await self._session.close()
            self._session = None


# ============================================
# DATABASE SESSION PROVIDER (FastAPI DI)
# ============================================

class DatabaseSessionProvider:
    """
    Provides units of work and sessions for the API.

    Constructed once per application by ``create_app`` and stored on
    ``app.state``; endpoints receive it through FastAPI dependencies.

    Usage:
        provider = DatabaseSessionProvider(DatabaseSettings.from_config(config))
        provider.init()

        async with provider.get_unit_of_work() as uow:
            ...
    """

    def __init__(
        self,
        settings: Optional[DatabaseSettings] = None,
        engine: Optional[AsyncEngine] = None
    ):
        """
        Initialize the database session provider.

        Args:
            settings: Database settings (defaults if not provided)
            engine: Pre-created async engine (for testing)
        """
        self._settings = settings or DatabaseSettings()
        self._engine = engine
        self._session_factory: Optional[async_sessionmaker] = None
        self._initialized = False

    @property
    def initialized(self) -> bool:
        return self._initialized

    def init(self, echo: Optional[bool] = None) -> None:
        """
        Initialize the async engine and session factory.

        No connection is opened here; the pool connects on first use.

        Args:
            echo: Override echo setting for SQL logging
        """
        if self._initialized:
            return

        if echo is not None:
            self._settings.echo = echo

        if self._engine is None:
            self._engine = create_async_engine(
                self._settings.url,
                **self._settings.engine_options()
            )

        self._session_factory = async_sessionmaker(
            bind=self._engine,
            class_=AsyncSession,
            autoflush=False,
            expire_on_commit=False
        )

        self._setup_event_listeners()

        self._initialized = True
        logger.info("Database session provider initialized")

    def _setup_event_listeners(self) -> None:
        """Set up SQLAlchemy pool event listeners for debugging."""
        sync_engine = self._engine.sync_engine

        @event.listens_for(sync_engine, "connect")
        def on_connect(dbapi_connection, connection_record):
            logger.debug("New database connection established")

        @event.listens_for(sync_engine, "checkout")
        def on_checkout(dbapi_connection, connection_record, connection_proxy):
            logger.debug("Connection checked out from pool")

        @event.listens_for(sync_engine, "checkin")
        def on_checkin(dbapi_connection, connection_record):
            logger.debug("Connection returned to pool")

    @property
    def engine(self) -> AsyncEngine:
        """Get the async SQLAlchemy engine."""
        if self._engine is None:
            raise RuntimeError("Database not initialized. Call init() first.")
        return self._engine

    def get_unit_of_work(self) -> AsyncUnitOfWork:
        """Get a Unit of Work for explicit transaction management."""
        if self._session_factory is None:
            self.init()
        return AsyncUnitOfWork(self._session_factory)

    @db_retry
    async def _probe(self) -> List[Dict[str, Any]]:
        if self._engine is None:
            self.init()
        async with self._engine.connect() as conn:
            result = await conn.execute(text("SELECT 1 AS test"))
            return [dict(row) for row in result.mappings()]

    async def ping(self) -> List[Dict[str, Any]]:
        """
        Run ``SELECT 1`` through the pool, retrying transient failures.

        Raises:
            PersistenceError: If the store cannot be reached
        """
        try:
            return await self._probe()
        except SQLAlchemyError as e:
            raise persistence_error_from(e, "Error al conectar con la base de datos") from e

    async def health_check(self) -> bool:
        """Return True if the store answers, False otherwise."""
        try:
            await self.ping()
            return True
        except Exception as e:
            logger.error("Database health check failed: %s", e)
            return False

    async def close(self) -> None:
        """Dispose of pooled connections."""
        if self._engine:
            await self._engine.dispose()
            logger.info("Database engine disposed")
        self._initialized = False
        self._session_factory = None


# ============================================
# PYTEST FIXTURES SUPPORT
# ============================================

def create_test_provider(
    engine: Optional[AsyncEngine] = None,
    settings: Optional[DatabaseSettings] = None
) -> DatabaseSessionProvider:
    """
    Create a database provider for testing.

    Args:
        engine: Pre-created async engine (e.g., SQLite via aiosqlite)
        settings: Custom settings for testing

    Returns:
        DatabaseSessionProvider configured for testing
    """
    provider = DatabaseSessionProvider(
        settings=settings,
        engine=engine
    )
    provider.init()
    return provider
