"""Database management for the metadata index."""

import logging

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from linkstore.models import Base

logger = logging.getLogger(__name__)

DBSession = AsyncSession

__all__ = ["Base", "DBSession", "DatabaseManager"]


class DatabaseManager:
    """Manages asynchronous connections and sessions for one metadata index."""

    def __init__(self, database_url: str):
        """
        Initialize the DatabaseManager.

        Args:
            database_url: The connection URL of the metadata index, e.g.
                `sqlite+aiosqlite:///./linkstore.db`.

        """
        self.database_url = database_url
        self._engine: AsyncEngine | None = None
        self._session_local: async_sessionmaker[AsyncSession] | None = None
        self._initialize_engine()

    def _initialize_engine(self) -> None:
        if not self.database_url:
            raise ValueError("database_url not set. Cannot initialize database.")

        self._engine = create_async_engine(self.database_url)
        self._session_local = async_sessionmaker(bind=self._engine, expire_on_commit=False)
        logger.info("Initialized async database engine for (%s)", self.database_url)

    @property
    def engine(self) -> AsyncEngine:
        """Return the SQLAlchemy AsyncEngine."""
        if self._engine is None:
            raise RuntimeError("Async Database engine has not been initialized.")
        return self._engine

    def get_db_session(self) -> AsyncSession:
        """
        Provide a new asynchronous database session.

        The caller is responsible for closing the session, typically using `async with`.
        """
        if self._session_local is None:
            raise RuntimeError("AsyncSessionLocal has not been initialized and cannot create a session.")
        return self._session_local()

    async def create_db_and_tables(self) -> None:
        """Create the metadata tables if they do not exist yet."""
        logger.info("Attempting to create database tables...")
        try:
            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            logger.info("Database tables created (or verified existing) for (%s)", self.database_url)
        except Exception:
            logger.exception("Error creating tables.")
            raise

    async def dispose(self) -> None:
        """Close all pooled connections."""
        if self._engine is not None:
            await self._engine.dispose()
