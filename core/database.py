"""
Database Management and Configuration.

Sets up the asynchronous SQL store behind the Credential Store and the
Portfolio Store. SQLModel describes the tables, SQLAlchemy's asyncio extension
runs the queries: `aiosqlite` for SQLite (development, tests) and `asyncpg`
for PostgreSQL (production).

Key Components:
- `Database`: owns the async engine and the session factory for one database
  URL. The application factory creates exactly one and closes it on shutdown;
  tests create their own against a temporary file.
- `create_all`: creates every SQLModel table at startup. A failure here is
  fatal to the process.
- `session_factory`: `async_sessionmaker` handed to the stores; each store
  operation opens and closes its own session.
- `info` / `health_check`: diagnostics for the monitoring endpoints.
"""

import logging
from typing import Any, Dict

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import AsyncAdaptedQueuePool
from sqlmodel import SQLModel

# Table models must be imported so their metadata is registered
from core import models  # noqa: F401

logger = logging.getLogger(__name__)


class Database:
    """Async engine and session factory for one database URL"""

    def __init__(self, database_url: str):
        self.database_url = database_url

        if database_url.startswith("sqlite"):
            # SQLite configuration with aiosqlite
            self.engine = create_async_engine(
                database_url,
                connect_args={"check_same_thread": False},
                echo=False,  # Set to True for SQL debugging
            )
        else:
            # PostgreSQL configuration with asyncpg
            self.engine = create_async_engine(
                database_url,
                poolclass=AsyncAdaptedQueuePool,
                pool_size=5,
                max_overflow=10,
                pool_pre_ping=True,  # Validate connections before use
                echo=False,
            )

        self.session_factory = async_sessionmaker(
            self.engine, class_=AsyncSession, expire_on_commit=False
        )

    @property
    def database_type(self) -> str:
        return "postgresql" if "postgresql" in self.database_url else "sqlite"

    async def create_all(self) -> None:
        """
        Create all tables. Called during application startup.
        """
        try:
            async with self.engine.begin() as conn:
                await conn.run_sync(SQLModel.metadata.create_all)
            logger.info("Portfolio database tables created successfully")
        except Exception as e:
            logger.error(f"Failed to create portfolio database tables: {e}")
            raise

    async def dispose(self) -> None:
        await self.engine.dispose()

    async def info(self) -> Dict[str, Any]:
        """
        Get basic database information for health checks.
        """
        try:
            async with self.session_factory() as session:
                result = await session.execute(text("SELECT 1"))
                result.scalar()
            connection_healthy = True
        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            connection_healthy = False

        return {
            "database_url": self.database_url.split("@")[1]
            if "@" in self.database_url
            else "masked",  # Hide credentials
            "connection_healthy": connection_healthy,
            "database_type": self.database_type,
        }

    async def health_check(self) -> Dict[str, Any]:
        """
        Perform a health check that also touches the portfolio table.
        """
        try:
            async with self.session_factory() as session:
                await session.execute(text("SELECT 1"))
                result = await session.execute(text("SELECT COUNT(*) FROM portfolio"))
                portfolios = result.scalar()

            return {
                "status": "healthy",
                "database_type": self.database_type,
                "tables_accessible": True,
                "portfolios": portfolios,
            }
        except Exception as e:
            return {
                "status": "unhealthy",
                "error": str(e),
                "database_type": self.database_type,
            }
