"""Async database engine and session management.

The engine and session factory live on a ``Database`` object built by the app
factory and stored on ``app.state``, so tests can point a fresh app at a
throwaway database.
"""

from collections.abc import AsyncGenerator

from fastapi import Request
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from bspcp.models import Base


def _configure_sqlite(engine) -> None:
    """Enable foreign keys and let SQLAlchemy own BEGIN so SAVEPOINTs work on pysqlite/aiosqlite."""

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


class Database:
    def __init__(self, url: str, echo: bool = False):
        self.url = url
        if url.startswith("sqlite"):
            self.engine = create_async_engine(url, echo=echo)
            _configure_sqlite(self.engine)
        else:
            self.engine = create_async_engine(
                url,
                echo=echo,
                pool_size=20,
                max_overflow=10,
                pool_pre_ping=True,
            )
        self.session_factory = async_sessionmaker(self.engine, class_=AsyncSession, expire_on_commit=False)

    async def create_all(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def dispose(self) -> None:
        await self.engine.dispose()


async def get_db(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """Yield an async database session. Used as a FastAPI dependency.

    Commits when the handler returns, rolls back on any exception and always
    releases the connection.
    """
    database: Database = request.app.state.db
    session = database.session_factory()
    try:
        yield session
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()
