import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import NullPool
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from crud6.core.config import settings
from crud6.core.exceptions import BadRequest

logger = logging.getLogger(__name__)


class Database:
    def __init__(self, db_url: str, echo: bool = False):
        self.url = db_url
        # SQLite files are opened per session so tests and CLI tools see each other's writes
        kwargs: Dict[str, Any] = {"poolclass": NullPool} if db_url.startswith("sqlite") else {}
        self.engine: AsyncEngine = create_async_engine(db_url, echo=echo, future=True, **kwargs)

    async def connect(self):
        async with self.get_session() as session:
            await session.exec(select(1))

    async def disconnect(self):
        await self.engine.dispose()

    @asynccontextmanager
    async def get_session(self) -> AsyncGenerator[AsyncSession, Any]:
        async with AsyncSession(self.engine, expire_on_commit=False) as session:
            yield session


class DatabaseManager:
    """Named data sources; the unnamed one is the default connection."""

    def __init__(self, default_url: str, connections: Optional[Dict[str, str]] = None, echo: bool = False):
        self.default = Database(default_url, echo=echo)
        self.connections = {name: Database(url, echo=echo) for name, url in (connections or {}).items()}

    def get(self, connection: Optional[str] = None) -> Database:
        if not connection:
            return self.default
        if connection not in self.connections:
            raise BadRequest(f"Unknown database connection: {connection}")
        return self.connections[connection]

    @asynccontextmanager
    async def get_session(self, connection: Optional[str] = None) -> AsyncGenerator[AsyncSession, Any]:
        async with self.get(connection).get_session() as session:
            yield session

    async def connect(self):
        await self.default.connect()
        logger.info("Database connection established")

    async def disconnect(self):
        for database in [self.default, *self.connections.values()]:
            await database.disconnect()


def create_database_manager() -> DatabaseManager:
    return DatabaseManager(
        settings.ASYNC_DATABASE_URL,
        settings.DATABASE_CONNECTIONS,
    )
