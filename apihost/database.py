"""
apihost — Database Session Management
=====================================

What:  Opens and closes backing-store connections and runs actions in a
       scoped session.
How:   A Database wraps one async SQLAlchemy connection created from a
       DatabaseOptions parameter object. The DatabaseSessionManager opens
       a fresh Database per call and guarantees it is closed on every exit
       path. Nothing is pooled: each engine uses NullPool and is disposed
       together with its connection.
Who:   Hosts that were given a manager (see ApiHost.with_database and
       create_database_host) and any code that needs a short-lived
       connection.

Session lifecycle (with_database / session):
    open_database()  ─▶  action(db)  ─▶  disconnect()
                              │
                              └─ raises ─▶ disconnect() (best effort) ─▶ re-raise

    A teardown failure is raised only when the action itself succeeded.
    When the action failed, its error wins and the teardown failure is
    logged.
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Awaitable, Callable, Dict, Optional, Protocol, Type, TypeVar, Union
from urllib.parse import parse_qsl

from pydantic import BaseModel, Field
from sqlalchemy import text
from sqlalchemy.engine import URL
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine
from sqlalchemy.pool import NullPool

from apihost.config import Settings
from apihost.exceptions import DatabaseConnectionError
from apihost.utils import maybe_await

logger = logging.getLogger(__name__)

TResult = TypeVar("TResult")


class DatabaseOptions(BaseModel):
    """
    Connection parameters: ``{driver, host, port, database, user, password, options}``.

    ``options`` is a query string of extra driver options, e.g.
    ``"sslmode=require&application_name=api"``.
    """

    driver: str = Field(default="postgresql+asyncpg")
    host: Optional[str] = None
    port: Optional[int] = None
    database: Optional[str] = None
    user: Optional[str] = None
    password: Optional[str] = None
    options: Optional[str] = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "DatabaseOptions":
        return cls(
            driver=settings.db_driver,
            host=settings.db_host,
            port=settings.db_port,
            database=settings.db_name,
            user=settings.db_user,
            password=settings.db_password,
            options=settings.db_options,
        )

    def to_url(self) -> URL:
        query = dict(parse_qsl((self.options or "").strip().lstrip("?"), keep_blank_values=True))
        return URL.create(
            self.driver,
            username=self.user or None,
            password=self.password or None,
            host=self.host or None,
            port=self.port,
            database=self.database or None,
            query=query,
        )

    def describe(self) -> Dict[str, Any]:
        """Loggable view of the options (no password)."""
        return {
            "driver": self.driver,
            "host": self.host,
            "port": self.port,
            "database": self.database,
            "user": self.user,
        }


class Database:
    """
    One backing-store session.

    Owned by the code path that opened it; closed exactly once.
    """

    def __init__(self, options: DatabaseOptions):
        self.options = options
        self._engine: Optional[AsyncEngine] = None
        self._connection: Optional[AsyncConnection] = None

    @property
    def is_connected(self) -> bool:
        return self._connection is not None

    @property
    def connection(self) -> AsyncConnection:
        if self._connection is None:
            raise RuntimeError("Database is not connected")
        return self._connection

    async def connect(self) -> None:
        """Create the engine and wait until the connection is usable."""
        if self._connection is not None:
            return

        engine = create_async_engine(self.options.to_url(), poolclass=NullPool)
        try:
            self._connection = await engine.connect()
        except BaseException:
            await engine.dispose()
            raise
        self._engine = engine

    async def disconnect(self) -> None:
        """Close the connection and dispose the engine. A no-op when already closed."""
        connection, engine = self._connection, self._engine
        self._connection = None
        self._engine = None
        try:
            if connection is not None:
                await connection.close()
        finally:
            if engine is not None:
                await engine.dispose()

    async def execute(self, statement: Any, parameters: Optional[Dict[str, Any]] = None):
        """Execute a statement; plain strings are wrapped in ``text()``."""
        if isinstance(statement, str):
            statement = text(statement)
        return await self.connection.execute(statement, parameters or {})


class DatabaseCapability(Protocol):
    """What a host exposes when it was composed with a session manager."""

    async def open_database(self, options: Optional[DatabaseOptions] = None) -> Database:
        ...

    async def with_database(
        self,
        action: Callable[[Database], Union[TResult, Awaitable[TResult]]],
        options: Optional[DatabaseOptions] = None,
    ) -> TResult:
        ...


class DatabaseSessionManager:
    """
    Opens scoped database sessions.

    Args:
        settings:        Source of the default connection options.
        database_class:  Session class to instantiate (``Database`` or a
                         subclass with the same constructor).
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        database_class: Type[Database] = Database,
    ):
        self.settings = settings if settings is not None else Settings()
        self.database_class = database_class

    def default_options(self) -> DatabaseOptions:
        return DatabaseOptions.from_settings(self.settings)

    async def open_database(self, options: Optional[DatabaseOptions] = None) -> Database:
        """
        Open a new session and wait for it to be ready.

        Raises:
            DatabaseConnectionError: the connect call failed.
        """
        if options is None:
            options = self.default_options()

        db = self.database_class(options)
        try:
            await db.connect()
        except DatabaseConnectionError:
            raise
        except Exception as e:
            logger.error("Database connection failed: %s | %s", str(e), options.describe())
            raise DatabaseConnectionError(
                message="Could not connect to the database",
                context={**options.describe(), "error": str(e)},
            ) from e

        logger.debug("Database session opened: %s", options.describe())
        return db

    async def with_database(
        self,
        action: Callable[[Database], Union[TResult, Awaitable[TResult]]],
        options: Optional[DatabaseOptions] = None,
    ) -> TResult:
        """
        Open a session, run ``action`` with it and close it again.

        ``action`` may be sync or async. The session is closed before this
        call returns or raises, whatever ``action`` did.
        """
        db = await self.open_database(options)
        try:
            result = await maybe_await(action(db))
        except BaseException:
            await self._close_after_failure(db)
            raise

        await db.disconnect()
        return result

    @asynccontextmanager
    async def session(self, options: Optional[DatabaseOptions] = None) -> AsyncGenerator[Database, None]:
        """
        Async context manager form of with_database().

        Example usage:
            async with manager.session() as db:
                await db.execute("SELECT 1")
        """
        db = await self.open_database(options)
        try:
            yield db
        except BaseException:
            await self._close_after_failure(db)
            raise

        await db.disconnect()

    async def _close_after_failure(self, db: Database) -> None:
        try:
            await db.disconnect()
        except Exception as e:
            logger.warning("Failed to close database session after an error: %s", str(e), exc_info=True)
