"""Neo4j connection management.

``GraphConnection`` owns the async driver. Every query helper acquires its own
session and releases it on every exit path, so independent operations can run
concurrently on one connection.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

import structlog
from neo4j import AsyncDriver, AsyncGraphDatabase, AsyncSession, Record
from neo4j.exceptions import DriverError, Neo4jError, ServiceUnavailable

from graphrepo.config import Settings, get_settings
from graphrepo.errors import ConfigurationError, GraphRepositoryError

logger = structlog.get_logger(__name__)


class GraphConnectionError(GraphRepositoryError):
    """Raised when the driver is not connected or the server is unreachable."""


class GraphConnection:
    """Manages the driver for one Neo4j database.

    Attributes:
        uri: Neo4j connection URI.
        user: Neo4j username.
        database: Neo4j database name.
    """

    def __init__(
        self,
        uri: str,
        user: str,
        password: str,
        database: str = "neo4j",
        max_connection_pool_size: int = 50,
        connection_acquisition_timeout: float = 60.0,
    ) -> None:
        self.uri = uri
        self.user = user
        self._password = password
        self.database = database
        self._max_pool_size = max_connection_pool_size
        self._acquisition_timeout = connection_acquisition_timeout
        self._driver: AsyncDriver | None = None

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "GraphConnection":
        """Build a connection from settings without touching the network.

        Args:
            settings: Settings to read; the cached process settings by default.

        Raises:
            ConfigurationError: If the URI, user or password is missing.
        """
        settings = settings or get_settings()
        missing = [
            name
            for name in ("neo4j_uri", "neo4j_user", "neo4j_password")
            if not getattr(settings, name)
        ]
        if missing:
            raise ConfigurationError(
                f"Missing Neo4j connection settings: {', '.join(missing)}"
            )

        return cls(
            uri=settings.neo4j_uri,
            user=settings.neo4j_user,
            password=settings.neo4j_password,
            database=settings.neo4j_database,
            max_connection_pool_size=settings.neo4j_max_connection_pool_size,
            connection_acquisition_timeout=settings.neo4j_connection_acquisition_timeout,
        )

    async def connect(self) -> None:
        """Create the driver and verify the server is reachable.

        Raises:
            GraphConnectionError: If the server cannot be reached.
        """
        if self._driver is not None:
            return

        driver = AsyncGraphDatabase.driver(
            self.uri,
            auth=(self.user, self._password),
            max_connection_pool_size=self._max_pool_size,
            connection_acquisition_timeout=self._acquisition_timeout,
        )
        try:
            await driver.verify_connectivity()
        except (ServiceUnavailable, DriverError, Neo4jError) as e:
            await driver.close()
            raise GraphConnectionError(f"Failed to connect to Neo4j: {e}") from e

        self._driver = driver
        logger.info("Connected to Neo4j", uri=self.uri, database=self.database)

    async def close(self) -> None:
        """Close the driver and release its connections. Safe to call twice."""
        if self._driver is not None:
            await self._driver.close()
            self._driver = None
            logger.info("Disconnected from Neo4j", uri=self.uri)

    async def __aenter__(self) -> "GraphConnection":
        await self.connect()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    @property
    def driver(self) -> AsyncDriver:
        """The connected driver.

        Raises:
            GraphConnectionError: If not connected.
        """
        if self._driver is None:
            raise GraphConnectionError("Not connected to Neo4j. Call connect() first.")
        return self._driver

    @asynccontextmanager
    async def session(self, **kwargs: Any) -> AsyncGenerator[AsyncSession, None]:
        """Open a session on the configured database.

        The session is closed when the block exits, including on errors and
        task cancellation.

        Raises:
            GraphConnectionError: If not connected.
        """
        session = self.driver.session(database=self.database, **kwargs)
        try:
            yield session
        finally:
            await session.close()

    async def health_check(self) -> dict[str, Any]:
        """Check that the server answers a trivial query.

        Returns:
            Dictionary with a ``status`` of ``healthy``, ``unhealthy`` or
            ``disconnected``.
        """
        if self._driver is None:
            return {"status": "disconnected", "message": "Driver not initialized"}

        try:
            await self._driver.verify_connectivity()
            async with self.session() as session:
                result = await session.run("RETURN 1 AS n")
                record = await result.single()
        except ServiceUnavailable as e:
            return {"status": "unhealthy", "message": f"Service unavailable: {e}"}
        except Neo4jError as e:
            return {"status": "unhealthy", "message": f"Neo4j error: {e}"}

        if record is None or record["n"] != 1:
            return {"status": "unhealthy", "message": "Query returned unexpected result"}
        return {"status": "healthy", "uri": self.uri, "database": self.database}

    async def execute_query(
        self,
        query: str,
        parameters: dict[str, Any] | None = None,
        **kwargs: Any,
    ) -> list[Record]:
        """Run a statement in an auto-commit transaction.

        Returns:
            The result records, with nodes and relationships left as driver
            graph objects so their element ids are kept.
        """
        async with self.session(**kwargs) as session:
            result = await session.run(query, parameters or {})
            return [record async for record in result]

    async def execute_write(
        self,
        query: str,
        parameters: dict[str, Any] | None = None,
        **kwargs: Any,
    ) -> list[Record]:
        """Run a statement in a managed write transaction."""
        async with self.session(**kwargs) as session:

            async def _write_tx(tx: Any) -> list[Record]:
                result = await tx.run(query, parameters or {})
                return [record async for record in result]

            return await session.execute_write(_write_tx)

    async def execute_read(
        self,
        query: str,
        parameters: dict[str, Any] | None = None,
        **kwargs: Any,
    ) -> list[Record]:
        """Run a statement in a managed read transaction."""
        async with self.session(**kwargs) as session:

            async def _read_tx(tx: Any) -> list[Record]:
                result = await tx.run(query, parameters or {})
                return [record async for record in result]

            return await session.execute_read(_read_tx)
