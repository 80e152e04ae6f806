"""
Dependency Injection Container
==============================
Builds and wires the cache, connection manager, schema engine, data helpers
and watchdog into one explicitly constructed context object.
"""

from dataclasses import dataclass
from typing import Any, Callable, Optional

from loguru import logger
from pymongo import AsyncMongoClient

from .cache import MemoryCache
from .config import LensConfig
from .connection import ConnectionManager
from .database import DatabaseOperations
from .schema import SchemaInferenceEngine
from .watchdog import ConnectionWatchdog


@dataclass
class Container:
    """
    Container holding all wired application dependencies.
    """
    config: LensConfig
    cache: Optional[MemoryCache] = None
    connection: Optional[ConnectionManager] = None
    database: Optional[DatabaseOperations] = None
    schema_engine: Optional[SchemaInferenceEngine] = None
    watchdog: Optional[ConnectionWatchdog] = None

    async def startup(self, uri: Optional[str] = None) -> None:
        """
        Connect and start the watchdog.

        Raises:
            MongoConnectionError: The initial connection could not be established.
        """
        await self.connection.connect(uri)
        await self.watchdog.start()

    async def shutdown(self) -> None:
        """
        Stop the watchdog, close the client and clear the cache.

        Each step runs even if an earlier one fails. Safe to call repeatedly.
        """
        logger.info("Shutting down Mongo Lens...")

        try:
            await self.watchdog.stop()
        except Exception as e:
            logger.error(f"Error stopping watchdog: {e}")

        try:
            await self.connection.close()
        except Exception as e:
            logger.error(f"Error closing MongoDB connection: {e}")

        try:
            self.cache.clear()
        except Exception as e:
            logger.error(f"Error clearing cache: {e}")

        logger.info("Shutdown complete.")


def build_container(
    config: LensConfig,
    client_factory: Callable[..., Any] = AsyncMongoClient,
) -> Container:
    """
    Build and wire all application dependencies.

    Args:
        config: Validated LensConfig instance.
        client_factory: Driver client constructor; tests pass a fake.

    Returns:
        Container with all dependencies initialized (not yet connected).
    """
    container = Container(config=config)

    container.cache = MemoryCache(config=config.cache)
    container.connection = ConnectionManager(
        config=config,
        cache=container.cache,
        client_factory=client_factory,
    )
    container.database = DatabaseOperations(container.connection, container.cache)
    container.schema_engine = SchemaInferenceEngine(
        connection=container.connection,
        cache=container.cache,
        collection_exists=container.database.collection_exists,
        config=config.schema,
    )
    container.watchdog = ConnectionWatchdog(
        connection=container.connection,
        cache=container.cache,
        config=config.watchdog,
    )

    return container
