"""
Connection Manager
==================
Owns the driver client and the working database handle.

State machine:
    DISCONNECTED -> CONNECTING -> CONNECTED
    CONNECTING -> CONNECTING       (bounded exponential backoff)
    CONNECTING -> FAILED           (initial attempts exhausted)
    CONNECTED -> RECONNECTING -> CONNECTED
    RECONNECTING -> FAILED         (cumulative reconnect ceiling, terminal)

The initial-connect attempt counter and the cumulative reconnect counter are
independent; each resets only on its own success.
"""

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from loguru import logger
from pymongo import AsyncMongoClient
from pymongo.monitoring import ServerHeartbeatListener

from mongolens.core.cache import CacheNamespace, MemoryCache
from mongolens.core.config import LensConfig
from mongolens.core.exceptions import (
    ConnectionUnavailableError,
    DatabaseNotFoundError,
    MongoConnectionError,
    ReconnectLimitError,
    redact_uri,
    wrap_query_exception,
)

SERVER_INFO_KEY = "server_info"
DEFAULT_DATABASE = "admin"


class ConnectionStatus(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    FAILED = "failed"


@dataclass
class ConnectionState:
    """Mutable connection record; only ConnectionManager writes to it."""
    client: Any = None
    database: Any = None
    database_name: Optional[str] = None
    retry_count: int = 0
    status: ConnectionStatus = ConnectionStatus.DISCONNECTED


def extract_db_name(uri: str) -> str:
    """
    Working database name from a connection string.

    Takes the last non-empty '/' segment and drops any query string. A
    remainder that is empty or contains ':' is a host:port, not a database,
    and yields 'admin'.
    """
    parts = [part for part in uri.split("/") if part]
    if not parts:
        return DEFAULT_DATABASE
    last = parts[-1].split("?", 1)[0]
    if not last or ":" in last:
        return DEFAULT_DATABASE
    return last


def backoff_delay_ms(attempt: int, base_ms: int = 1000, max_ms: int = 30000) -> int:
    """min(base * 2^attempt, max) milliseconds."""
    return min(base_ms * (2 ** attempt), max_ms)


class HeartbeatMonitor(ServerHeartbeatListener):
    """Logs failed driver heartbeats and flags the manager for a reconnect check."""

    def __init__(self, manager: "ConnectionManager"):
        self.manager = manager

    def started(self, event) -> None:
        pass

    def succeeded(self, event) -> None:
        pass

    def failed(self, event) -> None:
        logger.warning(
            f"MongoDB heartbeat to {event.connection_id} failed: {event.reply}. "
            "Will attempt to reconnect."
        )
        self.manager.request_reconnect()


class ConnectionManager:
    """
    Establishes, monitors and re-establishes the database connection.

    Args:
        config: Root configuration (mongo + retry sections are used).
        cache: Shared cache; server build info is stored in serverStatus.
        client_factory: Builds a driver client from (uri, **options).
        sleep: Awaitable sleep used between initial attempts.
    """

    def __init__(
        self,
        config: LensConfig,
        cache: MemoryCache,
        client_factory: Callable[..., Any] = AsyncMongoClient,
        sleep: Callable[[float], Any] = asyncio.sleep,
    ):
        self.config = config
        self.cache = cache
        self._client_factory = client_factory
        self._sleep = sleep
        self._uri: Optional[str] = None
        self._reconnect_requested = False
        self.state = ConnectionState()

    # ---- Accessors ------------------------------------------------- #

    @property
    def status(self) -> ConnectionStatus:
        return self.state.status

    @property
    def client(self) -> Any:
        return self.state.client

    @property
    def retry_count(self) -> int:
        return self.state.retry_count

    @property
    def reconnect_requested(self) -> bool:
        return self._reconnect_requested

    @property
    def current_database_name(self) -> Optional[str]:
        return self.state.database_name

    @property
    def current_database(self) -> Any:
        self._check_usable("database access")
        if self.state.database is None:
            raise MongoConnectionError(self._uri or "", "No database selected")
        return self.state.database

    def request_reconnect(self) -> None:
        self._reconnect_requested = True

    # ---- Connect --------------------------------------------------- #

    def _open_client(self, uri: str) -> Any:
        options: Dict[str, Any] = self.config.mongo.to_client_options()
        options["event_listeners"] = [HeartbeatMonitor(self)]
        return self._client_factory(uri, **options)

    async def _handshake(self, client: Any) -> None:
        await client.aconnect()
        await client.admin.command("ping")

    async def connect(self, uri: Optional[str] = None) -> ConnectionState:
        """
        Connect with bounded exponential backoff.

        Raises:
            MongoConnectionError: All attempts failed; the manager is FAILED.
        """
        final_uri = uri or self.config.mongo.uri
        max_attempts = self.config.retry.connect_max_attempts
        logger.info(f"Connecting to MongoDB at: {redact_uri(final_uri)}")

        self.state.status = ConnectionStatus.CONNECTING
        client = self._open_client(final_uri)

        attempt = 0
        while True:
            try:
                await self._handshake(client)
                break
            except Exception as e:
                attempt += 1
                if attempt >= max_attempts:
                    self.state.status = ConnectionStatus.FAILED
                    await self._close_quietly(client)
                    logger.error(f"MongoDB connection error: {e}")
                    raise MongoConnectionError(
                        final_uri,
                        f"Unable to connect after {attempt} attempts: {e}",
                        {"attempts": attempt},
                    ) from e
                delay_ms = backoff_delay_ms(
                    attempt, self.config.retry.base_delay_ms, self.config.retry.max_delay_ms
                )
                logger.warning(
                    f"Connection attempt {attempt} failed, retrying in {delay_ms / 1000:g} seconds..."
                )
                await self._sleep(delay_ms / 1000)

        self._uri = final_uri
        await self._on_connected(client, final_uri)
        return self.state

    async def _on_connected(self, client: Any, uri: str) -> None:
        try:
            server_info = await client.admin.command("buildInfo")
            self.cache.set(CacheNamespace.SERVER_STATUS, SERVER_INFO_KEY, server_info)
            logger.info(f"Connected to MongoDB server version: {server_info.get('version', 'unknown')}")
        except Exception as e:
            logger.warning(f"Unable to get server info: {e}")

        name = extract_db_name(uri)
        database = client[name]

        try:
            await database.command("dbStats")
        except Exception as e:
            logger.warning(f"Unable to get database stats: {e}")

        self.state.client = client
        self.state.database = database
        self.state.database_name = name
        self.state.retry_count = 0
        self.state.status = ConnectionStatus.CONNECTED
        self._reconnect_requested = False
        logger.info(f"Connected to MongoDB successfully, using database: {name}")

    # ---- Reconnect ------------------------------------------------- #

    async def reconnect(self) -> bool:
        """
        One reconnect attempt against the cumulative ceiling.

        Once the ceiling has been spent the attempt is refused without
        touching the network and the manager enters the terminal FAILED state.
        """
        ceiling = self.config.retry.reconnect_max_attempts
        if self.state.status == ConnectionStatus.FAILED:
            return False
        if self.state.retry_count >= ceiling:
            self.state.status = ConnectionStatus.FAILED
            logger.critical(
                f"Maximum reconnection attempts reached ({ceiling}). Giving up; "
                "restart the process to recover."
            )
            return False
        if self._uri is None:
            raise MongoConnectionError("", "Cannot reconnect before an initial connection")

        self.state.retry_count += 1
        self.state.status = ConnectionStatus.RECONNECTING
        logger.warning(f"Reconnection attempt {self.state.retry_count}...")

        client = self._open_client(self._uri)
        try:
            await self._handshake(client)
        except Exception as e:
            logger.error(f"Reconnection failed: {e}")
            await self._close_quietly(client)
            return False

        previous = self.state.client
        self.state.client = client
        self.state.database = client[self.state.database_name or extract_db_name(self._uri)]
        self.state.retry_count = 0
        self.state.status = ConnectionStatus.CONNECTED
        self._reconnect_requested = False
        logger.info("Reconnected to MongoDB successfully")

        if previous is not None and previous is not client:
            await self._close_quietly(previous)
        return True

    async def is_alive(self) -> bool:
        """Liveness check: a ping within the configured timeout."""
        client = self.state.client
        if client is None:
            return False
        try:
            await asyncio.wait_for(
                client.admin.command("ping"),
                timeout=self.config.retry.liveness_timeout_seconds,
            )
            return True
        except Exception as e:
            logger.debug(f"Liveness ping failed: {e}")
            return False

    async def check_connection(self) -> bool:
        """Ping the link and reconnect once if it is down. Used by the watchdog."""
        if self.state.status == ConnectionStatus.FAILED:
            return False
        if await self.is_alive():
            if self._reconnect_requested:
                logger.info("MongoDB connection healthy again after heartbeat failure")
                self._reconnect_requested = False
            return True

        logger.warning("Detected MongoDB disconnection. Attempting reconnect...")
        return await self.reconnect()

    # ---- Databases ------------------------------------------------- #

    def _check_usable(self, operation: str) -> None:
        # A client left behind by a spent reconnect ceiling must not be handed out
        if self.state.status == ConnectionStatus.FAILED and self.state.client is not None:
            attempts = self.state.retry_count
            raise ConnectionUnavailableError(operation, attempts) from ReconnectLimitError(
                self._uri or "", attempts
            )

    def _require_client(self) -> Any:
        self._check_usable("client access")
        if self.state.client is None:
            raise MongoConnectionError(self._uri or "", "Not connected to MongoDB")
        return self.state.client

    async def list_databases(self) -> List[Dict[str, Any]]:
        client = self._require_client()
        logger.debug("DB Operation: Listing databases...")
        try:
            cursor = await client.list_databases()
            databases = [db async for db in cursor]
        except Exception as e:
            raise wrap_query_exception("listDatabases", e) from e
        logger.debug(f"DB Operation: Found {len(databases)} databases.")
        return databases

    async def switch_database(self, name: str) -> Any:
        """
        Point the working handle at another existing database.

        Cached entries keyed under the previous database are left to age out.

        Raises:
            DatabaseNotFoundError: No database with that name exists.
        """
        logger.debug(f"DB Operation: Switching to database '{name}'...")
        databases = await self.list_databases()
        if not any(db.get("name") == name for db in databases):
            raise DatabaseNotFoundError(name)

        self.state.database = self._require_client()[name]
        self.state.database_name = name
        logger.info(f"Switched to database '{name}'")
        return self.state.database

    # ---- Teardown -------------------------------------------------- #

    async def _close_quietly(self, client: Any) -> None:
        try:
            await client.close()
        except Exception as e:
            logger.warning(f"Error closing MongoDB client: {e}")

    async def close(self) -> None:
        """Close the client. Safe to call repeatedly."""
        client = self.state.client
        self.state = ConnectionState()
        if client is not None:
            logger.info("Closing MongoDB client...")
            await self._close_quietly(client)
            logger.info("MongoDB client closed.")
