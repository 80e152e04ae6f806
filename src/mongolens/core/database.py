"""
Database Operations
===================
Async data-access helpers over the Connection Manager's current handle.

Lookups that are expensive or polled often go through the cache first
(cache-aside): collections, stats, indexes and server status. Non-essential
diagnostics (server status, users, replica set status, performance
metrics) degrade to a partial result carrying an ``error`` entry instead
of raising.
"""

import asyncio
from typing import Any, Dict, List, Optional

from loguru import logger

from mongolens.core.cache import CacheNamespace, MemoryCache
from mongolens.core.connection import SERVER_INFO_KEY, ConnectionManager
from mongolens.core.exceptions import (
    CollectionNotFoundError,
    ValidationError,
    is_permission_error,
    wrap_query_exception,
)

SERVER_STATUS_KEY = "server_status"
WATCHABLE_OPERATIONS = ("insert", "update", "delete", "replace")
EXPLAIN_VERBOSITIES = ("queryPlanner", "executionStats", "allPlansExecution")
AGGREGATE_RESULT_LIMIT = 100


class DatabaseOperations:
    """
    Helper layer used by protocol handlers and derived helpers.

    Args:
        connection: The Connection Manager owning the live handle.
        cache: Shared MemoryCache.
    """

    def __init__(self, connection: ConnectionManager, cache: MemoryCache):
        self.connection = connection
        self.cache = cache

    @property
    def db_name(self) -> Optional[str]:
        return self.connection.current_database_name

    def _coll_key(self, collection_name: str) -> str:
        return f"{self.db_name}.{collection_name}"

    # ---- Databases ------------------------------------------------ #

    async def list_databases(self) -> List[Dict[str, Any]]:
        return await self.connection.list_databases()

    async def get_database_stats(self) -> Dict[str, Any]:
        logger.debug(f"DB Operation: Getting statistics for database '{self.db_name}'...")
        try:
            stats = await self.connection.current_database.command("dbStats")
        except Exception as e:
            raise wrap_query_exception("dbStats", e) from e
        logger.debug("DB Operation: Retrieved database statistics.")
        return dict(stats)

    async def get_server_status(self) -> Dict[str, Any]:
        """serverStatus, cached; degrades to a dict with an ``error`` entry."""
        logger.debug("DB Operation: Getting server status...")
        cached = self.cache.get(CacheNamespace.SERVER_STATUS, SERVER_STATUS_KEY)
        if cached is not None:
            logger.debug("DB Operation: Using cached server status")
            return cached

        try:
            status = dict(await self.connection.client.admin.command("serverStatus"))
        except Exception as e:
            logger.warning(f"DB Operation: Error getting server status: {e}")
            return {
                "host": self._client_address(),
                "version": "Information unavailable",
                "error": str(e),
            }

        logger.debug("DB Operation: Retrieved server status.")
        self.cache.set(CacheNamespace.SERVER_STATUS, SERVER_STATUS_KEY, status)
        return status

    def _client_address(self) -> str:
        client = self.connection.client
        address = getattr(client, "address", None) if client is not None else None
        if not address:
            return "unknown"
        host, port = address
        return f"{host}:{port}"

    def get_server_info(self) -> Optional[Dict[str, Any]]:
        """Build info captured at connect time, if it has not aged out."""
        return self.cache.get(
            CacheNamespace.SERVER_STATUS,
            SERVER_INFO_KEY,
            ttl_ms=float("inf"),
        )

    async def get_database_users(self) -> Dict[str, Any]:
        logger.debug(f"DB Operation: Getting users for database '{self.db_name}'...")
        try:
            result = await self.connection.current_database.command("usersInfo")
        except Exception as e:
            logger.warning(f"DB Operation: Error getting users: {e}")
            return {
                "users": [],
                "info": "Could not retrieve user information. You may not have sufficient permissions.",
                "error": str(e),
                "permission_denied": is_permission_error(e),
            }
        logger.debug("DB Operation: Retrieved user information.")
        return dict(result)

    # ---- Collections ---------------------------------------------- #

    async def list_collections(self) -> List[Dict[str, Any]]:
        logger.debug(f"DB Operation: Listing collections in database '{self.db_name}'...")
        database = self.connection.current_database
        key = self.db_name or ""
        cached = self.cache.get(CacheNamespace.COLLECTIONS, key)
        if cached is not None:
            logger.debug(f"DB Operation: Using cached collections list for '{key}'")
            return cached

        try:
            cursor = await database.list_collections()
            collections = [dict(info) async for info in cursor]
        except Exception as e:
            raise wrap_query_exception("listCollections", e) from e

        logger.debug(f"DB Operation: Found {len(collections)} collections.")
        self.cache.set(CacheNamespace.COLLECTIONS, key, collections)
        return collections

    async def collection_exists(self, collection_name: str) -> bool:
        """Live check; never served from cache."""
        try:
            names = await self.connection.current_database.list_collection_names()
        except Exception as e:
            raise wrap_query_exception("listCollections", e) from e
        return collection_name in names

    async def ensure_collection_exists(self, collection_name: str) -> None:
        if not await self.collection_exists(collection_name):
            raise CollectionNotFoundError(collection_name, self.db_name)

    async def get_collection_stats(self, collection_name: str) -> Dict[str, Any]:
        logger.debug(f"DB Operation: Getting statistics for collection '{collection_name}'...")
        await self.ensure_collection_exists(collection_name)

        key = self._coll_key(collection_name)
        cached = self.cache.get(CacheNamespace.STATS, key)
        if cached is not None:
            logger.debug(f"DB Operation: Using cached stats for '{collection_name}'")
            return cached

        try:
            stats = dict(await self.connection.current_database.command("collStats", collection_name))
        except Exception as e:
            raise wrap_query_exception(f"collStats '{collection_name}'", e) from e

        logger.debug(f"DB Operation: Retrieved statistics for collection '{collection_name}'.")
        self.cache.set(CacheNamespace.STATS, key, stats)
        return stats

    async def get_collection_indexes(self, collection_name: str) -> List[Dict[str, Any]]:
        """
        Index definitions, each augmented with ``usage`` from $indexStats.

        Usage augmentation is best-effort: when $indexStats is unavailable the
        definitions are returned without it and the reason is logged.
        """
        logger.debug(f"DB Operation: Getting indexes for collection '{collection_name}'...")
        await self.ensure_collection_exists(collection_name)

        key = self._coll_key(collection_name)
        cached = self.cache.get(CacheNamespace.INDEXES, key)
        if cached is not None:
            logger.debug(f"DB Operation: Using cached indexes for '{collection_name}'")
            return cached

        collection = self.connection.current_database[collection_name]
        try:
            cursor = await collection.list_indexes()
            indexes = [dict(index) async for index in cursor]
        except Exception as e:
            raise wrap_query_exception(f"listIndexes '{collection_name}'", e) from e
        logger.debug(
            f"DB Operation: Retrieved {len(indexes)} indexes for collection '{collection_name}'."
        )

        try:
            cursor = await collection.aggregate([{"$indexStats": {}}])
            usage = {stat["name"]: stat.get("accesses", {}) async for stat in cursor}
            for index in indexes:
                if index.get("name") in usage:
                    index["usage"] = dict(usage[index["name"]])
        except Exception as e:
            logger.warning(f"DB Operation: Index usage stats not available: {e}")

        self.cache.set(CacheNamespace.INDEXES, key, indexes)
        return indexes

    async def get_collection_validation(self, collection_name: str) -> Dict[str, Any]:
        logger.debug(f"DB Operation: Getting validation rules for collection '{collection_name}'...")
        await self.ensure_collection_exists(collection_name)

        try:
            cursor = await self.connection.current_database.list_collections(
                filter={"name": collection_name}
            )
            infos = [info async for info in cursor]
        except Exception as e:
            raise wrap_query_exception(f"listCollections '{collection_name}'", e) from e

        if not infos:
            return {"has_validation": False}

        options = infos[0].get("options") or {}
        return {
            "has_validation": bool(options.get("validator")),
            "validator": options.get("validator") or {},
            "validation_level": options.get("validationLevel", "strict"),
            "validation_action": options.get("validationAction", "error"),
        }

    async def get_profiled_queries(self, collection_name: str, limit: int = 100) -> List[Dict[str, Any]]:
        """Recent profiler entries for a collection; [] when profiling is off or denied."""
        namespace = self._coll_key(collection_name)
        try:
            cursor = (
                self.connection.current_database["system.profile"]
                .find({"ns": namespace, "op": "query"})
                .sort("ts", -1)
                .limit(limit)
            )
            entries = [dict(entry) async for entry in cursor]
        except Exception as e:
            logger.warning(f"DB Operation: Query profile not available for '{namespace}': {e}")
            return []
        logger.debug(f"DB Operation: Retrieved {len(entries)} profiled queries for '{namespace}'.")
        return entries

    # ---- Documents ------------------------------------------------ #

    async def find_documents(
        self,
        collection_name: str,
        filter: Optional[Dict[str, Any]] = None,
        projection: Optional[Dict[str, Any]] = None,
        limit: int = 10,
        skip: int = 0,
        sort: Optional[Dict[str, Any]] = None,
    ) -> List[Dict[str, Any]]:
        logger.debug(f"DB Operation: Finding documents in collection '{collection_name}'...")
        await self.ensure_collection_exists(collection_name)

        try:
            cursor = self.connection.current_database[collection_name].find(filter or {}, projection or None)
            if sort:
                cursor = cursor.sort(list(sort.items()))
            documents = await cursor.skip(skip).limit(limit).to_list(length=limit)
        except Exception as e:
            raise wrap_query_exception(f"find '{collection_name}'", e) from e

        logger.debug(f"DB Operation: Found {len(documents)} documents.")
        return [dict(doc) for doc in documents]

    async def count_documents(self, collection_name: str, filter: Optional[Dict[str, Any]] = None) -> int:
        logger.debug(f"DB Operation: Counting documents in collection '{collection_name}'...")
        await self.ensure_collection_exists(collection_name)
        try:
            count = await self.connection.current_database[collection_name].count_documents(filter or {})
        except Exception as e:
            raise wrap_query_exception(f"count '{collection_name}'", e) from e
        logger.debug(f"DB Operation: Count result: {count} documents.")
        return count

    async def aggregate(
        self,
        collection_name: str,
        pipeline: List[Dict[str, Any]],
        max_results: int = AGGREGATE_RESULT_LIMIT,
    ) -> List[Dict[str, Any]]:
        """
        Run an aggregation pipeline with disk use allowed.

        Only the first ``max_results`` output documents are materialized.
        """
        logger.debug(
            f"DB Operation: Running aggregation on collection '{collection_name}' "
            f"({len(pipeline)} stages)..."
        )
        await self.ensure_collection_exists(collection_name)
        try:
            cursor = await self.connection.current_database[collection_name].aggregate(
                pipeline, allowDiskUse=True
            )
            results = await cursor.to_list(length=max_results)
        except Exception as e:
            raise wrap_query_exception(f"aggregate '{collection_name}'", e) from e
        logger.debug(f"DB Operation: Aggregation returned {len(results)} results.")
        return [dict(doc) for doc in results]

    async def get_distinct_values(
        self,
        collection_name: str,
        field: str,
        filter: Optional[Dict[str, Any]] = None,
    ) -> List[Any]:
        logger.debug(
            f"DB Operation: Getting distinct values for field '{field}' in collection '{collection_name}'..."
        )
        await self.ensure_collection_exists(collection_name)
        try:
            values = await self.connection.current_database[collection_name].distinct(field, filter or {})
        except Exception as e:
            raise wrap_query_exception(f"distinct '{collection_name}.{field}'", e) from e
        logger.debug(f"DB Operation: Found {len(values)} distinct values.")
        return list(values)

    async def explain_query(
        self,
        collection_name: str,
        filter: Optional[Dict[str, Any]] = None,
        verbosity: str = "executionStats",
    ) -> Dict[str, Any]:
        if verbosity not in EXPLAIN_VERBOSITIES:
            raise ValidationError(
                field="verbosity",
                reason=f"expected one of {', '.join(EXPLAIN_VERBOSITIES)}",
                value=verbosity,
            )
        logger.debug(
            f"DB Operation: Explaining query on collection '{collection_name}' (verbosity: {verbosity})..."
        )
        await self.ensure_collection_exists(collection_name)
        try:
            explanation = await self.connection.current_database.command(
                {"explain": {"find": collection_name, "filter": filter or {}}, "verbosity": verbosity}
            )
        except Exception as e:
            raise wrap_query_exception(f"explain '{collection_name}'", e) from e
        logger.debug("DB Operation: Query explanation generated.")
        return dict(explanation)

    # ---- Server diagnostics --------------------------------------- #

    async def get_replica_status(self) -> Dict[str, Any]:
        """replSetGetStatus; standalone servers and denied callers get a degraded dict."""
        logger.debug("DB Operation: Getting replica set status...")
        try:
            status = dict(await self.connection.client.admin.command("replSetGetStatus"))
        except Exception as e:
            logger.warning(f"DB Operation: Error getting replica set status: {e}")
            return {
                "is_replica_set": False,
                "info": (
                    "This server is not part of a replica set or you may not have "
                    "permissions to view replica set status."
                ),
                "error": str(e),
            }
        logger.debug("DB Operation: Retrieved replica set status.")
        status["is_replica_set"] = True
        return status

    async def get_performance_metrics(self) -> Dict[str, Any]:
        """
        Server counters, profiler settings, slow in-flight operations and
        database stats in one snapshot. Degrades to ``{"error": ...}``.
        """
        logger.debug("DB Operation: Getting performance metrics...")
        try:
            admin = self.connection.client.admin
            database = self.connection.current_database
            server_status = await admin.command("serverStatus")
            profile = await database.command({"profile": -1})
            current_ops = await admin.command(
                {"currentOp": 1, "active": True, "secs_running": {"$gt": 1}}
            )
            db_stats = await database.command("dbStats")
        except Exception as e:
            logger.warning(f"DB Operation: Error getting performance metrics: {e}")
            return {"error": str(e)}

        logger.debug("DB Operation: Retrieved performance metrics.")
        return {
            "server_status": {
                "connections": server_status.get("connections"),
                "network": server_status.get("network"),
                "opcounters": server_status.get("opcounters"),
                "wired_tiger": (server_status.get("wiredTiger") or {}).get("cache"),
                "mem": server_status.get("mem"),
                "locks": server_status.get("locks"),
            },
            "profile_settings": dict(profile),
            "current_operations": list(current_ops.get("inprog", [])),
            "performance": dict(db_stats),
        }

    # ---- Change streams ------------------------------------------- #

    async def watch_changes(
        self,
        collection_name: str,
        operations: Optional[List[str]] = None,
        duration_seconds: float = 10,
        full_document: bool = False,
    ) -> List[Dict[str, Any]]:
        """
        Collect change events for a fixed wall-clock window.

        The stream is always closed when the window elapses, however many
        events arrived.
        """
        operations = list(operations or ["insert", "update", "delete"])
        unknown = [op for op in operations if op not in WATCHABLE_OPERATIONS]
        if unknown:
            raise ValidationError(
                field="operations",
                reason=f"unsupported operation types; expected any of {', '.join(WATCHABLE_OPERATIONS)}",
                value=unknown,
            )
        logger.debug(f"DB Operation: Watching collection '{collection_name}' for changes...")
        await self.ensure_collection_exists(collection_name)

        pipeline = [{"$match": {"operationType": {"$in": operations}}}]
        kwargs: Dict[str, Any] = {"max_await_time_ms": int(min(duration_seconds, 1) * 1000)}
        if full_document:
            kwargs["full_document"] = "updateLookup"

        collection = self.connection.current_database[collection_name]
        try:
            stream = await collection.watch(pipeline, **kwargs)
        except Exception as e:
            raise wrap_query_exception(f"watch '{collection_name}'", e) from e

        loop = asyncio.get_running_loop()
        deadline = loop.time() + duration_seconds
        changes: List[Dict[str, Any]] = []
        try:
            while loop.time() < deadline:
                change = await stream.try_next()
                if change is not None:
                    changes.append(dict(change))
        except Exception as e:
            raise wrap_query_exception(f"watch '{collection_name}'", e) from e
        finally:
            try:
                await stream.close()
            except Exception as e:
                logger.warning(f"Error closing change stream: {e}")

        logger.debug(f"DB Operation: Collected {len(changes)} change events from '{collection_name}'.")
        return changes
