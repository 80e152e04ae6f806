"""
Schema Inference Engine
=======================
Infers a collection's shape from a random sample of its documents.

Inference runs in two passes. The first walks every sampled document and
collects the union of field paths; the second measures each path in each
document. Measuring against the full union keeps coverage denominators
right for fields that only show up late in the sample.

Path convention:
    - Nested sub-documents are joined with dots: ``address.city``
    - An array of sub-documents is recorded as ``items[]`` and its first
      element is walked beneath it: ``items[].sku``
    - Arrays of scalars, ObjectIds and datetimes are leaves
"""

import asyncio
import math
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Set, Tuple

from bson import Decimal128, Int64, ObjectId, Timestamp
from loguru import logger

from mongolens.core.cache import CacheNamespace, MemoryCache
from mongolens.core.config import SchemaConfig
from mongolens.core.exceptions import (
    CollectionNotFoundError,
    EmptyCollectionError,
    wrap_query_exception,
)


class TypeTag(str, Enum):
    NULL = "null"
    UNDEFINED = "undefined"
    ARRAY = "array"
    OBJECT = "object"
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    OBJECT_ID = "ObjectId"
    DATE = "Date"


# Sentinel for "path not present in this document"
MISSING = object()

ARRAY_SUFFIX = "[]"


def percent(count: int, total: int) -> int:
    """Half-up rounded percentage."""
    return int(math.floor(count * 100 / total + 0.5))


def type_tag(value: Any) -> TypeTag:
    """
    Map a decoded BSON value onto the closed TypeTag set.

    ObjectId and datetime-like values are checked before the generic
    object fallback; bool before number because bool subclasses int.
    """
    if value is None:
        return TypeTag.NULL
    if value is MISSING:
        return TypeTag.UNDEFINED
    if isinstance(value, bool):
        return TypeTag.BOOLEAN
    if isinstance(value, (list, tuple)):
        return TypeTag.ARRAY
    if isinstance(value, ObjectId):
        return TypeTag.OBJECT_ID
    if isinstance(value, (datetime, date, Timestamp)):
        return TypeTag.DATE
    if isinstance(value, (int, float, Int64, Decimal128, Decimal)):
        return TypeTag.NUMBER
    if isinstance(value, str):
        return TypeTag.STRING
    return TypeTag.OBJECT


def collect_field_paths(doc: Any, prefix: str = "", paths: Optional[Set[str]] = None) -> Set[str]:
    """
    Add every field path reachable in doc to paths and return it.

    Sub-documents are descended into. An array whose first element is a
    sub-document is recorded as ``<path>[]`` and that element is walked under
    the same prefix; any other array is a leaf at ``<path>``.
    """
    if paths is None:
        paths = set()
    if not isinstance(doc, Mapping):
        return paths

    for key, value in doc.items():
        path = f"{prefix}.{key}" if prefix else str(key)

        if isinstance(value, (list, tuple)) and value and isinstance(value[0], Mapping):
            expanded = f"{path}{ARRAY_SUFFIX}"
            paths.add(expanded)
            collect_field_paths(value[0], expanded, paths)
            continue

        paths.add(path)
        if isinstance(value, Mapping):
            collect_field_paths(value, path, paths)

    return paths


def get_nested_value(doc: Any, path: str) -> Any:
    """
    Resolve a dotted path, returning MISSING when any segment is absent.

    An inner ``key[]`` segment steps into the first element of the array at
    key, mirroring how collect_field_paths discovered it. A trailing ``key[]``
    resolves to the array itself.
    """
    current = doc
    parts = path.split(".")
    last = len(parts) - 1
    for i, part in enumerate(parts):
        if current is None or current is MISSING:
            return MISSING

        expand = part.endswith(ARRAY_SUFFIX)
        key = part[: -len(ARRAY_SUFFIX)] if expand else part

        if not isinstance(current, Mapping) or key not in current:
            return MISSING
        current = current[key]

        if expand:
            if not isinstance(current, (list, tuple)):
                return MISSING
            if i == last:
                return current
            if not current:
                return MISSING
            current = current[0]

    return current


@dataclass(frozen=True)
class FieldInfo:
    """Per-path statistics measured over a sample."""
    path: str
    types: Tuple[str, ...] = ()
    count: int = 0
    sample: Any = None
    coverage: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "path": self.path,
            "types": list(self.types),
            "count": self.count,
            "sample": self.sample,
            "coverage": self.coverage,
        }


@dataclass(frozen=True)
class SchemaReport:
    """
    Result of one inference run. Cached reports are shared between callers,
    so fields is exposed as a read-only mapping of frozen FieldInfo.
    """
    collection_name: str
    sample_size: int
    fields: Mapping[str, FieldInfo]
    timestamp: str

    def __post_init__(self):
        if not isinstance(self.fields, MappingProxyType):
            object.__setattr__(self, "fields", MappingProxyType(dict(self.fields)))

    def field_names(self) -> List[str]:
        return list(self.fields.keys())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "collection_name": self.collection_name,
            "sample_size": self.sample_size,
            "fields": {path: info.to_dict() for path, info in self.fields.items()},
            "timestamp": self.timestamp,
        }


def build_schema_report(collection_name: str, documents: List[Mapping[str, Any]]) -> SchemaReport:
    """Measure a list of already-fetched documents. Pure; no I/O."""
    if not documents:
        raise EmptyCollectionError(collection_name)

    paths: Set[str] = set()
    for doc in documents:
        collect_field_paths(doc, "", paths)

    ordered = sorted(paths)
    observed: Dict[str, Set[str]] = {path: set() for path in ordered}
    counts: Dict[str, int] = dict.fromkeys(ordered, 0)
    samples: Dict[str, Any] = dict.fromkeys(ordered)

    for doc in documents:
        for path in ordered:
            value = get_nested_value(doc, path)
            if value is MISSING:
                continue
            if samples[path] is None and value is not None:
                samples[path] = value
            observed[path].add(type_tag(value).value)
            counts[path] += 1

    total = len(documents)
    fields = {
        path: FieldInfo(
            path=path,
            types=tuple(sorted(observed[path])),
            count=counts[path],
            sample=samples[path],
            coverage=percent(counts[path], total),
        )
        for path in ordered
    }

    return SchemaReport(
        collection_name=collection_name,
        sample_size=total,
        fields=fields,
        timestamp=datetime.now(timezone.utc).isoformat(),
    )


class SchemaInferenceEngine:
    """
    Samples collections and produces cached SchemaReports.

    Args:
        connection: Object exposing ``current_database_name`` and
            ``current_database`` (the Connection Manager).
        cache: Shared MemoryCache.
        collection_exists: Async existence check keyed by collection name.
        config: Sampling parameters.
    """

    def __init__(
        self,
        connection,
        cache: MemoryCache,
        collection_exists: Callable[[str], Awaitable[bool]],
        config: Optional[SchemaConfig] = None,
    ):
        self.connection = connection
        self.cache = cache
        self.collection_exists = collection_exists
        self.config = config or SchemaConfig()
        self._inflight: Dict[str, asyncio.Lock] = {}

    def _schema_key(self, collection_name: str, sample_size: int) -> str:
        return f"{self.connection.current_database_name}.{collection_name}.{sample_size}"

    def _fields_key(self, collection_name: str) -> str:
        return f"{self.connection.current_database_name}.{collection_name}"

    async def infer_schema(self, collection_name: str, sample_size: Optional[int] = None) -> SchemaReport:
        """
        Infer the schema of collection_name from up to sample_size documents.

        Raises:
            CollectionNotFoundError: The collection does not exist.
            EmptyCollectionError: The sample came back empty.
            QueryError: The sampling aggregation failed.
        """
        if sample_size is None:
            sample_size = self.config.default_sample_size
        logger.debug(
            f"DB Operation: Inferring schema for collection '{collection_name}' "
            f"with sample size {sample_size}..."
        )

        if not await self.collection_exists(collection_name):
            raise CollectionNotFoundError(collection_name, self.connection.current_database_name)

        key = self._schema_key(collection_name, sample_size)
        cached = self.cache.get(CacheNamespace.SCHEMAS, key)
        if cached is not None:
            logger.debug(f"DB Operation: Using cached schema for '{collection_name}'")
            return cached

        # Concurrent misses on the same key share one sampling pass
        lock = self._inflight.setdefault(key, asyncio.Lock())
        try:
            async with lock:
                cached = self.cache.get(CacheNamespace.SCHEMAS, key)
                if cached is not None:
                    return cached
                return await self._infer_uncached(collection_name, sample_size, key)
        finally:
            if self._inflight.get(key) is lock and not lock.locked():
                del self._inflight[key]

    async def _infer_uncached(self, collection_name: str, sample_size: int, key: str) -> SchemaReport:
        documents = await self._sample(collection_name, sample_size)
        logger.debug(
            f"DB Operation: Retrieved {len(documents)} sample documents for schema inference."
        )

        report = build_schema_report(collection_name, documents)

        self.cache.set(CacheNamespace.SCHEMAS, key, report)
        self.cache.set(CacheNamespace.FIELDS, self._fields_key(collection_name), report.field_names())
        logger.debug(
            f"DB Operation: Schema inference complete, identified {len(report.fields)} fields."
        )
        return report

    async def _sample(self, collection_name: str, sample_size: int) -> List[Mapping[str, Any]]:
        collection = self.connection.current_database[collection_name]
        pipeline = [{"$sample": {"size": sample_size}}]

        documents: List[Mapping[str, Any]] = []
        try:
            cursor = await collection.aggregate(
                pipeline, allowDiskUse=True, batchSize=self.config.batch_size
            )
            async for doc in cursor:
                documents.append(doc)
                if len(documents) % self.config.progress_log_every == 0:
                    logger.debug(
                        f"DB Operation: Processed {len(documents)} documents for schema inference..."
                    )
        except Exception as e:
            logger.debug(f"DB Operation: Failed to infer schema: {e}")
            raise wrap_query_exception(f"Sampling '{collection_name}'", e) from e

        return documents

    async def get_fields(self, collection_name: str) -> List[str]:
        """
        Field paths for a collection, served from the fields cache when warm.

        Falls back to a small inference run. Returns an empty list when the
        collection cannot be inspected.
        """
        cached = self.cache.get(CacheNamespace.FIELDS, self._fields_key(collection_name))
        if cached is not None:
            logger.debug(f"Using cached fields for '{collection_name}'")
            return cached

        try:
            report = await self.infer_schema(collection_name, 5)
        except Exception as e:
            logger.warning(f"Error getting fields for {collection_name}: {e}")
            return []
        return report.field_names()
