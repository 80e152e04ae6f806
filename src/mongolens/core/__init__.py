"""
Mongo Lens Core Module
======================

Cache:
    - MemoryCache: Namespaced TTL cache with a memory-pressure valve

Schema:
    - SchemaInferenceEngine: Sampling-based schema inference
    - SchemaReport / FieldInfo: Inference results

Connection:
    - ConnectionManager: Connect with backoff, reconnect, switch database
    - ConnectionWatchdog: Periodic memory and liveness checks

Wiring:
    - Container / build_container: Explicit dependency injection
"""

from .cache import CacheNamespace, MemoryCache, MemoryStatus
from .config import LensConfig, get_config, load_config
from .connection import ConnectionManager, ConnectionStatus, extract_db_name
from .container import Container, build_container
from .database import DatabaseOperations
from .schema import FieldInfo, SchemaInferenceEngine, SchemaReport, TypeTag
from .watchdog import ConnectionWatchdog

__all__ = [
    "CacheNamespace",
    "MemoryCache",
    "MemoryStatus",
    "LensConfig",
    "get_config",
    "load_config",
    "ConnectionManager",
    "ConnectionStatus",
    "extract_db_name",
    "Container",
    "build_container",
    "DatabaseOperations",
    "FieldInfo",
    "SchemaInferenceEngine",
    "SchemaReport",
    "TypeTag",
    "ConnectionWatchdog",
]
