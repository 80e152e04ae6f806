"""
Mongo Lens Configuration System
===============================
Centralized, validated configuration with environment variable overrides.
"""

import os
from pathlib import Path
from typing import Any, Dict, Optional
from dataclasses import dataclass, field

import yaml

from mongolens.core.exceptions import ConfigurationError


SUPPORTED_TRANSPORTS = ["stdio", "sse", "streamable-http"]

DEFAULT_TOOLS = [
    "list_databases",
    "current_database",
    "use_database",
    "list_collections",
    "analyze_schema",
    "compare_schemas",
    "generate_schema_validator",
    "analyze_query_patterns",
    "collection_stats",
    "collection_indexes",
    "collection_validation",
    "find_documents",
    "count_documents",
    "aggregate_data",
    "distinct_values",
    "explain_query",
    "server_status",
    "database_users",
    "watch_changes",
    "clear_cache",
]


@dataclass(frozen=True)
class MongoConfig:
    uri: str = "mongodb://localhost:27017"
    max_pool_size: int = 20
    connect_timeout_ms: int = 30000
    socket_timeout_ms: int = 360000
    server_selection_timeout_ms: int = 30000
    heartbeat_frequency_ms: int = 10000
    retry_writes: bool = False
    retry_reads: bool = False
    extra_options: Dict[str, Any] = field(default_factory=dict)

    def to_client_options(self) -> Dict[str, Any]:
        """Keyword options for the driver client; extra_options win."""
        options = {
            "maxPoolSize": self.max_pool_size,
            "connectTimeoutMS": self.connect_timeout_ms,
            "socketTimeoutMS": self.socket_timeout_ms,
            "serverSelectionTimeoutMS": self.server_selection_timeout_ms,
            "heartbeatFrequencyMS": self.heartbeat_frequency_ms,
            "retryWrites": self.retry_writes,
            "retryReads": self.retry_reads,
        }
        options.update(self.extra_options)
        return options


@dataclass(frozen=True)
class RetryConfig:
    connect_max_attempts: int = 5
    base_delay_ms: int = 1000
    max_delay_ms: int = 30000
    reconnect_max_attempts: int = 10
    liveness_timeout_seconds: float = 5.0


@dataclass(frozen=True)
class CacheConfig:
    """TTLs in milliseconds, evaluated lazily at read time."""
    schemas_ttl_ms: int = 60 * 1000
    collections_ttl_ms: int = 30 * 1000
    stats_ttl_ms: int = 15 * 1000
    indexes_ttl_ms: int = 120 * 1000
    server_status_ttl_ms: int = 20 * 1000

    @property
    def fields_ttl_ms(self) -> int:
        return self.schemas_ttl_ms


@dataclass(frozen=True)
class WatchdogConfig:
    enabled: bool = True
    interval_seconds: float = 30.0
    memory_warning_mb: int = 1500
    memory_critical_mb: int = 2000


@dataclass(frozen=True)
class SchemaConfig:
    default_sample_size: int = 100
    batch_size: int = 50
    progress_log_every: int = 50


@dataclass(frozen=True)
class MCPConfig:
    transport: str = "stdio"
    host: str = "127.0.0.1"
    port: int = 8120
    allow_tools: list[str] = field(default_factory=lambda: list(DEFAULT_TOOLS))


@dataclass(frozen=True)
class ObservabilityConfig:
    log_level: str = "INFO"
    json_logs: bool = False


@dataclass(frozen=True)
class LensConfig:
    """Root configuration for Mongo Lens."""

    version: str = "1.0"
    mongo: MongoConfig = field(default_factory=MongoConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    watchdog: WatchdogConfig = field(default_factory=WatchdogConfig)
    schema: SchemaConfig = field(default_factory=SchemaConfig)
    mcp: MCPConfig = field(default_factory=MCPConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)


def _env_override(key: str, default):
    """Check for MONGOLENS_<KEY> environment variable override."""
    env_key = f"MONGOLENS_{key.upper()}"
    val = os.environ.get(env_key)
    if val is None:
        return default
    # Type coercion based on the default's type
    if isinstance(default, bool):
        return val.lower() in ("true", "1", "yes")
    if isinstance(default, int):
        return int(val)
    if isinstance(default, float):
        return float(val)
    return val


def _require_positive(key: str, value) -> None:
    if value is None or value <= 0:
        raise ConfigurationError(config_key=key, reason=f"must be positive, got {value}")


def _candidate_paths() -> list[Path]:
    candidates = [Path("mongolens.yaml")]
    env_path = os.environ.get("MONGOLENS_CONFIG_PATH")
    if env_path:
        candidates.insert(0, Path(env_path))
    candidates.append(Path.home() / ".mongolens.yaml")
    return candidates


def load_config(path: Optional[Path] = None) -> LensConfig:
    """
    Load configuration from YAML file with environment variable overrides.

    Priority: ENV > YAML > defaults.

    Args:
        path: Path to a YAML file. If None, searches $MONGOLENS_CONFIG_PATH,
            ./mongolens.yaml and ~/.mongolens.yaml.

    Returns:
        Validated LensConfig instance.

    Raises:
        ConfigurationError: If a value is out of range or a transport is unknown.
    """
    if path is None:
        for candidate in _candidate_paths():
            if candidate.exists():
                path = candidate
                break

    raw = {}
    if path is not None and path.exists():
        with open(path) as f:
            loaded = yaml.safe_load(f) or {}
            raw = loaded.get("lens") or {}

    # Build mongo config
    mongo_raw = raw.get("mongo") or {}
    extra_options = mongo_raw.get("options") or {}
    if not isinstance(extra_options, dict):
        raise ConfigurationError(config_key="mongo.options", reason="must be a mapping")
    mongo = MongoConfig(
        uri=_env_override("URI", mongo_raw.get("uri", "mongodb://localhost:27017")),
        max_pool_size=_env_override("MAX_POOL_SIZE", mongo_raw.get("max_pool_size", 20)),
        connect_timeout_ms=_env_override("CONNECT_TIMEOUT_MS", mongo_raw.get("connect_timeout_ms", 30000)),
        socket_timeout_ms=_env_override("SOCKET_TIMEOUT_MS", mongo_raw.get("socket_timeout_ms", 360000)),
        server_selection_timeout_ms=_env_override(
            "SERVER_SELECTION_TIMEOUT_MS", mongo_raw.get("server_selection_timeout_ms", 30000)
        ),
        heartbeat_frequency_ms=_env_override(
            "HEARTBEAT_FREQUENCY_MS", mongo_raw.get("heartbeat_frequency_ms", 10000)
        ),
        retry_writes=mongo_raw.get("retry_writes", False),
        retry_reads=mongo_raw.get("retry_reads", False),
        extra_options=dict(extra_options),
    )

    # Build retry config
    retry_raw = raw.get("retry") or {}
    retry = RetryConfig(
        connect_max_attempts=_env_override("CONNECT_MAX_ATTEMPTS", retry_raw.get("connect_max_attempts", 5)),
        base_delay_ms=retry_raw.get("base_delay_ms", 1000),
        max_delay_ms=retry_raw.get("max_delay_ms", 30000),
        reconnect_max_attempts=_env_override(
            "RECONNECT_MAX_ATTEMPTS", retry_raw.get("reconnect_max_attempts", 10)
        ),
        liveness_timeout_seconds=retry_raw.get("liveness_timeout_seconds", 5.0),
    )
    _require_positive("retry.connect_max_attempts", retry.connect_max_attempts)
    _require_positive("retry.reconnect_max_attempts", retry.reconnect_max_attempts)

    # Build cache config
    cache_raw = raw.get("cache") or {}
    cache = CacheConfig(
        schemas_ttl_ms=cache_raw.get("schemas_ttl_ms", 60 * 1000),
        collections_ttl_ms=cache_raw.get("collections_ttl_ms", 30 * 1000),
        stats_ttl_ms=cache_raw.get("stats_ttl_ms", 15 * 1000),
        indexes_ttl_ms=cache_raw.get("indexes_ttl_ms", 120 * 1000),
        server_status_ttl_ms=cache_raw.get("server_status_ttl_ms", 20 * 1000),
    )

    # Build watchdog config
    dog_raw = raw.get("watchdog") or {}
    watchdog = WatchdogConfig(
        enabled=_env_override("WATCHDOG_ENABLED", dog_raw.get("enabled", True)),
        interval_seconds=_env_override("WATCHDOG_INTERVAL_SECONDS", float(dog_raw.get("interval_seconds", 30.0))),
        memory_warning_mb=_env_override("MEMORY_WARNING_MB", dog_raw.get("memory_warning_mb", 1500)),
        memory_critical_mb=_env_override("MEMORY_CRITICAL_MB", dog_raw.get("memory_critical_mb", 2000)),
    )
    _require_positive("watchdog.interval_seconds", watchdog.interval_seconds)
    if watchdog.memory_critical_mb <= watchdog.memory_warning_mb:
        raise ConfigurationError(
            config_key="watchdog.memory_critical_mb",
            reason=(
                f"critical threshold ({watchdog.memory_critical_mb}MB) must exceed "
                f"warning threshold ({watchdog.memory_warning_mb}MB)"
            ),
        )

    # Build schema config
    schema_raw = raw.get("schema") or {}
    schema = SchemaConfig(
        default_sample_size=_env_override("SAMPLE_SIZE", schema_raw.get("default_sample_size", 100)),
        batch_size=schema_raw.get("batch_size", 50),
        progress_log_every=schema_raw.get("progress_log_every", 50),
    )
    _require_positive("schema.default_sample_size", schema.default_sample_size)

    # Build MCP config
    mcp_raw = raw.get("mcp") or {}
    mcp = MCPConfig(
        transport=_env_override("MCP_TRANSPORT", mcp_raw.get("transport", "stdio")),
        host=_env_override("MCP_HOST", mcp_raw.get("host", "127.0.0.1")),
        port=_env_override("MCP_PORT", mcp_raw.get("port", 8120)),
        allow_tools=mcp_raw.get("allow_tools", list(DEFAULT_TOOLS)),
    )
    if mcp.transport not in SUPPORTED_TRANSPORTS:
        raise ConfigurationError(
            config_key="mcp.transport",
            reason=f"'{mcp.transport}' is not one of {', '.join(SUPPORTED_TRANSPORTS)}",
        )

    # Build observability config
    obs_raw = raw.get("observability") or {}
    observability = ObservabilityConfig(
        log_level=_env_override("LOG_LEVEL", obs_raw.get("log_level", "INFO")),
        json_logs=_env_override("JSON_LOGS", obs_raw.get("json_logs", False)),
    )

    return LensConfig(
        version=raw.get("version", "1.0"),
        mongo=mongo,
        retry=retry,
        cache=cache,
        watchdog=watchdog,
        schema=schema,
        mcp=mcp,
        observability=observability,
    )


# Module-level singleton (lazy-loaded)
_CONFIG: Optional[LensConfig] = None


def get_config() -> LensConfig:
    """Get or initialize the global config singleton."""
    global _CONFIG
    if _CONFIG is None:
        _CONFIG = load_config()
    return _CONFIG


def reset_config():
    """Reset the global config singleton (useful for testing)."""
    global _CONFIG
    _CONFIG = None
