"""
Mongo Lens Domain-Specific Exceptions
=====================================

This module defines a hierarchy of exceptions for consistent error handling
across the Mongo Lens system.

Exception Hierarchy:
    MongoLensError (base)
    ├── RecoverableError (transient, retry possible)
    │   └── MongoConnectionError
    ├── IrrecoverableError (permanent, requires intervention)
    │   ├── ReconnectLimitError
    │   ├── ConfigurationError
    │   ├── ValidationError
    │   ├── NotFoundError
    │   │   ├── CollectionNotFoundError
    │   │   └── DatabaseNotFoundError
    │   ├── EmptyCollectionError
    │   ├── DependencyMissingError
    │   └── UnsupportedTransportError
    └── QueryError
        ├── PermissionDeniedError
        └── ConnectionUnavailableError

Usage Guidelines:
    - Return None for cache misses (expected case, not an error)
    - Raise exceptions for actual errors (connection failures, missing collections)
    - Always include context in error messages
    - Use error_code / rpc_code for protocol responses
"""

from typing import Optional, Any
from enum import Enum, IntEnum
import os


class ErrorCategory(Enum):
    """Categories for error classification."""
    CONNECTION = "CONNECTION"
    QUERY = "QUERY"
    SCHEMA = "SCHEMA"
    CONFIG = "CONFIG"
    VALIDATION = "VALIDATION"
    SYSTEM = "SYSTEM"


class ErrorCode(IntEnum):
    """JSON-RPC style codes reported to protocol clients."""
    SERVER_ERROR = -32000
    RESOURCE_NOT_FOUND = -32040
    RESOURCE_ACCESS_DENIED = -32041
    CONNECTION_ERROR = -32050
    QUERY_ERROR = -32051
    SCHEMA_ERROR = -32052


class MongoLensError(Exception):
    """
    Base exception for all Mongo Lens errors.

    Attributes:
        message: Human-readable error message
        error_code: Machine-readable error code for protocol responses
        rpc_code: Numeric JSON-RPC code
        context: Additional context about the error
        recoverable: Whether the error is potentially recoverable
    """

    error_code: str = "MONGO_LENS_ERROR"
    rpc_code: ErrorCode = ErrorCode.SERVER_ERROR
    recoverable: bool = True
    category: ErrorCategory = ErrorCategory.SYSTEM

    def __init__(
        self,
        message: str,
        context: Optional[dict] = None,
        error_code: Optional[str] = None,
        recoverable: Optional[bool] = None
    ):
        super().__init__(message)
        self.message = message
        self.context = context or {}
        if error_code is not None:
            self.error_code = error_code
        if recoverable is not None:
            self.recoverable = recoverable

    def __str__(self) -> str:
        if self.context:
            return f"{self.message} | context={self.context}"
        return self.message

    def to_dict(self, include_traceback: bool = False) -> dict:
        """
        Convert exception to dictionary for protocol responses.

        Args:
            include_traceback: Whether to include stack trace (only in DEBUG mode)
        """
        result = {
            "error": self.message,
            "code": self.error_code,
            "rpc_code": int(self.rpc_code),
            "recoverable": self.recoverable,
        }

        if include_traceback:
            import traceback
            result["traceback"] = traceback.format_exc()

        if self.context:
            result["context"] = self.context

        return result


# =============================================================================
# Base Categories: Recoverable vs Irrecoverable
# =============================================================================

class RecoverableError(MongoLensError):
    """
    Base class for recoverable errors.

    These are transient errors that may succeed on retry:
    - Connection failures
    - Server selection timeouts
    """
    recoverable = True


class IrrecoverableError(MongoLensError):
    """
    Base class for irrecoverable errors.

    These are permanent errors that require intervention:
    - Invalid configuration
    - Missing collections or databases
    - Empty samples
    """
    recoverable = False


# =============================================================================
# Connection Errors
# =============================================================================

class MongoConnectionError(RecoverableError):
    """Raised when the database connection cannot be established."""
    error_code = "MONGO_CONNECTION_ERROR"
    rpc_code = ErrorCode.CONNECTION_ERROR
    category = ErrorCategory.CONNECTION

    def __init__(self, uri: str, message: str = "Connection failed", context: Optional[dict] = None):
        ctx = {"uri": redact_uri(uri)}
        if context:
            ctx.update(context)
        super().__init__(message, ctx)
        self.uri = uri


class ReconnectLimitError(MongoConnectionError):
    """Raised when the cumulative reconnect ceiling has been exhausted."""
    error_code = "RECONNECT_LIMIT_ERROR"
    recoverable = False

    def __init__(self, uri: str, attempts: int, context: Optional[dict] = None):
        ctx = {"attempts": attempts}
        if context:
            ctx.update(context)
        super().__init__(
            uri,
            f"Maximum reconnection attempts reached ({attempts}). Giving up.",
            ctx,
        )
        self.attempts = attempts


# =============================================================================
# Query Errors
# =============================================================================

class QueryError(MongoLensError):
    """Raised when a database command fails; keeps the driver's message."""
    error_code = "QUERY_ERROR"
    rpc_code = ErrorCode.QUERY_ERROR
    category = ErrorCategory.QUERY

    def __init__(
        self,
        operation: str,
        reason: str,
        server_code: Optional[int] = None,
        context: Optional[dict] = None,
    ):
        ctx = {"operation": operation}
        if server_code is not None:
            ctx["server_code"] = server_code
        if context:
            ctx.update(context)
        super().__init__(f"{operation} failed: {reason}", ctx)
        self.operation = operation
        self.reason = reason
        self.server_code = server_code


class PermissionDeniedError(QueryError):
    """Raised when the server rejects a command for lack of privileges."""
    error_code = "PERMISSION_DENIED_ERROR"
    rpc_code = ErrorCode.RESOURCE_ACCESS_DENIED


class ConnectionUnavailableError(QueryError):
    """
    Raised for database operations attempted after the reconnect ceiling
    was spent. The ReconnectLimitError is chained as the cause.
    """
    error_code = "CONNECTION_UNAVAILABLE_ERROR"
    rpc_code = ErrorCode.CONNECTION_ERROR
    category = ErrorCategory.CONNECTION
    recoverable = False

    def __init__(self, operation: str, attempts: int, context: Optional[dict] = None):
        ctx = {"attempts": attempts}
        if context:
            ctx.update(context)
        super().__init__(
            operation,
            f"connection lost after {attempts} reconnection attempts; restart required",
            context=ctx,
        )
        self.attempts = attempts


# =============================================================================
# Configuration Errors
# =============================================================================

class ConfigurationError(IrrecoverableError):
    """Raised when configuration is invalid or missing."""
    error_code = "CONFIGURATION_ERROR"
    category = ErrorCategory.CONFIG

    def __init__(self, config_key: str, reason: str, context: Optional[dict] = None):
        ctx = {"config_key": config_key}
        if context:
            ctx.update(context)
        super().__init__(f"Configuration error for '{config_key}': {reason}", ctx)
        self.config_key = config_key


# =============================================================================
# Validation Errors
# =============================================================================

class ValidationError(IrrecoverableError):
    """Raised when input validation fails."""
    error_code = "VALIDATION_ERROR"
    category = ErrorCategory.VALIDATION

    def __init__(self, field: str, reason: str, value: Any = None, context: Optional[dict] = None):
        ctx = {"field": field}
        if value is not None:
            # Truncate large values
            value_str = str(value)
            if len(value_str) > 100:
                value_str = value_str[:100] + "..."
            ctx["value"] = value_str
        if context:
            ctx.update(context)
        super().__init__(f"Validation error for '{field}': {reason}", ctx)
        self.field = field
        self.reason = reason


# =============================================================================
# Not Found Errors
# =============================================================================

class NotFoundError(IrrecoverableError):
    """Raised when a requested resource is not found."""
    error_code = "NOT_FOUND_ERROR"
    rpc_code = ErrorCode.RESOURCE_NOT_FOUND
    category = ErrorCategory.SYSTEM

    def __init__(self, resource_type: str, resource_id: str, context: Optional[dict] = None):
        ctx = {"resource_type": resource_type, "resource_id": resource_id}
        if context:
            ctx.update(context)
        super().__init__(f"{resource_type} '{resource_id}' does not exist", ctx)
        self.resource_type = resource_type
        self.resource_id = resource_id


class CollectionNotFoundError(NotFoundError):
    """Raised when a collection is not present in the current database."""
    error_code = "COLLECTION_NOT_FOUND_ERROR"

    def __init__(self, collection: str, database: Optional[str] = None, context: Optional[dict] = None):
        ctx = {"database": database} if database else {}
        if context:
            ctx.update(context)
        super().__init__("Collection", collection, ctx)
        self.collection = collection


class DatabaseNotFoundError(NotFoundError):
    """Raised when a database is not present on the server."""
    error_code = "DATABASE_NOT_FOUND_ERROR"

    def __init__(self, database: str, context: Optional[dict] = None):
        super().__init__("Database", database, context)
        self.database = database


class EmptyCollectionError(IrrecoverableError):
    """Raised when schema inference draws an empty sample."""
    error_code = "EMPTY_COLLECTION_ERROR"
    rpc_code = ErrorCode.SCHEMA_ERROR
    category = ErrorCategory.SCHEMA

    def __init__(self, collection: str, context: Optional[dict] = None):
        super().__init__(f"Collection '{collection}' is empty", context)
        self.collection = collection


# =============================================================================
# Runtime Errors
# =============================================================================

class UnsupportedTransportError(IrrecoverableError, ValueError):
    """Raised when an unsupported transport is requested."""
    error_code = "UNSUPPORTED_TRANSPORT_ERROR"
    category = ErrorCategory.CONFIG

    def __init__(self, transport: str, supported_transports: Optional[list] = None, context: Optional[dict] = None):
        ctx = {"transport": transport}
        if supported_transports:
            ctx["supported_transports"] = supported_transports
        if context:
            ctx.update(context)
        msg = f"Unsupported transport: {transport}"
        if supported_transports:
            msg += f". Supported: {', '.join(supported_transports)}"
        super().__init__(msg, ctx)
        self.transport = transport


class DependencyMissingError(IrrecoverableError):
    """Raised when a required dependency is missing."""
    error_code = "DEPENDENCY_MISSING_ERROR"
    category = ErrorCategory.SYSTEM

    def __init__(self, dependency: str, message: str = "", context: Optional[dict] = None):
        ctx = {"dependency": dependency}
        if context:
            ctx.update(context)
        msg = f"Missing dependency: {dependency}"
        if message:
            msg += f". {message}"
        super().__init__(msg, ctx)
        self.dependency = dependency


# =============================================================================
# Utility Functions
# =============================================================================

# Server error codes that mean "not authorized"
_UNAUTHORIZED_CODES = {13, 18}


def wrap_query_exception(operation: str, exc: Exception) -> MongoLensError:
    """
    Wrap a driver exception into the Mongo Lens taxonomy.

    Args:
        operation: Name of the operation that failed
        exc: The original exception

    Returns:
        The exception unchanged if it already belongs to the taxonomy,
        PermissionDeniedError for authorization failures, QueryError otherwise.
    """
    if isinstance(exc, MongoLensError):
        return exc

    exc_name = type(exc).__name__
    server_code = getattr(exc, "code", None)
    if not isinstance(server_code, int):
        server_code = None
    reason = str(exc)

    ctx = {"original_exception": exc_name}
    if server_code in _UNAUTHORIZED_CODES or "not authorized" in reason.lower():
        return PermissionDeniedError(operation, reason, server_code, ctx)

    return QueryError(operation, reason, server_code, ctx)


def is_permission_error(exc: Exception) -> bool:
    """Whether a (wrapped or raw) exception is an authorization failure."""
    return isinstance(wrap_query_exception("check", exc), PermissionDeniedError)


def redact_uri(uri: str) -> str:
    """Hide the password component of a connection string."""
    if not uri or "@" not in uri or "://" not in uri:
        return uri
    scheme, rest = uri.split("://", 1)
    credentials, host = rest.rsplit("@", 1)
    if ":" in credentials:
        user = credentials.split(":", 1)[0]
        return f"{scheme}://{user}:****@{host}"
    return uri


def is_debug_mode() -> bool:
    """Check if debug mode is enabled via environment variable."""
    return os.environ.get("MONGOLENS_DEBUG", "").lower() in ("true", "1", "yes")


# =============================================================================
# Convenience Exports
# =============================================================================

__all__ = [
    # Base
    "MongoLensError",
    "RecoverableError",
    "IrrecoverableError",
    "ErrorCategory",
    "ErrorCode",
    # Connection
    "MongoConnectionError",
    "ReconnectLimitError",
    # Query
    "QueryError",
    "PermissionDeniedError",
    "ConnectionUnavailableError",
    # Config
    "ConfigurationError",
    # Validation
    "ValidationError",
    # Not Found
    "NotFoundError",
    "CollectionNotFoundError",
    "DatabaseNotFoundError",
    "EmptyCollectionError",
    # Runtime
    "UnsupportedTransportError",
    "DependencyMissingError",
    # Utilities
    "wrap_query_exception",
    "is_permission_error",
    "redact_uri",
    "is_debug_mode",
]
