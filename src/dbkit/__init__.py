"""Database access toolkit: prepared statements, connections and a failover pool.

Features:
    - Prepared statements with an explicit execute/fetch lifecycle and auto-execute
    - Result shaping: index-by keys and up to three levels of group-by nesting
    - Portable ``?`` / ``:name`` placeholders over SQLite, PostgreSQL and MariaDB
    - Connections that always raise on driver errors and never emulate prepares
    - Tag-based connection pool with random or sequential failover
    - YAML pool configuration validated with Pydantic

Usage:
    from dbkit import Connection, ConnectionConfig, ConnectionPool, SelectionMode

    connection = ConnectionConfig(engine="sqlite", path="memory").build_connection()
    statement = connection.prepare("SELECT id, name FROM users WHERE team = :team")
    statement.bind_value("team", "core")
    users = statement.fetch_all_as_array(index_by="id")

    pool = ConnectionPool(SelectionMode.SEQUENTIAL)
    pool.add_connection(connection, "replica")
    replica = pool.get_connection("replica")
"""

from .backends import (
    Attribute,
    BackendHandle,
    DatabaseBackendBase,
    DatabaseEngine,
    DriverError,
    ErrorInfo,
    ErrorMode,
    MariaDBBackend,
    PostgresBackend,
    PreparedHandle,
    SqliteBackend,
    backend_for,
)
from .config import (
    ConnectionConfig,
    PoolConfig,
    PoolConfigLoader,
    TcpEndpoint,
    build_pool,
    probe_endpoint,
)
from .connection import Connection
from .exceptions import (
    ConfigurationError,
    DatabaseError,
    ErrorCode,
    FetchWithoutExecutionError,
    MissingColumnError,
    NoConfiguredConnectionsError,
    NoLiveConnectionError,
    PoolError,
    StatementError,
)
from .params import ParamType
from .pool import ConnectionPool, SelectionMode
from .statement import OutputSlot, Statement

__all__ = [
    # Core
    "Connection",
    "ConnectionPool",
    "OutputSlot",
    "ParamType",
    "SelectionMode",
    "Statement",
    # Configuration
    "ConnectionConfig",
    "PoolConfig",
    "PoolConfigLoader",
    "TcpEndpoint",
    "build_pool",
    "probe_endpoint",
    # Backends
    "Attribute",
    "BackendHandle",
    "DatabaseBackendBase",
    "DatabaseEngine",
    "DriverError",
    "ErrorInfo",
    "ErrorMode",
    "MariaDBBackend",
    "PostgresBackend",
    "PreparedHandle",
    "SqliteBackend",
    "backend_for",
    # Exceptions
    "ConfigurationError",
    "DatabaseError",
    "ErrorCode",
    "FetchWithoutExecutionError",
    "MissingColumnError",
    "NoConfiguredConnectionsError",
    "NoLiveConnectionError",
    "PoolError",
    "StatementError",
]
