"""Backend handles: the native database sessions wrapped by ``Connection``.

Backends:
    - SqliteBackend (stdlib sqlite3, always available)
    - PostgresBackend (requires psycopg2: pip install dbkit[postgresql])
    - MariaDBBackend (requires mysql-connector-python: pip install dbkit[mariadb])

Optional drivers are imported when a backend connects, so importing this package never
fails because a driver is missing.

Usage:
    from dbkit.backends import backend_for
    from dbkit.config import ConnectionConfig

    backend = backend_for("sqlite")
    backend.connect(ConnectionConfig(engine="sqlite", path="memory"))
"""

from .backend import (
    Attribute,
    BackendHandle,
    DatabaseBackendBase,
    DatabaseEngine,
    DbApiPreparedHandle,
    DriverError,
    ErrorInfo,
    ErrorMode,
    PreparedHandle,
)
from .mariadb_backend import MariaDBBackend
from .postgres_backend import PostgresBackend
from .sqlite_backend import SqliteBackend

BACKENDS: dict[DatabaseEngine, type[DatabaseBackendBase]] = {
    DatabaseEngine.SQLITE: SqliteBackend,
    DatabaseEngine.POSTGRESQL: PostgresBackend,
    DatabaseEngine.MARIADB: MariaDBBackend,
}


def backend_for(engine: DatabaseEngine | str) -> DatabaseBackendBase:
    """Create an unconnected backend handle for ``engine``."""
    try:
        return BACKENDS[DatabaseEngine(engine)]()
    except (KeyError, ValueError) as e:
        raise ValueError(f"Unsupported engine: {engine}") from e


__all__ = [
    # Core types
    "Attribute",
    "BackendHandle",
    "DatabaseBackendBase",
    "DatabaseEngine",
    "DbApiPreparedHandle",
    "DriverError",
    "ErrorInfo",
    "ErrorMode",
    "PreparedHandle",
    # Backends
    "BACKENDS",
    "MariaDBBackend",
    "PostgresBackend",
    "SqliteBackend",
    "backend_for",
]
