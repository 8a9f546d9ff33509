"""PostgreSQL backend handle.

This module provides the PostgreSQL backend using psycopg2.

Features:
    - Bounded connect timeout taken from the TCP endpoint
    - SSL mode passthrough (``options["sslmode"]``)
    - Statement timeout derived from the configured timeout
    - SQLSTATE and server message preserved in ``ErrorInfo``

Note:
    Requires the 'psycopg2' package: pip install dbkit[postgresql]
"""

from __future__ import annotations

import logging
import math
from typing import TYPE_CHECKING, Any

from ..params import ParamType, coerce_value
from .backend import DatabaseBackendBase, DatabaseEngine, DriverError, ErrorInfo

if TYPE_CHECKING:
    from ..config import ConnectionConfig

logger = logging.getLogger(__name__)


def _import_psycopg2() -> Any:
    """Import psycopg2 with helpful error message if not installed."""
    try:
        import psycopg2

        return psycopg2
    except ImportError as e:
        raise ImportError(
            "PostgreSQL backend requires 'psycopg2' package. "
            "Install with: pip install dbkit[postgresql]"
        ) from e


class PostgresBackend(DatabaseBackendBase):
    """PostgreSQL backend using psycopg2.

    Example:
        backend = PostgresBackend()
        backend.connect(ConnectionConfig(
            engine=DatabaseEngine.POSTGRESQL,
            endpoint=TcpEndpoint(host="localhost", port=5432),
            database="mydb",
            username="user",
            password="pass",
        ))
    """

    engine = DatabaseEngine.POSTGRESQL
    positional_style = "format"
    named_style = "pyformat"

    def connect(self, config: ConnectionConfig) -> None:
        """Open a psycopg2 connection.

        Raises:
            DriverError: If the server cannot be reached or rejects the login
            ImportError: If psycopg2 is not installed
        """
        psycopg2 = _import_psycopg2()
        if config.endpoint is None:
            raise ValueError("postgresql requires 'endpoint' parameter")

        kwargs: dict[str, Any] = {
            "host": config.endpoint.host,
            "port": config.endpoint.port,
            "dbname": config.database,
            "user": config.username,
            "password": config.password,
            "connect_timeout": max(1, math.ceil(config.endpoint.connect_timeout)),
            "options": f"-c statement_timeout={config.timeout * 1000}",
        }
        if config.options.get("sslmode"):
            kwargs["sslmode"] = config.options["sslmode"]

        try:
            conn = psycopg2.connect(**{k: v for k, v in kwargs.items() if v is not None})
        except psycopg2.Error as e:
            raise self.translate_error(e) from e

        self._configure_native(conn)
        self._conn = conn
        self._config = config
        self.set_attribute("timeout", config.timeout)
        logger.debug(
            f"Connected to PostgreSQL: {config.endpoint.host}:{config.endpoint.port}"
            f"/{config.database}"
        )

    def translate_error(self, exc: Exception) -> DriverError | None:
        psycopg2 = _import_psycopg2()
        if not isinstance(exc, psycopg2.Error):
            return None
        message = (getattr(exc, "pgerror", None) or str(exc)).strip()
        sqlstate = getattr(exc, "pgcode", None) or "HY000"
        return DriverError(message, ErrorInfo(sqlstate, sqlstate, message))

    def quote(self, value: Any, param_type: ParamType = ParamType.STR) -> str:
        param_type = ParamType.resolve(param_type, value)
        if param_type is ParamType.BOOL and value is not None:
            return "TRUE" if coerce_value(value, param_type) else "FALSE"
        if param_type is ParamType.LOB and value is not None:
            return f"'\\x{coerce_value(value, param_type).hex()}'::bytea"
        return super().quote(value, param_type)

    def _configure_native(self, native: Any) -> None:
        native.autocommit = True

    def _last_insert_id_sql(self, name: str | None) -> str:
        if name:
            return f"SELECT currval({self.quote(name)})"
        return "SELECT lastval()"


__all__ = ["PostgresBackend"]
