"""MariaDB/MySQL backend handle.

This module provides the MariaDB backend using mysql.connector.

Features:
    - Compatible with MySQL 5.7+ and MariaDB 10.2+
    - Buffered cursors, so a half-read result never blocks the next statement
    - Multi-result statements via ``next_rowset``
    - SQLSTATE and server error number preserved in ``ErrorInfo``

Note:
    Requires the 'mysql-connector-python' package: pip install dbkit[mariadb]
"""

from __future__ import annotations

import logging
import math
from typing import TYPE_CHECKING, Any

from .backend import DatabaseBackendBase, DatabaseEngine, DriverError, ErrorInfo

if TYPE_CHECKING:
    from ..config import ConnectionConfig

logger = logging.getLogger(__name__)


def _import_mysql_connector() -> Any:
    """Import mysql.connector with helpful error message if not installed."""
    try:
        import mysql.connector

        return mysql.connector
    except ImportError as e:
        raise ImportError(
            "MariaDB backend requires 'mysql-connector-python' package. "
            "Install with: pip install dbkit[mariadb]"
        ) from e


class MariaDBBackend(DatabaseBackendBase):
    """MariaDB/MySQL backend using mysql.connector.

    Example:
        backend = MariaDBBackend()
        backend.connect(ConnectionConfig(
            engine=DatabaseEngine.MARIADB,
            endpoint=TcpEndpoint(host="localhost", port=3306),
            database="mydb",
            username="user",
            password="pass",
        ))
    """

    engine = DatabaseEngine.MARIADB
    positional_style = "format"
    named_style = "pyformat"
    begin_sql = "START TRANSACTION"

    def connect(self, config: ConnectionConfig) -> None:
        """Open a mysql.connector connection.

        Raises:
            DriverError: If the server cannot be reached or rejects the login
            ImportError: If mysql-connector-python is not installed
        """
        connector = _import_mysql_connector()
        if config.endpoint is None:
            raise ValueError("mariadb requires 'endpoint' parameter")

        try:
            conn = connector.connect(
                host=config.endpoint.host,
                port=config.endpoint.port,
                database=config.database,
                user=config.username,
                password=config.password or "",
                connection_timeout=max(1, math.ceil(config.endpoint.connect_timeout)),
                charset=config.options.get("charset", "utf8mb4"),
            )
        except connector.Error as e:
            raise self.translate_error(e) from e

        self._configure_native(conn)
        self._conn = conn
        self._config = config
        self.set_attribute("timeout", config.timeout)
        logger.debug(
            f"Connected to MariaDB: {config.endpoint.host}:{config.endpoint.port}"
            f"/{config.database}"
        )

    def cursor(self) -> Any:
        self._ensure_connected()
        return self._conn.cursor(buffered=True)

    def translate_error(self, exc: Exception) -> DriverError | None:
        connector = _import_mysql_connector()
        if not isinstance(exc, connector.Error):
            return None
        message = getattr(exc, "msg", None) or str(exc)
        sqlstate = getattr(exc, "sqlstate", None) or "HY000"
        return DriverError(message, ErrorInfo(sqlstate, getattr(exc, "errno", None), message))

    def _escape(self, text: str) -> str:
        return text.replace("\\", "\\\\").replace("'", "''")

    def _configure_native(self, native: Any) -> None:
        native.autocommit = True

    def _last_insert_id_sql(self, name: str | None) -> str:
        return "SELECT LAST_INSERT_ID()"


__all__ = ["MariaDBBackend"]
