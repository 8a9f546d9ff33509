"""SQLite backend handle.

This module provides the SQLite backend using the stdlib sqlite3 module.

Features:
    - WAL journal for file databases
    - busy_timeout derived from the configured timeout
    - Foreign key enforcement enabled
    - Parent directory creation for file databases
    - PRAGMA configuration via ``options["sqlite_pragmas"]``
"""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path
from typing import TYPE_CHECKING, Any

from .backend import DatabaseBackendBase, DatabaseEngine, DriverError, ErrorInfo

if TYPE_CHECKING:
    from ..config import ConnectionConfig

logger = logging.getLogger(__name__)

MEMORY_PATHS = ("memory", ":memory:")


class SqliteBackend(DatabaseBackendBase):
    """SQLite backend using stdlib sqlite3.

    The connection is opened with ``isolation_level=None`` so sqlite3 never starts
    implicit transactions; ``begin_transaction`` issues an explicit BEGIN.

    Example:
        backend = SqliteBackend()
        backend.connect(ConnectionConfig(engine=DatabaseEngine.SQLITE, path="/data/app.db"))
        statement = Connection(backend).prepare("SELECT * FROM users WHERE id = ?")
    """

    engine = DatabaseEngine.SQLITE
    positional_style = "qmark"
    named_style = "named"

    DEFAULT_PRAGMAS: dict[str, str | int] = {
        "foreign_keys": "ON",
        "synchronous": "NORMAL",
    }

    def connect(self, config: ConnectionConfig) -> None:
        """Open the SQLite database named by ``config.path``.

        Creates parent directories for file databases and applies PRAGMA settings
        from ``config.options["sqlite_pragmas"]`` on top of the defaults.

        Raises:
            DriverError: If sqlite3 cannot open the database
        """
        path = config.path
        if path is None:
            raise ValueError("SQLite requires 'path' parameter")
        if path in MEMORY_PATHS:
            path = ":memory:"
        elif not path.startswith("file:"):
            Path(path).parent.mkdir(parents=True, exist_ok=True)

        try:
            conn = sqlite3.connect(
                path,
                timeout=config.timeout,
                check_same_thread=False,
                isolation_level=None,
                uri=path.startswith("file:"),
            )
        except sqlite3.Error as e:
            raise self.translate_error(e) from e

        pragmas: dict[str, Any] = {**self.DEFAULT_PRAGMAS}
        if path != ":memory:":
            pragmas["journal_mode"] = "WAL"
        pragmas["busy_timeout"] = config.timeout * 1000
        pragmas.update(config.options.get("sqlite_pragmas") or {})

        for pragma, value in pragmas.items():
            try:
                conn.execute(f"PRAGMA {pragma}={value}")
            except sqlite3.Error as e:
                logger.warning(f"Failed to set PRAGMA {pragma}={value}: {e}")

        self._configure_native(conn)
        self._conn = conn
        self._config = config
        self.set_attribute("timeout", config.timeout)
        logger.debug(f"Connected to SQLite database: {path}")

    def translate_error(self, exc: Exception) -> DriverError | None:
        if not isinstance(exc, sqlite3.Error):
            return None
        sqlstate = "23000" if isinstance(exc, sqlite3.IntegrityError) else "HY000"
        code = getattr(exc, "sqlite_errorcode", None)
        return DriverError(str(exc), ErrorInfo(sqlstate, code, str(exc)))

    def _configure_native(self, native: Any) -> None:
        native.isolation_level = None

    def _last_insert_id_sql(self, name: str | None) -> str:
        return "SELECT last_insert_rowid()"


__all__ = ["SqliteBackend"]
