"""Backend handle protocol and the DB-API 2.0 base implementation.

A backend handle is the native database session behind a ``Connection``. dbkit never
talks to a driver directly: ``Connection`` and ``Statement`` call the methods defined
by ``BackendHandle`` and ``PreparedHandle`` and only ever see ``DriverError`` for
driver-level failures.

``DatabaseBackendBase`` implements both protocols on top of any DB-API 2.0 connection.
Vendor subclasses supply the connect step, native error translation, quoting and the
driver setup that keeps the session in autocommit mode.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import TYPE_CHECKING, Any, NamedTuple, Protocol, runtime_checkable

from ..param_converter import ParamConverter, Placeholders
from ..params import ParamType, coerce_value

if TYPE_CHECKING:
    from ..config import ConnectionConfig

logger = logging.getLogger(__name__)

CLEAN_SQLSTATE = "00000"
GENERAL_ERROR_SQLSTATE = "HY000"
INVALID_PARAMETER_SQLSTATE = "HY093"


class DatabaseEngine(str, Enum):
    """Supported database engines."""

    SQLITE = "sqlite"
    POSTGRESQL = "postgresql"
    MARIADB = "mariadb"


class Attribute(str, Enum):
    """Connection attributes understood by every backend handle."""

    ERROR_MODE = "error_mode"
    EMULATE_PREPARES = "emulate_prepares"
    TIMEOUT = "timeout"
    AUTOCOMMIT = "autocommit"


class ErrorMode(str, Enum):
    """Driver error reporting modes. Only EXCEPTION is accepted by ``Connection``."""

    SILENT = "silent"
    WARNING = "warning"
    EXCEPTION = "exception"


class ErrorInfo(NamedTuple):
    """Driver error tuple: SQLSTATE, driver-specific code and driver message."""

    sqlstate: str
    driver_code: int | str | None = None
    message: str | None = None

    @classmethod
    def clean(cls) -> ErrorInfo:
        """Status reported when the last operation succeeded."""
        return cls(CLEAN_SQLSTATE)

    @property
    def is_clean(self) -> bool:
        return self.sqlstate == CLEAN_SQLSTATE


class DriverError(Exception):
    """Driver-level failure raised by backend handles.

    Attributes:
        message: Driver message
        code: SQLSTATE (or driver code when no SQLSTATE is available)
        error_info: Full driver error tuple
    """

    def __init__(self, message: str, error_info: ErrorInfo | None = None):
        self.message = message
        self.error_info = error_info or ErrorInfo(GENERAL_ERROR_SQLSTATE, None, message)
        self.code = self.error_info.sqlstate
        super().__init__(message)


@runtime_checkable
class PreparedHandle(Protocol):
    """One prepared SQL statement on a backend handle."""

    sql: str

    def bind_value(self, parameter: int | str, value: Any, param_type: ParamType) -> bool:
        """Bind a value; return False when the placeholder does not exist."""
        ...

    def execute(self) -> None:
        """Run the statement with the bound values.

        Raises:
            DriverError: If the driver rejects the statement
        """
        ...

    def fetch(self) -> dict[str, Any] | None:
        """Return the next row as a column -> value mapping, or None at end of data."""
        ...

    def close_cursor(self) -> None:
        """Release the active result set."""
        ...

    def next_rowset(self) -> bool:
        """Advance to the next result set; False when there is none."""
        ...

    @property
    def row_count(self) -> int: ...

    @property
    def column_count(self) -> int: ...

    def column_meta(self, index: int) -> dict[str, Any] | None:
        """Metadata for the 0-based result column ``index``."""
        ...

    def error_info(self) -> ErrorInfo:
        """Error status of the last operation on this statement."""
        ...


@runtime_checkable
class BackendHandle(Protocol):
    """Native database session used by ``Connection``."""

    engine: DatabaseEngine

    def prepare(self, sql: str, options: dict[str, Any] | None = None) -> PreparedHandle: ...

    def execute(self, sql: str) -> int: ...

    def last_insert_id(self, name: str | None = None) -> Any: ...

    def quote(self, value: Any, param_type: ParamType = ParamType.STR) -> str: ...

    def begin_transaction(self) -> None: ...

    def commit(self) -> None: ...

    def rollback(self) -> None: ...

    @property
    def in_transaction(self) -> bool: ...

    def probe(self) -> bool: ...

    def get_attribute(self, attribute: Attribute) -> Any: ...

    def set_attribute(self, attribute: Attribute, value: Any) -> None: ...

    def error_info(self) -> ErrorInfo: ...

    def close(self) -> None: ...


class DbApiPreparedHandle:
    """``PreparedHandle`` over a DB-API 2.0 cursor.

    The SQL is parsed for placeholders once, rewritten to the driver's paramstyle, and
    executed on a fresh cursor each time ``execute`` is called.
    """

    def __init__(self, backend: DatabaseBackendBase, sql: str, placeholders: Placeholders):
        self.sql = sql
        self._backend = backend
        self._placeholders = placeholders
        self._driver_sql = backend.converter.convert(sql)
        self._bound: dict[int | str, Any] = {}
        self._cursor: Any = None
        self._columns: list[str] = []
        self._row_count = 0
        self._error = ErrorInfo.clean()

    def bind_value(self, parameter: int | str, value: Any, param_type: ParamType) -> bool:
        key = self._placeholders.normalize_key(parameter)
        if key is None:
            self._error = ErrorInfo(
                INVALID_PARAMETER_SQLSTATE, None, f"Parameter {parameter!r} is not defined"
            )
            return False
        try:
            self._bound[key] = coerce_value(value, param_type)
        except (TypeError, ValueError) as e:
            self._error = ErrorInfo(INVALID_PARAMETER_SQLSTATE, None, str(e))
            return False
        self._error = ErrorInfo.clean()
        return True

    def execute(self) -> None:
        try:
            params = self._backend.converter.convert_params(self._placeholders, self._bound)
        except KeyError as e:
            self._error = ErrorInfo(
                INVALID_PARAMETER_SQLSTATE, None, f"No value bound for parameter {e.args[0]!r}"
            )
            raise DriverError(f"Invalid parameter number: {self._error.message}", self._error)

        self._release_cursor()
        cursor = self._backend.cursor()
        try:
            if params is None:
                cursor.execute(self._driver_sql)
            else:
                cursor.execute(self._driver_sql, params)
        except Exception as e:
            error = self._backend.translate_error(e)
            if error is None:
                raise
            self._error = error.error_info
            self._close_quietly(cursor)
            raise error from e

        self._cursor = cursor
        self._columns = [desc[0] for desc in cursor.description or ()]
        self._row_count = cursor.rowcount if cursor.rowcount is not None else -1
        self._error = ErrorInfo.clean()
        logger.debug(f"Executed statement: {self.sql}")

    def fetch(self) -> dict[str, Any] | None:
        if self._cursor is None or not self._columns:
            self._error = ErrorInfo.clean()
            return None
        try:
            row = self._cursor.fetchone()
        except Exception as e:
            error = self._backend.translate_error(e)
            if error is None:
                raise
            self._error = error.error_info
            raise error from e
        self._error = ErrorInfo.clean()
        if row is None:
            return None
        return dict(zip(self._columns, row))

    def close_cursor(self) -> None:
        self._release_cursor()
        self._error = ErrorInfo.clean()

    def next_rowset(self) -> bool:
        if self._cursor is None:
            return False
        nextset = getattr(self._cursor, "nextset", None)
        if nextset is None:
            return False
        try:
            advanced = nextset()
        except Exception as e:
            error = self._backend.translate_error(e)
            if error is None:
                raise
            self._error = error.error_info
            raise error from e
        if not advanced:
            return False
        self._columns = [desc[0] for desc in self._cursor.description or ()]
        return True

    @property
    def row_count(self) -> int:
        return self._row_count

    @property
    def column_count(self) -> int:
        return len(self._columns)

    def column_meta(self, index: int) -> dict[str, Any] | None:
        if self._cursor is None or not self._cursor.description:
            return None
        if not 0 <= index < len(self._cursor.description):
            return None
        name, type_code, display_size, internal_size, precision, scale, null_ok = (
            tuple(self._cursor.description[index]) + (None,) * 7
        )[:7]
        return {
            "name": name,
            "type_code": type_code,
            "display_size": display_size,
            "internal_size": internal_size,
            "precision": precision,
            "scale": scale,
            "null_ok": null_ok,
        }

    def error_info(self) -> ErrorInfo:
        return self._error

    def _release_cursor(self) -> None:
        if self._cursor is not None:
            self._close_quietly(self._cursor)
            self._cursor = None
        self._columns = []

    @staticmethod
    def _close_quietly(cursor: Any) -> None:
        try:
            cursor.close()
        except Exception as e:  # noqa: BLE001 - cursor already unusable
            logger.debug(f"Ignoring error while closing cursor: {e}")


class DatabaseBackendBase(ABC):
    """Abstract base class for DB-API backed handles.

    The driver connection is kept in autocommit mode; explicit transactions are opened
    and closed with SQL statements so that every driver behaves the same way.

    Subclasses set ``engine``, the driver paramstyles and implement ``connect``,
    ``translate_error`` and ``_configure_native``.
    """

    engine: DatabaseEngine
    positional_style: str = "qmark"
    named_style: str = "named"
    probe_sql: str = "SELECT 1"
    begin_sql: str = "BEGIN"

    def __init__(self, native: Any = None) -> None:
        """Initialize handle, optionally wrapping an already open driver connection."""
        self._conn: Any = None
        self._config: ConnectionConfig | None = None
        self._in_transaction = False
        self._error = ErrorInfo.clean()
        self.converter = ParamConverter(self.positional_style, self.named_style)
        self._attributes: dict[Attribute, Any] = {
            Attribute.ERROR_MODE: ErrorMode.EXCEPTION,
            Attribute.EMULATE_PREPARES: False,
            Attribute.TIMEOUT: None,
            Attribute.AUTOCOMMIT: True,
        }
        if native is not None:
            self._configure_native(native)
            self._conn = native

    @abstractmethod
    def connect(self, config: ConnectionConfig) -> None:
        """Open the driver connection described by ``config``.

        Raises:
            DriverError: If the driver cannot connect
            ImportError: If the optional driver package is not installed
        """
        pass

    @abstractmethod
    def translate_error(self, exc: Exception) -> DriverError | None:
        """Convert a native driver exception; return None for non-driver exceptions."""
        pass

    def quote(self, value: Any, param_type: ParamType = ParamType.STR) -> str:
        """Quote a value as a standard SQL literal."""
        param_type = ParamType.resolve(param_type, value)
        value = coerce_value(value, param_type)
        if value is None:
            return "NULL"
        if param_type is ParamType.INT:
            return str(value)
        if param_type is ParamType.BOOL:
            return "1" if value else "0"
        if param_type is ParamType.LOB:
            return f"X'{value.hex()}'"
        return "'" + self._escape(value) + "'"

    def _escape(self, text: str) -> str:
        return text.replace("'", "''")

    @abstractmethod
    def _configure_native(self, native: Any) -> None:
        """Put a freshly opened driver connection into autocommit mode."""
        pass

    @property
    def native(self) -> Any:
        """The wrapped driver connection."""
        return self._conn

    @property
    def is_connected(self) -> bool:
        return self._conn is not None

    def cursor(self) -> Any:
        """Create a driver cursor.

        Raises:
            DriverError: If not connected
        """
        self._ensure_connected()
        return self._conn.cursor()

    def prepare(self, sql: str, options: dict[str, Any] | None = None) -> DbApiPreparedHandle:
        """Prepare ``sql``. DB-API drivers prepare lazily; placeholders are checked here."""
        self._ensure_connected()
        if not sql.strip():
            raise DriverError(
                "Cannot prepare an empty statement",
                ErrorInfo("42000", None, "Empty query"),
            )
        placeholders = self.converter.parse(sql)
        if options:
            logger.debug(f"Ignoring driver options for DB-API backend: {sorted(options)}")
        return DbApiPreparedHandle(self, sql, placeholders)

    def execute(self, sql: str) -> int:
        """Run ``sql`` without a result set and return the affected row count."""
        affected = self._run(sql)
        return affected if affected > 0 else 0

    def last_insert_id(self, name: str | None = None) -> Any:
        """Return the last inserted row id (``name`` is a sequence for PostgreSQL)."""
        return self._scalar(self._last_insert_id_sql(name))

    def _last_insert_id_sql(self, name: str | None) -> str:
        raise DriverError(
            f"{self.engine.value} does not support last_insert_id",
            ErrorInfo("IM001", None, "Driver does not support this function"),
        )

    def begin_transaction(self) -> None:
        if self._in_transaction:
            raise DriverError(
                "There is already an active transaction",
                ErrorInfo("25001", None, "Active SQL transaction"),
            )
        self._run(self.begin_sql)
        self._in_transaction = True
        logger.debug("Started transaction")

    def commit(self) -> None:
        self._require_transaction()
        self._run("COMMIT")
        self._in_transaction = False
        logger.debug("Committed transaction")

    def rollback(self) -> None:
        self._require_transaction()
        try:
            self._run("ROLLBACK")
        finally:
            self._in_transaction = False
        logger.debug("Rolled back transaction")

    @property
    def in_transaction(self) -> bool:
        return self._in_transaction

    def probe(self) -> bool:
        """Run a minimal query; any failure means the session is not usable."""
        if self._conn is None:
            return False
        try:
            cursor = self.cursor()
            try:
                cursor.execute(self.probe_sql)
                cursor.fetchall()
            finally:
                cursor.close()
        except Exception as e:  # noqa: BLE001 - probe failure means "not alive"
            logger.debug(f"Probe failed on {self.engine.value} backend: {e}")
            return False
        return True

    def get_attribute(self, attribute: Attribute) -> Any:
        return self._attributes.get(Attribute(attribute))

    def set_attribute(self, attribute: Attribute, value: Any) -> None:
        self._attributes[Attribute(attribute)] = value

    def error_info(self) -> ErrorInfo:
        return self._error

    def close(self) -> None:
        """Close the driver connection. Safe to call multiple times."""
        if self._conn is None:
            return
        try:
            self._conn.close()
        finally:
            self._conn = None
            self._in_transaction = False
        logger.debug(f"Closed {self.engine.value} backend")

    def _run(self, sql: str) -> int:
        """Execute ``sql`` on a throwaway cursor and return the driver row count."""
        cursor = self.cursor()
        try:
            cursor.execute(sql)
            affected = cursor.rowcount if cursor.rowcount is not None else -1
        except Exception as e:
            raise self._driver_error(e) from e
        finally:
            cursor.close()
        self._error = ErrorInfo.clean()
        return affected

    def _scalar(self, sql: str) -> Any:
        """Return the first column of the first row produced by ``sql``."""
        cursor = self.cursor()
        try:
            cursor.execute(sql)
            row = cursor.fetchone()
        except Exception as e:
            raise self._driver_error(e) from e
        finally:
            cursor.close()
        self._error = ErrorInfo.clean()
        return row[0] if row else None

    def _require_transaction(self) -> None:
        if not self._in_transaction:
            raise DriverError(
                "There is no active transaction",
                ErrorInfo("25000", None, "No active SQL transaction"),
            )

    def _driver_error(self, exc: Exception) -> DriverError:
        error = self.translate_error(exc) or DriverError(str(exc))
        self._error = error.error_info
        return error

    def _ensure_connected(self) -> None:
        if self._conn is None:
            raise DriverError(
                "Not connected to database. Call connect() first.",
                ErrorInfo("08003", None, "Connection does not exist"),
            )


__all__ = [
    "Attribute",
    "BackendHandle",
    "DatabaseBackendBase",
    "DatabaseEngine",
    "DbApiPreparedHandle",
    "DriverError",
    "ErrorInfo",
    "ErrorMode",
    "PreparedHandle",
]
