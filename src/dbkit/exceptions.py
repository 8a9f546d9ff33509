"""Exception hierarchy for dbkit.

Every error raised by the toolkit derives from ``DatabaseError`` and carries:

- a human readable message
- a code: one of the driver-independent ``ErrorCode`` values owned by dbkit, or a
  code passed through from the driver (usually a SQLSTATE)
- the SQL text involved, when the error concerns a statement
- the driver's native ``ErrorInfo`` tuple, when available

End-of-data is never signalled with an exception; fetch operations return ``None``.
"""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .backends.backend import ErrorInfo


class ErrorCode(str, Enum):
    """Error codes owned by dbkit (independent of any driver)."""

    FETCH_WITHOUT_EXECUTION = "CZ001"
    MISSING_COLUMN = "CZ002"
    WEAK_ERROR_MODE = "CZ096"
    NO_CONFIGURED_CONNECTIONS = "CZ097"
    NO_LIVE_CONNECTIONS = "CZ098"
    EMULATED_PREPARES = "CZ099"


class DatabaseError(Exception):
    """Base exception for dbkit errors.

    Attributes:
        message: Human readable description
        code: ``ErrorCode`` value or a driver code passed through unchanged
        sql: SQL text involved in the failure (empty when not statement related)
        error_info: Driver error tuple (sqlstate, driver code, driver message) or None
    """

    def __init__(
        self,
        message: str,
        code: str | None = None,
        *,
        sql: str = "",
        error_info: ErrorInfo | None = None,
    ):
        self.message = message
        self.code = code.value if isinstance(code, ErrorCode) else code
        self.sql = sql
        self.error_info = error_info
        super().__init__(message)

    def __str__(self) -> str:
        if self.code:
            return f"[{self.code}] {self.message}"
        return self.message

    def __repr__(self) -> str:
        """Developer-friendly representation."""
        return f"{type(self).__name__}(message={self.message!r}, code={self.code!r})"


class StatementError(DatabaseError):
    """A prepared statement failed (prepare, bind, execute or fetch)."""

    def __init__(
        self,
        sql: str,
        message: str,
        code: str | None = None,
        error_info: ErrorInfo | None = None,
    ):
        super().__init__(message, code, sql=sql, error_info=error_info)


class FetchWithoutExecutionError(StatementError):
    """Fetch attempted on a statement that was never executed successfully."""

    def __init__(self, sql: str):
        super().__init__(
            sql,
            "Fetching without previous successful execution.",
            ErrorCode.FETCH_WITHOUT_EXECUTION,
        )


class MissingColumnError(StatementError):
    """A requested column or property is absent from the result row."""

    def __init__(self, sql: str, columns: list[str]):
        self.columns = columns
        if len(columns) == 1:
            message = f"The column '{columns[0]}' is not present in the result set."
        else:
            message = f"Some columns ({', '.join(columns)}) are not present in the result set."
        super().__init__(sql, message, ErrorCode.MISSING_COLUMN)


class ConfigurationError(DatabaseError, ValueError):
    """Invalid argument or disallowed setting (programmer error)."""

    pass


class PoolError(DatabaseError):
    """Base exception for connection pool failures."""

    def __init__(self, message: str, code: str, tag: str):
        self.tag = tag
        super().__init__(message, code)


class NoConfiguredConnectionsError(PoolError):
    """No candidate connections are registered for the requested tag."""

    def __init__(self, tag: str):
        super().__init__(
            f"There are no available connections in the pool for tag '{tag}'.",
            ErrorCode.NO_CONFIGURED_CONNECTIONS,
            tag,
        )


class NoLiveConnectionError(PoolError):
    """Every candidate connection for the tag failed its liveness probe."""

    def __init__(self, tag: str, tried: int):
        self.tried = tried
        super().__init__(
            f"There are no live connections available for tag '{tag}' ({tried} tried).",
            ErrorCode.NO_LIVE_CONNECTIONS,
            tag,
        )


def error_from_driver(exc: Any, *, sql: str = "") -> DatabaseError:
    """Translate a backend ``DriverError`` into a ``DatabaseError``.

    Statement-related failures (``sql`` given) become ``StatementError``.
    """
    message = getattr(exc, "message", str(exc))
    code = getattr(exc, "code", None)
    error_info = getattr(exc, "error_info", None)
    if sql:
        return StatementError(sql, message, code, error_info)
    return DatabaseError(message, code, error_info=error_info)


__all__ = [
    "ConfigurationError",
    "DatabaseError",
    "ErrorCode",
    "FetchWithoutExecutionError",
    "MissingColumnError",
    "NoConfiguredConnectionsError",
    "NoLiveConnectionError",
    "PoolError",
    "StatementError",
    "error_from_driver",
]
