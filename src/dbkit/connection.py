"""Connection to a relational database.

A ``Connection`` owns exactly one backend handle. It prepares statements, runs
statements without result sets, controls transactions and checks liveness.
Driver failures are translated into dbkit exceptions that keep the driver's message,
SQLSTATE and error tuple.

Security posture: every connection reports driver errors as exceptions and never uses
emulated (client-side) prepared statements. Both are forced on the handle when the
connection is created, and ``set_attribute`` refuses to weaken them.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from .backends.backend import (
    Attribute,
    BackendHandle,
    DatabaseEngine,
    DriverError,
    ErrorInfo,
    ErrorMode,
)
from .exceptions import ConfigurationError, ErrorCode, error_from_driver
from .params import ParamType
from .statement import Statement

logger = logging.getLogger(__name__)


class Connection:
    """Wraps one backend handle.

    Example:
        backend = SqliteBackend()
        backend.connect(ConnectionConfig(engine="sqlite", path="memory"))
        with Connection(backend) as connection:
            statement = connection.prepare("SELECT id, name FROM users WHERE id = :id")
            statement.bind_value("id", 42, "int")
            user = statement.fetch_as_array()
    """

    def __init__(self, handle: BackendHandle):
        handle.set_attribute(Attribute.ERROR_MODE, ErrorMode.EXCEPTION)
        handle.set_attribute(Attribute.EMULATE_PREPARES, False)
        self._handle = handle

    def __repr__(self) -> str:
        return f"Connection(engine={self.engine.value!r})"

    def __enter__(self) -> Connection:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    @property
    def handle(self) -> BackendHandle:
        """The wrapped backend handle."""
        return self._handle

    @property
    def engine(self) -> DatabaseEngine:
        return self._handle.engine

    def is_alive(self) -> bool:
        """Probe the backend; never raises."""
        try:
            return bool(self._handle.probe())
        except Exception as e:  # noqa: BLE001 - a failing probe means "not alive"
            logger.debug(f"Liveness probe raised: {e}")
            return False

    def error_info(self) -> ErrorInfo:
        """Driver error tuple for the last operation on the handle."""
        return self._handle.error_info()

    def prepare(self, sql: str, driver_options: dict[str, Any] | None = None) -> Statement:
        """Prepare ``sql`` for execution.

        Raises:
            StatementError: If the driver rejects the SQL
            ConfigurationError: If positional and named placeholders are mixed
        """
        try:
            prepared = self._handle.prepare(sql, driver_options)
        except DriverError as e:
            raise error_from_driver(e, sql=sql) from e
        logger.debug(f"Prepared statement: {sql}")
        return Statement(prepared, self)

    def execute(self, sql: str) -> int:
        """Run ``sql`` without a result set; return the number of affected rows.

        Raises:
            StatementError: If the driver rejects the SQL
        """
        try:
            return self._handle.execute(sql)
        except DriverError as e:
            raise error_from_driver(e, sql=sql) from e

    def quote(self, value: Any, param_type: ParamType | str = ParamType.STR) -> str:
        """Quote ``value`` as a SQL literal for this backend."""
        return self._handle.quote(value, ParamType.resolve(param_type, value))

    def last_insert_id(self, name: str | None = None) -> Any:
        """Id of the last inserted row (``name``: sequence name where relevant)."""
        try:
            return self._handle.last_insert_id(name)
        except DriverError as e:
            raise error_from_driver(e) from e

    def get_attribute(self, attribute: Attribute | str) -> Any:
        return self._handle.get_attribute(Attribute(attribute))

    def set_attribute(self, attribute: Attribute | str, value: Any) -> None:
        """Set a handle attribute.

        Raises:
            ConfigurationError: On an attempt to weaken error reporting (CZ096) or to
                enable emulated prepared statements (CZ099)
        """
        attribute = Attribute(attribute)
        if attribute is Attribute.EMULATE_PREPARES and value:
            raise ConfigurationError(
                "Emulated prepared statements are not allowed; "
                "they would be a security downgrade.",
                ErrorCode.EMULATED_PREPARES,
            )
        if attribute is Attribute.ERROR_MODE and value != ErrorMode.EXCEPTION:
            raise ConfigurationError(
                "Only the exception error mode is allowed.",
                ErrorCode.WEAK_ERROR_MODE,
            )
        self._handle.set_attribute(attribute, value)

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    def begin_transaction(self) -> None:
        self._transaction_call(self._handle.begin_transaction)

    def commit_transaction(self) -> None:
        self._transaction_call(self._handle.commit)

    def rollback_transaction(self) -> None:
        self._transaction_call(self._handle.rollback)

    def in_transaction(self) -> bool:
        return self._handle.in_transaction

    @contextmanager
    def transaction(self) -> Iterator[Connection]:
        """Run the block in a transaction: commit on success, roll back on error."""
        self.begin_transaction()
        try:
            yield self
        except BaseException:
            if self.in_transaction():
                self.rollback_transaction()
            raise
        if self.in_transaction():
            self.commit_transaction()

    def close(self) -> None:
        """Close the backend handle. Safe to call multiple times."""
        self._handle.close()

    def _transaction_call(self, operation: Any) -> None:
        try:
            operation()
        except DriverError as e:
            raise error_from_driver(e) from e


__all__ = ["Connection"]
