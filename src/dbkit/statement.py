"""Prepared statement wrapper.

A ``Statement`` wraps one ``PreparedHandle`` and owns its execution/fetch state:

    UNEXECUTED --execute()--> EXECUTED_OK --fetch*--> ... --close_cursor()--> UNEXECUTED
    UNEXECUTED --execute()--> EXECUTED_FAILED (execute() may be called again)

With auto-execute enabled (the default) every fetch operation executes the statement
first when it has not been executed yet. Fetching from a statement that was never
executed successfully raises ``FetchWithoutExecutionError`` (CZ001).

End of data is a normal return value: single-row fetches return ``None`` and the
fetch-all operations return ``None`` for an empty result set. Driver failures are
always raised as ``StatementError``.

Result shaping (``fetch_all_as_array`` / ``fetch_all_as_object``):

    ==========  ===========  ==================================================
    index_by    group_by     result
    ==========  ===========  ==================================================
    -           -            [row, ...]
    "id"        -            {id: row, ...}
    -           "a,b"        {a: {b: [row, ...]}}
    "id"        "a,b"        {a: {b: {id: row}}}
    ==========  ===========  ==================================================

Up to three group-by columns are accepted; column existence is checked once, against
the first row.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Iterator, Mapping, Sequence
from dataclasses import dataclass
from types import SimpleNamespace
from typing import TYPE_CHECKING, Any

from .backends.backend import DriverError, ErrorInfo, PreparedHandle
from .exceptions import (
    ConfigurationError,
    FetchWithoutExecutionError,
    MissingColumnError,
    StatementError,
)
from .params import ParamType, coerce_value

if TYPE_CHECKING:
    from .connection import Connection

logger = logging.getLogger(__name__)

MAX_GROUP_BY = 3

Row = dict[str, Any]


@dataclass
class OutputSlot:
    """Caller-owned holder that ``Statement.fetch_bound`` writes column values into."""

    value: Any = None


@dataclass
class _BoundColumn:
    slot: OutputSlot
    param_type: ParamType


def parse_group_by(group_by: str | Sequence[str] | None) -> list[str]:
    """Split a comma-separated group-by list, dropping embedded spaces.

    Raises:
        ConfigurationError: If the list is empty or names more than three columns
    """
    if group_by is None:
        return []
    if isinstance(group_by, str):
        columns = group_by.replace(" ", "").split(",")
    else:
        columns = [column.replace(" ", "") for column in group_by]
    if not columns or columns == [""]:
        raise ConfigurationError("The argument group_by is not a valid string.")
    if len(columns) > MAX_GROUP_BY:
        raise ConfigurationError(
            f"You have exceeded the limit of {MAX_GROUP_BY} columns to group-by."
        )
    return columns


def shape_rows(
    rows: Iterable[Any],
    index_by: str | None,
    group_by: Sequence[str],
    get: Callable[[Any, str], Any],
) -> list[Any] | dict[Any, Any]:
    """Re-key ``rows`` by ``index_by`` and nest them under the ``group_by`` values.

    Args:
        rows: Rows (mappings or objects)
        index_by: Field whose value keys the innermost level, or None
        group_by: Fields to nest by, outermost first
        get: Reads a field from a row

    Returns:
        A list of rows, or nested dicts whose innermost level is a list of rows
        (no ``index_by``) or a dict keyed by ``index_by`` values
    """
    if not group_by:
        if index_by is None:
            return list(rows)
        return {get(row, index_by): row for row in rows}

    result: dict[Any, Any] = {}
    for row in rows:
        node = result
        for field in group_by[:-1]:
            node = node.setdefault(get(row, field), {})
        leaf = get(row, group_by[-1])
        if index_by is None:
            node.setdefault(leaf, []).append(row)
        else:
            node.setdefault(leaf, {})[get(row, index_by)] = row
    return result


def _get_item(row: Row, column: str) -> Any:
    return row[column]


class Statement:
    """A prepared SQL statement bound to one ``Connection``.

    Statements are not reentrant: do not share one between threads.

    Attributes:
        executed: ``execute`` was attempted since the last cursor close
        executed_successfully: the last ``execute`` succeeded
        auto_execute: fetch operations execute the statement when needed
    """

    def __init__(self, handle: PreparedHandle, connection: Connection | None = None):
        self._handle = handle
        self._connection = connection
        self._bound_columns: dict[int | str, _BoundColumn] = {}
        self.executed = False
        self.executed_successfully = False
        self.auto_execute = True

    def __repr__(self) -> str:
        return f"Statement(sql={self.sql!r}, executed={self.executed})"

    @property
    def sql(self) -> str:
        return self._handle.sql

    @property
    def handle(self) -> PreparedHandle:
        """The wrapped backend statement."""
        return self._handle

    @property
    def connection(self) -> Connection | None:
        """The ``Connection`` that prepared this statement."""
        return self._connection

    def error_info(self) -> ErrorInfo:
        """Driver error tuple for the last operation on this statement."""
        return self._handle.error_info()

    # ------------------------------------------------------------------
    # Binding
    # ------------------------------------------------------------------

    def bind_value(
        self, parameter: int | str, value: Any, param_type: ParamType | str = ParamType.STR
    ) -> Statement:
        """Bind a value to a placeholder.

        Args:
            parameter: 1-based position for ``?`` placeholders, name for ``:name``
            value: Value to bind (``None`` always binds as NULL)
            param_type: ParamType or token ("int", "bool", "lob", "null", "str")

        Raises:
            StatementError: If the placeholder does not exist or the value is rejected
        """
        resolved = ParamType.resolve(param_type, value)
        if not self._handle.bind_value(parameter, value, resolved):
            info = self._handle.error_info()
            raise StatementError(
                self.sql,
                f"Error binding invalid parameter [{parameter}], it was not defined.",
                info.sqlstate,
                info,
            )
        return self

    def bind_values(
        self,
        values: Mapping[str, Any] | Sequence[Any],
        param_type: ParamType | str = ParamType.STR,
    ) -> Statement:
        """Bind several values; sequences bind to positions 1..n."""
        items = values.items() if isinstance(values, Mapping) else enumerate(values, start=1)
        for parameter, value in items:
            self.bind_value(parameter, value, param_type)
        return self

    def bind_column(
        self,
        column: int | str,
        slot: OutputSlot,
        param_type: ParamType | str | None = None,
    ) -> Statement:
        """Associate a result column with ``slot`` for ``fetch_bound``.

        Args:
            column: 1-based column position or column name
            slot: Holder whose ``value`` receives the column value
            param_type: Conversion applied to the value (default string)
        """
        if isinstance(column, bool) or not isinstance(column, (int, str)):
            raise ConfigurationError(f"Invalid column reference: {column!r}")
        if column == "" or (isinstance(column, int) and column < 1):
            raise ConfigurationError(
                f"Error binding invalid column [{column}], it was not defined."
            )
        resolved = ParamType.resolve(param_type)
        if resolved is ParamType.NULL:
            resolved = ParamType.STR
        self._bound_columns[column] = _BoundColumn(slot, resolved)
        return self

    def set_auto_execute(self, flag: bool) -> Statement:
        """Enable or disable executing on the first fetch."""
        self.auto_execute = flag
        return self

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def execute(self) -> Statement:
        """Run the statement once with the currently bound values.

        Raises:
            StatementError: If the driver rejects the execution
        """
        self.executed = True
        self.executed_successfully = False
        try:
            self._handle.execute()
        except DriverError as e:
            raise self._wrap(e) from e
        self.executed_successfully = True
        return self

    @property
    def row_count(self) -> int:
        """Rows affected by the last execution (-1 when the driver cannot tell)."""
        return self._handle.row_count

    @property
    def column_count(self) -> int:
        """Number of columns in the current result set (0 without one)."""
        return self._handle.column_count

    def column_meta(self, index: int) -> dict[str, Any] | None:
        """Metadata for the 0-based column ``index``, or None when it does not exist."""
        return self._handle.column_meta(index)

    def close_cursor(self) -> None:
        """Release the result set so the statement can be executed again."""
        try:
            self._handle.close_cursor()
        except DriverError as e:
            raise self._wrap(e) from e
        self.executed = False
        self.executed_successfully = False
        logger.debug(f"Closed cursor: {self.sql}")

    def next_rowset(self) -> bool:
        """Advance to the next result set of a multi-result statement."""
        try:
            return self._handle.next_rowset()
        except DriverError as e:
            raise self._wrap(e) from e

    # ------------------------------------------------------------------
    # Single-row fetches
    # ------------------------------------------------------------------

    def fetch_as_array(self) -> Row | None:
        """Next row as a column -> value dict, or None at end of data."""
        return self._fetch_row()

    def fetch_as_object(
        self, factory: Callable[..., Any] = SimpleNamespace, args: Sequence[Any] = ()
    ) -> Any:
        """Next row built as ``factory(*args, **row)``, or None at end of data."""
        if not callable(factory):
            raise ConfigurationError("The argument factory is not callable.")
        row = self._fetch_row()
        if row is None:
            return None
        return factory(*args, **row)

    def fetch_into_object(self, obj: Any) -> Any:
        """Copy the next row onto ``obj`` as attributes; None at end of data."""
        if obj is None:
            raise ConfigurationError("The argument obj is not a valid object.")
        row = self._fetch_row()
        if row is None:
            return None
        for column, value in row.items():
            setattr(obj, column, value)
        return obj

    def fetch_bound(self) -> bool | None:
        """Fetch the next row into the slots registered with ``bind_column``.

        Returns:
            True when a row was fetched, None at end of data
        """
        row = self._fetch_row()
        if row is None:
            return None
        columns = list(row)
        for column, bound in self._bound_columns.items():
            name = column
            if isinstance(column, int) and 1 <= column <= len(columns):
                name = columns[column - 1]
            if name not in row:
                raise MissingColumnError(self.sql, [str(column)])
            try:
                bound.slot.value = coerce_value(row[name], bound.param_type)
            except (TypeError, ValueError) as e:
                raise StatementError(
                    self.sql, f"Cannot convert column '{name}': {e}"
                ) from e
        return True

    def fetch_as_column(self, column: str) -> Any:
        """Value of ``column`` in the next row, or None at end of data.

        Raises:
            MissingColumnError: If the row has no such column (CZ002)
        """
        self._check_name("column", column, required=True)
        row = self._fetch_row()
        if row is None:
            return None
        if column not in row:
            raise MissingColumnError(self.sql, [column])
        return row[column]

    # ------------------------------------------------------------------
    # Fetch-all operations
    # ------------------------------------------------------------------

    def fetch_all_as_column(
        self, column: str, index_by: str | None = None
    ) -> list[Any] | dict[Any, Any] | None:
        """Values of ``column`` for every remaining row.

        Returns:
            A list of values, a dict keyed by ``index_by`` values, or None when the
            result set is empty

        Raises:
            MissingColumnError: If ``column`` or ``index_by`` is absent (CZ002)
        """
        self._check_name("column", column, required=True)
        self._check_name("index_by", index_by)

        first = self._fetch_row()
        if first is None:
            self.close_cursor()
            return None

        try:
            missing = [
                name for name in (column, index_by) if name is not None and name not in first
            ]
            if missing:
                raise MissingColumnError(self.sql, missing)

            if index_by is None:
                return [row[column] for row in self._drain(first)]
            return {row[index_by]: row[column] for row in self._drain(first)}
        finally:
            self.close_cursor()

    def fetch_all_as_array(
        self, index_by: str | None = None, group_by: str | Sequence[str] | None = None
    ) -> list[Row] | dict[Any, Any] | None:
        """Every remaining row as dicts, optionally indexed and grouped.

        Args:
            index_by: Column whose value keys each row
            group_by: Comma-separated list of up to three columns to nest by

        Returns:
            The shaped result, or None when the result set is empty

        Raises:
            ConfigurationError: If more than three group-by columns are given
            MissingColumnError: If an index/group column is absent (CZ002)
        """
        self._check_name("index_by", index_by)
        groups = parse_group_by(group_by)

        first = self._fetch_row()
        if first is None:
            self.close_cursor()
            return None

        try:
            self._check_fields(first, index_by, groups, lambda row, name: name in row)
            return shape_rows(self._drain(first), index_by, groups, _get_item)
        finally:
            self.close_cursor()

    def fetch_all_as_object(
        self,
        factory: Callable[..., Any] = SimpleNamespace,
        args: Sequence[Any] = (),
        index_by: str | None = None,
        group_by: str | Sequence[str] | None = None,
    ) -> list[Any] | dict[Any, Any] | None:
        """Every remaining row built as ``factory(*args, **row)``.

        Shaping follows ``fetch_all_as_array`` with object attributes in place of
        columns.
        """
        if not callable(factory):
            raise ConfigurationError("The argument factory is not callable.")
        self._check_name("index_by", index_by)
        groups = parse_group_by(group_by)

        first_row = self._fetch_row()
        if first_row is None:
            self.close_cursor()
            return None

        try:
            first = factory(*args, **first_row)
            self._check_fields(first, index_by, groups, hasattr)
            objects = (factory(*args, **row) for row in self._drain(None))
            return shape_rows(_prepend(first, objects), index_by, groups, getattr)
        finally:
            self.close_cursor()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _fetch_row(self) -> Row | None:
        """Auto-execute per policy, require a successful execution, read one row."""
        if self.auto_execute and not self.executed:
            self.execute()
        if not self.executed_successfully:
            raise FetchWithoutExecutionError(self.sql)
        return self._read()

    def _read(self) -> Row | None:
        try:
            row = self._handle.fetch()
        except DriverError as e:
            raise self._wrap(e) from e
        if row is None:
            info = self._handle.error_info()
            if not info.is_clean:
                raise StatementError(
                    self.sql, info.message or "Fetch failed.", info.sqlstate, info
                )
        return row

    def _drain(self, first: Row | None) -> Iterator[Row]:
        """Yield ``first`` (when given) and then every remaining row."""
        if first is not None:
            yield first
        while (row := self._read()) is not None:
            yield row

    def _check_fields(
        self,
        first: Any,
        index_by: str | None,
        groups: list[str],
        has: Callable[[Any, str], bool],
    ) -> None:
        if index_by is not None and not has(first, index_by):
            raise MissingColumnError(self.sql, [index_by])
        missing = [name for name in groups if not has(first, name)]
        if missing:
            raise MissingColumnError(self.sql, missing)

    def _check_name(self, argument: str, value: str | None, required: bool = False) -> None:
        if value is None and not required:
            return
        if not isinstance(value, str) or value == "":
            raise ConfigurationError(f"The argument {argument} is not a valid string.")

    def _wrap(self, error: DriverError) -> StatementError:
        return StatementError(self.sql, error.message, error.code, error.error_info)


def _prepend(first: Any, rest: Iterator[Any]) -> Iterator[Any]:
    yield first
    yield from rest


__all__ = ["MAX_GROUP_BY", "OutputSlot", "Statement", "parse_group_by", "shape_rows"]
