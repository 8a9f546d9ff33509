"""Tests for the prepared statement wrapper.

Exercises the execute/fetch lifecycle, binding and result shaping against an
in-memory SQLite database (see conftest.py for the seeded tables).
"""

from __future__ import annotations

from dataclasses import dataclass
from types import SimpleNamespace
from typing import Any
from unittest.mock import MagicMock

import pytest

from dbkit import (
    ConfigurationError,
    Connection,
    ErrorCode,
    ErrorInfo,
    FetchWithoutExecutionError,
    MissingColumnError,
    OutputSlot,
    ParamType,
    PreparedHandle,
    Statement,
    StatementError,
)
from dbkit.statement import parse_group_by, shape_rows

PEOPLE_SQL = "SELECT id, team, role, name FROM people ORDER BY id"


def nesting_depth(value: Any) -> int:
    """Number of dict levels above the rows (rows themselves are dicts with 'id')."""
    depth = 0
    while isinstance(value, dict) and "id" not in value:
        value = next(iter(value.values()))
        depth += 1
    return depth


def row(id_: int, team: str, role: str, name: str) -> dict[str, Any]:
    return {"id": id_, "team": team, "role": role, "name": name}


ANN = row(1, "core", "dev", "ann")
BOB = row(2, "core", "dev", "bob")
CID = row(3, "core", "ops", "cid")
DAN = row(4, "web", "dev", "dan")


# ============================================================================
# Group-by parsing and shaping helpers
# ============================================================================


class TestParseGroupBy:
    """Tests for group-by list parsing."""

    def test_strips_spaces(self) -> None:
        """Embedded spaces are dropped."""
        assert parse_group_by(" team , role ") == ["team", "role"]

    def test_accepts_sequence(self) -> None:
        """A list of names is accepted as-is."""
        assert parse_group_by(["team", "role"]) == ["team", "role"]

    def test_none_means_no_grouping(self) -> None:
        """None yields no group columns."""
        assert parse_group_by(None) == []

    def test_more_than_three_rejected(self) -> None:
        """Four group-by columns is a configuration error."""
        with pytest.raises(ConfigurationError, match="limit of 3"):
            parse_group_by("a,b,c,d")

    def test_empty_string_rejected(self) -> None:
        """An empty group-by string is a configuration error."""
        with pytest.raises(ConfigurationError):
            parse_group_by("  ")


class TestShapeRows:
    """Tests for the pure shaping function."""

    def test_index_by_last_row_wins(self) -> None:
        """Duplicate index keys keep the last row."""
        rows = [{"k": 1, "v": "first"}, {"k": 1, "v": "second"}]
        result = shape_rows(rows, "k", [], lambda r, f: r[f])
        assert result == {1: {"k": 1, "v": "second"}}

    def test_no_shaping_returns_list(self) -> None:
        """Without index/group the rows come back as a list."""
        rows = iter([{"k": 1}, {"k": 2}])
        assert shape_rows(rows, None, [], lambda r, f: r[f]) == [{"k": 1}, {"k": 2}]


# ============================================================================
# Execution lifecycle
# ============================================================================


class TestExecutionLifecycle:
    """Tests for the execute/fetch state machine."""

    def test_auto_execute_on_first_fetch(self, connection: Connection) -> None:
        """A fetch executes the statement when it has not been executed yet."""
        statement = connection.prepare("SELECT id, name FROM t ORDER BY id")
        assert statement.executed is False

        first = statement.fetch_as_array()

        assert first == {"id": 1, "name": "a"}
        assert statement.executed is True
        assert statement.executed_successfully is True

    def test_fetch_without_execution_raises_cz001(self, connection: Connection) -> None:
        """With auto-execute disabled, fetching before execute fails with CZ001."""
        statement = connection.prepare("SELECT id FROM t").set_auto_execute(False)

        with pytest.raises(FetchWithoutExecutionError) as exc_info:
            statement.fetch_as_array()

        assert exc_info.value.code == ErrorCode.FETCH_WITHOUT_EXECUTION.value
        assert exc_info.value.sql == "SELECT id FROM t"

    def test_explicit_execute_with_auto_execute_disabled(self, connection: Connection) -> None:
        """execute() followed by fetch works without auto-execute."""
        statement = connection.prepare("SELECT id FROM t ORDER BY id").set_auto_execute(False)
        statement.execute()
        assert statement.fetch_as_column("id") == 1

    def test_failed_execution_wraps_driver_error(self, connection: Connection) -> None:
        """Driver failures surface as StatementError with SQL and error info."""
        statement = connection.prepare("SELECT * FROM no_such_table")

        with pytest.raises(StatementError) as exc_info:
            statement.execute()

        error = exc_info.value
        assert error.sql == "SELECT * FROM no_such_table"
        assert error.error_info is not None
        assert error.error_info.sqlstate == "HY000"
        assert "no_such_table" in error.message
        assert statement.executed is True
        assert statement.executed_successfully is False

    def test_fetch_after_failed_execution_raises_cz001(self, connection: Connection) -> None:
        """A failed execution is not retried implicitly by a fetch."""
        statement = connection.prepare("SELECT * FROM no_such_table")
        with pytest.raises(StatementError):
            statement.execute()

        with pytest.raises(FetchWithoutExecutionError):
            statement.fetch_as_array()

    def test_end_of_data_returns_none(self, connection: Connection) -> None:
        """Single-row fetches return None after the last row."""
        statement = connection.prepare("SELECT id FROM t ORDER BY id")
        assert statement.fetch_as_array() == {"id": 1}
        assert statement.fetch_as_array() == {"id": 2}
        assert statement.fetch_as_array() is None

    def test_close_cursor_then_reexecute_yields_same_rows(self, connection: Connection) -> None:
        """close_cursor() followed by execute() reproduces the first result."""
        statement = connection.prepare("SELECT id, name FROM t ORDER BY id")
        statement.execute()
        first_run = [statement.fetch_as_array(), statement.fetch_as_array()]

        statement.close_cursor()
        assert statement.executed is False

        statement.execute()
        second_run = [statement.fetch_as_array(), statement.fetch_as_array()]
        assert first_run == second_run

    def test_fetch_all_closes_cursor(self, connection: Connection) -> None:
        """A fetch-all drains and closes, so a second fetch-all re-executes."""
        statement = connection.prepare("SELECT id FROM t ORDER BY id")

        assert statement.fetch_all_as_column("id") == [1, 2]
        assert statement.executed is False
        assert statement.fetch_all_as_column("id") == [1, 2]

    def test_fetch_all_closes_cursor_after_missing_column(self, connection: Connection) -> None:
        """A CZ002 from fetch-all still closes the cursor, so no row is lost afterwards."""
        statement = connection.prepare("SELECT id, name FROM t ORDER BY id")

        with pytest.raises(MissingColumnError):
            statement.fetch_all_as_column("name", index_by="nope")
        assert statement.executed is False

        assert statement.fetch_all_as_column("id") == [1, 2]

    def test_end_of_data_with_driver_error_raises(self) -> None:
        """No row plus a non-clean driver status is a failure, not end of data."""
        handle = MagicMock(spec=PreparedHandle)
        handle.sql = "SELECT id FROM t"
        handle.fetch.return_value = None
        handle.error_info.return_value = ErrorInfo("HY000", 7, "lost")
        statement = Statement(handle)

        with pytest.raises(StatementError) as exc_info:
            statement.fetch_as_array()
        assert exc_info.value.code == "HY000"
        assert exc_info.value.error_info == ErrorInfo("HY000", 7, "lost")
        assert exc_info.value.message == "lost"

        with pytest.raises(StatementError) as exc_info:
            statement.fetch_all_as_array()
        assert exc_info.value.error_info == ErrorInfo("HY000", 7, "lost")

    def test_end_of_data_with_clean_status_returns_none(self) -> None:
        """No row plus a clean driver status is ordinary end of data."""
        handle = MagicMock(spec=PreparedHandle)
        handle.sql = "SELECT id FROM t"
        handle.fetch.return_value = None
        handle.error_info.return_value = ErrorInfo.clean()
        statement = Statement(handle)

        assert statement.fetch_as_array() is None
        assert statement.fetch_all_as_array() is None

    def test_row_count_for_update(self, connection: Connection) -> None:
        """row_count reports affected rows of a data-modifying statement."""
        statement = connection.prepare("UPDATE t SET name = :name WHERE id = :id")
        statement.bind_value("name", "z").bind_value(":id", 2, "int")

        assert statement.execute().row_count == 1

    def test_column_metadata(self, connection: Connection) -> None:
        """column_count and column_meta describe the current result set."""
        statement = connection.prepare("SELECT id, name FROM t").execute()

        assert statement.column_count == 2
        meta = statement.column_meta(1)
        assert meta is not None
        assert meta["name"] == "name"
        assert statement.column_meta(5) is None

    def test_next_rowset_without_more_results(self, connection: Connection) -> None:
        """Single-result statements have no next rowset."""
        statement = connection.prepare("SELECT id FROM t").execute()
        assert statement.next_rowset() is False


# ============================================================================
# Binding
# ============================================================================


class TestBinding:
    """Tests for value and column binding."""

    def test_positional_binding(self, connection: Connection) -> None:
        """? placeholders bind by 1-based position."""
        statement = connection.prepare("SELECT name FROM t WHERE id = ?")
        statement.bind_value(1, 2, ParamType.INT)
        assert statement.fetch_as_column("name") == "b"

    def test_named_binding_with_or_without_colon(self, connection: Connection) -> None:
        """:name placeholders bind by 'name' or ':name'."""
        statement = connection.prepare("SELECT name FROM t WHERE id = :id")

        statement.bind_value("id", 1, "int")
        assert statement.fetch_as_column("name") == "a"

        statement.close_cursor()
        statement.bind_value(":id", 2, "integer")
        assert statement.fetch_as_column("name") == "b"

    def test_unknown_parameter_raises(self, connection: Connection) -> None:
        """Binding a placeholder that does not exist is a StatementError."""
        statement = connection.prepare("SELECT name FROM t WHERE id = :id")

        with pytest.raises(StatementError) as exc_info:
            statement.bind_value("missing", 1)

        assert "[missing]" in exc_info.value.message
        assert exc_info.value.code == "HY093"

    def test_null_value_forces_null_type(self, connection: Connection) -> None:
        """None binds as NULL whatever type was requested."""
        statement = connection.prepare("SELECT ? IS NULL AS is_null")
        statement.bind_value(1, None, "int")
        assert statement.fetch_as_column("is_null") == 1

    def test_unbound_parameter_fails_execution(self, connection: Connection) -> None:
        """Executing with a placeholder left unbound raises with HY093."""
        statement = connection.prepare("SELECT name FROM t WHERE id = ? AND name = ?")
        statement.bind_value(1, 1, "int")

        with pytest.raises(StatementError) as exc_info:
            statement.execute()

        assert exc_info.value.code == "HY093"

    def test_bind_values_sequence(self, connection: Connection) -> None:
        """Sequences bind to positions 1..n."""
        statement = connection.prepare(
            "SELECT COUNT(*) AS n FROM people WHERE team = ? AND role = ?"
        )
        statement.bind_values(["core", "dev"])
        assert statement.fetch_as_column("n") == 2

    def test_bind_values_mapping(self, connection: Connection) -> None:
        """Mappings bind by name."""
        statement = connection.prepare(
            "SELECT name FROM people WHERE team = :team AND role = :role"
        )
        statement.bind_values({"team": "core", "role": "ops"})
        assert statement.fetch_as_column("name") == "cid"

    def test_bind_column_and_fetch_bound(self, connection: Connection) -> None:
        """fetch_bound writes each row into the registered output slots."""
        id_slot = OutputSlot()
        name_slot = OutputSlot()
        statement = connection.prepare("SELECT id, name FROM t ORDER BY id")
        statement.bind_column(1, id_slot, "int").bind_column("name", name_slot)

        assert statement.fetch_bound() is True
        assert (id_slot.value, name_slot.value) == (1, "a")
        assert statement.fetch_bound() is True
        assert (id_slot.value, name_slot.value) == (2, "b")
        assert statement.fetch_bound() is None

    def test_bind_column_default_type_is_string(self, connection: Connection) -> None:
        """Bound columns convert to str unless a type is given."""
        slot = OutputSlot()
        statement = connection.prepare("SELECT id FROM t ORDER BY id")
        statement.bind_column("id", slot)

        statement.fetch_bound()
        assert slot.value == "1"

    def test_bind_column_missing_raises_cz002(self, connection: Connection) -> None:
        """A bound column absent from the row is reported as CZ002."""
        statement = connection.prepare("SELECT id FROM t")
        statement.bind_column("nope", OutputSlot())

        with pytest.raises(MissingColumnError):
            statement.fetch_bound()

    def test_bind_column_rejects_invalid_reference(self, connection: Connection) -> None:
        """Column positions start at 1."""
        statement = connection.prepare("SELECT id FROM t")
        with pytest.raises(ConfigurationError):
            statement.bind_column(0, OutputSlot())


# ============================================================================
# Single-row fetch variants
# ============================================================================


@dataclass
class Item:
    prefix: str
    id: int
    name: str

    @property
    def label(self) -> str:
        return f"{self.prefix}{self.id}:{self.name}"


class TestSingleRowFetch:
    """Tests for fetch_as_object / fetch_into_object / fetch_as_column."""

    def test_fetch_as_object_default_namespace(self, connection: Connection) -> None:
        """Rows become SimpleNamespace objects by default."""
        statement = connection.prepare("SELECT id, name FROM t ORDER BY id")
        obj = statement.fetch_as_object()

        assert isinstance(obj, SimpleNamespace)
        assert (obj.id, obj.name) == (1, "a")

    def test_fetch_as_object_with_factory_args(self, connection: Connection) -> None:
        """Factory receives constructor args first, then the row as keywords."""
        statement = connection.prepare("SELECT id, name FROM t ORDER BY id")
        item = statement.fetch_as_object(Item, ["#"])
        assert item.label == "#1:a"

    def test_fetch_as_object_end_of_data(self, connection: Connection) -> None:
        """No row means None, not an empty object."""
        statement = connection.prepare("SELECT id, name FROM t WHERE id = 99")
        assert statement.fetch_as_object() is None

    def test_fetch_into_object(self, connection: Connection) -> None:
        """Row values are copied onto an existing object."""
        target = SimpleNamespace(extra="kept")
        statement = connection.prepare("SELECT id, name FROM t ORDER BY id")

        result = statement.fetch_into_object(target)

        assert result is target
        assert (target.id, target.name, target.extra) == (1, "a", "kept")

    def test_fetch_as_column_missing_raises_before_more_rows(
        self, connection: Connection
    ) -> None:
        """A missing column fails on the row just read; later rows stay unread."""
        statement = connection.prepare("SELECT id, name FROM t ORDER BY id")

        with pytest.raises(MissingColumnError) as exc_info:
            statement.fetch_as_column("missing")

        assert exc_info.value.code == "CZ002"
        assert exc_info.value.columns == ["missing"]
        assert statement.fetch_as_array() == {"id": 2, "name": "b"}

    def test_fetch_as_column_rejects_empty_name(self, connection: Connection) -> None:
        """An empty column name is a configuration error."""
        statement = connection.prepare("SELECT id FROM t")
        with pytest.raises(ConfigurationError):
            statement.fetch_as_column("")


# ============================================================================
# Fetch-all shaping
# ============================================================================


class TestFetchAllAsArray:
    """Tests for fetch_all_as_array index-by / group-by shaping."""

    def test_index_by(self, connection: Connection) -> None:
        """index_by keys rows by the column value."""
        result = connection.prepare("SELECT id, name FROM t ORDER BY id").fetch_all_as_array(
            index_by="id"
        )
        assert result == {1: {"id": 1, "name": "a"}, 2: {"id": 2, "name": "b"}}

    def test_group_by_single_level(self, connection: Connection) -> None:
        """group_by alone nests rows in lists under each group value."""
        result = connection.prepare("SELECT id, name FROM t ORDER BY id").fetch_all_as_array(
            group_by="name"
        )
        assert result == {"a": [{"id": 1, "name": "a"}], "b": [{"id": 2, "name": "b"}]}

    def test_plain_list(self, connection: Connection) -> None:
        """No shaping returns the rows in order."""
        result = connection.prepare(PEOPLE_SQL).fetch_all_as_array()
        assert result == [ANN, BOB, CID, DAN]

    def test_group_by_two_levels(self, connection: Connection) -> None:
        """Two group-by columns nest two levels deep."""
        result = connection.prepare(PEOPLE_SQL).fetch_all_as_array(group_by="team, role")
        assert result == {
            "core": {"dev": [ANN, BOB], "ops": [CID]},
            "web": {"dev": [DAN]},
        }

    def test_group_by_with_index_by(self, connection: Connection) -> None:
        """index_by replaces the innermost list with a mapping."""
        result = connection.prepare(PEOPLE_SQL).fetch_all_as_array(
            index_by="id", group_by="team,role"
        )
        assert result == {
            "core": {"dev": {1: ANN, 2: BOB}, "ops": {3: CID}},
            "web": {"dev": {4: DAN}},
        }

    def test_group_by_three_levels(self, connection: Connection) -> None:
        """Three levels is the maximum accepted."""
        result = connection.prepare(PEOPLE_SQL).fetch_all_as_array(group_by="team,role,name")
        assert result["core"]["dev"]["bob"] == [BOB]
        assert result["web"]["dev"]["dan"] == [DAN]

    @pytest.mark.parametrize(
        ("index_by", "group_by", "depth"),
        [
            (None, None, 0),
            ("id", None, 1),
            (None, "team", 1),
            ("id", "team", 2),
            (None, "team,role", 2),
            ("id", "team,role", 3),
            (None, "team,role,name", 3),
            ("id", "team,role,name", 4),
        ],
    )
    def test_nesting_depth(
        self, connection: Connection, index_by: str | None, group_by: str | None, depth: int
    ) -> None:
        """Depth equals the number of group-by columns plus one for index_by."""
        result = connection.prepare(PEOPLE_SQL).fetch_all_as_array(
            index_by=index_by, group_by=group_by
        )
        assert nesting_depth(result) == depth

    def test_too_many_group_by_columns_before_execution(self, connection: Connection) -> None:
        """More than three group-by columns fails before the statement runs."""
        statement = connection.prepare(PEOPLE_SQL)

        with pytest.raises(ConfigurationError):
            statement.fetch_all_as_array(group_by="team,role,name,id")

        assert statement.executed is False

    def test_missing_index_column(self, connection: Connection) -> None:
        """An index_by column absent from the result raises CZ002."""
        with pytest.raises(MissingColumnError) as exc_info:
            connection.prepare(PEOPLE_SQL).fetch_all_as_array(index_by="nope")
        assert exc_info.value.code == ErrorCode.MISSING_COLUMN.value

    def test_missing_group_columns_listed(self, connection: Connection) -> None:
        """Every missing group-by column is reported."""
        with pytest.raises(MissingColumnError) as exc_info:
            connection.prepare(PEOPLE_SQL).fetch_all_as_array(group_by="team,x,y")
        assert exc_info.value.columns == ["x", "y"]

    def test_missing_column_does_not_lose_first_row(self, connection: Connection) -> None:
        """After a CZ002 the next fetch-all re-executes and returns every row."""
        statement = connection.prepare("SELECT id, name FROM t ORDER BY id")

        with pytest.raises(MissingColumnError) as exc_info:
            statement.fetch_all_as_array(index_by="nope")
        assert exc_info.value.code == ErrorCode.MISSING_COLUMN.value

        assert statement.fetch_all_as_array() == [{"id": 1, "name": "a"}, {"id": 2, "name": "b"}]

    def test_empty_result_returns_none(self, connection: Connection) -> None:
        """Zero rows with a clean status is None, not an empty collection."""
        statement = connection.prepare("SELECT id, name FROM t WHERE id > 100")
        assert statement.fetch_all_as_array() is None
        assert statement.fetch_all_as_array(index_by="id", group_by="name") is None


class TestFetchAllAsColumn:
    """Tests for fetch_all_as_column."""

    def test_linear_values(self, connection: Connection) -> None:
        """Without index_by the column values come back as a list."""
        result = connection.prepare(PEOPLE_SQL).fetch_all_as_column("name")
        assert result == ["ann", "bob", "cid", "dan"]

    def test_indexed_values(self, connection: Connection) -> None:
        """index_by keys each value by another column."""
        result = connection.prepare(PEOPLE_SQL).fetch_all_as_column("name", index_by="id")
        assert result == {1: "ann", 2: "bob", 3: "cid", 4: "dan"}

    def test_missing_column(self, connection: Connection) -> None:
        """Both the value and index columns are validated on the first row."""
        with pytest.raises(MissingColumnError) as exc_info:
            connection.prepare(PEOPLE_SQL).fetch_all_as_column("nope", index_by="other")
        assert exc_info.value.columns == ["nope", "other"]

    def test_empty_result_returns_none(self, connection: Connection) -> None:
        """Zero rows yields None."""
        statement = connection.prepare("SELECT name FROM people WHERE team = ?")
        statement.bind_value(1, "nobody")
        assert statement.fetch_all_as_column("name") is None


class TestFetchAllAsObject:
    """Tests for fetch_all_as_object."""

    def test_objects_grouped_by_attribute(self, connection: Connection) -> None:
        """Grouping reads object attributes."""
        result = connection.prepare(PEOPLE_SQL).fetch_all_as_object(
            index_by="id", group_by="team"
        )
        assert sorted(result) == ["core", "web"]
        assert result["core"][3].name == "cid"
        assert isinstance(result["web"][4], SimpleNamespace)

    def test_factory_and_args(self, connection: Connection) -> None:
        """Every row is built with the factory and the constructor args."""
        result = connection.prepare("SELECT id, name FROM t ORDER BY id").fetch_all_as_object(
            Item, ["~"]
        )
        assert [item.label for item in result] == ["~1:a", "~2:b"]

    def test_missing_property(self, connection: Connection) -> None:
        """An absent attribute raises CZ002."""
        with pytest.raises(MissingColumnError):
            connection.prepare(PEOPLE_SQL).fetch_all_as_object(index_by="nope")

    def test_non_callable_factory(self, connection: Connection) -> None:
        """The factory must be callable."""
        with pytest.raises(ConfigurationError):
            connection.prepare(PEOPLE_SQL).fetch_all_as_object(
                "NotAClass"  # type: ignore[arg-type]
            )

    def test_missing_property_closes_cursor(self, connection: Connection) -> None:
        """A CZ002 on the first object leaves the statement ready to re-execute."""
        statement = connection.prepare("SELECT id, name FROM t ORDER BY id")

        with pytest.raises(MissingColumnError):
            statement.fetch_all_as_object(group_by="nope")

        assert [item.id for item in statement.fetch_all_as_object()] == [1, 2]

    def test_empty_result_returns_none(self, connection: Connection) -> None:
        """Zero rows yields None."""
        statement = connection.prepare("SELECT id FROM t WHERE id < 0")
        assert statement.fetch_all_as_object() is None
