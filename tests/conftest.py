"""Shared test configuration for dbkit tests.

Provides:
- In-memory SQLite backends and connections (no server required)
- Seeded tables used by the statement and connection tests
"""

from __future__ import annotations

from collections.abc import Iterator

import pytest

from dbkit import Connection, ConnectionConfig, SqliteBackend

PEOPLE = [
    (1, "core", "dev", "ann"),
    (2, "core", "dev", "bob"),
    (3, "core", "ops", "cid"),
    (4, "web", "dev", "dan"),
]


@pytest.fixture
def backend() -> Iterator[SqliteBackend]:
    """Connected in-memory SQLite backend handle."""
    handle = SqliteBackend()
    handle.connect(ConnectionConfig(engine="sqlite", path="memory"))
    yield handle
    handle.close()


@pytest.fixture
def connection(backend: SqliteBackend) -> Connection:
    """Connection with two seeded tables.

    t:      (1, "a"), (2, "b")
    people: id, team, role, name (see PEOPLE)
    """
    conn = Connection(backend)
    conn.execute("CREATE TABLE t (id INTEGER PRIMARY KEY, name TEXT NOT NULL)")
    conn.execute("INSERT INTO t (id, name) VALUES (1, 'a'), (2, 'b')")
    conn.execute(
        "CREATE TABLE people (id INTEGER PRIMARY KEY, team TEXT, role TEXT, name TEXT)"
    )
    for row in PEOPLE:
        statement = conn.prepare("INSERT INTO people (id, team, role, name) VALUES (?, ?, ?, ?)")
        statement.bind_values(row).execute()
    return conn
