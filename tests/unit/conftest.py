"""Unit test fixtures.

FakeConnection stands in for a psycopg connection for the handful of
statements the schedule importer issues, including savepoint semantics, so
orchestration can be tested without PostgreSQL.
"""

from __future__ import annotations

import copy
import uuid
from typing import Any

import psycopg
import pytest

_MUTABLE_FIELDS = (
    "notes", "employee_id", "region", "role", "employee_type",
    "scheduled_hours", "start_time", "end_time", "published",
)


class FakeCursor:
    def __init__(self, rows: list[tuple[Any, ...]]) -> None:
        self._rows = rows

    def fetchone(self) -> tuple[Any, ...] | None:
        return self._rows[0] if self._rows else None

    def fetchall(self) -> list[tuple[Any, ...]]:
        return list(self._rows)


class FakeConnection:
    def __init__(self, stores: set[int] | None = None) -> None:
        self.stores = set(stores or ())
        self.entries: dict[tuple, dict[str, Any]] = {}
        self.committed: dict[tuple, dict[str, Any]] = {}
        self.statements: list[str] = []
        self.commits = 0
        self.rollbacks = 0
        # Failure injection
        self.fail_on_employee: str | None = None
        self.fail_savepoint: str | None = None
        self.fail_commit = False
        self._savepoints: dict[str, dict[tuple, dict[str, Any]]] = {}

    @property
    def insert_statements(self) -> list[str]:
        return [s for s in self.statements if s.startswith("INSERT INTO schedule_entry")]

    def execute(self, sql: str, params: Any = None) -> FakeCursor:
        text = " ".join(sql.split())
        self.statements.append(text)

        if text.startswith("SAVEPOINT "):
            name = text.split()[1]
            if name == self.fail_savepoint:
                raise psycopg.OperationalError("server closed the connection unexpectedly")
            self._savepoints[name] = copy.deepcopy(self.entries)
            return FakeCursor([])
        if text.startswith("RELEASE SAVEPOINT "):
            self._savepoints.pop(text.split()[2])
            return FakeCursor([])
        if text.startswith("ROLLBACK TO SAVEPOINT "):
            self.entries = copy.deepcopy(self._savepoints[text.split()[3]])
            return FakeCursor([])

        if text.startswith("SELECT 1 FROM store"):
            return FakeCursor([(1,)] if params[0] in self.stores else [])
        if text.startswith("SELECT id FROM schedule_entry"):
            entry = self.entries.get(tuple(params))
            return FakeCursor([(entry["id"],)] if entry else [])
        if text.startswith("INSERT INTO schedule_entry"):
            return FakeCursor([(self._upsert(params),)])

        raise AssertionError(f"FakeConnection does not understand: {text}")

    def _upsert(self, params: dict[str, Any]) -> str:
        if params["employee_name"] == self.fail_on_employee:
            raise psycopg.DataError("forced write failure")
        key = (
            params["store_number"], params["date"],
            params["employee_name"], params["shift_time"],
        )
        existing = self.entries.get(key)
        if existing is None:
            self.entries[key] = {"id": str(uuid.uuid4()), **params}
            return self.entries[key]["id"]
        for name in _MUTABLE_FIELDS:
            existing[name] = params[name]
        return existing["id"]

    def commit(self) -> None:
        if self.fail_commit:
            raise psycopg.OperationalError("could not commit")
        self.committed = copy.deepcopy(self.entries)
        self._savepoints.clear()
        self.commits += 1

    def rollback(self) -> None:
        self.entries = copy.deepcopy(self.committed)
        self._savepoints.clear()
        self.rollbacks += 1


@pytest.fixture
def fake_conn() -> FakeConnection:
    return FakeConnection(stores={79, 1001, 1002})
