from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

import pytest
from fastapi.testclient import TestClient

from classhub import classroom_router, events_router, submissions_router

_EPOCH = datetime(2024, 1, 1, tzinfo=timezone.utc)


class FakeResponse:
    def __init__(self, data: list[dict[str, Any]]) -> None:
        self.data = data


class FakeQuery:
    """Chainable stand-in for the postgrest query builder, backed by FakeSupabase rows."""

    def __init__(self, db: "FakeSupabase", table: str) -> None:
        self.db = db
        self.table = table
        self.op = "select"
        self.payload: Any = None
        self.filters: list[tuple[str, Any]] = []
        self.orders: list[tuple[str, bool]] = []
        self.limit_n: int | None = None

    def select(self, *_columns: str) -> "FakeQuery":
        self.op = "select"
        return self

    def insert(self, rows: Any) -> "FakeQuery":
        self.op, self.payload = "insert", rows
        return self

    def update(self, values: dict[str, Any]) -> "FakeQuery":
        self.op, self.payload = "update", values
        return self

    def delete(self) -> "FakeQuery":
        self.op = "delete"
        return self

    def eq(self, column: str, value: Any) -> "FakeQuery":
        self.filters.append((column, value))
        return self

    def order(self, column: str, desc: bool = False) -> "FakeQuery":
        self.orders.append((column, desc))
        return self

    def limit(self, n: int) -> "FakeQuery":
        self.limit_n = n
        return self

    def _matches(self, row: dict[str, Any]) -> bool:
        return all(row.get(col) == value for col, value in self.filters)

    def execute(self) -> FakeResponse:
        rows = self.db.tables.setdefault(self.table, [])
        self.db.calls.append((self.table, self.op))

        if self.op == "insert":
            items = self.payload if isinstance(self.payload, list) else [self.payload]
            created = [self.db.add(self.table, item) for item in items]
            return FakeResponse([dict(r) for r in created])

        matched = [r for r in rows if self._matches(r)]
        if self.op == "update":
            for r in matched:
                r.update(self.payload)
            return FakeResponse([dict(r) for r in matched])
        if self.op == "delete":
            self.db.tables[self.table] = [r for r in rows if not self._matches(r)]
            return FakeResponse([dict(r) for r in matched])

        result = [dict(r) for r in matched]
        for column, desc in reversed(self.orders):
            result.sort(key=lambda r: str(r.get(column) or ""), reverse=desc)
        if self.limit_n is not None:
            result = result[: self.limit_n]
        return FakeResponse(result)


class FakeSupabase:
    def __init__(self) -> None:
        self.tables: dict[str, list[dict[str, Any]]] = {}
        self.calls: list[tuple[str, str]] = []
        self._counter = 0

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self, name)

    def add(self, table: str, row: dict[str, Any]) -> dict[str, Any]:
        self._counter += 1
        stored = dict(row)
        stored.setdefault("id", f"{table}-{self._counter}")
        stored.setdefault("created_at", (_EPOCH + timedelta(seconds=self._counter)).isoformat())
        self.tables.setdefault(table, []).append(stored)
        return stored

    def seed(self, table: str, *rows: dict[str, Any]) -> None:
        for row in rows:
            self.add(table, row)

    def rows(self, table: str) -> list[dict[str, Any]]:
        return self.tables.get(table, [])


@pytest.fixture
def fake_db() -> FakeSupabase:
    return FakeSupabase()


@pytest.fixture
def client(monkeypatch, fake_db: FakeSupabase) -> TestClient:
    for module in (classroom_router, submissions_router, events_router):
        monkeypatch.setattr(module, "get_supabase", lambda: fake_db)

    from main import create_app

    return TestClient(create_app())
