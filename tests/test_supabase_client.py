from __future__ import annotations

from datetime import datetime

import httpx
import pytest
from fastapi import HTTPException
from postgrest.exceptions import APIError

from classhub import supabase_client
from classhub.supabase_client import first_row, run_query, run_write, supabase_payload


class FlakyQuery:
    """Query builder whose ``execute`` raises the queued errors before succeeding."""

    def __init__(self, *errors: Exception, data=None) -> None:
        self.errors = list(errors)
        self.data = data if data is not None else [{"id": "row-1"}]
        self.calls = 0

    def execute(self):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return type("Result", (), {"data": self.data, "error": None})()


@pytest.fixture(autouse=True)
def no_backoff(monkeypatch) -> None:
    monkeypatch.setattr(supabase_client.time, "sleep", lambda _seconds: None)


def test_reads_retry_dropped_connections() -> None:
    query = FlakyQuery(httpx.RemoteProtocolError("dropped"))
    assert run_query(query, "list posts") == [{"id": "row-1"}]
    assert query.calls == 2


def test_writes_are_not_replayed() -> None:
    query = FlakyQuery(httpx.RemoteProtocolError("dropped"))
    with pytest.raises(HTTPException) as err:
        run_write(query, "insert submission")
    assert err.value.status_code == 503
    assert query.calls == 1


def test_unique_violation_is_a_conflict() -> None:
    query = FlakyQuery(APIError({"message": "duplicate key", "code": "23505", "hint": None, "details": None}))
    with pytest.raises(HTTPException) as err:
        run_write(query, "insert classroom")
    assert err.value.status_code == 409
    assert "insert classroom" in err.value.detail


def test_other_api_errors_are_server_errors() -> None:
    query = FlakyQuery(APIError({"message": "boom", "code": "XX000", "hint": None, "details": None}))
    with pytest.raises(HTTPException) as err:
        run_query(query, "list events")
    assert err.value.status_code == 500
    assert err.value.detail == "Supabase error (list events): boom"


def test_first_row_not_found() -> None:
    with pytest.raises(HTTPException) as err:
        first_row(FlakyQuery(data=[]), "get classroom", not_found="Classroom not found")
    assert err.value.status_code == 404
    assert err.value.detail == "Classroom not found"


def test_supabase_payload_drops_none_and_serialises() -> None:
    payload = supabase_payload({"a": None, "when": datetime(2024, 1, 2, 3, 4, 5), "tags": {"x"}})
    assert payload == {"when": "2024-01-02T03:04:05", "tags": ["x"]}
