import enum
import logging
import os
import time
import uuid
from datetime import date, datetime
from decimal import Decimal
from functools import lru_cache
from typing import Any, Dict, List

import httpx
from fastapi import HTTPException
from postgrest.exceptions import APIError
from pydantic import BaseModel
from supabase import Client, create_client

logger = logging.getLogger("classhub.supabase")

CLASSROOMS_TABLE = os.getenv("CLASSROOMS_TABLE") or "classrooms"
CLASSROOM_MEMBERS_TABLE = os.getenv("CLASSROOM_MEMBERS_TABLE") or "classroom_members"
POSTS_TABLE = os.getenv("POSTS_TABLE") or "posts"
ASSIGNMENTS_TABLE = os.getenv("ASSIGNMENTS_TABLE") or "assignments"
ANSWER_KEYS_TABLE = os.getenv("ANSWER_KEYS_TABLE") or "answer_keys"
SUBMISSIONS_TABLE = os.getenv("SUBMISSIONS_TABLE") or "submissions"
EVALUATIONS_TABLE = os.getenv("EVALUATIONS_TABLE") or "evaluations"
EVALUATION_RESULTS_TABLE = os.getenv("EVALUATION_RESULTS_TABLE") or "evaluation_results"
EVENTS_TABLE = os.getenv("EVENTS_TABLE") or "events"
EVENT_REACTIONS_TABLE = os.getenv("EVENT_REACTIONS_TABLE") or "event_reactions"
EVENT_COMMENTS_TABLE = os.getenv("EVENT_COMMENTS_TABLE") or "event_comments"
USER_PROFILES_TABLE = os.getenv("USER_PROFILES_TABLE") or "user_profiles"

# Postgres unique_violation
UNIQUE_VIOLATION = "23505"

# Supabase occasionally drops pooled HTTP/2 connections between frames; reads are safe to replay.
RETRYABLE_EXCEPTIONS: tuple = (httpx.RemoteProtocolError,)


@lru_cache()
def get_supabase() -> Client:
    url = (os.getenv("SUPABASE_URL") or "").strip()
    key = (os.getenv("SUPABASE_SERVICE_ROLE_KEY") or "").strip()
    if not url or not key:
        raise HTTPException(status_code=500, detail="Database configuration missing")
    return create_client(url, key)


def _to_supabase_json(value: Any) -> Any:
    """Recursively coerce common Python types (UUID, datetime, set, etc.) into JSON-serializable forms."""
    if value is None:
        return None
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, BaseModel):
        return _to_supabase_json(value.dict(exclude_none=True))
    if isinstance(value, (list, tuple, set)):
        return [_to_supabase_json(v) for v in value]
    if isinstance(value, dict):
        return {k: _to_supabase_json(v) for k, v in value.items() if v is not None}
    return value


def supabase_payload(raw: Dict[str, Any]) -> Dict[str, Any]:
    """Return a JSON-serializable dict suitable for Supabase from a Pydantic .dict() payload."""
    return {k: _to_supabase_json(v) for k, v in raw.items() if v is not None}


def _supabase_retry(fn, *, retries: int = 3, base_delay: float = 0.35):
    """Execute a zero-arg callable returning a Supabase response with simple exponential backoff."""
    for attempt in range(retries):
        try:
            return fn()
        except RETRYABLE_EXCEPTIONS:  # pragma: no cover - network timing dependent
            if attempt == retries - 1:
                raise
            time.sleep(base_delay * (2 ** attempt))


def _execute(query, action: str, *, retry: bool) -> List[Dict[str, Any]]:
    try:
        res = _supabase_retry(query.execute) if retry else query.execute()
    except RETRYABLE_EXCEPTIONS as exc:
        logger.error("Supabase connection dropped (%s): %s", action, exc)
        raise HTTPException(status_code=503, detail=f"Supabase connection dropped ({action}), try again")
    except APIError as exc:
        code = getattr(exc, "code", None)
        message = getattr(exc, "message", None) or getattr(exc, "details", None) or str(exc)
        if code == UNIQUE_VIOLATION:
            raise HTTPException(status_code=409, detail=f"Conflict ({action}): {message}")
        logger.error("Supabase error (%s): code=%s message=%s", action, code, message)
        raise HTTPException(status_code=500, detail=f"Supabase error ({action}): {message}")
    if getattr(res, "error", None):
        logger.error("Supabase error (%s): %s", action, res.error)
        raise HTTPException(status_code=500, detail=f"Supabase error ({action}): {res.error}")
    return getattr(res, "data", None) or []


def run_query(query, action: str) -> List[Dict[str, Any]]:
    """Execute a read query and return its rows, mapping failures to HTTP errors.

    ``action`` names the operation in the error detail, e.g. ``"list posts"``.
    Dropped connections are retried, so only pass idempotent SELECTs here.
    """
    return _execute(query, action, retry=True)


def run_write(query, action: str) -> List[Dict[str, Any]]:
    """Execute an insert/update/delete once; a dropped connection is not replayed."""
    return _execute(query, action, retry=False)


def first_row(query, action: str, *, not_found: str = "") -> Dict[str, Any]:
    """Like :func:`run_query` but returns the first row; 404 with ``not_found`` when empty."""
    rows = run_query(query, action)
    if not rows:
        raise HTTPException(status_code=404, detail=not_found or "Not found")
    return rows[0]
