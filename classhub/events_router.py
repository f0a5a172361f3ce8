import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel, Field

from .supabase_client import (
    EVENT_COMMENTS_TABLE,
    EVENT_REACTIONS_TABLE,
    EVENTS_TABLE,
    USER_PROFILES_TABLE,
    first_row,
    get_supabase,
    run_query,
    run_write,
    supabase_payload,
)

router = APIRouter(prefix="/api", tags=["events"])
logger = logging.getLogger("classhub.events")

EVENT_TYPES = {"achievement", "workshop", "conference", "announcement"}
DEFAULT_PROFILE_NAME = "User"
DEFAULT_PROFILE_BIO = "No bio available"


class EventIn(BaseModel):
    author_id: Optional[str] = None
    author_name: str = Field(..., min_length=1)
    author_avatar: Optional[str] = None
    content: str = Field(..., min_length=1)
    event_type: str = "achievement"
    location: Optional[str] = None
    event_date: Optional[datetime] = None
    tags: List[str] = []
    attachments: List[str] = []


class ReactionIn(BaseModel):
    user_identifier: str = Field(..., min_length=1)


class CommentIn(BaseModel):
    author_name: str = Field(..., min_length=1)
    author_avatar: Optional[str] = None
    content: str = Field(..., min_length=1)


class ProfileUpdate(BaseModel):
    name: Optional[str] = None
    bio: Optional[str] = None
    location: Optional[str] = None
    website: Optional[str] = None
    achievements: Optional[List[str]] = None


def filter_events(
    events: Iterable[Dict[str, Any]], search: Optional[str] = None, event_type: Optional[str] = None
) -> List[Dict[str, Any]]:
    """Feed filter: text search over content and author name plus an event type (``all`` = any)."""
    needle = (search or "").strip().lower()
    want_type = None if (event_type or "all") == "all" else event_type
    out = []
    for ev in events:
        if needle:
            haystack = f"{ev.get('content') or ''}\n{ev.get('author_name') or ''}".lower()
            if needle not in haystack:
                continue
        if want_type and ev.get("event_type") != want_type:
            continue
        out.append(ev)
    return out


@router.get("/events", summary="Event feed, newest first")
def list_events(search: Optional[str] = Query(None), event_type: str = Query("all")):
    supabase = get_supabase()
    rows = run_query(supabase.table(EVENTS_TABLE).select("*").order("created_at", desc=True), "list events")
    return filter_events(rows, search=search, event_type=event_type)


@router.post("/events", summary="Share an event")
def create_event(payload: EventIn):
    if payload.event_type not in EVENT_TYPES:
        raise HTTPException(status_code=400, detail=f"Invalid event type: {payload.event_type}")
    supabase = get_supabase()
    row = payload.dict()
    row["tags"] = [t.strip() for t in payload.tags if t and t.strip()] or None
    row["attachments"] = [a for a in payload.attachments if a] or None
    row["location"] = (payload.location or "").strip() or None
    created = run_write(supabase.table(EVENTS_TABLE).insert(supabase_payload(row)), "insert event")
    return created[0] if created else {"ok": True}


@router.post("/events/{event_id}/reactions", summary="Toggle a like on an event")
def toggle_reaction(event_id: str, payload: ReactionIn):
    supabase = get_supabase()
    existing = run_query(
        supabase.table(EVENT_REACTIONS_TABLE)
        .select("id")
        .eq("event_id", event_id)
        .eq("user_identifier", payload.user_identifier)
        .limit(1),
        "check reaction",
    )
    if existing:
        run_write(
            supabase.table(EVENT_REACTIONS_TABLE)
            .delete()
            .eq("event_id", event_id)
            .eq("user_identifier", payload.user_identifier),
            "delete reaction",
        )
        return {"event_id": event_id, "reacted": False}
    run_write(
        supabase.table(EVENT_REACTIONS_TABLE).insert(
            {"event_id": event_id, "user_identifier": payload.user_identifier, "reaction_type": "like"}
        ),
        "insert reaction",
    )
    return {"event_id": event_id, "reacted": True}


@router.get("/events/{event_id}/comments", summary="Comments on an event, oldest first")
def list_comments(event_id: str):
    supabase = get_supabase()
    return run_query(
        supabase.table(EVENT_COMMENTS_TABLE).select("*").eq("event_id", event_id).order("created_at"),
        "list comments",
    )


@router.post("/events/{event_id}/comments", summary="Comment on an event")
def create_comment(event_id: str, payload: CommentIn):
    content = payload.content.strip()
    if not content:
        raise HTTPException(status_code=400, detail="Comment cannot be empty")
    supabase = get_supabase()
    row = {
        "event_id": event_id,
        "author_name": payload.author_name,
        "author_avatar": payload.author_avatar,
        "content": content,
    }
    created = run_write(supabase.table(EVENT_COMMENTS_TABLE).insert(supabase_payload(row)), "insert comment")
    return created[0] if created else {"ok": True}


@router.get("/profiles/{user_key}", summary="Get a profile by user id or email, creating a default one")
def get_profile(user_key: str):
    supabase = get_supabase()
    rows = run_query(
        supabase.table(USER_PROFILES_TABLE).select("*").eq("user_id", user_key).limit(1),
        "get profile by user id",
    )
    if rows:
        return rows[0]
    rows = run_query(
        supabase.table(USER_PROFILES_TABLE).select("*").eq("email", user_key).limit(1),
        "get profile by email",
    )
    if rows:
        return rows[0]

    logger.info("Creating default profile for %s", user_key)
    created = run_write(
        supabase.table(USER_PROFILES_TABLE).insert(
            supabase_payload(
                {
                    "user_id": user_key,
                    "name": DEFAULT_PROFILE_NAME,
                    "email": user_key if "@" in user_key else None,
                    "bio": DEFAULT_PROFILE_BIO,
                }
            )
        ),
        "create profile",
    )
    if not created:
        raise HTTPException(status_code=500, detail="Profile insert returned no row")
    return created[0]


@router.put("/profiles/{profile_id}", summary="Update a profile")
def update_profile(profile_id: str, payload: ProfileUpdate):
    supabase = get_supabase()
    first_row(
        supabase.table(USER_PROFILES_TABLE).select("id").eq("id", profile_id).limit(1),
        "get profile",
        not_found="Profile not found",
    )
    updates = supabase_payload(payload.dict(exclude_unset=True))
    updates["updated_at"] = datetime.now(timezone.utc).isoformat()
    run_write(supabase.table(USER_PROFILES_TABLE).update(updates).eq("id", profile_id), "update profile")
    return first_row(
        supabase.table(USER_PROFILES_TABLE).select("*").eq("id", profile_id).limit(1),
        "reload profile",
        not_found="Profile not found",
    )


@router.get("/profiles/{user_id}/events", summary="Events shared by a user")
def list_profile_events(user_id: str):
    supabase = get_supabase()
    return run_query(
        supabase.table(EVENTS_TABLE).select("*").eq("author_id", user_id).order("created_at", desc=True),
        "list profile events",
    )
