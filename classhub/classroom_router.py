import logging
import random
import string
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from .supabase_client import (
    ANSWER_KEYS_TABLE,
    ASSIGNMENTS_TABLE,
    CLASSROOM_MEMBERS_TABLE,
    CLASSROOMS_TABLE,
    POSTS_TABLE,
    first_row,
    get_supabase,
    run_query,
    run_write,
    supabase_payload,
)

router = APIRouter(prefix="/api", tags=["classrooms"])
logger = logging.getLogger("classhub.classrooms")

CLASS_CODE_LENGTH = 6
CLASS_CODE_ATTEMPTS = 5
DEFAULT_COLOR = "from-blue-500 to-purple-600"
POST_TYPES = {"announcement", "material", "question"}


class ClassroomIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    subject: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    created_by: str = Field(..., min_length=1)
    creator_email: Optional[str] = None


class JoinClassroomIn(BaseModel):
    class_code: str = Field(..., min_length=1, max_length=32)
    name: str = Field(..., min_length=1)
    email: str = Field(..., min_length=3)


class PostIn(BaseModel):
    content: str = Field(..., min_length=1)
    type: str = "announcement"
    author_name: str = Field(..., min_length=1)
    author_role: str = "teacher"
    attachments: List[str] = []


class AssignmentIn(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    due_date: datetime
    points: int = Field(100, ge=0)
    created_by: str = Field(..., min_length=1)
    attachments: List[str] = []


class AnswerKeyIn(BaseModel):
    teacher_name: str = Field(..., min_length=1)
    content: Optional[str] = None
    attachments: List[str] = []


def generate_class_code(length: int = CLASS_CODE_LENGTH) -> str:
    alphabet = string.ascii_uppercase + string.digits
    return "".join(random.choices(alphabet, k=length))


def _unique_class_code(supabase) -> str:
    for _ in range(CLASS_CODE_ATTEMPTS):
        code = generate_class_code()
        taken = run_query(
            supabase.table(CLASSROOMS_TABLE).select("id").eq("class_code", code).limit(1),
            "check class code",
        )
        if not taken:
            return code
    raise HTTPException(status_code=503, detail="Could not allocate a unique class code, try again")


def _attachments_or_none(attachments: List[str]) -> Optional[List[str]]:
    cleaned = [a for a in (attachments or []) if a and a.strip()]
    return cleaned or None


@router.get("/classrooms", summary="List classrooms")
def list_classrooms():
    supabase = get_supabase()
    return run_query(
        supabase.table(CLASSROOMS_TABLE).select("*").order("created_at", desc=True),
        "list classrooms",
    )


@router.post("/classrooms", summary="Create a classroom and enrol its creator as teacher")
def create_classroom(payload: ClassroomIn):
    supabase = get_supabase()
    row = supabase_payload(payload.dict(exclude={"creator_email"}))
    row["class_code"] = _unique_class_code(supabase)
    row["color"] = DEFAULT_COLOR
    created = run_write(supabase.table(CLASSROOMS_TABLE).insert(row), "insert classroom")
    if not created:
        raise HTTPException(status_code=500, detail="Classroom insert returned no row")
    classroom = created[0]

    run_write(
        supabase.table(CLASSROOM_MEMBERS_TABLE).insert(
            supabase_payload(
                {
                    "classroom_id": classroom["id"],
                    "name": payload.created_by,
                    "email": payload.creator_email,
                    "role": "teacher",
                }
            )
        ),
        "insert teacher membership",
    )
    logger.info("Created classroom id=%s code=%s", classroom["id"], classroom.get("class_code"))
    return classroom


@router.post("/classrooms/join", summary="Join a classroom by class code")
def join_classroom(payload: JoinClassroomIn):
    supabase = get_supabase()
    code = payload.class_code.strip().upper()
    classroom = first_row(
        supabase.table(CLASSROOMS_TABLE).select("id").eq("class_code", code).limit(1),
        "find classroom by code",
        not_found="Invalid class code",
    )
    classroom_id = classroom["id"]

    existing = run_query(
        supabase.table(CLASSROOM_MEMBERS_TABLE)
        .select("id")
        .eq("classroom_id", classroom_id)
        .eq("email", payload.email)
        .limit(1),
        "check membership",
    )
    if existing:
        return {"classroom_id": classroom_id, "joined": False, "already_member": True}

    run_write(
        supabase.table(CLASSROOM_MEMBERS_TABLE).insert(
            {
                "classroom_id": classroom_id,
                "name": payload.name,
                "email": payload.email,
                "role": "student",
            }
        ),
        "insert student membership",
    )
    logger.info("Joined classroom id=%s email=%s", classroom_id, payload.email)
    return {"classroom_id": classroom_id, "joined": True, "already_member": False}


@router.get("/classrooms/{classroom_id}", summary="Classroom with its stream, assignments and members")
def get_classroom(classroom_id: str):
    supabase = get_supabase()
    classroom = first_row(
        supabase.table(CLASSROOMS_TABLE).select("*").eq("id", classroom_id).limit(1),
        "get classroom",
        not_found="Classroom not found",
    )
    posts = run_query(
        supabase.table(POSTS_TABLE).select("*").eq("classroom_id", classroom_id).order("created_at", desc=True),
        "list posts",
    )
    assignments = run_query(
        supabase.table(ASSIGNMENTS_TABLE).select("*").eq("classroom_id", classroom_id).order("created_at", desc=True),
        "list assignments",
    )
    members = run_query(
        supabase.table(CLASSROOM_MEMBERS_TABLE).select("*").eq("classroom_id", classroom_id).order("role"),
        "list members",
    )
    return {"classroom": classroom, "posts": posts, "assignments": assignments, "members": members}


def _require_classroom(supabase, classroom_id: str) -> None:
    first_row(
        supabase.table(CLASSROOMS_TABLE).select("id").eq("id", classroom_id).limit(1),
        "get classroom",
        not_found="Classroom not found",
    )


@router.post("/classrooms/{classroom_id}/posts", summary="Create a stream post")
def create_post(classroom_id: str, payload: PostIn):
    if payload.type not in POST_TYPES:
        raise HTTPException(status_code=400, detail=f"Invalid post type: {payload.type}")
    supabase = get_supabase()
    _require_classroom(supabase, classroom_id)
    row = payload.dict()
    row["classroom_id"] = classroom_id
    row["attachments"] = _attachments_or_none(payload.attachments)
    created = run_write(supabase.table(POSTS_TABLE).insert(supabase_payload(row)), "insert post")
    return created[0] if created else {"ok": True}


@router.post("/classrooms/{classroom_id}/assignments", summary="Create an assignment")
def create_assignment(classroom_id: str, payload: AssignmentIn):
    supabase = get_supabase()
    _require_classroom(supabase, classroom_id)
    row = payload.dict()
    row["classroom_id"] = classroom_id
    row["attachments"] = _attachments_or_none(payload.attachments)
    created = run_write(supabase.table(ASSIGNMENTS_TABLE).insert(supabase_payload(row)), "insert assignment")
    return created[0] if created else {"ok": True}


@router.get("/assignments/{assignment_id}/answer-key", summary="Get the answer key for an assignment")
def get_answer_key(assignment_id: str):
    supabase = get_supabase()
    rows = run_query(
        supabase.table(ANSWER_KEYS_TABLE).select("*").eq("assignment_id", assignment_id).limit(1),
        "get answer key",
    )
    return {"answer_key": rows[0] if rows else None}


@router.post("/assignments/{assignment_id}/answer-key", summary="Upload an answer key")
def create_answer_key(assignment_id: str, payload: AnswerKeyIn):
    if not (payload.content or "").strip() and not _attachments_or_none(payload.attachments):
        raise HTTPException(status_code=400, detail="Provide answer key content or attachments")
    supabase = get_supabase()
    row = {
        "assignment_id": assignment_id,
        "teacher_name": payload.teacher_name,
        "content": (payload.content or "").strip() or None,
        "attachments": _attachments_or_none(payload.attachments),
    }
    created = run_write(supabase.table(ANSWER_KEYS_TABLE).insert(supabase_payload(row)), "insert answer key")
    return created[0] if created else {"ok": True}


@router.delete("/answer-keys/{key_id}", summary="Delete an answer key")
def delete_answer_key(key_id: str):
    supabase = get_supabase()
    run_write(supabase.table(ANSWER_KEYS_TABLE).delete().eq("id", key_id), "delete answer key")
    return {"ok": True, "deleted": True, "id": key_id}
