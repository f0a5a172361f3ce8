import logging
from datetime import datetime, timezone
from pathlib import PurePath
from typing import List, Optional

from fastapi import APIRouter, File, Form, HTTPException, Query, UploadFile
from fastapi.responses import Response
from pydantic import BaseModel, Field
from starlette.concurrency import run_in_threadpool

from .ai_services import request_json, service_url
from .results_export import (
    ai_results_to_csv,
    compute_stats,
    evaluations_to_csv,
    export_filename,
    filter_results,
)
from .supabase_client import (
    ASSIGNMENTS_TABLE,
    EVALUATION_RESULTS_TABLE,
    EVALUATIONS_TABLE,
    SUBMISSIONS_TABLE,
    first_row,
    get_supabase,
    run_query,
    run_write,
    supabase_payload,
)

router = APIRouter(prefix="/api/assignments", tags=["grading"])
logger = logging.getLogger("classhub.grading")

# Statuses a client may ask for; "submitted" is turned into "late" past the due date.
SUBMISSION_STATUSES = {"draft", "submitted"}
EVALUATION_TYPES = {"single", "multiple"}


class SubmissionIn(BaseModel):
    student_name: str = Field(..., min_length=1)
    content: Optional[str] = None
    status: str = "submitted"
    attachments: List[str] = []


class EvaluationIn(BaseModel):
    submission_id: str = Field(..., min_length=1)
    total_marks: int = Field(100, ge=0)
    obtained_marks: int = Field(0, ge=0)
    grade: str = "F"
    correct_answers: List[str] = []
    incorrect_answers: List[str] = []
    partial_credit_areas: List[str] = []
    strengths: List[str] = []
    areas_for_improvement: List[str] = []
    detailed_feedback: Optional[str] = None
    evaluation_type: str = "single"


def _csv_response(body: str, filename: str) -> Response:
    return Response(
        content=body,
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


def _parse_due_date(value) -> Optional[datetime]:
    try:
        due = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except (TypeError, ValueError):
        return None
    # Naive timestamps from the database are UTC.
    return due if due.tzinfo else due.replace(tzinfo=timezone.utc)


def submission_status(requested: str, due_date, now: Optional[datetime] = None) -> str:
    """``draft`` stays a draft; anything handed in after ``due_date`` is ``late``."""
    if requested == "draft":
        return "draft"
    due = _parse_due_date(due_date)
    now = now or datetime.now(timezone.utc)
    return "late" if due is not None and now > due else "submitted"


def _clean_list(items: List[str]) -> Optional[List[str]]:
    cleaned = [s.strip() for s in items if s and s.strip()]
    return cleaned or None


@router.get("/{assignment_id}/submissions", summary="List submissions for an assignment")
def list_submissions(assignment_id: str):
    supabase = get_supabase()
    return run_query(
        supabase.table(SUBMISSIONS_TABLE)
        .select("*")
        .eq("assignment_id", assignment_id)
        .order("submitted_at", desc=True),
        "list submissions",
    )


@router.post("/{assignment_id}/submissions", summary="Submit work for an assignment")
def create_submission(assignment_id: str, payload: SubmissionIn):
    if payload.status not in SUBMISSION_STATUSES:
        raise HTTPException(status_code=400, detail=f"Invalid submission status: {payload.status}")
    attachments = [a for a in payload.attachments if a and a.strip()]
    if not (payload.content or "").strip() and not attachments:
        raise HTTPException(status_code=400, detail="A submission needs content or attachments")
    supabase = get_supabase()
    assignment = first_row(
        supabase.table(ASSIGNMENTS_TABLE).select("id,due_date").eq("id", assignment_id).limit(1),
        "get assignment",
        not_found="Assignment not found",
    )
    status = submission_status(payload.status, assignment.get("due_date"))
    row = {
        "assignment_id": assignment_id,
        "student_name": payload.student_name,
        "content": payload.content,
        "status": status,
        "attachments": attachments or None,
    }
    created = run_write(supabase.table(SUBMISSIONS_TABLE).insert(supabase_payload(row)), "insert submission")
    logger.info("Submission stored assignment=%s student=%s status=%s", assignment_id, payload.student_name, status)
    return created[0] if created else {"ok": True}


@router.post("/{assignment_id}/evaluations", summary="Record a manual evaluation of a submission")
def create_evaluation(assignment_id: str, payload: EvaluationIn):
    if payload.evaluation_type not in EVALUATION_TYPES:
        raise HTTPException(status_code=400, detail=f"Invalid evaluation type: {payload.evaluation_type}")
    supabase = get_supabase()
    submission = first_row(
        supabase.table(SUBMISSIONS_TABLE)
        .select("id,student_name")
        .eq("id", payload.submission_id)
        .eq("assignment_id", assignment_id)
        .limit(1),
        "get submission",
        not_found="Submission not found",
    )
    total = payload.total_marks
    percentage = payload.obtained_marks / total * 100 if total > 0 else 0.0
    row = {
        "assignment_id": assignment_id,
        "submission_id": submission["id"],
        "student_name": submission.get("student_name"),
        "total_marks": total,
        "obtained_marks": payload.obtained_marks,
        "percentage": percentage,
        "grade": (payload.grade or "").strip() or "F",
        "correct_answers": _clean_list(payload.correct_answers),
        "incorrect_answers": _clean_list(payload.incorrect_answers),
        "partial_credit_areas": _clean_list(payload.partial_credit_areas),
        "strengths": _clean_list(payload.strengths),
        "areas_for_improvement": _clean_list(payload.areas_for_improvement),
        "detailed_feedback": (payload.detailed_feedback or "").strip() or None,
        "evaluation_type": payload.evaluation_type,
    }
    created = run_write(supabase.table(EVALUATIONS_TABLE).insert(supabase_payload(row)), "insert evaluation")
    logger.info("Evaluation stored assignment=%s submission=%s grade=%s", assignment_id, submission["id"], row["grade"])
    return created[0] if created else {"ok": True}


def _fetch_evaluations(assignment_id: str):
    supabase = get_supabase()
    return run_query(
        supabase.table(EVALUATIONS_TABLE)
        .select("*")
        .eq("assignment_id", assignment_id)
        .order("created_at", desc=True),
        "list evaluations",
    )


def _fetch_ai_results(assignment_id: str):
    supabase = get_supabase()
    return run_query(
        supabase.table(EVALUATION_RESULTS_TABLE)
        .select("*")
        .eq("assignment_id", assignment_id)
        .order("timestamp", desc=True),
        "list AI results",
    )


@router.get("/{assignment_id}/evaluations", summary="Evaluations with summary statistics")
def list_evaluations(assignment_id: str):
    rows = _fetch_evaluations(assignment_id)
    return {"evaluations": rows, "stats": compute_stats(rows)}


@router.get("/{assignment_id}/evaluations/export", summary="Download evaluations as CSV")
def export_evaluations(assignment_id: str, title: str = Query("assignment")):
    rows = _fetch_evaluations(assignment_id)
    return _csv_response(evaluations_to_csv(rows), export_filename(title))


@router.get("/{assignment_id}/ai-results", summary="AI evaluation results, filterable")
def list_ai_results(
    assignment_id: str,
    search: Optional[str] = Query(None),
    grade: str = Query("all"),
    evaluation_type: str = Query("all"),
):
    rows = _fetch_ai_results(assignment_id)
    filtered = filter_results(rows, search=search, grade=grade, evaluation_type=evaluation_type)
    return {"results": filtered, "stats": compute_stats(rows)}


@router.get("/{assignment_id}/ai-results/export", summary="Download filtered AI results as CSV")
def export_ai_results(
    assignment_id: str,
    title: str = Query("assignment"),
    search: Optional[str] = Query(None),
    grade: str = Query("all"),
    evaluation_type: str = Query("all"),
):
    rows = filter_results(_fetch_ai_results(assignment_id), search=search, grade=grade, evaluation_type=evaluation_type)
    return _csv_response(ai_results_to_csv(rows), export_filename(title, ai=True))


def _file_part(field: str, upload: UploadFile, data: bytes) -> tuple:
    return (field, (upload.filename or field, data, upload.content_type or "application/octet-stream"))


def _post_evaluation_sync(path: str, form: dict, files: list) -> dict:
    """Blocking multipart POST to the evaluator. Wrap in run_in_threadpool from async endpoints."""
    url = f"{service_url('EVALUATION_API_URL', 'http://127.0.0.1:8002')}{path}"
    data = request_json("POST", url, service="Evaluation service", data=form, files=files)
    if not isinstance(data, dict):
        raise HTTPException(status_code=502, detail="Evaluation service returned an unexpected payload")
    return data


@router.post("/{assignment_id}/ai-evaluate/single", summary="AI-grade one student response")
async def ai_evaluate_single(
    assignment_id: str,
    answer_key: UploadFile = File(...),
    student_response: UploadFile = File(...),
    student_name: Optional[str] = Form(None),
):
    name = (student_name or "").strip() or PurePath(student_response.filename or "student").stem
    files = [
        _file_part("answer_key", answer_key, await answer_key.read()),
        _file_part("student_response", student_response, await student_response.read()),
    ]
    form = {"assignment_id": assignment_id, "student_name": name}
    logger.info("ai_evaluate_single:start assignment=%s student=%s", assignment_id, name)
    data = await run_in_threadpool(_post_evaluation_sync, "/api/evaluate/single", form, files)
    if not data.get("success") or not data.get("result"):
        raise HTTPException(status_code=502, detail=data.get("message") or "Evaluation failed")
    return data


@router.post("/{assignment_id}/ai-evaluate/multiple", summary="AI-grade a batch of student responses")
async def ai_evaluate_multiple(
    assignment_id: str,
    answer_key: UploadFile = File(...),
    student_responses: List[UploadFile] = File(...),
):
    if not student_responses:
        raise HTTPException(status_code=400, detail="Please upload at least one student response")
    files = [_file_part("answer_key", answer_key, await answer_key.read())]
    for upload in student_responses:
        files.append(_file_part("student_responses", upload, await upload.read()))
    form = {"assignment_id": assignment_id}
    logger.info("ai_evaluate_multiple:start assignment=%s responses=%d", assignment_id, len(student_responses))
    data = await run_in_threadpool(_post_evaluation_sync, "/api/evaluate/multiple", form, files)
    if not data.get("results"):
        raise HTTPException(status_code=502, detail="No results received from evaluation")
    return data
