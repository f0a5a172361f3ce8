import logging
from typing import Dict

from fastapi import APIRouter, File, Form, HTTPException, UploadFile
from starlette.concurrency import run_in_threadpool

from .ai_services import request_json, service_url

router = APIRouter(prefix="/api/quizzes", tags=["quizzes"])
logger = logging.getLogger("classhub.quizzes")

MIN_QUESTIONS = 1
MAX_QUESTIONS = 20
DEFAULT_QUESTIONS = 5

SERVICE = "MCQ generation service"


def _mcq_api_url() -> str:
    return service_url("MCQ_API_URL", "http://127.0.0.1:8003")


def _mcq_sync(method: str, path: str, **kwargs):
    return request_json(method, f"{_mcq_api_url()}{path}", service=SERVICE, **kwargs)


def _require_dict(data, what: str) -> dict:
    if not isinstance(data, dict):
        raise HTTPException(status_code=502, detail=f"{SERVICE} returned an unexpected {what} payload")
    return data


@router.get("", summary="Recently generated quizzes")
async def list_quizzes():
    data = _require_dict(await run_in_threadpool(_mcq_sync, "GET", "/quizzes"), "quiz list")
    return {"quizzes": data.get("quizzes") or []}


@router.post("/upload", summary="Generate a quiz from an uploaded document")
async def upload_document(
    file: UploadFile = File(...),
    num_questions: int = Form(DEFAULT_QUESTIONS),
):
    if not MIN_QUESTIONS <= num_questions <= MAX_QUESTIONS:
        raise HTTPException(
            status_code=400,
            detail=f"num_questions must be between {MIN_QUESTIONS} and {MAX_QUESTIONS}",
        )
    content = await file.read()
    if not content:
        raise HTTPException(status_code=400, detail="Select a file first.")
    files = [("file", (file.filename or "upload", content, file.content_type or "application/octet-stream"))]
    logger.info("upload_document:start file=%s questions=%d", file.filename, num_questions)
    data = await run_in_threadpool(
        _mcq_sync, "POST", "/upload", data={"num_questions": str(num_questions)}, files=files
    )
    data = _require_dict(data, "upload")
    if not data.get("quiz_id"):
        raise HTTPException(status_code=502, detail="Quiz generation returned no quiz id")
    logger.info("upload_document:success quiz=%s", data["quiz_id"])
    return data


@router.get("/{quiz_id}", summary="A quiz with its questions")
async def get_quiz(quiz_id: str):
    data = _require_dict(await run_in_threadpool(_mcq_sync, "GET", f"/quiz/{quiz_id}"), "quiz")
    return {"quiz": data.get("quiz"), "questions": data.get("questions") or []}


@router.post("/{quiz_id}/submit", summary="Submit answers and get the score")
async def submit_quiz(quiz_id: str, answers: Dict[str, str]):
    if not answers:
        raise HTTPException(status_code=400, detail="Please answer all questions before submitting.")
    data = await run_in_threadpool(_mcq_sync, "POST", f"/quiz/{quiz_id}/submit", json=answers)
    return _require_dict(data, "result")
