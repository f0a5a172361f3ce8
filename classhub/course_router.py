import logging
from typing import Dict, List

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field, ValidationError
from starlette.concurrency import run_in_threadpool

from .ai_services import request_json, service_url
from .markdown_render import extract_headlines, render_markdown

router = APIRouter(prefix="/api/courses", tags=["courses"])
logger = logging.getLogger("classhub.courses")


class CourseRequest(BaseModel):
    subject: str = Field(..., max_length=200)


class TOCItem(BaseModel):
    id: str
    title: str
    number: str = ""


class HeadlineItem(BaseModel):
    id: str
    title: str


class CourseData(BaseModel):
    toc: List[TOCItem] = []
    content: Dict[str, str] = {}
    headlines: Dict[str, List[HeadlineItem]] = {}


class RenderedCourse(CourseData):
    subject: str
    rendered: Dict[str, str] = {}


class RenderRequest(BaseModel):
    markdown: str = ""


class RenderResponse(BaseModel):
    html: str
    headlines: List[HeadlineItem]


def _request_course_sync(subject: str) -> dict:
    base = service_url("COURSE_API_URL", "http://127.0.0.1:8001")
    return request_json(
        "POST", f"{base}/generate-course", service="Course generation service", json={"subject": subject}
    )


def build_rendered_course(subject: str, course: CourseData) -> RenderedCourse:
    """Attach rendered HTML per topic and fill in missing "On This Page" headlines."""
    headlines = dict(course.headlines)
    rendered: Dict[str, str] = {}
    for topic_id, body in course.content.items():
        rendered[topic_id] = render_markdown(body)
        if not headlines.get(topic_id):
            headlines[topic_id] = [HeadlineItem(**h) for h in extract_headlines(body)]
    return RenderedCourse(
        subject=subject,
        toc=course.toc,
        content=course.content,
        headlines=headlines,
        rendered=rendered,
    )


@router.post("/generate", response_model=RenderedCourse, summary="Generate a course and render its topics")
async def generate_course(payload: CourseRequest):
    subject = payload.subject.strip()
    if not subject:
        raise HTTPException(status_code=400, detail="Please enter a subject")

    logger.info("generate_course:start subject=%s", subject)
    raw = await run_in_threadpool(_request_course_sync, subject)
    try:
        course = CourseData(**(raw or {}))
    except (TypeError, ValidationError) as exc:
        logger.error("generate_course:bad_payload subject=%s error=%s", subject, exc)
        raise HTTPException(status_code=502, detail="Course generation service returned an unexpected payload")

    result = build_rendered_course(subject, course)
    logger.info("generate_course:success subject=%s topics=%d", subject, len(result.toc))
    return result


@router.post("/render", response_model=RenderResponse, summary="Render course markdown to HTML")
def render_course_markdown(payload: RenderRequest):
    return RenderResponse(
        html=render_markdown(payload.markdown),
        headlines=[HeadlineItem(**h) for h in extract_headlines(payload.markdown)],
    )
