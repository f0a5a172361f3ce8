"""FastAPI app for ClassHub: classrooms, grading, events feed and AI course content."""

from __future__ import annotations

import logging
import os
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import List

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

# Load .env from this module's directory to avoid CWD issues
try:
    _env_path = Path(__file__).resolve().parent / ".env"
    # override=True so a valid file value isn't shadowed by a stale OS env
    load_dotenv(dotenv_path=str(_env_path), override=True)
except Exception:
    # Fallback to default discovery
    load_dotenv()

from classhub import (  # noqa: E402
    classroom_router,
    course_router,
    events_router,
    quiz_router,
    submissions_router,
)

DEFAULT_CORS_ORIGINS = [
    "http://127.0.0.1:3000",
    "http://localhost:3000",
    "http://127.0.0.1:8000",
    "http://localhost:8000",
]

app_logger = logging.getLogger("classhub")
if not app_logger.handlers:
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s"))
    app_logger.addHandler(handler)
app_logger.setLevel((os.getenv("LOG_LEVEL") or "INFO").upper())

request_logger = logging.getLogger("classhub.requests")


# Truncate long uvicorn access log messages
class TruncateLogFilter(logging.Filter):
    def __init__(self, limit: int = 100) -> None:
        super().__init__()
        self.limit = limit

    def filter(self, record):
        if record.args:
            args = record.args if isinstance(record.args, tuple) else (record.args,)
            record.args = tuple(
                arg[: self.limit - 3] + "..." if isinstance(arg, str) and len(arg) > self.limit else arg
                for arg in args
            )
        return True


logging.getLogger("uvicorn.access").addFilter(TruncateLogFilter())


def _cors_origins() -> List[str]:
    raw = (os.getenv("CORS_ORIGINS") or "").strip()
    if not raw:
        return DEFAULT_CORS_ORIGINS
    return [o.strip() for o in raw.split(",") if o.strip()]


def create_app() -> FastAPI:
    app = FastAPI(title="ClassHub API", version="1.0.0")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=_cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(course_router.router)
    app.include_router(classroom_router.router)
    app.include_router(submissions_router.router)
    app.include_router(events_router.router)
    app.include_router(quiz_router.router)

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        path = request.url.path
        if len(path) > 60:
            path = path[:57] + "..."
        try:
            response = await call_next(request)
        except Exception:
            request_logger.exception("%s %s failed", request.method, path)
            raise
        request_logger.info("%s %s %s", request.method, path, response.status_code)
        return response

    @app.get("/")
    def root():
        return {"message": "ClassHub API running", "docs": "/docs"}

    @app.get("/health", tags=["system"])
    def health():
        """Lightweight health probe for the load balancer."""
        return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
