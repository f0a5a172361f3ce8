"""Blocking HTTP calls to the external AI services (course generator, evaluator, MCQ generator).

Endpoints wrap these in ``run_in_threadpool``.
"""

import logging
import os
from typing import Any

import requests
from fastapi import HTTPException

logger = logging.getLogger("classhub.ai_services")

DEFAULT_TIMEOUT = 120.0


def service_timeout() -> float:
    try:
        return float(os.getenv("AI_SERVICE_TIMEOUT") or DEFAULT_TIMEOUT)
    except ValueError:
        return DEFAULT_TIMEOUT


def service_url(env_name: str, default: str) -> str:
    return (os.getenv(env_name) or default).rstrip("/")


def request_json(method: str, url: str, *, service: str, **kwargs) -> Any:
    """Send a request and return its decoded JSON body.

    Network failures and non-JSON replies become 502; upstream HTTP errors keep
    their status code and body text.
    """
    try:
        resp = requests.request(method, url, timeout=service_timeout(), **kwargs)
    except requests.RequestException as exc:
        logger.warning("%s unreachable at %s: %s", service, url, exc)
        raise HTTPException(status_code=502, detail=f"{service} error: {exc}") from exc
    if resp.status_code >= 400:
        logger.warning("%s returned %s for %s %s", service, resp.status_code, method, url)
        raise HTTPException(status_code=resp.status_code, detail=resp.text)
    try:
        return resp.json()
    except ValueError as exc:
        raise HTTPException(status_code=502, detail=f"{service} returned invalid JSON") from exc
