from __future__ import annotations

from typing import Any

import requests

from classhub import ai_services


class FakeHTTPResponse:
    def __init__(self, status_code: int = 200, payload: Any = None, text: str = "") -> None:
        self.status_code = status_code
        self._payload = payload
        self.text = text

    def json(self) -> Any:
        if isinstance(self._payload, Exception):
            raise self._payload
        return self._payload


COURSE = {
    "toc": [{"id": "t1", "title": "Intro", "number": "1"}, {"id": "t2", "title": "Loops", "number": "2"}],
    "content": {
        "t1": "## Intro\n#### 1.1 Setup\nUse *pip*.",
        "t2": "## Loops\n#### 2.1 For\n* iterate",
    },
    "headlines": {"t2": [{"id": "custom", "title": "From upstream"}]},
}


def test_generate_course_renders_topics(monkeypatch, client) -> None:
    seen: dict[str, Any] = {}

    def fake_request(method, url, timeout=None, **kwargs):
        seen["method"] = method
        seen["url"] = url
        seen["json"] = kwargs.get("json")
        return FakeHTTPResponse(payload=COURSE)

    monkeypatch.setenv("COURSE_API_URL", "http://courses.test/")
    monkeypatch.setattr(ai_services.requests, "request", fake_request)

    resp = client.post("/api/courses/generate", json={"subject": "  Python  "})
    assert resp.status_code == 200
    body = resp.json()

    assert seen["method"] == "POST"
    assert seen["url"] == "http://courses.test/generate-course"
    assert seen["json"] == {"subject": "Python"}
    assert body["subject"] == "Python"
    assert [t["id"] for t in body["toc"]] == ["t1", "t2"]
    assert '<h4 id="subtopic-1.1">1.1 Setup</h4>' in body["rendered"]["t1"]
    assert "<em>pip</em>" in body["rendered"]["t1"]
    assert "<li>• iterate</li>" in body["rendered"]["t2"]
    # Derived when upstream sent none, kept when it did.
    assert body["headlines"]["t1"] == [{"id": "subtopic-1.1", "title": "1.1 Setup"}]
    assert body["headlines"]["t2"] == [{"id": "custom", "title": "From upstream"}]


def test_generate_course_rejects_blank_subject(client) -> None:
    resp = client.post("/api/courses/generate", json={"subject": "   "})
    assert resp.status_code == 400


def test_generate_course_passes_upstream_errors_through(monkeypatch, client) -> None:
    monkeypatch.setattr(
        ai_services.requests,
        "request",
        lambda method, url, **kwargs: FakeHTTPResponse(status_code=503, text="model overloaded"),
    )
    resp = client.post("/api/courses/generate", json={"subject": "Rust"})
    assert resp.status_code == 503
    assert resp.json()["detail"] == "model overloaded"


def test_generate_course_unreachable_service(monkeypatch, client) -> None:
    def boom(method, url, **kwargs):
        raise requests.ConnectionError("connection refused")

    monkeypatch.setattr(ai_services.requests, "request", boom)
    resp = client.post("/api/courses/generate", json={"subject": "Rust"})
    assert resp.status_code == 502
    assert "connection refused" in resp.json()["detail"]


def test_generate_course_rejects_malformed_payload(monkeypatch, client) -> None:
    monkeypatch.setattr(
        ai_services.requests,
        "request",
        lambda method, url, **kwargs: FakeHTTPResponse(payload={"toc": "not-a-list"}),
    )
    resp = client.post("/api/courses/generate", json={"subject": "Rust"})
    assert resp.status_code == 502


def test_generate_course_rejects_non_json(monkeypatch, client) -> None:
    monkeypatch.setattr(
        ai_services.requests,
        "request",
        lambda method, url, **kwargs: FakeHTTPResponse(payload=ValueError("no json")),
    )
    resp = client.post("/api/courses/generate", json={"subject": "Rust"})
    assert resp.status_code == 502


def test_render_endpoint(client) -> None:
    resp = client.post("/api/courses/render", json={"markdown": "#### 3.4 Sets\n<b>x</b>"})
    assert resp.status_code == 200
    body = resp.json()
    assert body["html"] == '<h4 id="subtopic-3.4">3.4 Sets</h4>\n<p>&lt;b&gt;x&lt;/b&gt;</p>'
    assert body["headlines"] == [{"id": "subtopic-3.4", "title": "3.4 Sets"}]
