"""Tests for tutor API endpoints.

Covers the HTTP surface via FastAPI TestClient with a scripted completion
client and an in-memory conversation store.
"""

import json
from typing import List
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from tests.fakes.fake_completion import FakeCompletionClient, RecordingStore
from tutor_stream.core.rate_limiter import RateLimiter
from tutor_stream.main import app

TURN = {
    "messages": [{"role": "user", "content": "Explain the diagram"}],
    "page_text": {"current": "Figure 2 shows the light reactions.", "next": "Calvin cycle."},
    "current_page": 2,
    "total_pages": 8,
    "document_id": "doc-1",
    "user_id": "user-1",
}


# ──────────────────────────────────────────────────────────────────────
# Helpers
# ──────────────────────────────────────────────────────────────────────


def parse_sse_events(text: str) -> List[dict]:
    """Parse SSE response body into a list of event dicts."""
    events = []
    for line in text.strip().split("\n"):
        line = line.strip()
        if line.startswith("data: "):
            try:
                events.append(json.loads(line[6:]))
            except json.JSONDecodeError:
                pass
    return events


# ──────────────────────────────────────────────────────────────────────
# Fixtures
# ──────────────────────────────────────────────────────────────────────


@pytest.fixture
def client():
    return TestClient(app, raise_server_exceptions=False)


@pytest.fixture
def completion():
    fake = FakeCompletionClient(
        streams=[["See the figure ", "[HIGHLIGHT 2 80 200 400 22]", " here."]],
        completions=["Single answer [GO TO PAGE 99] with [CIRCLE 2 300 300 20]."],
    )
    with patch("tutor_stream.core.chat_stream.build_completion_client", return_value=fake):
        yield fake


@pytest.fixture
def store():
    recording = RecordingStore()
    with patch("tutor_stream.api.tutor.get_conversation_store", return_value=recording):
        yield recording


# ──────────────────────────────────────────────────────────────────────
# Tests
# ──────────────────────────────────────────────────────────────────────


def test_health_check(client):
    response = client.get("/health")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert body["persistence"] == "memory"


def test_stream_turn(client, completion, store):
    response = client.post("/v1/tutor/stream", json=TURN)

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    assert response.headers["cache-control"] == "no-cache"

    events = parse_sse_events(response.text)
    types = [e["type"] for e in events]
    assert types[0] == "connect"
    assert types[-1] == "end"
    assert "directive" in types
    assert "".join(e["text"] for e in events if e["type"] == "content") == "See the figure here."

    assert len(store.saved) == 1
    assert store.saved[0]["document_id"] == "doc-1"


def test_stream_switches_to_single_shot_for_degraded_client(client, completion, store):
    payload = {**TURN, "client_signals": {"save_data": True}}
    response = client.post("/v1/tutor/stream", json=payload)

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("application/json")
    data = response.json()
    assert data["mode"] == "non_streaming"
    assert data["reply"] == "Single answer with ."
    assert data["page_number"] == 8
    assert [a["type"] for a in data["annotations"]] == ["navigate", "circle"]
    assert completion.stream_requests == []


def test_complete_endpoint(client, completion, store):
    response = client.post("/v1/tutor/complete", json=TURN)

    assert response.status_code == 200
    data = response.json()
    assert data["page_number"] == 8
    assert len(completion.complete_requests) == 1
    assert len(store.saved) == 1


def test_prepare_then_stream(client, completion, store):
    prepared = client.post("/v1/tutor/stream/prepare", json={**TURN, "session_id": "prep-1"})
    assert prepared.status_code == 200
    body = prepared.json()
    assert body == {"session_id": "prep-1", "stream_url": "/v1/tutor/stream/prep-1"}

    response = client.get(body["stream_url"])
    assert response.status_code == 200
    events = parse_sse_events(response.text)
    assert events[0]["session_id"] == "prep-1"
    assert events[1]["source"] == "prepared_payload"
    assert events[-1]["type"] == "end"

    # Prepared payloads are consumed once
    assert client.get(body["stream_url"]).status_code == 404


def test_prepare_generates_session_id(client):
    response = client.post("/v1/tutor/stream/prepare", json=TURN)
    session_id = response.json()["session_id"]
    assert session_id
    assert response.json()["stream_url"].endswith(session_id)


def test_unknown_prepared_stream(client):
    assert client.get("/v1/tutor/stream/does-not-exist").status_code == 404


def test_empty_messages_rejected(client):
    response = client.post("/v1/tutor/stream", json={**TURN, "messages": []})
    assert response.status_code == 422


def test_parse_endpoint(client):
    response = client.post(
        "/v1/tutor/parse",
        json={
            "text": "Compare [HIGHLIGHT 1 80 200 400 88] with [LAST PAGE] please.",
            "current_page": 1,
            "total_pages": 12,
        },
    )

    assert response.status_code == 200
    data = response.json()
    assert data["residual_text"] == "Compare with please."
    assert [d["type"] for d in data["directives"]] == ["highlight", "navigate"]
    assert len(data["directives"][0]["lines"]) == 4
    assert data["page_number"] == 12


def test_parse_without_page_count(client):
    response = client.post("/v1/tutor/parse", json={"text": "[NEXT PAGE]", "current_page": 3})
    data = response.json()
    assert data["directives"][0]["target_page"] == 4
    assert data["page_number"] is None


def test_rate_limit_returns_429(client, store):
    with patch("tutor_stream.core.rate_limiter.tutor_rate_limiter", RateLimiter(1, 1)):
        first = client.post("/v1/tutor/stream/prepare", json=TURN)
        second = client.post("/v1/tutor/stream/prepare", json=TURN)

    assert first.status_code == 200
    assert second.status_code == 429
    assert int(second.headers["retry-after"]) > 0


def test_rate_limit_status(client):
    response = client.get("/v1/tutor/rate-limit-status", params={"user_id": "user-9"})
    assert response.status_code == 200
    stats = response.json()["rate_limit"]
    assert stats["total_requests"] == 0
    assert stats["burst_size"] == 15
