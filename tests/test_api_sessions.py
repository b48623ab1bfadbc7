import time

import pytest
from fastapi.testclient import TestClient

import app.main as main
from app.store.memory import InMemoryStore

SESSION_ID = "3c8e1f0a-5b7d-4e2c-9a61-d4f2b8e07c19"

TRANSCRIPT = [
    {"speaker": "user", "message": "Hello Maria, thanks for taking the time to meet with me today."},
    {"speaker": "client", "message": "Sure, what did you want to discuss?"},
    {"speaker": "user", "message": "Our platform helps teams track every customer call automatically."},
    {"speaker": "client", "message": "How much does it cost per seat?"},
    {"speaker": "user", "message": "Pricing starts at forty dollars."},
]


class FakeClient:
    provider_name = "fake"
    model = "fake-1"

    async def analyze(self, transcript_text, **kwargs):
        return {
            "title": "Pricing Discovery",
            "overallScore": 7.5,
            "strengths": ["Clear opener"],
            "areasForImprovement": ["Ask more questions"],
            "objectionHandling": {"score": 6, "analysis": "Addressed price directly"},
            "detailedAnalysis": "Solid call.",
        }


@pytest.fixture
def store(monkeypatch: pytest.MonkeyPatch) -> InMemoryStore:
    st = InMemoryStore()
    st.add_profile("tok-owner", {"id": "p1", "company_id": "c1"})
    st.add_profile("tok-other", {"id": "p2", "company_id": "c2"})
    st.add_subscription({"id": "sub-1", "profile_id": "p1"})
    st.tables["sessions"].append({
        "id": SESSION_ID, "profile_id": "p1", "company_id": "c1", "status": "active",
        "created_at": "2024-05-01T10:00:00+00:00",
    })
    monkeypatch.setattr(main, "get_store", lambda: st)
    monkeypatch.setattr(main, "get_analysis_client", lambda: FakeClient())
    return st


def _wait_for(predicate, timeout: float = 3.0) -> bool:
    deadline = time.time() + timeout
    while time.time() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return predicate()


def test_end_persisted_session_then_fetch_analysis(store: InMemoryStore):
    auth = {"Authorization": "Bearer tok-owner"}
    with TestClient(main.app) as client:
        r = client.post(
            "/api/session/end",
            json={"sessionId": SESSION_ID, "durationSeconds": 185, "transcript": TRANSCRIPT},
            headers=auth,
        )
        assert r.status_code == 200
        session = r.json()["session"]
        assert session["status"] == "completed"
        assert session["minutesUsed"] == 4
        assert session["analysisTriggered"] is True
        assert session["isDemo"] is False

        assert _wait_for(lambda: bool(store.rows("analysis_results", session_id=SESSION_ID)))
        assert _wait_for(lambda: store.rows("sessions", id=SESSION_ID)[0].get("status") == "analyzed")

        r = client.get(f"/api/session/{SESSION_ID}", headers=auth)
        assert r.status_code == 200
        body = r.json()
        assert body["session"]["overallScore"] == 75
        assert body["session"]["displayScore"] == 7.5
        assert body["metrics"]["talkTimeRatio"] == 0.6
        assert body["metrics"]["speakingPaceWpm"] == 13
        assert body["metrics"]["objectionHandlingScore"] == 60

        r = client.get("/api/dashboard/recent-sessions", headers=auth)
        assert r.status_code == 200
        assert r.json()[0]["score"] == 7.5

        # A second end is idempotent and does not charge again
        r = client.post(
            "/api/session/end",
            json={"sessionId": SESSION_ID, "durationSeconds": 185, "transcript": TRANSCRIPT},
            headers=auth,
        )
        assert r.status_code == 200
        assert r.json()["session"]["alreadyEnded"] is True
    assert len(store.rows("usage")) == 1


def test_demo_session_round_trip(store: InMemoryStore):
    with TestClient(main.app) as client:
        r = client.post("/api/session/start", json={})
        assert r.status_code == 200
        sid = r.json()["session"]["id"]
        assert sid.startswith("demo-")

        r = client.post("/api/session/end", json={"sessionId": sid, "durationSeconds": 185, "transcript": TRANSCRIPT})
        assert r.status_code == 200
        assert r.json()["session"]["isDemo"] is True

        def _analyzed() -> bool:
            items = client.get("/api/demo/sessions").json()
            return bool(items) and items[0]["processingStatus"] == "completed"

        assert _wait_for(_analyzed)
        items = client.get("/api/demo/sessions").json()
        assert items[0]["id"] == sid
        assert items[0]["score"] == 7.5

        r = client.get(f"/api/session/{sid}")
        assert r.status_code == 200
        assert r.json()["analysis"]["title"] == "Pricing Discovery"
    assert store.rows("usage") == []


def test_analyze_demo_without_credentials(store: InMemoryStore):
    with TestClient(main.app) as client:
        r = client.post("/api/session/analyze", json={"sessionId": "demo-7", "transcript": TRANSCRIPT, "duration": 185})
    assert r.status_code == 200
    body = r.json()
    assert body["isDemo"] is True
    assert body["analysis"]["overallScore"] == 7.5
    assert body["metrics"]["fillerWordsCount"] == 0


@pytest.mark.parametrize("payload, detail", [
    ({"durationSeconds": 10}, "sessionId is required"),
    ({"sessionId": "demo-1"}, "durationSeconds is required"),
    ({"sessionId": "demo-1", "durationSeconds": 0}, "Invalid durationSeconds"),
    ({"sessionId": "demo-1", "durationSeconds": "10"}, "Invalid durationSeconds"),
])
def test_end_validation_errors(store: InMemoryStore, payload, detail):
    with TestClient(main.app) as client:
        r = client.post("/api/session/end", json=payload)
    assert r.status_code == 400
    assert r.json()["detail"] == detail


def test_end_rejects_non_json_body(store: InMemoryStore):
    with TestClient(main.app) as client:
        r = client.post("/api/session/end", content=b"not json", headers={"Content-Type": "application/json"})
    assert r.status_code == 400


def test_error_status_mapping(store: InMemoryStore):
    with TestClient(main.app) as client:
        r = client.get(f"/api/session/{SESSION_ID}")
        assert r.status_code == 401
        r = client.get(f"/api/session/{SESSION_ID}", headers={"Authorization": "Bearer tok-other"})
        assert r.status_code == 404
        r = client.get(f"/api/session/{SESSION_ID}", headers={"Authorization": "Bearer nope"})
        assert r.status_code == 401
        r = client.post(
            "/api/session/analyze",
            json={"sessionId": SESSION_ID, "transcript": TRANSCRIPT},
            headers={"Authorization": "Bearer tok-other"},
        )
        assert r.status_code == 404
        r = client.get("/api/session/conv_abc")
        assert r.status_code == 503
