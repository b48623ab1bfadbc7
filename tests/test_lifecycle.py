from typing import Any, Dict, List

import pytest

from app.auth import Credentials
from app.demo_cache import DemoSessionCache
from app.errors import NotFoundError, ProviderUnavailable, UnauthorizedError, ValidationError
from app.lifecycle import SessionLifecycle
from app.orchestrator import AnalysisOrchestrator
from app.schemas import EndSessionRequest
from app.store.memory import InMemoryStore
from app.tasks import AnalysisTaskQueue

SESSION_ID = "9b2d4c6e-8f10-4a3b-9c5d-7e1f2a3b4c5d"
OWNER = Credentials(bearer_token="tok-owner")

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

    def __init__(self, score: float = 7.5):
        self.score = score
        self.calls = 0

    async def analyze(self, transcript_text, **kwargs):
        self.calls += 1
        return {
            "title": "Discovery Call",
            "overallScore": self.score,
            "strengths": ["Clear opener"],
            "areasForImprovement": ["Ask more questions"],
            "detailedAnalysis": "Solid call.",
        }


class FakeConversations:
    def __init__(self, records: List[Dict[str, Any]] = None, fail: bool = False):
        self.records = records or []
        self.fail = fail

    async def get_conversation(self, conversation_id):
        for r in self.records:
            if r["id"] == conversation_id:
                return r
        raise NotFoundError()

    async def list_conversations(self, limit=10):
        if self.fail:
            raise ProviderUnavailable("elevenlabs error 503")
        return self.records[:limit]


def _lifecycle(store=None, client=None, conversations=None):
    store = store or InMemoryStore()
    client = client or FakeClient()
    conv_factory = lambda: conversations  # noqa: E731
    orch = AnalysisOrchestrator(store, client_factory=lambda: client, conversation_client_factory=conv_factory)
    return SessionLifecycle(store, orch, AnalysisTaskQueue(), DemoSessionCache(), conversation_client_factory=conv_factory)


def _end(session_id: str, transcript=TRANSCRIPT, duration: float = 185.0) -> EndSessionRequest:
    return EndSessionRequest.model_validate({"sessionId": session_id, "durationSeconds": duration, "transcript": transcript})


async def _seeded_store(status: str = "active") -> InMemoryStore:
    store = InMemoryStore()
    store.add_profile("tok-owner", {"id": "p1", "company_id": "c1", "first_name": "Dana"})
    store.add_profile("tok-other", {"id": "p2", "company_id": "c2"})
    store.add_subscription({"id": "sub-1", "profile_id": "p1", "minutes_used": 10})
    await store.create_session({
        "id": SESSION_ID, "profile_id": "p1", "company_id": "c1", "status": status,
        "created_at": "2024-05-01T10:00:00+00:00",
    })
    return store


@pytest.mark.asyncio
async def test_start_demo_session_without_credentials():
    lc = _lifecycle()
    out = await lc.start_session(Credentials())
    assert out["isDemo"] is True
    assert out["id"].startswith("demo-")
    assert out["id"] in lc.demo_cache


@pytest.mark.asyncio
async def test_start_requires_local_id_when_unauthenticated():
    lc = _lifecycle()
    with pytest.raises(ValidationError):
        await lc.start_session(Credentials(), session_id=SESSION_ID)


@pytest.mark.asyncio
async def test_start_persisted_session():
    store = await _seeded_store()
    lc = _lifecycle(store)
    out = await lc.start_session(OWNER, session_type="Cold Call")
    assert out["isDemo"] is False
    row = store.rows("sessions", id=out["id"])[0]
    assert row["status"] == "active"
    assert row["profile_id"] == "p1"
    assert row["session_type"] == "Cold Call"


@pytest.mark.asyncio
async def test_end_local_session_attaches_analysis():
    lc = _lifecycle()
    await lc.start_session(Credentials(), session_id="demo-1700000000000")
    out = await lc.end_session(_end("demo-1700000000000"), Credentials())
    assert out["isDemo"] is True
    assert out["analysisTriggered"] is True
    assert out["minuteCost"] == 0
    assert out["minutesUsed"] == 4
    assert out["durationSeconds"] == 185

    await lc.task_queue.join()
    entry = lc.demo_cache.get("demo-1700000000000")
    assert entry["processingStatus"] == "completed"
    assert entry["analysis"]["overallScore"] == 7.5
    assert entry["metrics"]["talkTimeRatio"] == 0.6

    items = lc.demo_sessions()
    assert items[0]["score"] == 7.5
    assert items[0]["isDemo"] is True


@pytest.mark.asyncio
async def test_end_local_without_transcript_skips_analysis():
    client = FakeClient()
    lc = _lifecycle(client=client)
    out = await lc.end_session(_end("temp-abc", transcript=None, duration=30.5), Credentials())
    assert out["analysisTriggered"] is False
    assert out["processingStatus"] == "completed"
    assert out["durationSeconds"] == 30.5
    await lc.task_queue.join()
    assert client.calls == 0


@pytest.mark.asyncio
async def test_end_persisted_charges_once_and_analyzes():
    store = await _seeded_store()
    lc = _lifecycle(store)

    first = await lc.end_session(_end(SESSION_ID), OWNER, request_id="rid-1")
    assert first["alreadyEnded"] is False
    assert first["minutesUsed"] == 4
    assert first["minuteCost"] == 0.4
    assert first["processingStatus"] == "analyzing"
    assert first["transcriptStored"] is True

    await lc.task_queue.join()
    second = await lc.end_session(_end(SESSION_ID), OWNER)
    assert second["alreadyEnded"] is True
    assert second["minutesUsed"] == 0

    assert len(store.rows("usage", session_id=SESSION_ID)) == 1
    assert store.rows("subscriptions", id="sub-1")[0]["minutes_used"] == 14
    assert len(store.rows("audit_logs")) == 1
    session = store.rows("sessions", id=SESSION_ID)[0]
    assert session["status"] == "analyzed"
    assert session["overall_score"] == 75
    assert len(store.rows("analysis_results", session_id=SESSION_ID)) == 1


@pytest.mark.asyncio
async def test_concurrent_end_loses_compare_and_set():
    class RacingStore(InMemoryStore):
        async def update_session(self, session_id, fields, expected_statuses=None):
            if expected_statuses is not None:
                # Another request completes the session first
                await super().update_session(session_id, {"status": "completed", "ended_at": "2024-05-01T10:05:00+00:00"})
            return await super().update_session(session_id, fields, expected_statuses)

    store = RacingStore()
    store.add_profile("tok-owner", {"id": "p1"})
    store.add_subscription({"id": "sub-1", "profile_id": "p1"})
    await store.create_session({"id": SESSION_ID, "profile_id": "p1", "status": "active"})
    lc = _lifecycle(store)

    out = await lc.end_session(_end(SESSION_ID), OWNER)
    assert out["alreadyEnded"] is True
    assert out["endedAt"] == "2024-05-01T10:05:00+00:00"
    assert store.rows("usage") == []


@pytest.mark.asyncio
async def test_end_persisted_rejects_other_owner_and_bad_state():
    store = await _seeded_store(status="paused")
    lc = _lifecycle(store)
    with pytest.raises(UnauthorizedError):
        await lc.end_session(_end(SESSION_ID), Credentials())
    with pytest.raises(NotFoundError):
        await lc.end_session(_end(SESSION_ID), Credentials(bearer_token="tok-other"))
    with pytest.raises(ValidationError):
        await lc.end_session(_end(SESSION_ID), OWNER)


@pytest.mark.asyncio
async def test_end_third_party_is_acknowledged_only():
    store = await _seeded_store()
    lc = _lifecycle(store)
    out = await lc.end_session(_end("conv_abc"), Credentials())
    assert out["isThirdParty"] is True
    assert out["analysisTriggered"] is False
    assert store.rows("usage") == []
    assert store.rows("audit_logs") == []


@pytest.mark.asyncio
async def test_get_local_session_missing_from_cache():
    out = await _lifecycle().get_session("demo-404", Credentials())
    assert out["session"] is None
    assert out["isDemo"] is True
    assert out["message"] == "Demo session - using client-side data"


@pytest.mark.asyncio
async def test_get_third_party_session():
    with pytest.raises(ProviderUnavailable):
        await _lifecycle().get_session("conv_abc", Credentials())

    conversations = FakeConversations([{
        "id": "conv_abc", "status": "done", "title": "Pricing call", "durationSeconds": 95,
        "transcript": [], "startTime": "2023-11-14T22:13:20+00:00", "endTime": None,
    }])
    out = await _lifecycle(conversations=conversations).get_session("conv_abc", Credentials())
    assert out["isThirdParty"] is True
    assert out["session"]["status"] == "completed"
    assert out["session"]["overallScore"] is None


@pytest.mark.asyncio
async def test_get_persisted_session_exposes_both_scales():
    store = await _seeded_store()
    lc = _lifecycle(store)
    await lc.end_session(_end(SESSION_ID), OWNER)
    await lc.task_queue.join()

    out = await lc.get_session(SESSION_ID, OWNER)
    assert out["isDemo"] is False
    assert out["session"]["overallScore"] == 75
    assert out["session"]["displayScore"] == 7.5
    assert out["session"]["status"] == "completed"
    assert out["analysis"]["overallScore"] == 7.5
    assert out["metrics"]["speakingPaceWpm"] == 13

    with pytest.raises(NotFoundError):
        await lc.get_session(SESSION_ID, Credentials(bearer_token="tok-other"))


@pytest.mark.asyncio
async def test_recent_sessions_from_store():
    store = await _seeded_store()
    lc = _lifecycle(store)
    await lc.end_session(_end(SESSION_ID), OWNER)
    await lc.task_queue.join()

    items = await lc.recent_sessions(OWNER)
    assert len(items) == 1
    assert items[0]["id"] == SESSION_ID
    assert items[0]["score"] == 7.5
    assert items[0]["improvement"] == 0.0
    assert items[0]["minutes"] == 4


@pytest.mark.asyncio
async def test_recent_sessions_fall_back_to_conversations():
    conversations = FakeConversations([
        {"id": "conv_1", "status": "done", "title": "Call one", "durationSeconds": 61, "startTime": "2024-05-01T10:00:00+00:00"},
    ])
    items = await _lifecycle(conversations=conversations).recent_sessions(Credentials())
    assert items[0]["id"] == "conv_1"
    assert items[0]["score"] is None
    assert items[0]["minutes"] == 2
    assert items[0]["status"] == "completed"

    assert await _lifecycle(conversations=FakeConversations(fail=True)).recent_sessions(Credentials()) == []
    assert await _lifecycle().recent_sessions(Credentials()) == []
