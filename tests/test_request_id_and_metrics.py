import json
import types

import pytest
from fastapi.testclient import TestClient
from prometheus_client import REGISTRY

import app.providers.openai as openai_mod
from app.main import app
from app.providers.openrouter import OpenRouterAnalysisClient


@pytest.mark.asyncio
async def test_openrouter_analyze_propagates_x_request_id(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("OPENROUTER_API_KEY", "dummy")

    captured = {}

    class FakeResponse:
        def __init__(self, status_code=200, json_data=None, text=""):
            self.status_code = status_code
            self._json = json_data or {}
            self.text = text

        def json(self):
            return self._json

    class FakeAsyncClient:
        def __init__(self, *args, **kwargs):
            pass

        async def __aenter__(self):
            return self

        async def __aexit__(self, exc_type, exc, tb):
            return False

        async def post(self, url, headers=None, json=None):
            captured["headers"] = headers or {}
            payload = {"overallScore": 6, "strengths": ["a"], "areasForImprovement": ["b"]}
            msg = {"choices": [{"message": {"content": jsonlib.dumps(payload)}}]}
            return FakeResponse(status_code=200, json_data=msg)

    # Provide jsonlib inside closure for the FakeAsyncClient
    jsonlib = json
    monkeypatch.setattr(openai_mod, "httpx", types.SimpleNamespace(AsyncClient=FakeAsyncClient))

    cli = OpenRouterAnalysisClient(model="x")
    out = await cli.analyze("hi", session_id="s1", duration_seconds=60, metrics={}, request_id="req-123")
    assert out["overallScore"] == 6
    assert captured["headers"].get("X-Request-Id") == "req-123"


def test_request_id_is_echoed_or_generated():
    with TestClient(app) as client:
        r1 = client.get("/health", headers={"X-Request-Id": "rid-abc"})
        r2 = client.get("/health")
    assert r1.headers["X-Request-Id"] == "rid-abc"
    assert r2.headers.get("X-Request-Id")


def _get_metric_count(name: str, labels: dict) -> float:
    val = REGISTRY.get_sample_value(name, labels)
    return float(val) if val is not None else 0.0


def test_analysis_metrics_emitted_on_mock_path():
    labels = {"outcome": "mock", "domain": "local"}
    before_runs = _get_metric_count("salesai_analysis_runs_total", labels)
    before_secs = _get_metric_count("salesai_analysis_seconds_count", {"domain": "local"})

    with TestClient(app) as client:
        r = client.post("/api/session/analyze", json={"sessionId": "demo-42", "transcript": "hi"})
    assert r.status_code == 200
    assert r.json()["isDemo"] is True

    assert _get_metric_count("salesai_analysis_runs_total", labels) >= before_runs + 1
    assert _get_metric_count("salesai_analysis_seconds_count", {"domain": "local"}) >= before_secs + 1
