import asyncio
import math
import time
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

import pydantic

from app import config
from app.auth import Credentials, authorize_session
from app.errors import NotFoundError, ProviderUnavailable, UnauthorizedError, ValidationError
from app.identity import SessionDomain, classify
from app.logs import get_logger, log_event
from app.normalize import to_storage_score, utc_now_iso
from app.providers.base import AnalysisClient, ConversationClient
from app.providers.factory import get_analysis_client, get_conversation_client
from app.providers.mock import MockAnalysisClient, generate_mock_analysis
from app.schemas import AnalysisResult, AnalyzeRequest
from app.store.base import Row, SessionStore
from app.telemetry import (
    ANALYSIS_RUNS_TOTAL,
    ANALYSIS_SECONDS,
    PERSIST_FAILURES_TOTAL,
    PROVIDER_ERRORS_TOTAL,
)
from app.transcript_metrics import create_mock_transcript, extract_transcript_text, generate_metrics

logger = get_logger("orchestrator")

Transcript = List[Dict[str, Any]]


def _normalize_transcript(raw: Any) -> Transcript:
    if isinstance(raw, str):
        return [{"speaker": "user", "message": raw}] if raw else []
    out: Transcript = []
    for m in raw or []:
        if hasattr(m, "as_dict"):
            out.append(m.as_dict())
        elif isinstance(m, dict):
            out.append({"speaker": str(m.get("speaker") or ""), "message": str(m.get("message") or "")})
    return out


def _feedback_summary(analysis: Dict[str, Any]) -> Optional[str]:
    text = analysis.get("detailedAnalysis")
    if not text:
        return None
    return str(text)[: config.FEEDBACK_SUMMARY_CHARS] + "..."


def _sub_score(section: Any) -> Optional[int]:
    if isinstance(section, dict) and isinstance(section.get("score"), (int, float)) and section["score"]:
        return to_storage_score(section["score"])
    return None


class AnalysisOrchestrator:
    """Turns a session transcript into an analysis, degrading to mock output instead of failing.

    Only validation and authorization errors reach the caller. Provider
    failures, timeouts and unusable provider output take the mock path with
    metrics from the real transcript; persistence is best-effort and never
    affects the response. Anything unexpected yields a fully mock response.
    """

    def __init__(
        self,
        store: SessionStore,
        client_factory: Callable[[], AnalysisClient] = get_analysis_client,
        conversation_client_factory: Callable[[], Optional[ConversationClient]] = get_conversation_client,
    ):
        self.store = store
        self._client_factory = client_factory
        self._conversation_client_factory = conversation_client_factory

    async def analyze(
        self,
        request: AnalyzeRequest,
        credentials: Credentials,
        request_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        session_id = request.session_id
        domain = classify(session_id)
        requester = request.user_info.model_dump() if request.user_info else None
        started = time.perf_counter()
        try:
            if domain is SessionDomain.PERSISTED:
                session_row: Optional[Row] = await authorize_session(self.store, session_id, credentials)
            else:
                session_row = None

            transcript = _normalize_transcript(request.transcript)
            duration = request.duration
            if domain is SessionDomain.THIRD_PARTY and not transcript:
                transcript, duration = await self._fetch_conversation(session_id, duration, request_id)

            text = extract_transcript_text(transcript)
            if len(text) < config.MIN_TRANSCRIPT_CHARS:
                log_event(
                    logger, "analysis_gate_mock",
                    sessionId=session_id, requestId=request_id, domain=domain.value, transcriptChars=len(text),
                )
                if transcript:
                    metrics = generate_metrics(transcript, duration)
                else:
                    metrics = generate_metrics(create_mock_transcript(), duration or config.DEFAULT_DEMO_DURATION_SECONDS)
                await self._release_processing(domain, session_id, request_id)
                return self._deliver(domain, "mock", started, generate_mock_analysis(requester), metrics, True)

            metrics = generate_metrics(transcript, duration or 0)
            client = self._client_factory()
            if isinstance(client, MockAnalysisClient):
                # No provider configured; mock output is never persisted
                analysis = await client.analyze(
                    text, session_id=session_id, duration_seconds=duration, metrics=metrics,
                    requester=requester, request_id=request_id,
                )
                await self._release_processing(domain, session_id, request_id)
                return self._deliver(domain, "mock", started, analysis, metrics, True)

            try:
                raw = await asyncio.wait_for(
                    client.analyze(
                        text, session_id=session_id, duration_seconds=duration, metrics=metrics,
                        requester=requester, request_id=request_id,
                    ),
                    timeout=config.ANALYSIS_TIMEOUT_SECONDS,
                )
                result = AnalysisResult.model_validate(raw)
            except (ProviderUnavailable, asyncio.TimeoutError, pydantic.ValidationError) as e:
                if isinstance(e, ProviderUnavailable):
                    reason = "unavailable"
                elif isinstance(e, asyncio.TimeoutError):
                    reason = "timeout"
                else:
                    reason = "invalid_response"
                PROVIDER_ERRORS_TOTAL.labels(provider=client.provider_name, reason=reason).inc()
                log_event(
                    logger, "analysis_provider_fallback",
                    sessionId=session_id, requestId=request_id, provider=client.provider_name,
                    reason=reason, error=str(e)[:300],
                )
                await self._release_processing(domain, session_id, request_id)
                out = self._deliver(domain, "fallback", started, generate_mock_analysis(requester), metrics, True)
                out["error"] = "Failed to parse AI analysis" if reason == "invalid_response" else "AI analysis unavailable"
                return out

            analysis = result.to_payload()
            analysis.update({
                "id": session_id,
                "duration": math.floor((duration or 0) / 60),
                "date": utc_now_iso(),
            })
            if domain is SessionDomain.PERSISTED:
                await self._persist(session_id, session_row or {}, transcript, analysis, metrics, client, request_id)
            return self._deliver(domain, "provider", started, analysis, metrics, domain is SessionDomain.LOCAL)
        except (ValidationError, UnauthorizedError, NotFoundError):
            raise
        except Exception as e:
            log_event(
                logger, "analysis_catastrophic_error",
                sessionId=session_id, requestId=request_id, domain=domain.value,
                error=str(e)[:300], errorType=type(e).__name__,
            )
            metrics = generate_metrics(create_mock_transcript(), config.DEFAULT_DEMO_DURATION_SECONDS)
            out = self._deliver(domain, "catastrophic", started, generate_mock_analysis(requester), metrics, True)
            out["error"] = str(e) or type(e).__name__
            return out

    def _deliver(
        self,
        domain: SessionDomain,
        outcome: str,
        started: float,
        analysis: Dict[str, Any],
        metrics: Dict[str, Any],
        is_demo: bool,
    ) -> Dict[str, Any]:
        ANALYSIS_RUNS_TOTAL.labels(outcome=outcome, domain=domain.value).inc()
        ANALYSIS_SECONDS.labels(domain=domain.value).observe(max(0.0, time.perf_counter() - started))
        return {"analysis": analysis, "metrics": metrics, "isDemo": bool(is_demo or domain is SessionDomain.LOCAL)}

    async def _fetch_conversation(
        self, session_id: str, duration: Optional[float], request_id: Optional[str]
    ):
        client = self._conversation_client_factory()
        if client is None:
            return [], duration
        try:
            record = await client.get_conversation(session_id)
        except (ProviderUnavailable, NotFoundError) as e:
            log_event(logger, "conversation_fetch_error", sessionId=session_id, requestId=request_id, error=e.detail)
            return [], duration
        transcript = _normalize_transcript(record.get("transcript"))
        if duration is None and isinstance(record.get("durationSeconds"), (int, float)):
            duration = float(record["durationSeconds"])
        return transcript, duration

    async def _store_call(self, record: str, session_id: str, request_id: Optional[str], aw: Awaitable[Any]) -> Any:
        try:
            return await asyncio.wait_for(aw, timeout=config.STORE_TIMEOUT_SECONDS)
        except Exception as e:
            PERSIST_FAILURES_TOTAL.labels(record=record).inc()
            log_event(
                logger, "analysis_persist_error",
                sessionId=session_id, requestId=request_id, record=record,
                error=str(e)[:300], errorType=type(e).__name__,
            )
            return None

    async def _release_processing(self, domain: SessionDomain, session_id: str, request_id: Optional[str]) -> None:
        if domain is not SessionDomain.PERSISTED:
            return
        await self._store_call(
            "session", session_id, request_id,
            self.store.update_session(session_id, {"processing_status": "completed", "updated_at": utc_now_iso()}),
        )

    async def _persist(
        self,
        session_id: str,
        session_row: Row,
        transcript: Transcript,
        analysis: Dict[str, Any],
        metrics: Dict[str, Any],
        client: AnalysisClient,
        request_id: Optional[str],
    ) -> None:
        now = datetime.now(timezone.utc)
        now_iso = now.isoformat()
        score100 = to_storage_score(analysis.get("overallScore"))

        fields: Row = {
            "overall_score": score100,
            "feedback_summary": _feedback_summary(analysis),
            "session_type": analysis.get("title") or "Voice Training Session",
            "status": "analyzed",
            "processing_status": "completed",
            "analyzed_at": now_iso,
            "updated_at": now_iso,
        }
        if not session_row.get("transcript") and transcript:
            fields["transcript"] = transcript
        await self._store_call("session", session_id, request_id, self.store.update_session(session_id, fields))

        await self._store_call("analysis_result", session_id, request_id, self.store.upsert_analysis_result({
            "session_id": session_id,
            "analysis_type": config.ANALYSIS_TYPE,
            "provider": client.provider_name,
            "version": config.ANALYSIS_VERSION,
            "results": analysis,
            "confidence_score": config.ANALYSIS_CONFIDENCE,
            "created_at": now_iso,
        }))

        await self._store_call("session_analytics", session_id, request_id, self.store.upsert_session_analytics({
            "session_id": session_id,
            "profile_id": session_row.get("profile_id"),
            "company_id": session_row.get("company_id"),
            "overall_score": score100,
            "talk_time_ratio": metrics.get("talkTimeRatio"),
            "filler_words_count": metrics.get("fillerWordsCount"),
            "speaking_pace_wpm": metrics.get("speakingPaceWpm"),
            "sentiment_score": metrics.get("sentimentScore"),
            "objection_handling_score": _sub_score(analysis.get("objectionHandling")),
            "closing_score": _sub_score(analysis.get("closingEffectiveness")),
            "session_date": now.date().isoformat(),
            "session_hour": now.hour,
            "created_at": now_iso,
        }))
        log_event(logger, "analysis_persisted", sessionId=session_id, requestId=request_id, overallScore=score100)
