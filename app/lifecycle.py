import math
import time
import uuid
from typing import Any, Callable, Dict, List, Optional

from app import config
from app.auth import Credentials, resolve_profile
from app.demo_cache import DemoSessionCache
from app.errors import NotFoundError, ProviderUnavailable, StoreError, ValidationError
from app.identity import SessionDomain, classify
from app.logs import get_logger, log_event
from app.normalize import utc_now_iso
from app.orchestrator import AnalysisOrchestrator
from app.providers.base import ConversationClient
from app.providers.factory import get_conversation_client
from app.schemas import AnalyzeRequest, EndSessionRequest
from app.store.base import Row, SessionStore
from app.tasks import AnalysisTaskQueue
from app.telemetry import SESSIONS_ENDED_TOTAL, SESSIONS_STARTED_TOTAL
from app.views import (
    conversation_dashboard_item,
    dashboard_item,
    demo_session_item,
    persisted_session_view,
    third_party_session_view,
)

logger = get_logger("lifecycle")

ENDABLE_STATUSES = ("active", "created")
TERMINAL_STATUSES = ("completed", "analyzed", "archived")
RECENT_STATUSES = ("completed", "analyzed")


def _seconds(value: float) -> Any:
    return int(value) if float(value).is_integer() else value


def _requester_from_profile(profile: Row) -> Dict[str, Any]:
    name = f"{profile.get('first_name') or ''} {profile.get('last_name') or ''}".strip()
    return {
        "name": name or None,
        "company": profile.get("company_name") or profile.get("company_id") or "Unknown Company",
        "role": profile.get("position") or "Unknown Role",
    }


class SessionLifecycle:
    """Drives sessions from start to end and hands analysis off to the task queue.

    Ending a session never waits on analysis: the end response only reflects
    the state transition, and analysis outcomes land in the store (or the demo
    cache) when the background job completes.
    """

    def __init__(
        self,
        store: SessionStore,
        orchestrator: AnalysisOrchestrator,
        task_queue: AnalysisTaskQueue,
        demo_cache: DemoSessionCache,
        conversation_client_factory: Callable[[], Optional[ConversationClient]] = get_conversation_client,
    ):
        self.store = store
        self.orchestrator = orchestrator
        self.task_queue = task_queue
        self.demo_cache = demo_cache
        self._conversation_client_factory = conversation_client_factory

    # Created -> Active
    async def start_session(
        self,
        credentials: Credentials,
        session_id: Optional[str] = None,
        session_type: Optional[str] = None,
        request_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        now = utc_now_iso()
        if credentials.bearer_token:
            profile = await resolve_profile(self.store, credentials)
            try:
                row = await self.store.create_session({
                    "id": str(uuid.uuid4()),
                    "profile_id": profile.get("id"),
                    "company_id": profile.get("company_id"),
                    "session_type": session_type or "Voice Training Session",
                    "status": "active",
                    "created_at": now,
                    "started_at": now,
                })
            except StoreError:
                raise
            except Exception as e:
                log_event(logger, "session_start_error", requestId=request_id, error=str(e)[:300])
                raise StoreError("Failed to create session") from e
            SESSIONS_STARTED_TOTAL.labels(domain=SessionDomain.PERSISTED.value).inc()
            log_event(logger, "session_started", sessionId=row.get("id"), requestId=request_id, domain="persisted")
            return {"id": row.get("id"), "status": "active", "startedAt": row.get("started_at") or now, "isDemo": False}

        if session_id:
            if classify(session_id) is not SessionDomain.LOCAL:
                raise ValidationError("Unauthenticated sessions require a demo- or temp- session id")
        else:
            session_id = f"demo-{int(time.time() * 1000)}"
        self.demo_cache.put({
            "id": session_id,
            "status": "active",
            "sessionType": session_type or "Voice Training Session",
            "createdAt": now,
            "startedAt": now,
        })
        SESSIONS_STARTED_TOTAL.labels(domain=SessionDomain.LOCAL.value).inc()
        log_event(logger, "session_started", sessionId=session_id, requestId=request_id, domain="local")
        return {"id": session_id, "status": "active", "startedAt": now, "isDemo": True}

    # Active -> Ended (-> Analyzing)
    async def end_session(
        self,
        request: EndSessionRequest,
        credentials: Credentials,
        request_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        domain = classify(request.session_id)
        if domain is SessionDomain.LOCAL:
            out = self._end_local(request, request_id)
        elif domain is SessionDomain.THIRD_PARTY:
            out = self._end_third_party(request)
        else:
            out = await self._end_persisted(request, credentials, request_id)
        outcome = "already_ended" if out.get("alreadyEnded") else "ended"
        SESSIONS_ENDED_TOTAL.labels(domain=domain.value, outcome=outcome).inc()
        log_event(
            logger, "session_ended",
            sessionId=request.session_id, requestId=request_id, domain=domain.value, outcome=outcome,
            minutesUsed=out.get("minutesUsed"), analysisTriggered=out.get("analysisTriggered"),
        )
        return out

    def _end_local(self, request: EndSessionRequest, request_id: Optional[str]) -> Dict[str, Any]:
        sid = request.session_id
        transcript = request.transcript_dicts()
        now = utc_now_iso()
        processing = "analyzing" if transcript else "completed"
        entry = self.demo_cache.get(sid) or {"createdAt": now}
        entry.update({
            "id": sid,
            "status": "completed",
            "endedAt": now,
            "durationSeconds": _seconds(request.duration_seconds),
            "audioQuality": request.audio_quality,
            "transcript": transcript,
            "processingStatus": processing,
            "isDemo": True,
        })
        self.demo_cache.put(entry)

        triggered = False
        if transcript:
            analyze_req = self._analyze_request(request, transcript, request.user_info.model_dump() if request.user_info else None)

            async def _job() -> None:
                result = await self.orchestrator.analyze(analyze_req, Credentials(), request_id)
                self.demo_cache.attach_analysis(sid, result["analysis"], result.get("metrics"))

            self.task_queue.submit("analysis", sid, _job)
            triggered = True

        return self._end_response(
            sid, "completed", now, request.duration_seconds,
            minute_cost=0, minutes_used=int(math.ceil(request.duration_seconds / 60)),
            analysis_triggered=triggered, processing_status=processing,
            transcript_stored=bool(transcript), is_demo=True,
        )

    def _end_third_party(self, request: EndSessionRequest) -> Dict[str, Any]:
        # The conversation provider owns these sessions; nothing is written
        out = self._end_response(
            request.session_id, "completed", utc_now_iso(), request.duration_seconds,
            minute_cost=0, minutes_used=0, analysis_triggered=False,
            processing_status="completed", transcript_stored=False, is_demo=False,
        )
        out["isThirdParty"] = True
        return out

    async def _end_persisted(
        self,
        request: EndSessionRequest,
        credentials: Credentials,
        request_id: Optional[str],
    ) -> Dict[str, Any]:
        sid = request.session_id
        profile = await resolve_profile(self.store, credentials)
        session = await self.store.get_session(sid, owner_id=profile.get("id"))
        if not session:
            raise NotFoundError()
        if session.get("status") in TERMINAL_STATUSES:
            return self._already_ended(session)
        if session.get("status") not in ENDABLE_STATUSES:
            raise ValidationError("Session is not active")

        transcript = request.transcript_dicts()
        minutes_used = int(math.ceil(request.duration_seconds / 60))
        minute_cost = round(minutes_used * config.MINUTE_RATE_USD, 4)
        now = utc_now_iso()
        fields: Row = {
            "status": "completed",
            "ended_at": now,
            "updated_at": now,
            "duration_seconds": _seconds(request.duration_seconds),
            "audio_quality": request.audio_quality,
            "audio_file_url": request.audio_file_url,
            "audio_file_size": request.audio_file_size,
            "minute_cost": minute_cost,
            "processing_status": "analyzing" if transcript else "completed",
        }
        if transcript:
            fields["transcript"] = transcript
        try:
            updated = await self.store.update_session(sid, fields, expected_statuses=ENDABLE_STATUSES)
        except Exception as e:
            log_event(logger, "session_end_update_error", sessionId=sid, requestId=request_id, error=str(e)[:300])
            raise StoreError("Failed to update session") from e
        if updated is None:
            # A concurrent end won the compare-and-set
            current = await self.store.get_session(sid, owner_id=profile.get("id"))
            return self._already_ended(current or session)

        await self._record_usage(profile, sid, minutes_used, request_id)

        triggered = False
        if transcript:
            requester = request.user_info.model_dump() if request.user_info else _requester_from_profile(profile)
            analyze_req = self._analyze_request(request, transcript, requester)

            async def _job() -> None:
                await self.orchestrator.analyze(analyze_req, Credentials.internal(), request_id)

            self.task_queue.submit("analysis", sid, _job)
            triggered = True

        await self._audit(profile, sid, {
            "session_id": sid,
            "duration_seconds": request.duration_seconds,
            "minutes_used": minutes_used,
            "minute_cost": minute_cost,
            "transcript_provided": bool(transcript),
            "analysis_triggered": triggered,
            "timestamp": now,
        }, request_id)

        return self._end_response(
            sid, updated.get("status") or "completed", updated.get("ended_at") or now, request.duration_seconds,
            minute_cost=minute_cost, minutes_used=minutes_used, analysis_triggered=triggered,
            processing_status=updated.get("processing_status") or fields["processing_status"],
            transcript_stored=bool(transcript), is_demo=False,
        )

    @staticmethod
    def _analyze_request(
        request: EndSessionRequest, transcript: List[Dict[str, Any]], requester: Optional[Dict[str, Any]]
    ) -> AnalyzeRequest:
        return AnalyzeRequest.model_validate({
            "sessionId": request.session_id,
            "transcript": transcript,
            "duration": float(request.duration_seconds),
            "userInfo": requester,
        })

    @staticmethod
    def _end_response(
        session_id: str,
        status: str,
        ended_at: Optional[str],
        duration: Any,
        *,
        minute_cost: float,
        minutes_used: int,
        analysis_triggered: bool,
        processing_status: Optional[str],
        transcript_stored: bool,
        is_demo: bool,
        already_ended: bool = False,
    ) -> Dict[str, Any]:
        return {
            "id": session_id,
            "status": status,
            "endedAt": ended_at,
            "durationSeconds": _seconds(duration) if isinstance(duration, (int, float)) else duration,
            "minuteCost": minute_cost,
            "minutesUsed": minutes_used,
            "analysisTriggered": analysis_triggered,
            "processingStatus": processing_status,
            "transcriptStored": transcript_stored,
            "isDemo": is_demo,
            "alreadyEnded": already_ended,
        }

    def _already_ended(self, session: Row) -> Dict[str, Any]:
        return self._end_response(
            session.get("id"), session.get("status"), session.get("ended_at"), session.get("duration_seconds"),
            minute_cost=0, minutes_used=0, analysis_triggered=False,
            processing_status=session.get("processing_status"),
            transcript_stored=bool(session.get("transcript")), is_demo=False, already_ended=True,
        )

    async def _record_usage(self, profile: Row, session_id: str, minutes_used: int, request_id: Optional[str]) -> None:
        try:
            sub = await self.store.get_active_subscription(profile.get("id"))
            if not sub:
                return
            await self.store.update_subscription(sub["id"], {"minutes_used": (sub.get("minutes_used") or 0) + minutes_used})
            await self.store.insert_usage({
                "profile_id": profile.get("id"),
                "company_id": profile.get("company_id"),
                "minutes_used": minutes_used,
                "session_id": session_id,
                "period_start": sub.get("current_period_start"),
                "period_end": sub.get("current_period_end"),
            })
        except Exception as e:
            log_event(logger, "session_usage_error", sessionId=session_id, requestId=request_id, error=str(e)[:300])

    async def _audit(self, profile: Row, session_id: str, details: Dict[str, Any], request_id: Optional[str]) -> None:
        try:
            await self.store.insert_audit_log({
                "user_id": profile.get("user_id") or profile.get("id"),
                "company_id": profile.get("company_id"),
                "event_type": "session",
                "resource": "sessions",
                "action": "complete",
                "details": details,
            })
        except Exception as e:
            log_event(logger, "session_audit_error", sessionId=session_id, requestId=request_id, error=str(e)[:300])

    # Reads
    async def get_session(self, session_id: str, credentials: Credentials) -> Dict[str, Any]:
        domain = classify(session_id)
        if domain is SessionDomain.LOCAL:
            entry = self.demo_cache.get(session_id)
            if entry is None:
                return {
                    "session": None, "analysis": None, "metrics": None, "isDemo": True,
                    "message": "Demo session - using client-side data",
                }
            return {"session": entry, "analysis": entry.get("analysis"), "metrics": entry.get("metrics"), "isDemo": True}

        if domain is SessionDomain.THIRD_PARTY:
            client = self._conversation_client_factory()
            if client is None:
                raise ProviderUnavailable("ElevenLabs not configured")
            record = await client.get_conversation(session_id)
            return {
                "session": third_party_session_view(record),
                "analysis": None,
                "metrics": None,
                "isDemo": False,
                "isThirdParty": True,
            }

        profile = await resolve_profile(self.store, credentials)
        session = await self.store.get_session(session_id, owner_id=profile.get("id"))
        if not session:
            raise NotFoundError()
        analysis_row = await self.store.get_analysis_result(session_id)
        analytics_row = await self.store.get_session_analytics(session_id)
        view = persisted_session_view(session, analysis_row, analytics_row)
        return {
            "session": view,
            "analysis": view["detailedAnalysis"],
            "metrics": view["metrics"],
            "isDemo": False,
        }

    async def recent_sessions(self, credentials: Credentials, request_id: Optional[str] = None) -> List[Dict[str, Any]]:
        owner_id = None
        if credentials.bearer_token:
            owner_id = (await resolve_profile(self.store, credentials)).get("id")
        rows: List[Row] = []
        try:
            rows = await self.store.list_recent_sessions(RECENT_STATUSES, config.RECENT_SESSIONS_LIMIT, owner_id)
        except Exception as e:
            log_event(logger, "recent_sessions_store_error", requestId=request_id, error=str(e)[:300])
        if rows:
            return [dashboard_item(r) for r in rows]

        client = self._conversation_client_factory()
        if client is None:
            return []
        try:
            records = await client.list_conversations(config.RECENT_SESSIONS_LIMIT)
        except ProviderUnavailable as e:
            log_event(logger, "recent_sessions_provider_error", requestId=request_id, error=e.detail)
            return []
        return [conversation_dashboard_item(r) for r in records]

    def demo_sessions(self) -> List[Dict[str, Any]]:
        return [demo_session_item(e) for e in self.demo_cache.recent()]
