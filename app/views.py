"""Caller-facing views over store rows and conversation-provider records.

Scores are persisted on the 0-100 scale; every view exposes that value as
``overallScore`` and the 0-10 presentation value as ``displayScore`` (or
``score`` on dashboard items). Conversions go through ``app.normalize`` only.
"""
import math
from typing import Any, Dict, Optional

from app.normalize import normalize_dates, normalize_status, to_display_score

DEFAULT_TITLE = "Voice Training Session"
DEFAULT_FEEDBACK = "AI-powered analysis available"
DEFAULT_TOPICS = ["Voice Training", "Sales Conversation"]


def _minutes(seconds: Any) -> int:
    if isinstance(seconds, bool) or not isinstance(seconds, (int, float)) or seconds <= 0:
        return 0
    return int(math.ceil(seconds / 60))


def third_party_status(status: Optional[str]) -> Optional[str]:
    return "completed" if status == "done" else status


def analysis_metadata(row: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not row:
        return None
    return {
        "analysisType": row.get("analysis_type"),
        "provider": row.get("provider"),
        "version": row.get("version"),
        "confidenceScore": row.get("confidence_score"),
        "processingTimeMs": row.get("processing_time_ms"),
        "createdAt": row.get("created_at"),
    }


def analytics_view(row: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not row:
        return None
    return {
        "talkTimeRatio": row.get("talk_time_ratio"),
        "fillerWordsCount": row.get("filler_words_count"),
        "speakingPaceWpm": row.get("speaking_pace_wpm"),
        "sentimentScore": row.get("sentiment_score"),
        "overallScore": row.get("overall_score"),
        "objectionHandlingScore": row.get("objection_handling_score"),
        "closingScore": row.get("closing_score"),
        "sessionDate": row.get("session_date"),
        "sessionHour": row.get("session_hour"),
    }


def persisted_session_view(
    session: Dict[str, Any],
    analysis_row: Optional[Dict[str, Any]] = None,
    analytics_row: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    dates = normalize_dates(session)
    score100 = session.get("overall_score")
    if score100 is None and analytics_row:
        score100 = analytics_row.get("overall_score")
    return {
        "id": session.get("id"),
        "title": session.get("session_type") or DEFAULT_TITLE,
        "rawStatus": session.get("status"),
        "status": normalize_status(session.get("status"), has_analysis=analysis_row is not None),
        "durationSeconds": session.get("duration_seconds") or 0,
        "transcript": session.get("transcript"),
        "overallScore": score100,
        "displayScore": to_display_score(score100),
        "feedbackSummary": session.get("feedback_summary"),
        "processingStatus": session.get("processing_status"),
        "detailedAnalysis": (analysis_row or {}).get("results"),
        "analysisMetadata": analysis_metadata(analysis_row),
        "metrics": analytics_view(analytics_row),
        **dates,
    }


def third_party_session_view(record: Dict[str, Any]) -> Dict[str, Any]:
    """Conversation-provider sessions carry no score and are always fully processed."""
    return {
        "id": record.get("id"),
        "title": record.get("title") or DEFAULT_TITLE,
        "status": third_party_status(record.get("status")),
        "durationSeconds": record.get("durationSeconds") or 0,
        "transcript": record.get("transcript") or [],
        "overallScore": None,
        "displayScore": None,
        "feedbackSummary": record.get("summary"),
        "processingStatus": "completed",
        "detailedAnalysis": None,
        "analysisMetadata": None,
        "metrics": None,
        "isThirdParty": True,
        **normalize_dates({"createdAt": record.get("startTime"), "endedAt": record.get("endTime")}),
    }


def _feedback_from_results(results: Any) -> Optional[str]:
    if not isinstance(results, dict):
        return None
    for key in ("summary", "feedback", "detailedAnalysis"):
        if isinstance(results.get(key), str) and results[key]:
            return results[key]
    for key, label in (("areasForImprovement", "Key improvements"), ("strengths", "Strengths")):
        items = results.get(key)
        if isinstance(items, list) and items:
            return f"{label}: {', '.join(str(i) for i in items[:2])}"
    return None


def dashboard_item(session: Dict[str, Any]) -> Dict[str, Any]:
    analysis_row = session.get("analysis_result") or {}
    analytics = session.get("analytics") or {}
    score100 = session.get("overall_score")
    if score100 is None:
        score100 = analytics.get("overall_score")
    minutes = _minutes(session.get("duration_seconds"))
    created = normalize_dates(session)["createdAt"]
    return {
        "id": session.get("id"),
        "title": session.get("title") or f"{session.get('session_type') or 'Sales'} Session",
        "duration": minutes,
        "minutes": minutes,
        "score": to_display_score(score100),
        "date": created,
        "status": session.get("status"),
        # No historical comparison exists yet, so no trend is claimed
        "improvement": 0.0,
        "feedback": session.get("feedback_summary") or _feedback_from_results(analysis_row.get("results")) or DEFAULT_FEEDBACK,
        "topics": list(DEFAULT_TOPICS),
    }


def conversation_dashboard_item(record: Dict[str, Any]) -> Dict[str, Any]:
    minutes = _minutes(record.get("durationSeconds"))
    return {
        "id": record.get("id"),
        "title": record.get("title") or DEFAULT_TITLE,
        "duration": minutes,
        "minutes": minutes,
        "score": None,
        "date": record.get("startTime"),
        "status": third_party_status(record.get("status")),
        "improvement": 0.0,
        "feedback": record.get("summary") or DEFAULT_FEEDBACK,
        "topics": list(DEFAULT_TOPICS),
    }


def demo_session_item(entry: Dict[str, Any]) -> Dict[str, Any]:
    """Demo entries already hold the 0-10 provider score; it is shown as-is."""
    analysis = entry.get("analysis") or {}
    score = analysis.get("overallScore")
    if not isinstance(score, (int, float)) or isinstance(score, bool):
        score = None
    return {
        "id": entry.get("id"),
        "title": analysis.get("title") or entry.get("title") or DEFAULT_TITLE,
        "durationSeconds": entry.get("durationSeconds") or 0,
        "score": score,
        "date": entry.get("endedAt") or entry.get("createdAt"),
        "status": entry.get("status"),
        "processingStatus": entry.get("processingStatus"),
        "analysis": entry.get("analysis"),
        "isDemo": True,
    }

