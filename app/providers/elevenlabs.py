import os
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx

from app.errors import NotFoundError, ProviderUnavailable

from .base import ConversationClient

BASE_URL = "https://api.elevenlabs.io/v1/convai"


def _iso_from_unix(value: Any) -> Optional[str]:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        return None
    return datetime.fromtimestamp(value, tz=timezone.utc).isoformat()


def _map_transcript(items: Any) -> List[Dict[str, Any]]:
    out: List[Dict[str, Any]] = []
    for it in items if isinstance(items, list) else []:
        if not isinstance(it, dict):
            continue
        msg: Dict[str, Any] = {
            "speaker": str(it.get("role") or it.get("speaker") or ""),
            "message": str(it.get("message") or ""),
        }
        if isinstance(it.get("time_in_call_secs"), (int, float)):
            msg["timestamp"] = it["time_in_call_secs"]
        out.append(msg)
    return out


def to_conversation_record(raw: Dict[str, Any]) -> Dict[str, Any]:
    """Map an ElevenLabs conversation payload onto the provider-neutral record.

    Older payloads keep timing and summary at the top level, newer ones nest
    them under ``metadata`` and ``analysis``; both are read.
    """
    meta = raw.get("metadata") if isinstance(raw.get("metadata"), dict) else {}
    analysis = raw.get("analysis") if isinstance(raw.get("analysis"), dict) else {}
    start = raw.get("start_time_unix_secs") or meta.get("start_time_unix_secs")
    duration = raw.get("call_duration_secs") or meta.get("call_duration_secs") or 0
    end = raw.get("end_time_unix_secs") or meta.get("end_time_unix_secs")
    if not end and isinstance(start, (int, float)) and duration:
        end = start + duration
    return {
        "id": raw.get("conversation_id"),
        "title": raw.get("call_summary_title") or analysis.get("call_summary_title"),
        "status": raw.get("status"),
        "durationSeconds": duration,
        "transcript": _map_transcript(raw.get("transcript")),
        "startTime": _iso_from_unix(start),
        "endTime": _iso_from_unix(end),
        "summary": raw.get("transcript_summary") or analysis.get("transcript_summary"),
    }


class ElevenLabsConversationClient(ConversationClient):
    provider_name: str = "elevenlabs"

    def __init__(self):
        api_key = os.getenv("ELEVENLABS_API_KEY", "").strip()
        if not api_key:
            raise RuntimeError("ELEVENLABS_API_KEY is required for ElevenLabs provider")
        self._api_key = api_key
        try:
            self._timeout = float(os.getenv("ELEVENLABS_TIMEOUT_SECONDS") or os.getenv("AI_HTTP_TIMEOUT_SECONDS") or 15)
        except Exception:
            self._timeout = 15.0

    def _headers(self) -> Dict[str, str]:
        return {"xi-api-key": self._api_key, "Content-Type": "application/json"}

    @staticmethod
    def _json(resp: Any) -> Any:
        try:
            return resp.json()
        except Exception as e:
            raise ProviderUnavailable("ElevenLabs returned an unreadable response") from e

    async def get_conversation(self, conversation_id: str) -> Dict[str, Any]:
        url = f"{BASE_URL}/conversations/{conversation_id}"
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.get(url, headers=self._headers())
        except Exception as e:
            raise ProviderUnavailable(f"ElevenLabs request failed: {type(e).__name__}") from e
        if resp.status_code >= 400:
            raise NotFoundError("ElevenLabs session not found or unavailable")
        return to_conversation_record(self._json(resp))

    async def list_conversations(self, limit: int = 10) -> List[Dict[str, Any]]:
        url = f"{BASE_URL}/conversations"
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.get(url, headers=self._headers(), params={"page_size": limit})
        except Exception as e:
            raise ProviderUnavailable(f"ElevenLabs request failed: {type(e).__name__}") from e
        if resp.status_code >= 400:
            raise ProviderUnavailable(f"ElevenLabs error {resp.status_code}")
        items = (self._json(resp) or {}).get("conversations") or []
        return [to_conversation_record(c) for c in items[:limit] if isinstance(c, dict)]
