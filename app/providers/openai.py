import json
import logging
import os
import re
from typing import Any, Dict, Optional

import httpx

from app.errors import ProviderUnavailable
from app.logs import get_logger, log_event

from .base import AnalysisClient

logger = get_logger("providers.openai")

SALES_ANALYSIS_PROMPT = """
You are an expert sales coach. Analyze the sales conversation you are given and assess the salesperson's performance.

Respond with ONLY a valid JSON object, no text before or after it, in this shape:

{
  "overallScore": <number 1-10>,
  "title": "<short title describing the kind of session>",
  "strengths": ["<strength>", ... 3-4 items],
  "areasForImprovement": ["<area>", ... 3-4 items],
  "effectiveTechniques": ["<technique>", ... 2-3 items],
  "techniquesNeedingWork": ["<technique>", ... 2-4 items],
  "objectionHandling": {"score": <number 1-10>, "analysis": "<how objections were handled>"},
  "closingEffectiveness": {"score": <number 1-10>, "analysis": "<how the close went>"},
  "keyRecommendations": ["<recommendation>", ... 4-5 items],
  "detailedAnalysis": "<one paragraph citing specific moments, what worked, what to change>"
}

Consider opening and rapport, needs discovery and questioning, presentation,
objection handling, closing and next steps, and delivery (clarity, pace, confidence).
Be specific, actionable and constructive.
""".strip()

_JSON_OBJECT_RE = re.compile(r"\{.*\}", re.DOTALL)


def build_user_prompt(
    transcript_text: str,
    *,
    session_id: str,
    duration_seconds: Optional[float],
    metrics: Dict[str, Any],
    requester: Optional[Dict[str, Any]] = None,
) -> str:
    lines = [
        f"Session ID: {session_id}",
        f"Duration: {duration_seconds if duration_seconds else 'Unknown'} seconds",
    ]
    if requester and requester.get("name"):
        lines.append(
            f"Salesperson: {requester.get('name')} from {requester.get('company') or 'Unknown Company'}"
            f" ({requester.get('role') or 'Unknown Role'})"
        )
    lines += [
        "",
        "Conversation transcript:",
        transcript_text,
        "",
        "Additional metrics:",
        f"- Talk time ratio: {float(metrics.get('talkTimeRatio') or 0):.2f}",
        f"- Filler words count: {metrics.get('fillerWordsCount', 0)}",
        f"- Speaking pace: {metrics.get('speakingPaceWpm', 0)} words/minute",
        f"- Sentiment score: {float(metrics.get('sentimentScore') or 0):.2f}",
        "",
        "Please analyze this sales conversation and provide detailed feedback.",
    ]
    return "\n".join(lines)


def parse_json_content(content_text: str) -> Dict[str, Any]:
    """Parse a model message into a JSON object, tolerating markdown fences."""
    text = (content_text or "").strip()
    if not text:
        raise ValueError("empty content")
    if text.startswith("```"):
        m = _JSON_OBJECT_RE.search(text)
        if not m:
            raise ValueError("no JSON object in fenced content")
        text = m.group(0)
    obj = json.loads(text)
    if not isinstance(obj, dict):
        raise ValueError("content is not a JSON object")
    return obj


class OpenAIAnalysisClient(AnalysisClient):
    provider_name: str = "openai"
    url: str = "https://api.openai.com/v1/chat/completions"
    api_key_env: str = "OPENAI_API_KEY"
    default_model: str = "gpt-4o"

    def __init__(self, model: Optional[str] = None):
        super().__init__(model=model or os.getenv("AI_ANALYSIS_MODEL") or self.default_model)
        api_key = os.getenv(self.api_key_env, "").strip()
        if not api_key:
            raise RuntimeError(f"{self.api_key_env} is required for {self.provider_name} provider")
        self._api_key = api_key
        try:
            self._timeout = float(os.getenv("AI_HTTP_TIMEOUT_SECONDS") or 30)
        except Exception:
            self._timeout = 30.0
        try:
            self._max_tokens = int(os.getenv("AI_ANALYSIS_MAX_TOKENS") or 3000)
        except Exception:
            self._max_tokens = 3000

    def _headers(self, request_id: Optional[str]) -> Dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
            "User-Agent": "salesai-session-api/0.1.0",
        }
        if request_id:
            headers["X-Request-Id"] = request_id
        return headers

    async def analyze(
        self,
        transcript_text: str,
        *,
        session_id: str,
        duration_seconds: Optional[float],
        metrics: Dict[str, Any],
        requester: Optional[Dict[str, Any]] = None,
        request_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": SALES_ANALYSIS_PROMPT},
                {
                    "role": "user",
                    "content": build_user_prompt(
                        transcript_text,
                        session_id=session_id,
                        duration_seconds=duration_seconds,
                        metrics=metrics,
                        requester=requester,
                    ),
                },
            ],
            "temperature": 0.7,
            "max_tokens": self._max_tokens,
            "response_format": {"type": "json_object"},
        }
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(self.url, headers=self._headers(request_id), json=payload)
                if resp.status_code >= 400:
                    log_event(
                        logger,
                        "analysis_provider_http_error",
                        level=logging.ERROR,
                        provider=self.provider_name,
                        status=resp.status_code,
                        body=(resp.text or "")[:512],
                        requestId=request_id,
                    )
                    raise ProviderUnavailable(f"{self.provider_name} error {resp.status_code}")
                data = resp.json()
        except ProviderUnavailable:
            raise
        except Exception as e:
            raise ProviderUnavailable(f"{self.provider_name} request failed: {type(e).__name__}") from e

        try:
            msg = (((data or {}).get("choices") or [{}])[0].get("message") or {})
            return parse_json_content(msg.get("content") or "")
        except Exception as e:
            raise ProviderUnavailable(f"{self.provider_name} returned unparseable content") from e
