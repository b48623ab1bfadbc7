import os
from typing import Dict, Optional

from .openai import OpenAIAnalysisClient


class OpenRouterAnalysisClient(OpenAIAnalysisClient):
    """Same chat-completions protocol routed through OpenRouter."""

    provider_name: str = "openrouter"
    url: str = "https://openrouter.ai/api/v1/chat/completions"
    api_key_env: str = "OPENROUTER_API_KEY"
    default_model: str = "openai/gpt-4o"

    def __init__(self, model: Optional[str] = None):
        super().__init__(model=model)
        try:
            self._timeout = float(os.getenv("OPENROUTER_TIMEOUT_SECONDS") or os.getenv("AI_HTTP_TIMEOUT_SECONDS") or 30)
        except Exception:
            self._timeout = 30.0
        # Origin metadata (optional but recommended by OpenRouter)
        self._referer = os.getenv("PUBLIC_APP_ORIGIN", "http://localhost:3000").strip() or "http://localhost:3000"
        self._title = os.getenv("OPENROUTER_APP_TITLE", "SalesAI Session API").strip() or "SalesAI Session API"

    def _headers(self, request_id: Optional[str]) -> Dict[str, str]:
        headers = super()._headers(request_id)
        headers["HTTP-Referer"] = self._referer
        headers["X-Title"] = self._title
        return headers
