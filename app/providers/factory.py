import os
from typing import Optional

from .base import AnalysisClient, ConversationClient
from .mock import MockAnalysisClient


def _env_str(name: str, default: str = "") -> str:
    return os.getenv(name, default).strip()


def get_analysis_client(provider: Optional[str] = None, model: Optional[str] = None) -> AnalysisClient:
    """Return an analysis client based on env or explicit overrides.

    Env precedence:
      - AI_PROVIDER_ANALYSIS
      - AI_PROVIDER
      - defaults to 'mock'
    Model from AI_ANALYSIS_MODEL if not given. A provider whose keys are missing
    resolves to the mock client, which the orchestrator reports as demo output.
    """
    prov = (provider or _env_str("AI_PROVIDER_ANALYSIS") or _env_str("AI_PROVIDER") or "mock").lower()
    mdl = model or _env_str("AI_ANALYSIS_MODEL") or None

    if prov in ("mock", "test"):
        return MockAnalysisClient(model=mdl)

    if prov in ("openai", "gpt"):
        try:
            from .openai import OpenAIAnalysisClient
            return OpenAIAnalysisClient(model=mdl)
        except RuntimeError:
            return MockAnalysisClient(model=mdl)

    if prov in ("openrouter", "router"):
        try:
            from .openrouter import OpenRouterAnalysisClient
            return OpenRouterAnalysisClient(model=mdl)
        except RuntimeError:
            return MockAnalysisClient(model=mdl)

    # Unknown -> mock
    return MockAnalysisClient(model=mdl)


def get_conversation_client() -> Optional[ConversationClient]:
    """ElevenLabs client, or None when no API key is configured."""
    if not _env_str("ELEVENLABS_API_KEY"):
        return None
    from .elevenlabs import ElevenLabsConversationClient
    return ElevenLabsConversationClient()
