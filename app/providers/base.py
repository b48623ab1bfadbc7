from __future__ import annotations

import abc
from typing import Any, Dict, List, Optional


class AnalysisClient(abc.ABC):
    """Qualitative analysis provider.

    Implementations return the provider's JSON object as a dict and raise
    ``ProviderUnavailable`` on transport, HTTP or parse failures; validating the
    mandatory fields is the orchestrator's job.
    """

    provider_name: str = "unknown"

    def __init__(self, model: Optional[str] = None):
        self.model = model

    @abc.abstractmethod
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
        ...


class ConversationClient(abc.ABC):
    """Third-party voice conversation provider (read-only)."""

    provider_name: str = "unknown"

    @abc.abstractmethod
    async def get_conversation(self, conversation_id: str) -> Dict[str, Any]:
        ...

    @abc.abstractmethod
    async def list_conversations(self, limit: int = 10) -> List[Dict[str, Any]]:
        ...
