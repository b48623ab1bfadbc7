from __future__ import annotations

from typing import Any, Dict, List, Optional, Union

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
)
from pydantic.alias_generators import to_camel


def _as_str_list(val: Any) -> List[str]:
    out: List[str] = []
    if isinstance(val, list):
        for x in val:
            if isinstance(x, str) and x.strip():
                out.append(x.strip())
            elif isinstance(x, (int, float)) and not isinstance(x, bool):
                out.append(str(x))
    elif isinstance(val, str) and val.strip():
        out.append(val.strip())
    return out


def _clamp_score(val: Any) -> Optional[float]:
    if val is None:
        return None
    try:
        x = float(val)
    except (TypeError, ValueError):
        raise ValueError(f"invalid score: {val!r}")
    if x < 0.0:
        x = 0.0
    if x > 10.0:
        x = 10.0
    return x


class TranscriptMessage(BaseModel):
    """One utterance. Provider payloads use ``role``/``content`` and are accepted too."""

    model_config = ConfigDict(extra="ignore")

    speaker: str = Field(default="", validation_alias=AliasChoices("speaker", "role"))
    message: str = Field(default="", validation_alias=AliasChoices("message", "content", "text"))
    timestamp: Optional[float] = Field(
        default=None, validation_alias=AliasChoices("timestamp", "time_in_call_secs", "ts")
    )

    def as_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"speaker": self.speaker, "message": self.message}
        if self.timestamp is not None:
            out["timestamp"] = self.timestamp
        return out


class RequesterInfo(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: Optional[str] = None
    company: Optional[str] = None
    role: Optional[str] = None


class _Request(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class StartSessionRequest(_Request):
    session_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("sessionId", "session_id"))
    session_type: Optional[str] = Field(default=None, validation_alias=AliasChoices("sessionType", "session_type"))


class EndSessionRequest(_Request):
    session_id: str = Field(min_length=1, validation_alias=AliasChoices("sessionId", "session_id"), strict=True)
    duration_seconds: float = Field(
        gt=0, strict=True, validation_alias=AliasChoices("durationSeconds", "duration_seconds", "duration")
    )
    transcript: Optional[List[TranscriptMessage]] = None
    audio_quality: Optional[Any] = Field(default=None, validation_alias=AliasChoices("audioQuality", "audio_quality"))
    audio_file_url: Optional[str] = Field(default=None, validation_alias=AliasChoices("audioFileUrl", "audio_file_url"))
    audio_file_size: Optional[int] = Field(default=None, validation_alias=AliasChoices("audioFileSize", "audio_file_size"))
    user_info: Optional[RequesterInfo] = Field(default=None, validation_alias=AliasChoices("userInfo", "user_info"))

    def transcript_dicts(self) -> List[Dict[str, Any]]:
        return [m.as_dict() for m in (self.transcript or [])]


class AnalyzeRequest(_Request):
    session_id: str = Field(min_length=1, validation_alias=AliasChoices("sessionId", "session_id"), strict=True)
    # A bare string is the legacy single-utterance form
    transcript: Optional[Union[str, List[TranscriptMessage]]] = None
    duration: Optional[float] = Field(
        default=None, strict=True, validation_alias=AliasChoices("duration", "durationSeconds", "duration_seconds")
    )
    user_info: Optional[RequesterInfo] = Field(default=None, validation_alias=AliasChoices("userInfo", "user_info"))


class ScoredAnalysis(BaseModel):
    model_config = ConfigDict(extra="ignore")

    score: Optional[float] = None
    analysis: Optional[str] = None

    @field_validator("score", mode="before")
    @classmethod
    def _clamp(cls, v: Any) -> Optional[float]:
        return _clamp_score(v)


class AnalysisResult(BaseModel):
    """Qualitative assessment of one session; scores are on the provider's 0-10 scale.

    ``overall_score``, ``strengths`` and ``areas_for_improvement`` are mandatory;
    a provider payload missing any of them is rejected as a whole.
    """

    model_config = ConfigDict(extra="ignore", alias_generator=to_camel, populate_by_name=True)

    overall_score: float
    strengths: List[str]
    areas_for_improvement: List[str]
    title: Optional[str] = None
    effective_techniques: List[str] = Field(default_factory=list)
    techniques_needing_work: List[str] = Field(default_factory=list)
    objection_handling: Optional[ScoredAnalysis] = None
    closing_effectiveness: Optional[ScoredAnalysis] = None
    key_recommendations: List[str] = Field(default_factory=list)
    detailed_analysis: Optional[str] = None

    @field_validator("overall_score", mode="before")
    @classmethod
    def _clamp_overall(cls, v: Any) -> float:
        if v is None:
            raise ValueError("overallScore is required")
        return _clamp_score(v)  # type: ignore[return-value]

    @field_validator("strengths", "areas_for_improvement", mode="before")
    @classmethod
    def _required_lists(cls, v: Any) -> List[str]:
        if v is None:
            raise ValueError("field is required")
        return _as_str_list(v)

    @field_validator("effective_techniques", "techniques_needing_work", "key_recommendations", mode="before")
    @classmethod
    def _optional_lists(cls, v: Any) -> List[str]:
        return _as_str_list(v)

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)
