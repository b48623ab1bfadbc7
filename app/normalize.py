import math
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Mapping, Optional, Union

Number = Union[int, float]

CANONICAL_STATUSES = ("completed", "in_progress", "demo", "processing", "active", "analyzed", "archived")

_STATUS_MAP = {
    "analyzed": "completed",
    "active": "in_progress",
    "processing": "processing",
    "demo": "demo",
    "archived": "archived",
}

_SCALES = (10, 100)

_DATE_FIELDS = (
    ("createdAt", "created_at"),
    ("startedAt", "started_at"),
    ("endedAt", "ended_at"),
    ("analyzedAt", "analyzed_at"),
    ("updatedAt", "updated_at"),
)


def normalize_status(raw_status: Optional[str], has_analysis: bool = False) -> str:
    """Map a stored or legacy status onto the canonical display status.

    Unknown values fall back to ``in_progress`` rather than raising.
    """
    if raw_status == "completed":
        return "completed" if has_analysis else "processing"
    return _STATUS_MAP.get(raw_status or "", "in_progress")


def _is_absent(score: Any) -> bool:
    if isinstance(score, bool) or not isinstance(score, (int, float)):
        return True
    return isinstance(score, float) and math.isnan(score)


def normalize_score(score: Optional[Number], from_scale: int, to_scale: int) -> Number:
    """Convert a score between the 0-10 and 0-100 scales.

    Decimal arithmetic keeps 10 -> 100 -> 10 an exact round trip for floats.
    """
    if from_scale not in _SCALES or to_scale not in _SCALES:
        raise ValueError(f"unsupported score scale: {from_scale} -> {to_scale}")
    if _is_absent(score):
        return 0
    if from_scale == to_scale:
        return score
    if from_scale == 10 and to_scale == 100:
        if isinstance(score, int):
            return score * 10
        return float(Decimal(repr(score)) * 10)
    return float(Decimal(repr(score)) / 10)


def to_storage_score(score10: Optional[Number]) -> int:
    """Provider scores (0-10) are persisted as integers on the canonical 0-100 scale."""
    return int(math.floor(normalize_score(score10, 10, 100) + 0.5))


def to_display_score(score100: Optional[Number]) -> Optional[float]:
    if _is_absent(score100):
        return None
    return round(float(normalize_score(score100, 100, 10)), 1)


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def normalize_dates(data: Optional[Mapping[str, Any]]) -> Dict[str, Optional[str]]:
    data = data or {}
    out: Dict[str, Optional[str]] = {}
    for camel, snake in _DATE_FIELDS:
        out[camel] = data.get(camel) or data.get(snake) or None
    if not out["createdAt"]:
        out["createdAt"] = utc_now_iso()
    return out
