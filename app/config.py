import os
from typing import List


def _env_str(name: str, default: str = "") -> str:
    return (os.getenv(name) or default).strip()


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except Exception:
        return default


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except Exception:
        return default


def _env_bool(name: str, default: bool) -> bool:
    try:
        v = os.getenv(name, "1" if default else "0").strip().lower()
        return v in ("1", "true", "yes", "on")
    except Exception:
        return default


def _env_list(name: str, default: List[str]) -> List[str]:
    raw = _env_str(name)
    if not raw:
        return list(default)
    return [p.strip() for p in raw.split(",") if p.strip()]


# Analysis pipeline
MIN_TRANSCRIPT_CHARS = _env_int("MIN_TRANSCRIPT_CHARS", 20)
DEFAULT_DEMO_DURATION_SECONDS = 300
FEEDBACK_SUMMARY_CHARS = 500
ANALYSIS_TYPE = "sales-coaching"
ANALYSIS_VERSION = "1.0"
ANALYSIS_CONFIDENCE = 0.85

# Timeouts (seconds)
AI_HTTP_TIMEOUT_SECONDS = _env_float("AI_HTTP_TIMEOUT_SECONDS", 30)
ANALYSIS_TIMEOUT_SECONDS = _env_float("ANALYSIS_TIMEOUT_SECONDS", 45)
STORE_TIMEOUT_SECONDS = _env_float("STORE_TIMEOUT_SECONDS", 10)

# Billing
MINUTE_RATE_USD = _env_float("MINUTE_RATE_USD", 0.1)

# Workers and caches
ANALYSIS_WORKER_CONCURRENCY = _env_int("ANALYSIS_WORKER_CONCURRENCY", 2)
ANALYSIS_FAILURES_KEPT = _env_int("ANALYSIS_FAILURES_KEPT", 50)
DEMO_CACHE_CAPACITY = _env_int("DEMO_CACHE_CAPACITY", 10)
RECENT_SESSIONS_LIMIT = _env_int("RECENT_SESSIONS_LIMIT", 10)

# Store
STORE_TABLE_PREFIX = _env_str("STORE_TABLE_PREFIX", "salesai_")

CORS_ALLOW_ORIGINS = _env_list("CORS_ALLOW_ORIGINS", ["http://localhost:3000"])


def server_secret() -> str:
    """Shared secret for trusted server-to-server calls; read per call so rotation needs no restart."""
    return _env_str("SERVER_SECRET")


def table_name(base: str) -> str:
    return f"{STORE_TABLE_PREFIX}{base}"
