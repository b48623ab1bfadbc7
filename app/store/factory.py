import os
from typing import Optional

from app.logs import get_logger, log_event

from .base import SessionStore
from .memory import InMemoryStore

logger = get_logger("store")


def get_store(provider: Optional[str] = None) -> SessionStore:
    """Return the session store selected by STORE_PROVIDER (memory|supabase).

    A supabase store missing its credentials resolves to the in-memory store.
    """
    prov = (provider or os.getenv("STORE_PROVIDER", "") or "memory").strip().lower()
    if prov in ("supabase", "postgrest"):
        try:
            from .postgrest import PostgrestStore
            return PostgrestStore()
        except RuntimeError as e:
            log_event(logger, "store_fallback_memory", reason=str(e))
            return InMemoryStore()
    return InMemoryStore()
