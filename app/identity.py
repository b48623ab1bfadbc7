"""Session identity resolution.

A session id alone decides where the session lives, and the decision is made
before any credential is looked at: demo and third-party sessions are served
without authentication.
"""
import enum
from typing import Optional

from app.errors import ValidationError

LOCAL_PREFIXES = ("demo-", "temp-")
THIRD_PARTY_PREFIXES = ("conv_",)


class SessionDomain(str, enum.Enum):
    LOCAL = "local"
    THIRD_PARTY = "third_party"
    PERSISTED = "persisted"


def is_demo_session(session_id: Optional[str], status: Optional[str] = None) -> bool:
    if status == "demo":
        return True
    if not session_id:
        return False
    if session_id.startswith(LOCAL_PREFIXES):
        return True
    # Historical ids carry "demo" in arbitrary positions (e.g. "user-demo-2")
    return "demo" in session_id


def is_third_party_session(session_id: Optional[str]) -> bool:
    return bool(session_id) and session_id.startswith(THIRD_PARTY_PREFIXES)


def classify(session_id: str, status: Optional[str] = None) -> SessionDomain:
    """Classify a session id; first matching rule wins.

    Anything that is neither demo nor third-party is treated as persisted and
    must be resolved against the store with an owner credential.
    """
    if not isinstance(session_id, str) or not session_id.strip():
        raise ValidationError("Invalid session_id")
    if is_demo_session(session_id, status):
        return SessionDomain.LOCAL
    if is_third_party_session(session_id):
        return SessionDomain.THIRD_PARTY
    return SessionDomain.PERSISTED
