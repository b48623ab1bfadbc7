import hmac
from dataclasses import dataclass
from typing import Any, Mapping, Optional

from app import config
from app.errors import NotFoundError, UnauthorizedError
from app.store.base import Row, SessionStore


@dataclass(frozen=True)
class Credentials:
    """Caller credentials lifted from request headers.

    ``trusted`` is only set for in-process calls (the end-session handler
    triggering analysis), which never cross the HTTP boundary.
    """

    bearer_token: Optional[str] = None
    server_secret: Optional[str] = None
    trusted: bool = False

    @classmethod
    def from_headers(cls, headers: Mapping[str, Any]) -> "Credentials":
        token = None
        auth = str(headers.get("authorization") or "").strip()
        if auth.lower().startswith("bearer "):
            token = auth[7:].strip() or None
        secret = str(headers.get("x-server-secret") or "").strip() or None
        return cls(bearer_token=token, server_secret=secret)

    @classmethod
    def internal(cls) -> "Credentials":
        return cls(trusted=True)

    @property
    def present(self) -> bool:
        return bool(self.trusted or self.bearer_token or self.server_secret)


def is_trusted_caller(creds: Credentials) -> bool:
    if creds.trusted:
        return True
    expected = config.server_secret()
    if not expected or not creds.server_secret:
        return False
    return hmac.compare_digest(creds.server_secret.encode("utf-8"), expected.encode("utf-8"))


async def resolve_profile(store: SessionStore, creds: Credentials) -> Row:
    """Resolve the end-user profile behind a bearer credential or raise UnauthorizedError."""
    if not creds.bearer_token:
        raise UnauthorizedError("Authorization required")
    profile = await store.get_profile_for_token(creds.bearer_token)
    if not profile:
        raise UnauthorizedError("Invalid or expired token")
    return profile


async def authorize_session(store: SessionStore, session_id: str, creds: Credentials) -> Row:
    """Return the session row the caller may act on.

    Trusted callers see any session; end users only their own. A session
    owned by someone else is reported exactly like a missing one.
    """
    if is_trusted_caller(creds):
        row = await store.get_session(session_id)
    elif creds.bearer_token:
        profile = await resolve_profile(store, creds)
        row = await store.get_session(session_id, owner_id=profile.get("id"))
    else:
        raise UnauthorizedError("Authorization required")
    if not row:
        raise NotFoundError()
    return row
