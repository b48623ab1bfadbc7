import os
from typing import Any, Dict, Iterable, List, Optional

import httpx

from app import config
from app.errors import StoreError
from app.logs import get_logger, log_event

from .base import Row, SessionStore

logger = get_logger("store")


def _in_filter(values: Iterable[str]) -> str:
    return "in.(" + ",".join(str(v) for v in values) + ")"


class PostgrestStore(SessionStore):
    """Hosted Postgres store reached over the Supabase REST (PostgREST) API.

    Each call opens a short-lived ``httpx.AsyncClient``. Non-2xx responses and
    transport failures raise StoreError; callers decide whether a write is
    best-effort.
    """

    name = "supabase"

    def __init__(self, base_url: Optional[str] = None, service_key: Optional[str] = None, timeout: Optional[float] = None):
        self._base = (base_url or os.getenv("SUPABASE_URL", "")).strip().rstrip("/")
        self._key = (service_key or os.getenv("SUPABASE_SERVICE_KEY", "")).strip()
        if not self._base or not self._key:
            raise RuntimeError("SUPABASE_URL and SUPABASE_SERVICE_KEY are required for the supabase store")
        self._timeout = config.STORE_TIMEOUT_SECONDS if timeout is None else timeout

    def _headers(self, prefer: Optional[str] = None) -> Dict[str, str]:
        headers = {
            "apikey": self._key,
            "Authorization": f"Bearer {self._key}",
            "Content-Type": "application/json",
        }
        if prefer:
            headers["Prefer"] = prefer
        return headers

    def _table_url(self, table: str) -> str:
        return f"{self._base}/rest/v1/{config.table_name(table)}"

    async def _request(
        self,
        method: str,
        table: str,
        *,
        params: Optional[Dict[str, str]] = None,
        json: Any = None,
        prefer: Optional[str] = None,
    ) -> List[Row]:
        url = self._table_url(table)
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.request(method, url, params=params, json=json, headers=self._headers(prefer))
        except Exception as e:
            log_event(logger, "store_transport_error", table=table, method=method, error=type(e).__name__)
            raise StoreError(f"Store request failed: {type(e).__name__}") from e
        if resp.status_code >= 400:
            log_event(logger, "store_http_error", table=table, method=method, status=resp.status_code)
            raise StoreError(f"Store returned {resp.status_code} for {table}")
        if resp.status_code == 204 or not resp.content:
            return []
        try:
            data = resp.json()
        except Exception as e:
            raise StoreError("Store returned invalid JSON") from e
        if isinstance(data, dict):
            return [data]
        return [r for r in data if isinstance(r, dict)] if isinstance(data, list) else []

    async def _select_one(self, table: str, **eq: str) -> Optional[Row]:
        params = {"select": "*", "limit": "1"}
        params.update({k: f"eq.{v}" for k, v in eq.items()})
        rows = await self._request("GET", table, params=params)
        return rows[0] if rows else None

    async def _upsert(self, table: str, row: Row) -> None:
        await self._request(
            "POST",
            table,
            params={"on_conflict": "session_id"},
            json=row,
            prefer="resolution=merge-duplicates,return=minimal",
        )

    # Identity
    async def get_profile_for_token(self, token: str) -> Optional[Row]:
        url = f"{self._base}/auth/v1/user"
        headers = {"apikey": self._key, "Authorization": f"Bearer {token}"}
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.get(url, headers=headers)
        except Exception as e:
            raise StoreError(f"Auth request failed: {type(e).__name__}") from e
        if resp.status_code >= 400:
            return None
        user = resp.json() or {}
        user_id = user.get("id") if isinstance(user, dict) else None
        if not user_id:
            return None
        return await self._select_one("profiles", user_id=str(user_id))

    # Sessions
    async def create_session(self, row: Row) -> Row:
        rows = await self._request("POST", "sessions", json=row, prefer="return=representation")
        if not rows:
            raise StoreError("Session insert returned no row")
        return rows[0]

    async def get_session(self, session_id: str, owner_id: Optional[str] = None) -> Optional[Row]:
        if owner_id is None:
            return await self._select_one("sessions", id=session_id)
        return await self._select_one("sessions", id=session_id, profile_id=owner_id)

    async def update_session(
        self,
        session_id: str,
        fields: Row,
        expected_statuses: Optional[Iterable[str]] = None,
    ) -> Optional[Row]:
        params = {"id": f"eq.{session_id}"}
        if expected_statuses is not None:
            params["status"] = _in_filter(expected_statuses)
        rows = await self._request("PATCH", "sessions", params=params, json=fields, prefer="return=representation")
        return rows[0] if rows else None

    async def list_recent_sessions(
        self,
        statuses: Iterable[str],
        limit: int = 10,
        owner_id: Optional[str] = None,
    ) -> List[Row]:
        # Embedded resources come back keyed by their table name
        ar = config.table_name("analysis_results")
        sa = config.table_name("session_analytics")
        params = {
            "select": f"*,analysis_result:{ar}(*),analytics:{sa}(*)",
            "status": _in_filter(statuses),
            "order": "created_at.desc",
            "limit": str(limit),
        }
        if owner_id is not None:
            params["profile_id"] = f"eq.{owner_id}"
        rows = await self._request("GET", "sessions", params=params)
        for r in rows:
            for key in ("analysis_result", "analytics"):
                val = r.get(key)
                if isinstance(val, list):
                    r[key] = val[0] if val else None
        return rows

    # Analysis
    async def get_analysis_result(self, session_id: str) -> Optional[Row]:
        return await self._select_one("analysis_results", session_id=session_id)

    async def upsert_analysis_result(self, row: Row) -> None:
        await self._upsert("analysis_results", row)

    async def get_session_analytics(self, session_id: str) -> Optional[Row]:
        return await self._select_one("session_analytics", session_id=session_id)

    async def upsert_session_analytics(self, row: Row) -> None:
        await self._upsert("session_analytics", row)

    # Usage accounting
    async def get_active_subscription(self, profile_id: str) -> Optional[Row]:
        return await self._select_one("subscriptions", profile_id=profile_id, status="active")

    async def update_subscription(self, subscription_id: str, fields: Row) -> None:
        await self._request("PATCH", "subscriptions", params={"id": f"eq.{subscription_id}"}, json=fields)

    async def insert_usage(self, row: Row) -> None:
        await self._request("POST", "usage", json=row, prefer="return=minimal")

    async def insert_audit_log(self, row: Row) -> None:
        await self._request("POST", "audit_logs", json=row, prefer="return=minimal")
