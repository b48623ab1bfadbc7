import copy
import uuid
from typing import Any, Dict, Iterable, List, Optional

from .base import Row, SessionStore

TABLES = (
    "profiles",
    "sessions",
    "analysis_results",
    "session_analytics",
    "subscriptions",
    "usage",
    "audit_logs",
)


class InMemoryStore(SessionStore):
    """Process-local store with the same semantics as the hosted one.

    Used for local development and tests. Rows are copied in and out so callers
    never share mutable state with the tables.
    """

    name = "memory"

    def __init__(self):
        self.tables: Dict[str, List[Row]] = {t: [] for t in TABLES}
        self._tokens: Dict[str, str] = {}

    # Seeding helpers
    def add_profile(self, token: str, profile: Row) -> Row:
        row = dict(profile)
        row.setdefault("id", str(uuid.uuid4()))
        self.tables["profiles"].append(row)
        self._tokens[token] = row["id"]
        return copy.deepcopy(row)

    def add_subscription(self, row: Row) -> Row:
        sub = dict(row)
        sub.setdefault("id", str(uuid.uuid4()))
        sub.setdefault("status", "active")
        sub.setdefault("minutes_used", 0)
        self.tables["subscriptions"].append(sub)
        return copy.deepcopy(sub)

    def rows(self, table: str, **where: Any) -> List[Row]:
        return [copy.deepcopy(r) for r in self._match(table, **where)]

    # Internals
    def _match(self, table: str, **where: Any) -> List[Row]:
        return [r for r in self.tables[table] if all(r.get(k) == v for k, v in where.items())]

    def _first(self, table: str, **where: Any) -> Optional[Row]:
        found = self._match(table, **where)
        return copy.deepcopy(found[0]) if found else None

    def _upsert(self, table: str, key: str, row: Row) -> None:
        rows = self.tables[table]
        for i, existing in enumerate(rows):
            if existing.get(key) == row.get(key):
                rows[i] = copy.deepcopy(row)
                return
        rows.append(copy.deepcopy(row))

    # SessionStore
    async def get_profile_for_token(self, token: str) -> Optional[Row]:
        profile_id = self._tokens.get(token)
        if not profile_id:
            return None
        return self._first("profiles", id=profile_id)

    async def create_session(self, row: Row) -> Row:
        sess = dict(row)
        sess.setdefault("id", str(uuid.uuid4()))
        self.tables["sessions"].append(copy.deepcopy(sess))
        return sess

    async def get_session(self, session_id: str, owner_id: Optional[str] = None) -> Optional[Row]:
        if owner_id is None:
            return self._first("sessions", id=session_id)
        return self._first("sessions", id=session_id, profile_id=owner_id)

    async def update_session(
        self,
        session_id: str,
        fields: Row,
        expected_statuses: Optional[Iterable[str]] = None,
    ) -> Optional[Row]:
        allowed = set(expected_statuses) if expected_statuses is not None else None
        for row in self._match("sessions", id=session_id):
            if allowed is not None and row.get("status") not in allowed:
                return None
            row.update(copy.deepcopy(fields))
            return copy.deepcopy(row)
        return None

    async def list_recent_sessions(
        self,
        statuses: Iterable[str],
        limit: int = 10,
        owner_id: Optional[str] = None,
    ) -> List[Row]:
        wanted = set(statuses)
        rows = [
            r for r in self.tables["sessions"]
            if r.get("status") in wanted and (owner_id is None or r.get("profile_id") == owner_id)
        ]
        rows.sort(key=lambda r: str(r.get("created_at") or ""), reverse=True)
        out = []
        for r in rows[:limit]:
            item = copy.deepcopy(r)
            item["analysis_result"] = self._first("analysis_results", session_id=r.get("id"))
            item["analytics"] = self._first("session_analytics", session_id=r.get("id"))
            out.append(item)
        return out

    async def get_analysis_result(self, session_id: str) -> Optional[Row]:
        return self._first("analysis_results", session_id=session_id)

    async def upsert_analysis_result(self, row: Row) -> None:
        self._upsert("analysis_results", "session_id", row)

    async def get_session_analytics(self, session_id: str) -> Optional[Row]:
        return self._first("session_analytics", session_id=session_id)

    async def upsert_session_analytics(self, row: Row) -> None:
        self._upsert("session_analytics", "session_id", row)

    async def get_active_subscription(self, profile_id: str) -> Optional[Row]:
        return self._first("subscriptions", profile_id=profile_id, status="active")

    async def update_subscription(self, subscription_id: str, fields: Row) -> None:
        for row in self._match("subscriptions", id=subscription_id):
            row.update(copy.deepcopy(fields))

    async def insert_usage(self, row: Row) -> None:
        self.tables["usage"].append(copy.deepcopy(row))

    async def insert_audit_log(self, row: Row) -> None:
        self.tables["audit_logs"].append(copy.deepcopy(row))
